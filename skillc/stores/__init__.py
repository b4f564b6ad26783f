"""Persistent state kept between runs."""

from .lockfile import (
    ContentCache,
    FingerprintEntry,
    LockFile,
    hash_input,
    hash_output,
    load_lockfile,
    load_previous_artifacts,
)

__all__ = [
    "ContentCache",
    "FingerprintEntry",
    "LockFile",
    "hash_input",
    "hash_output",
    "load_lockfile",
    "load_previous_artifacts",
]
