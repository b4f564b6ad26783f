"""Fingerprint lockfile and generated-content cache."""

from __future__ import annotations

import hashlib
import json
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Dict, Iterable, Mapping, Optional

from ..errors import LockFileError

LOCKFILE_NAME = ".skillc-lock.json"
CACHE_DIRNAME = ".skillc/cache"
_LOCKFILE_VERSION = 1


def hash_input(spec: str, sections: str, prompt: str) -> str:
    """Fingerprint the inputs of one artifact.

    Components are joined with a NUL byte so that moving text across a
    boundary always changes the digest.
    """
    digest = hashlib.sha256()
    digest.update(spec.encode("utf-8"))
    digest.update(b"\x00")
    digest.update(sections.encode("utf-8"))
    digest.update(b"\x00")
    digest.update(prompt.encode("utf-8"))
    return digest.hexdigest()


def hash_output(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


@dataclass
class FingerprintEntry:
    input_hash: str
    output_hash: str
    model: str = ""
    updated_at: str = ""


class LockFile:
    """In-memory view of ``.skillc-lock.json``; written back only when dirty."""

    def __init__(self, path: Path, entries: Optional[Dict[str, FingerprintEntry]] = None) -> None:
        self.path = path
        self.entries: Dict[str, FingerprintEntry] = dict(entries or {})
        self._dirty = False

    @property
    def dirty(self) -> bool:
        return self._dirty

    def get(self, artifact_id: str) -> Optional[FingerprintEntry]:
        return self.entries.get(artifact_id)

    def is_up_to_date(self, artifact_id: str, input_hash: str) -> bool:
        entry = self.entries.get(artifact_id)
        return entry is not None and entry.input_hash == input_hash

    def update_entry(self, artifact_id: str, input_hash: str, output_hash: str, model: str) -> None:
        self.entries[artifact_id] = FingerprintEntry(
            input_hash=input_hash,
            output_hash=output_hash,
            model=model,
            updated_at=datetime.now(UTC).isoformat().replace("+00:00", "Z"),
        )
        self._dirty = True

    def save(self) -> bool:
        """Persist the lockfile if anything changed. Returns True when written."""
        if not self._dirty:
            return False
        payload = {
            "version": _LOCKFILE_VERSION,
            "artifacts": {key: asdict(entry) for key, entry in self.entries.items()},
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(payload, indent=2, sort_keys=True) + "\n", encoding="utf-8")
        self._dirty = False
        return True


def load_lockfile(project_dir: Path) -> LockFile:
    """Read the lockfile under ``project_dir``; a missing file yields an empty one."""
    path = Path(project_dir) / LOCKFILE_NAME
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return LockFile(path)
    except OSError as exc:
        raise LockFileError(f"reading {path}: {exc}") from exc

    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise LockFileError(f"parsing {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise LockFileError(f"parsing {path}: expected a JSON object")

    artifacts = data.get("artifacts") or {}
    if not isinstance(artifacts, dict):
        raise LockFileError(f"parsing {path}: `artifacts` must be an object")

    entries: Dict[str, FingerprintEntry] = {}
    for artifact_id, raw in artifacts.items():
        if not isinstance(raw, dict) or not isinstance(raw.get("input_hash"), str):
            raise LockFileError(f"parsing {path}: malformed entry for {artifact_id!r}")
        entries[str(artifact_id)] = FingerprintEntry(
            input_hash=raw["input_hash"],
            output_hash=str(raw.get("output_hash", "")),
            model=str(raw.get("model", "")),
            updated_at=str(raw.get("updated_at", "")),
        )
    return LockFile(path, entries)


class ContentCache:
    """Keeps the last generated text of each artifact under ``.skillc/cache``."""

    def __init__(self, project_dir: Path) -> None:
        self.root = Path(project_dir) / CACHE_DIRNAME

    def path_for(self, artifact_id: str) -> Path:
        return self.root / f"{artifact_id}.md"

    def read(self, artifact_id: str) -> str:
        try:
            return self.path_for(artifact_id).read_text(encoding="utf-8")
        except FileNotFoundError:
            return ""

    def write(self, artifact_id: str, content: str) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        self.path_for(artifact_id).write_text(content, encoding="utf-8")


def load_previous_artifacts(
    output_dir: Path,
    paths: Mapping[str, str],
    artifact_ids: Iterable[str],
    cache: ContentCache | None = None,
) -> Dict[str, str]:
    """Collect last run's content for ``artifact_ids``.

    The output directory wins; the content cache fills in artifacts whose
    file is missing there. Artifacts found in neither are omitted.
    """
    previous: Dict[str, str] = {}
    for artifact_id in artifact_ids:
        relative = paths.get(artifact_id)
        content = ""
        if relative:
            candidate = Path(output_dir) / relative
            if candidate.is_file():
                content = candidate.read_text(encoding="utf-8")
        if not content and cache is not None:
            content = cache.read(artifact_id)
        if content:
            previous[artifact_id] = content
    return previous


__all__ = [
    "CACHE_DIRNAME",
    "ContentCache",
    "FingerprintEntry",
    "LOCKFILE_NAME",
    "LockFile",
    "hash_input",
    "hash_output",
    "load_lockfile",
    "load_previous_artifacts",
]
