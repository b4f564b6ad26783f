"""Drift detection between recorded fingerprints, inputs and output trees."""

from __future__ import annotations

import difflib
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Iterable, List, Mapping, Sequence, Tuple

from .pipeline import GenerationResult, Pipeline
from .prompting.constants import SCRIPTS
from .stores.lockfile import LockFile
from .writer import split_scripts

ADDED = "added"
REMOVED = "removed"
CHANGED = "changed"


@dataclass(frozen=True)
class FileChange:
    path: str
    kind: str

    def describe(self, current_dir: Path, against_dir: Path) -> str:
        if self.kind == REMOVED:
            return f"REMOVED: {self.path} (exists in {against_dir} but not in {current_dir})"
        if self.kind == ADDED:
            return f"ADDED:   {self.path} (exists in {current_dir} but not in {against_dir})"
        return f"CHANGED: {self.path}"


@dataclass
class DriftReport:
    stale_artifacts: List[str] = field(default_factory=list)
    file_changes: List[FileChange] = field(default_factory=list)

    @property
    def drifted(self) -> bool:
        return bool(self.stale_artifacts or self.file_changes)


def detect_input_drift(pipeline: Pipeline, lockfile: LockFile) -> List[str]:
    """Return enabled artifact ids whose current input hash is not recorded.

    Neither the lockfile nor any output is modified.
    """
    return [
        artifact_id
        for artifact_id in pipeline.enabled_artifacts()
        if not lockfile.is_up_to_date(artifact_id, pipeline.input_hash(artifact_id))
    ]


def compare_directories(current_dir: Path, against_dir: Path, paths: Iterable[str]) -> List[FileChange]:
    """Compare the same relative paths under two directories.

    Paths that exist in neither directory are ignored. Directory paths are
    compared file by file.
    """
    changes: List[FileChange] = []
    for relative in paths:
        for item in _expand(Path(current_dir), Path(against_dir), relative):
            current = Path(current_dir) / item
            against = Path(against_dir) / item
            current_exists = current.is_file()
            against_exists = against.is_file()
            if not current_exists and not against_exists:
                continue
            if not current_exists:
                changes.append(FileChange(path=item, kind=REMOVED))
            elif not against_exists:
                changes.append(FileChange(path=item, kind=ADDED))
            elif current.read_bytes() != against.read_bytes():
                changes.append(FileChange(path=item, kind=CHANGED))
    return changes


def _expand(current_dir: Path, against_dir: Path, relative: str) -> List[str]:
    found = set()
    for root in (current_dir, against_dir):
        candidate = root / relative
        if candidate.is_dir():
            for child in candidate.rglob("*"):
                if child.is_file():
                    found.add(child.relative_to(root).as_posix())
    if not found:
        return [relative]
    return sorted(found)


def _planned_files(results: Sequence[GenerationResult]) -> List[Tuple[str, str]]:
    planned: List[Tuple[str, str]] = []
    for result in results:
        if result.error is not None or not result.content:
            continue
        if result.artifact_id != SCRIPTS:
            planned.append((result.file_path, result.content))
            continue
        for name, body in split_scripts(result.content):
            relative = PurePosixPath(name)
            if relative.is_absolute() or ".." in relative.parts:
                continue
            planned.append(((PurePosixPath(result.file_path) / relative).as_posix(), body))
    return planned


def preview_changes(output_dir: Path, results: Sequence[GenerationResult]) -> List[FileChange]:
    """Report which results would create or change files, without writing.

    The scripts artifact is expanded into the individual files it would write.
    """
    changes: List[FileChange] = []
    for relative, content in _planned_files(results):
        target = Path(output_dir) / relative
        if not target.is_file():
            changes.append(FileChange(path=relative, kind=ADDED))
        elif target.read_text(encoding="utf-8") != content:
            changes.append(FileChange(path=relative, kind=CHANGED))
    return changes


def unified_diff(output_dir: Path, results: Sequence[GenerationResult]) -> Mapping[str, str]:
    """Unified diffs of changed text artifacts keyed by relative path."""
    planned = dict(_planned_files(results))
    diffs = {}
    for change in preview_changes(output_dir, results):
        target = Path(output_dir) / change.path
        before = target.read_text(encoding="utf-8").splitlines() if target.is_file() else []
        diff = difflib.unified_diff(
            before,
            planned[change.path].splitlines(),
            fromfile=f"a/{change.path}",
            tofile=f"b/{change.path}",
            lineterm="",
        )
        diffs[change.path] = "\n".join(diff)
    return diffs


__all__ = [
    "ADDED",
    "CHANGED",
    "DriftReport",
    "FileChange",
    "REMOVED",
    "compare_directories",
    "detect_input_drift",
    "preview_changes",
    "unified_diff",
]
