"""Persists generated artifacts into the output directory."""

from __future__ import annotations

from pathlib import Path, PurePosixPath
from typing import List, Sequence, Tuple

from .errors import WriteError
from .logging import get_logger
from .pipeline import GenerationResult
from .prompting.constants import SCRIPTS

logger = get_logger("writer")


def write_results(output_dir: Path, results: Sequence[GenerationResult]) -> List[Path]:
    """Write every generated, non-skipped result and return the files written."""
    output_dir = Path(output_dir)
    written: List[Path] = []
    for result in results:
        if result.error is not None or not result.content:
            continue
        if result.artifact_id == SCRIPTS:
            written.extend(write_scripts(output_dir / result.file_path, result.content))
            continue
        target = output_dir / result.file_path
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(result.content, encoding="utf-8")
        except OSError as exc:
            raise WriteError(result.file_path, exc) from exc
        logger.debug("Wrote %s", target)
        written.append(target)
    return written


def split_scripts(content: str) -> List[Tuple[str, str]]:
    """Extract ```` ```filename ```` fenced blocks as ``(filename, body)`` pairs.

    Blocks without a filename are dropped.
    """
    scripts: List[Tuple[str, str]] = []
    current_name = ""
    buffer: List[str] = []
    in_block = False
    for line in content.split("\n"):
        if not in_block and line.startswith("```"):
            current_name = line[3:].strip()
            buffer = []
            in_block = True
        elif in_block and line.rstrip() == "```":
            if current_name:
                scripts.append((current_name, "\n".join(buffer) + "\n"))
            in_block = False
            current_name = ""
        elif in_block:
            buffer.append(line)
    return scripts


def write_scripts(directory: Path, content: str) -> List[Path]:
    written: List[Path] = []
    try:
        directory.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise WriteError(str(directory), exc) from exc
    for name, body in split_scripts(content):
        relative = PurePosixPath(name)
        if relative.is_absolute() or ".." in relative.parts:
            logger.warning("Ignoring script with unsafe name: %s", name)
            continue
        target = directory / relative
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(body, encoding="utf-8")
            target.chmod(0o755)
        except OSError as exc:
            raise WriteError(str(target), exc) from exc
        written.append(target)
    return written


__all__ = ["split_scripts", "write_results", "write_scripts"]
