"""Crawls a CLI binary's ``--help`` tree into operations."""

from __future__ import annotations

import re
import shutil
import subprocess
from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Deque, Dict, List, Optional, Tuple

from ..errors import SourceResolutionError
from ..logging import get_logger
from ..models import Group, IntermediateRepr, Operation, Parameter, SpecSource, SpecWarning
from .base import SpecPlugin

_BLOCK_HEADER = "=== COMMAND: "
_BLOCK_END = "=== END ==="
_DEFAULT_HELP_FLAG = "--help"
_DEFAULT_MAX_DEPTH = 3
_HELP_TIMEOUT = 5.0

_SUBCOMMAND_RE = re.compile(r"^\s{2,}(\S+)\s{2,}(.*)$")
_FLAG_RE = re.compile(r"^\s+(-\w),?\s+(--[\w-]+)\s+(\S+)?\s*(.*)$")
_LONG_FLAG_RE = re.compile(r"^\s+(--[\w-]+)\s+(\S+)?\s*(.*)$")
_ALIAS_RE = re.compile(r"aliases?:\s*\n?\s*(.+)", re.IGNORECASE)

_COMMAND_SECTIONS = {"available commands", "commands", "subcommands"}
_FLAG_SECTIONS = {"flags", "global flags", "options"}

logger = get_logger("plugins.cli")


@dataclass
class ParsedFlag:
    name: str
    shorthand: str = ""
    type: str = ""
    default: str = ""
    description: str = ""


@dataclass
class ParsedHelp:
    description: str = ""
    subcommands: List[str] = field(default_factory=list)
    flags: List[ParsedFlag] = field(default_factory=list)
    aliases: List[str] = field(default_factory=list)


class CLIPlugin(SpecPlugin):
    """Runs ``<binary> [sub ...] --help`` breadth-first and parses the output.

    ``fetch`` serializes every help page as a ``=== COMMAND: ... ===`` block so
    that ``parse`` works from captured text alone.
    """

    name = "cli"
    help_timeout = _HELP_TIMEOUT

    def detect(self, source: SpecSource) -> bool:
        return source.type == "cli" and bool(source.binary)

    def fetch(self, source: SpecSource) -> bytes:
        binary = source.binary
        if shutil.which(binary) is None:
            raise SourceResolutionError(f"binary {binary!r} not found in PATH")

        help_flag = source.help_flag or _DEFAULT_HELP_FLAG
        max_depth = source.max_depth if source.max_depth > 0 else _DEFAULT_MAX_DEPTH
        excluded = set(source.exclude)

        pages: List[Tuple[List[str], str]] = []
        queue: Deque[Tuple[List[str], int]] = deque([([], 0)])
        while queue:
            command_path, depth = queue.popleft()
            try:
                output = self._run_help(binary, command_path + [help_flag])
            except (OSError, subprocess.SubprocessError) as exc:
                logger.warning("Help crawl failed for %s: %s", " ".join([binary] + command_path), exc)
                pages.append((command_path, f"(error: {exc})"))
                continue
            pages.append((command_path, output))
            if depth >= max_depth:
                continue
            for sub in parse_help_output(output).subcommands:
                if sub in excluded:
                    continue
                queue.append((command_path + [sub], depth + 1))

        chunks: List[str] = []
        for command_path, text in pages:
            label = " ".join([binary] + command_path)
            chunks.append(f"{_BLOCK_HEADER}{label} ===\n{text}\n{_BLOCK_END}\n\n")
        return "".join(chunks).encode("utf-8")

    def parse(self, raw: bytes, source: SpecSource) -> IntermediateRepr:
        result = IntermediateRepr(metadata={"binary": source.binary, "type": "cli"})
        group_ops: Dict[str, List[str]] = defaultdict(list)

        operations: List[Operation] = []
        for command_path, help_text in split_command_blocks(raw.decode("utf-8", errors="replace")):
            parsed = parse_help_output(help_text)
            op_id = command_path.replace(" ", "_")
            operations.append(
                Operation(
                    id=op_id,
                    name=command_path,
                    description=parsed.description,
                    path=command_path,
                    aliases=parsed.aliases,
                    raw_help_text=help_text,
                    parameters=[
                        Parameter(
                            name=flag.name,
                            location="flag",
                            description=flag.description,
                            type=flag.type,
                            default=flag.default,
                            shorthand=flag.shorthand,
                        )
                        for flag in parsed.flags
                    ],
                )
            )

        operations.sort(key=lambda op: op.path)
        for op in operations:
            parts = op.path.split()
            if len(parts) > 1:
                group_ops[" ".join(parts[:-1])].append(op.id)

        result.operations = operations
        result.groups = [Group(name=name, operations=group_ops[name]) for name in sorted(group_ops)]
        return result

    def validate(self, ir: IntermediateRepr) -> List[SpecWarning]:
        return [
            SpecWarning(message=f"command {op.path} has no description (help output may be non-standard)")
            for op in ir.operations
            if not op.description
        ]

    def _run_help(self, binary: str, args: List[str]) -> str:
        try:
            completed = subprocess.run(
                [binary, *args],
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                timeout=self.help_timeout,
            )
        except subprocess.TimeoutExpired as exc:
            raise subprocess.SubprocessError(f"command timed out after {self.help_timeout:g}s") from exc
        output = completed.stdout.decode("utf-8", errors="replace")
        # Many CLIs exit non-zero for --help; any output counts.
        if output or completed.returncode == 0:
            return output
        raise subprocess.CalledProcessError(completed.returncode, [binary, *args])


def split_command_blocks(content: str) -> List[Tuple[str, str]]:
    """Return ``(command path, help text)`` pairs from serialized crawl output."""
    blocks: List[Tuple[str, str]] = []
    for part in content.split(_BLOCK_HEADER)[1:]:
        end = part.find(" ===\n")
        if end < 0:
            continue
        command = part[:end]
        rest = part[end + len(" ===\n") :]
        text_end = rest.find("\n" + _BLOCK_END)
        text = rest if text_end < 0 else rest[:text_end]
        blocks.append((command, text.strip()))
    return blocks


def parse_help_output(text: str) -> ParsedHelp:
    """Heuristically extract description, subcommands, flags and aliases."""
    result = ParsedHelp()
    description: List[str] = []
    in_description = True
    section: Optional[str] = None

    for line in text.split("\n"):
        lowered = line.strip().lower()
        if lowered.endswith(":") and not line.startswith(" "):
            in_description = False
            section = lowered[:-1]
            continue
        if not lowered:
            if in_description and description:
                in_description = False
            continue
        if in_description:
            description.append(line.strip())
            continue

        if section in _COMMAND_SECTIONS:
            match = _SUBCOMMAND_RE.match(line)
            if match:
                result.subcommands.append(match.group(1))
        elif section in _FLAG_SECTIONS:
            match = _FLAG_RE.match(line)
            if match:
                result.flags.append(
                    ParsedFlag(
                        shorthand=match.group(1),
                        name=match.group(2),
                        type=match.group(3) or "",
                        description=match.group(4).strip(),
                    )
                )
                continue
            match = _LONG_FLAG_RE.match(line)
            if match:
                result.flags.append(
                    ParsedFlag(
                        name=match.group(1),
                        type=match.group(2) or "",
                        description=match.group(3).strip(),
                    )
                )

    result.description = " ".join(description)

    alias_match = _ALIAS_RE.search(text)
    if alias_match:
        result.aliases = [alias.strip() for alias in alias_match.group(1).split(",") if alias.strip()]
    return result


__all__ = ["CLIPlugin", "ParsedFlag", "ParsedHelp", "parse_help_output", "split_command_blocks"]
