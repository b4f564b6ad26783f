"""Codebase directory scanner plugin."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Any, Iterator, List, Sequence

from ..errors import SourceResolutionError, SpecParseError
from ..logging import get_logger
from ..models import (
    ConfigFile,
    DocFile,
    FileEntry,
    IntermediateRepr,
    KeyFile,
    ProjectStructure,
    SpecSource,
    SpecWarning,
    StackInfo,
)
from .base import SpecPlugin

_EXCLUDED_DIRS = {
    "node_modules",
    "vendor",
    "__pycache__",
    "target",
    "dist",
    "build",
}

_VISIBLE_DOT_DIRS = {".github"}

_DEFAULT_MAX_FILES = 1000
_CONFIG_LIMIT = 50_000
_DOC_LIMIT = 100_000
_KEY_FILE_LIMIT = 50_000
_MANIFEST_LIMIT = 100_000

_MANIFESTS = {"package.json", "go.mod", "cargo.toml", "pyproject.toml"}
_DOC_FILES = {"CLAUDE.md", "AGENTS.md", "CONTRIBUTING.md", "README.md"}
_ENTRYPOINTS = {"main.go", "main.ts", "main.js", "index.ts", "index.js", "app.ts", "app.js"}
_TEST_SETUP = {"jest.config.js", "jest.config.ts", "vitest.config.ts", "setup.ts", "setup.js"}
_LINT_CONFIGS = {".eslintrc", ".eslintrc.json", ".eslintrc.js"}

_FRAMEWORKS_BY_PACKAGE = {
    "react": "React",
    "vue": "Vue",
    "express": "Express",
    "next": "Next.js",
}

logger = get_logger("plugins.codebase")


@dataclass
class IgnoreRule:
    """A single .gitignore pattern."""

    pattern: str
    directory_only: bool
    anchored: bool
    negate: bool
    has_slash: bool

    def matches(self, rel_path: str, is_dir: bool) -> bool:
        if not self.pattern:
            return False
        if self.directory_only and not is_dir:
            return False
        if self.anchored or self.has_slash:
            return fnmatchcase(rel_path, self.pattern)
        return any(fnmatchcase(part, self.pattern) for part in rel_path.split("/"))


def _build_ignore_rule(pattern: str, negate: bool = False) -> IgnoreRule | None:
    pattern = pattern.strip()
    if not pattern:
        return None
    directory_only = pattern.endswith("/")
    if directory_only:
        pattern = pattern[:-1]
    anchored = pattern.startswith("/")
    if anchored:
        pattern = pattern[1:]
    return IgnoreRule(
        pattern=pattern,
        directory_only=directory_only,
        anchored=anchored,
        negate=negate,
        has_slash="/" in pattern,
    )


def load_gitignore(root: Path) -> List[IgnoreRule]:
    path = root / ".gitignore"
    if not path.exists():
        return []
    rules: List[IgnoreRule] = []
    for raw_line in path.read_text(encoding="utf-8", errors="ignore").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        negate = line.startswith("!")
        if negate:
            line = line[1:]
        rule = _build_ignore_rule(line, negate=negate)
        if rule is not None:
            rules.append(rule)
    return rules


def _should_ignore(rel_path: str, is_dir: bool, rules: Sequence[IgnoreRule]) -> bool:
    ignored = False
    for rule in rules:
        if rule.matches(rel_path, is_dir):
            ignored = not rule.negate
    return ignored


class CodebasePlugin(SpecPlugin):
    """Scans a project directory for its layout, stack, docs and key files."""

    name = "codebase"

    def detect(self, source: SpecSource) -> bool:
        return source.type == "codebase"

    def fetch(self, source: SpecSource) -> bytes:
        root = Path(source.path or ".").expanduser().resolve()
        if not root.exists():
            raise SourceResolutionError(f"accessing path {root}: no such directory")
        if not root.is_dir():
            raise SourceResolutionError(f"path {root} is not a directory")

        max_files = source.max_files if source.max_files > 0 else _DEFAULT_MAX_FILES
        entries = list(_iter_entries(root, load_gitignore(root), source.include, source.exclude))
        if len(entries) > max_files:
            logger.warning(
                "Codebase scan found %d files, truncating to %d (prioritizing key files)",
                len(entries),
                max_files,
            )
            entries = prioritize_files(entries, max_files)

        payload = {
            "root": str(root),
            "entries": [
                {"path": entry.path, "is_dir": entry.is_dir, "size": entry.size} for entry in entries
            ],
        }
        return json.dumps(payload, sort_keys=True).encode("utf-8")

    def parse(self, raw: bytes, source: SpecSource) -> IntermediateRepr:
        try:
            scan = json.loads(raw.decode("utf-8"))
            root = Path(scan["root"])
            entries = [
                FileEntry(path=str(item["path"]), is_dir=bool(item.get("is_dir")), size=int(item.get("size", 0)))
                for item in scan["entries"]
            ]
        except (ValueError, KeyError, TypeError) as exc:
            raise SpecParseError(f"parsing scan result: {exc}") from exc

        structure = ProjectStructure(file_tree=entries)
        stack = StackInfo()
        for entry in entries:
            if entry.is_dir:
                continue
            full_path = root / entry.path
            base = entry.path.rsplit("/", 1)[-1]

            if base == "package.json":
                _parse_package_json(full_path, stack)
            elif base == "go.mod":
                _parse_go_mod(full_path, stack)
            elif base == "Cargo.toml":
                _append_unique(stack.languages, "Rust")
                _append_unique(stack.build_tools, "Cargo")
            elif base == "pyproject.toml":
                _append_unique(stack.languages, "Python")
            elif base == "tsconfig.json":
                _append_unique(stack.languages, "TypeScript")
                _add_config(structure, full_path, entry.path)
            elif base in _LINT_CONFIGS:
                _add_config(structure, full_path, entry.path)
            elif base == "Dockerfile":
                _append_unique(stack.build_tools, "Docker")
                _add_config(structure, full_path, entry.path)

            if ".github/workflows/" in entry.path or ".gitlab-ci" in entry.path:
                _add_config(structure, full_path, entry.path)

            if base in _DOC_FILES:
                content = _read_text(full_path, _DOC_LIMIT)
                if content:
                    structure.docs.append(DocFile(path=entry.path, content=content))

            if is_key_file(entry.path):
                content = _read_text(full_path, _KEY_FILE_LIMIT)
                if content:
                    structure.key_files.append(
                        KeyFile(path=entry.path, content=content, role=classify_file(entry.path))
                    )

        structure.stack = stack
        return IntermediateRepr(
            structure=structure,
            metadata={"type": "codebase", "root": str(root)},
        )

    def validate(self, ir: IntermediateRepr) -> List[SpecWarning]:
        structure = ir.structure
        if structure is None:
            return [SpecWarning(message="codebase scan produced no structure")]
        stack = structure.stack
        if stack is None or not (stack.languages or stack.build_tools):
            return [SpecWarning(message="could not detect technology stack")]
        return []


def _iter_entries(
    root: Path,
    rules: Sequence[IgnoreRule],
    include: Sequence[str],
    exclude: Sequence[str],
) -> Iterator[FileEntry]:
    for dirpath, dirnames, filenames in os.walk(root):
        current_dir = Path(dirpath)
        rel_dir = current_dir.relative_to(root).as_posix() if current_dir != root else ""

        kept_dirs = []
        for name in sorted(dirnames):
            if (name.startswith(".") and name not in _VISIBLE_DOT_DIRS) or name in _EXCLUDED_DIRS:
                continue
            rel_path = f"{rel_dir}/{name}" if rel_dir else name
            if _should_ignore(rel_path, True, rules):
                continue
            if any(fnmatchcase(name, pattern) for pattern in exclude):
                continue
            kept_dirs.append(name)
            yield FileEntry(path=rel_path, is_dir=True)
        dirnames[:] = kept_dirs

        for name in sorted(filenames):
            rel_path = f"{rel_dir}/{name}" if rel_dir else name
            if _should_ignore(rel_path, False, rules):
                continue
            if include and not any(fnmatchcase(name, pattern) for pattern in include):
                continue
            if any(fnmatchcase(name, pattern) for pattern in exclude):
                continue
            try:
                size = (current_dir / name).stat().st_size
            except OSError:
                continue
            yield FileEntry(path=rel_path, size=size)


def _score(entry: FileEntry) -> int:
    base = entry.path.rsplit("/", 1)[-1].lower()
    if base in _MANIFESTS:
        return 100
    if base in {name.lower() for name in _DOC_FILES}:
        return 90
    if "config" in base or base in {"dockerfile", "tsconfig.json"}:
        return 80
    if is_key_file(entry.path):
        return 70
    return 10


def prioritize_files(entries: Sequence[FileEntry], max_files: int) -> List[FileEntry]:
    """Keep the ``max_files`` most important entries, ties in walk order."""
    ranked = sorted(entries, key=_score, reverse=True)
    return ranked[:max_files]


def is_key_file(rel_path: str) -> bool:
    lower = rel_path.rsplit("/", 1)[-1].lower()
    if lower in _ENTRYPOINTS or lower in _TEST_SETUP:
        return True
    return any(marker in lower for marker in ("route", "schema", "model"))


def classify_file(rel_path: str) -> str:
    lower = rel_path.rsplit("/", 1)[-1].lower()
    if lower.startswith(("main.", "index.", "app.")):
        return "entrypoint"
    if "route" in lower:
        return "routes"
    if "schema" in lower or "model" in lower:
        return "schema"
    if "test" in lower or "spec" in lower or "setup" in lower:
        return "test-setup"
    return ""


def _parse_package_json(path: Path, stack: StackInfo) -> None:
    text = _read_text(path, _MANIFEST_LIMIT)
    if not text:
        return
    try:
        payload: Any = json.loads(text)
    except ValueError:
        return
    if not isinstance(payload, dict):
        return
    _append_unique(stack.languages, "JavaScript")
    dependencies = payload.get("dependencies")
    if isinstance(dependencies, dict):
        for name in sorted(dependencies):
            stack.dependencies[str(name)] = str(dependencies[name])
            framework = _FRAMEWORKS_BY_PACKAGE.get(name)
            if framework:
                _append_unique(stack.frameworks, framework)
    scripts = payload.get("scripts")
    if isinstance(scripts, dict):
        for name, command in scripts.items():
            stack.scripts[str(name)] = str(command)


def _parse_go_mod(path: Path, stack: StackInfo) -> None:
    text = _read_text(path, _MANIFEST_LIMIT)
    if not text:
        return
    _append_unique(stack.languages, "Go")
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if line.startswith("require "):
            line = line[len("require ") :].strip()
        if not line or line.startswith(("//", "module", "go ", "(", ")", "toolchain")):
            continue
        parts = line.split()
        if len(parts) >= 2:
            stack.dependencies[parts[0]] = parts[1]


def _add_config(structure: ProjectStructure, path: Path, rel_path: str) -> None:
    if any(existing.path == rel_path for existing in structure.config_files):
        return
    content = _read_text(path, _CONFIG_LIMIT)
    if content:
        structure.config_files.append(ConfigFile(path=rel_path, content=content))


def _read_text(path: Path, limit: int) -> str:
    try:
        data = path.read_bytes()
    except OSError:
        return ""
    return data[:limit].decode("utf-8", errors="ignore")


def _append_unique(values: List[str], value: str) -> None:
    if value not in values:
        values.append(value)


__all__ = ["CodebasePlugin", "IgnoreRule", "classify_file", "is_key_file", "load_gitignore", "prioritize_files"]
