"""Core data models shared across skillc components.

The intermediate representation (IR) is the source-agnostic view of every
spec source. Plugins emit IR fragments; the registry merges them in source
order and the pipeline fingerprints the canonical JSON serialization.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field, fields, is_dataclass
from typing import Any, Dict, List, Optional, Tuple


@dataclass(frozen=True)
class SpecSource:
    """Reference to one spec input plus source-specific options."""

    type: str = ""
    path: str = ""
    url: str = ""
    command: str = ""
    binary: str = ""
    help_flag: str = ""
    max_depth: int = 0
    max_files: int = 0
    include: Tuple[str, ...] = ()
    exclude: Tuple[str, ...] = ()

    @property
    def label(self) -> str:
        """Human-readable identifier used in errors and logs."""
        for value in (self.path, self.url, self.command, self.binary):
            if value:
                return f"{self.type}:{value}" if self.type else value
        return self.type or "<empty source>"


@dataclass(frozen=True)
class SpecWarning:
    """Non-fatal issue found while parsing or validating a spec."""

    message: str
    path: str = ""

    def __str__(self) -> str:
        if self.path:
            return f"{self.path}: {self.message}"
        return self.message


@dataclass
class Parameter:
    name: str
    location: str = ""
    description: str = ""
    required: bool = False
    type: str = ""
    default: str = ""
    shorthand: str = ""


@dataclass
class TypeRef:
    type_name: str = ""
    description: str = ""
    content_type: str = ""


@dataclass
class Response:
    status_code: str
    description: str = ""
    body: Optional[TypeRef] = None


@dataclass
class Operation:
    """A callable unit: an HTTP endpoint, a CLI command, and so on."""

    id: str
    name: str = ""
    description: str = ""
    method: str = ""
    path: str = ""
    parameters: List[Parameter] = field(default_factory=list)
    request_body: Optional[TypeRef] = None
    responses: List[Response] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    deprecated: bool = False
    auth: List[str] = field(default_factory=list)
    aliases: List[str] = field(default_factory=list)
    raw_help_text: str = ""


@dataclass
class TypeField:
    name: str
    type: str = ""
    description: str = ""
    required: bool = False


@dataclass
class TypeDef:
    name: str
    description: str = ""
    fields: List[TypeField] = field(default_factory=list)
    enum: List[str] = field(default_factory=list)


@dataclass
class AuthScheme:
    id: str
    type: str = ""
    name: str = ""
    location: str = ""
    scheme: str = ""
    description: str = ""


@dataclass
class Group:
    name: str
    operations: List[str] = field(default_factory=list)


@dataclass
class FileEntry:
    path: str
    is_dir: bool = False
    size: int = 0


@dataclass
class StackInfo:
    languages: List[str] = field(default_factory=list)
    frameworks: List[str] = field(default_factory=list)
    build_tools: List[str] = field(default_factory=list)
    dependencies: Dict[str, str] = field(default_factory=dict)
    scripts: Dict[str, str] = field(default_factory=dict)


@dataclass
class ConfigFile:
    path: str
    content: str


@dataclass
class DocFile:
    path: str
    content: str


@dataclass
class KeyFile:
    path: str
    content: str
    role: str = ""


@dataclass
class ProjectStructure:
    """Free-form description of a scanned codebase."""

    file_tree: List[FileEntry] = field(default_factory=list)
    stack: Optional[StackInfo] = None
    config_files: List[ConfigFile] = field(default_factory=list)
    docs: List[DocFile] = field(default_factory=list)
    key_files: List[KeyFile] = field(default_factory=list)


@dataclass
class IntermediateRepr:
    """Unified model consumed by the artifact pipeline."""

    operations: List[Operation] = field(default_factory=list)
    types: List[TypeDef] = field(default_factory=list)
    auth: List[AuthScheme] = field(default_factory=list)
    groups: List[Group] = field(default_factory=list)
    structure: Optional[ProjectStructure] = None
    metadata: Dict[str, str] = field(default_factory=dict)

    def merge(self, other: "IntermediateRepr") -> None:
        """Fold ``other`` into this IR.

        Sequences are concatenated in source order. Metadata entries from
        ``other`` overwrite existing keys, so later sources win. A structure
        block from ``other`` replaces the current one under the same rule.
        """
        self.operations.extend(other.operations)
        self.types.extend(other.types)
        self.auth.extend(other.auth)
        self.groups.extend(other.groups)
        if other.structure is not None:
            self.structure = other.structure
        self.metadata.update(other.metadata)

    def to_dict(self) -> Dict[str, Any]:
        return _prune(self)

    def to_json(self, *, indent: int | None = None) -> str:
        """Canonical serialization: empty values dropped, mapping keys sorted."""
        separators = (",", ":") if indent is None else (",", ": ")
        return json.dumps(
            self.to_dict(),
            indent=indent,
            sort_keys=True,
            separators=separators,
            ensure_ascii=False,
        )


def _prune(value: Any) -> Any:
    if is_dataclass(value) and not isinstance(value, type):
        result: Dict[str, Any] = {}
        for item in fields(value):
            pruned = _prune(getattr(value, item.name))
            if _is_empty(pruned):
                continue
            result[item.name] = pruned
        return result
    if isinstance(value, dict):
        return {str(key): _prune(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_prune(item) for item in value]
    return value


def _is_empty(value: Any) -> bool:
    if value is None or value is False:
        return True
    if isinstance(value, (str, list, dict)) and not value:
        return True
    return isinstance(value, int) and value == 0


__all__ = [
    "AuthScheme",
    "ConfigFile",
    "DocFile",
    "FileEntry",
    "Group",
    "IntermediateRepr",
    "KeyFile",
    "Operation",
    "Parameter",
    "ProjectStructure",
    "Response",
    "SpecSource",
    "SpecWarning",
    "StackInfo",
    "TypeDef",
    "TypeField",
    "TypeRef",
]
