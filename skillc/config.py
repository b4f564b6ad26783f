"""Configuration loading for skillc.

Two sources feed a run: the project's ``COMPILER_INSTRUCTIONS.md`` (YAML
frontmatter plus markdown sections) and the per-user provider settings in
``~/.config/skillc/config.yml``.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

import yaml

from .errors import ConfigError
from .models import SpecSource, SpecWarning
from .prompting.constants import ALL_ARTIFACTS

INSTRUCTIONS_FILENAME = "COMPILER_INSTRUCTIONS.md"
DEFAULT_OUTPUT_DIR = "./skillc-out/"

CONFIG_KEYS: tuple[str, ...] = ("provider", "model", "api-key", "base-url")

_ENV_OVERRIDES = {
    "provider": "SKILLC_PROVIDER",
    "model": "SKILLC_MODEL",
    "api-key": "SKILLC_API_KEY",
    "base-url": "SKILLC_BASE_URL",
}

_HEADING_PATTERN = re.compile(r"^#\s+(.+?)\s*#*\s*$")


@dataclass
class ArtifactToggle:
    """Per-artifact enable flag and optional custom filename."""

    enabled: Optional[bool] = None
    filename: Optional[str] = None

    def is_enabled(self) -> bool:
        return self.enabled is not False


@dataclass
class ProviderSettings:
    """Generation provider settings as written in frontmatter or user config."""

    provider: Optional[str] = None
    model: Optional[str] = None
    api_key: Optional[str] = None
    base_url: Optional[str] = None


@dataclass
class SkillSettings:
    """Skill metadata passed through to the SKILL.md prompt."""

    license: Optional[str] = None
    compatibility: Optional[str] = None
    allowed_tools: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)
    env: List[str] = field(default_factory=list)


@dataclass
class Frontmatter:
    name: str
    out: str = DEFAULT_OUTPUT_DIR
    spec: List[Any] = field(default_factory=list)
    provider: ProviderSettings = field(default_factory=ProviderSettings)
    artifacts: Dict[str, ArtifactToggle] = field(default_factory=dict)
    skill: SkillSettings = field(default_factory=SkillSettings)


@dataclass
class Instructions:
    """Parsed ``COMPILER_INSTRUCTIONS.md``."""

    path: Path
    frontmatter: Frontmatter
    sections: Dict[str, str] = field(default_factory=dict)

    @property
    def base_dir(self) -> Path:
        return self.path.parent

    @property
    def name(self) -> str:
        return self.frontmatter.name

    @property
    def env_prefix(self) -> str:
        """Environment variable prefix derived from the project name."""
        return re.sub(r"[^A-Z0-9]+", "_", self.frontmatter.name.upper()).strip("_")

    def output_dir(self, override: str | None = None) -> Path:
        raw = override or self.frontmatter.out or DEFAULT_OUTPUT_DIR
        path = Path(raw).expanduser()
        if not path.is_absolute():
            path = self.base_dir / path
        return path

    def resolve_spec_sources(self) -> List[SpecSource]:
        """Turn the ``spec`` frontmatter entry into resolved sources."""
        if not self.frontmatter.spec:
            raise ConfigError("no spec sources configured: set `spec` in the frontmatter")
        return [_spec_source_from(entry, self.base_dir) for entry in self.frontmatter.spec]

    def validate(self) -> List[SpecWarning]:
        warnings: List[SpecWarning] = []
        location = self.path.name
        for required in ("Product", "Workflows"):
            if required not in self.sections:
                warnings.append(
                    SpecWarning(
                        message=f"missing `# {required}` section; generated artifacts will lack this context",
                        path=location,
                    )
                )
        for artifact_id in self.frontmatter.artifacts:
            if artifact_id not in ALL_ARTIFACTS:
                warnings.append(
                    SpecWarning(
                        message=f"unknown artifact `{artifact_id}` in artifacts toggles",
                        path=location,
                    )
                )
        return warnings


def load_instructions(path: Path) -> Instructions:
    """Parse an instructions file from disk."""
    path = Path(path).expanduser().resolve()
    text = path.read_text(encoding="utf-8")
    raw_frontmatter, body = split_frontmatter(text)

    try:
        data = yaml.safe_load(raw_frontmatter) if raw_frontmatter.strip() else {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse frontmatter in {path.name}: {exc}") from exc
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path.name} frontmatter must contain a mapping")

    name = _as_str(data.get("name"))
    if not name:
        raise ConfigError(f"{path.name} frontmatter is missing `name`")

    frontmatter = Frontmatter(
        name=name,
        out=_as_str(data.get("out")) or DEFAULT_OUTPUT_DIR,
        spec=_as_spec_list(data.get("spec")),
        provider=_provider_settings(_as_dict(data.get("provider"))),
        artifacts=_artifact_toggles(data.get("artifacts")),
        skill=_skill_settings(_as_dict(data.get("skill"))),
    )
    return Instructions(path=path, frontmatter=frontmatter, sections=parse_sections(body))


def split_frontmatter(text: str) -> tuple[str, str]:
    """Split ``---`` delimited frontmatter from the markdown body."""
    lines = text.splitlines()
    if not lines or lines[0].strip() != "---":
        return "", text
    for index in range(1, len(lines)):
        if lines[index].strip() == "---":
            return "\n".join(lines[1:index]), "\n".join(lines[index + 1 :])
    raise ConfigError("unterminated frontmatter block (missing closing `---`)")


def parse_sections(body: str) -> Dict[str, str]:
    """Collect top-level ``# Heading`` blocks in document order."""
    sections: Dict[str, str] = {}
    current: Optional[str] = None
    buffer: List[str] = []
    in_fence = False

    def _flush() -> None:
        if current is not None:
            sections[current] = "\n".join(buffer).strip()

    for line in body.splitlines():
        if line.lstrip().startswith(("```", "~~~")):
            in_fence = not in_fence
        match = None if in_fence else _HEADING_PATTERN.match(line)
        if match:
            _flush()
            current = match.group(1).strip()
            buffer = []
            continue
        if current is not None:
            buffer.append(line)
    _flush()
    return sections


# ----------------------------------------------------------------------
# Provider configuration


@dataclass
class ResolvedProvider:
    """Effective provider settings after applying precedence rules."""

    provider: str = ""
    model: str = ""
    api_key: str = ""
    base_url: str = ""


def user_config_path() -> Path:
    home = os.environ.get("HOME")
    base = Path(home) if home else Path.home()
    return base / ".config" / "skillc" / "config.yml"


def load_user_config() -> Dict[str, str]:
    path = user_config_path()
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse {path}: {exc}") from exc
    values: Dict[str, str] = {}
    for key, value in _as_dict(data).items():
        text = _as_str(value)
        if key in CONFIG_KEYS and text:
            values[key] = text
    return values


def set_config_value(key: str, value: str) -> None:
    if key not in CONFIG_KEYS:
        raise ConfigError(f"unknown config key {key!r} (valid: {', '.join(CONFIG_KEYS)})")
    values = load_user_config()
    values[key] = value
    _write_user_config(values)


def list_config() -> Dict[str, str]:
    values = load_user_config()
    return {key: values.get(key, "") for key in CONFIG_KEYS}


def reset_config() -> None:
    path = user_config_path()
    if path.exists():
        path.unlink()


def resolve_provider_config(
    *,
    provider: str | None = None,
    model: str | None = None,
    api_key: str | None = None,
    base_url: str | None = None,
    frontmatter: ProviderSettings | None = None,
) -> ResolvedProvider:
    """Resolve provider settings: flag > environment > frontmatter > user config."""
    flags = {"provider": provider, "model": model, "api-key": api_key, "base-url": base_url}
    fm = frontmatter or ProviderSettings()
    fm_values = {
        "provider": fm.provider,
        "model": fm.model,
        "api-key": fm.api_key,
        "base-url": fm.base_url,
    }
    user_values = load_user_config()

    resolved: Dict[str, str] = {}
    for key in CONFIG_KEYS:
        for candidate in (
            flags[key],
            os.getenv(_ENV_OVERRIDES[key]),
            fm_values[key],
            user_values.get(key),
        ):
            if candidate:
                resolved[key] = candidate
                break

    name = resolved.get("provider", "").strip().lower()
    if not resolved.get("api-key"):
        fallback_env = "OPENAI_API_KEY" if name == "openai" else "ANTHROPIC_API_KEY"
        resolved["api-key"] = os.getenv(fallback_env, "")

    return ResolvedProvider(
        provider=name,
        model=resolved.get("model", ""),
        api_key=resolved.get("api-key", ""),
        base_url=resolved.get("base-url", ""),
    )


def _write_user_config(values: Mapping[str, str]) -> None:
    path = user_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    ordered = {key: values[key] for key in CONFIG_KEYS if values.get(key)}
    path.write_text(yaml.safe_dump(ordered, sort_keys=False), encoding="utf-8")
    path.chmod(0o600)


# ----------------------------------------------------------------------
# Frontmatter coercion helpers


def _spec_source_from(entry: Any, base_dir: Path) -> SpecSource:
    if isinstance(entry, str):
        return SpecSource(path=_resolve_path(entry, base_dir))
    if not isinstance(entry, dict):
        raise ConfigError(f"unsupported spec entry: {entry!r}")
    source_type = (_as_str(entry.get("type")) or "").lower()
    path = _as_str(entry.get("path")) or ""
    if path:
        path = _resolve_path(path, base_dir)
    elif source_type == "codebase":
        path = str(base_dir)
    return SpecSource(
        type=source_type,
        path=path,
        url=_as_str(entry.get("url")) or "",
        command=_as_str(entry.get("command")) or "",
        binary=_as_str(entry.get("binary")) or "",
        help_flag=_as_str(entry.get("help_flag")) or "",
        max_depth=_as_int(entry.get("max_depth")) or 0,
        max_files=_as_int(entry.get("max_files")) or 0,
        include=tuple(_as_str_list(entry.get("include"))),
        exclude=tuple(_as_str_list(entry.get("exclude"))),
    )


def _resolve_path(raw: str, base_dir: Path) -> str:
    path = Path(raw).expanduser()
    if not path.is_absolute():
        path = base_dir / path
    return str(path)


def _as_spec_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, (str, dict)):
        return [value]
    if isinstance(value, list):
        return list(value)
    raise ConfigError(f"`spec` must be a string, mapping, or list (got {type(value).__name__})")


def _provider_settings(data: Dict[str, Any]) -> ProviderSettings:
    return ProviderSettings(
        provider=_as_str(data.get("provider")),
        model=_as_str(data.get("model")),
        api_key=_as_str(data.get("api_key")),
        base_url=_as_str(data.get("base_url")),
    )


def _skill_settings(data: Dict[str, Any]) -> SkillSettings:
    metadata = {
        str(key): str(value)
        for key, value in _as_dict(data.get("metadata")).items()
        if _as_str(value) is not None
    }
    return SkillSettings(
        license=_as_str(data.get("license")),
        compatibility=_as_str(data.get("compatibility")),
        allowed_tools=_as_str(data.get("allowed_tools")),
        metadata=metadata,
        env=_as_str_list(data.get("env")),
    )


def _artifact_toggles(value: Any) -> Dict[str, ArtifactToggle]:
    toggles: Dict[str, ArtifactToggle] = {}
    for key, raw in _as_dict(value).items():
        artifact_id = str(key).strip().lower()
        if isinstance(raw, bool):
            toggles[artifact_id] = ArtifactToggle(enabled=raw)
        elif isinstance(raw, dict):
            toggles[artifact_id] = ArtifactToggle(
                enabled=_as_bool(raw.get("enabled")),
                filename=_as_str(raw.get("filename")),
            )
        else:
            raise ConfigError(f"artifact toggle for `{artifact_id}` must be a bool or mapping")
    return toggles


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_str(value: Any) -> Optional[str]:
    if isinstance(value, bool):
        return str(value).lower()
    return str(value) if isinstance(value, (str, int, float)) else None


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return None
    return None


def _as_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "yes", "1"}:
            return True
        if lowered in {"false", "no", "0"}:
            return False
    return None


def _as_str_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, Sequence):
        return [str(item) for item in value if isinstance(item, (str, int, float))]
    return []


__all__ = [
    "ArtifactToggle",
    "CONFIG_KEYS",
    "DEFAULT_OUTPUT_DIR",
    "Frontmatter",
    "INSTRUCTIONS_FILENAME",
    "Instructions",
    "ProviderSettings",
    "ResolvedProvider",
    "SkillSettings",
    "list_config",
    "load_instructions",
    "load_user_config",
    "parse_sections",
    "reset_config",
    "resolve_provider_config",
    "set_config_value",
    "split_frontmatter",
    "user_config_path",
]
