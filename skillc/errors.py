"""Exception taxonomy shared across skillc components."""

from __future__ import annotations


class SkillcError(RuntimeError):
    """Base class for fatal skillc errors surfaced to the caller."""


class ConfigError(SkillcError):
    """Raised when instructions or configuration cannot be parsed."""


class SourceResolutionError(SkillcError):
    """Raised when a spec source matches no plugin or cannot be fetched."""


class SpecParseError(SkillcError):
    """Raised when a plugin cannot interpret fetched spec content."""


class ProviderError(SkillcError):
    """Raised when the generation service rejects or fails a request."""


class RunCancelled(SkillcError):
    """Raised when a run context is cancelled or its deadline passes."""


class LockFileError(SkillcError):
    """Raised when the lockfile exists but cannot be read."""


class GenerationError(SkillcError):
    """Raised when any artifact in a batch fails to generate."""

    def __init__(self, artifact_id: str, cause: BaseException) -> None:
        super().__init__(f"generating {artifact_id}: {cause}")
        self.artifact_id = artifact_id
        self.cause = cause


class WriteError(SkillcError):
    """Raised when an artifact cannot be persisted."""

    def __init__(self, path: str, cause: BaseException) -> None:
        super().__init__(f"writing {path}: {cause}")
        self.path = path
        self.cause = cause


__all__ = [
    "ConfigError",
    "GenerationError",
    "LockFileError",
    "ProviderError",
    "RunCancelled",
    "SkillcError",
    "SourceResolutionError",
    "SpecParseError",
    "WriteError",
]
