"""Fixed artifact enumeration and per-artifact generation settings."""

from __future__ import annotations

from dataclasses import dataclass

SKILL = "skill"
REFERENCE = "reference"
EXAMPLES = "examples"
SCRIPTS = "scripts"
LLMS = "llms"
LLMS_API = "llms-api"
LLMS_FULL = "llms-full"
CHANGELOG = "changelog"

# Generation order. The dependent artifact is always last.
ALL_ARTIFACTS: tuple[str, ...] = (
    SKILL,
    REFERENCE,
    EXAMPLES,
    SCRIPTS,
    LLMS,
    LLMS_API,
    LLMS_FULL,
    CHANGELOG,
)

DEPENDENT_ARTIFACT = CHANGELOG

# Siblings whose current and previous content feed the changelog prompt.
CHANGELOG_INPUTS: tuple[str, ...] = (SKILL, REFERENCE, EXAMPLES)

ALL_SECTIONS = "*"

NO_PREVIOUS_ARTIFACTS_NOTE = "This is the first generation: no previous artifacts exist."


@dataclass(frozen=True)
class ArtifactDescriptor:
    """Identifies one generation target."""

    id: str
    template: str
    sections: tuple[str, ...]
    default_path: str
    max_tokens: int
    # Directory under the skill folder that a custom filename lands in.
    custom_dir: str = ""
    skill_scoped: bool = False


ARTIFACTS: dict[str, ArtifactDescriptor] = {
    SKILL: ArtifactDescriptor(
        id=SKILL,
        template="system/skill.md",
        sections=(ALL_SECTIONS,),
        default_path="SKILL.md",
        max_tokens=8192,
        skill_scoped=True,
    ),
    REFERENCE: ArtifactDescriptor(
        id=REFERENCE,
        template="system/reference.md",
        sections=(),
        default_path="references/reference.md",
        max_tokens=16384,
        custom_dir="references",
        skill_scoped=True,
    ),
    EXAMPLES: ArtifactDescriptor(
        id=EXAMPLES,
        template="system/examples.md",
        sections=("Workflows", "Examples", "Common patterns"),
        default_path="references/examples.md",
        max_tokens=8192,
        custom_dir="references",
        skill_scoped=True,
    ),
    SCRIPTS: ArtifactDescriptor(
        id=SCRIPTS,
        template="system/scripts.md",
        sections=(ALL_SECTIONS,),
        default_path="scripts",
        max_tokens=8192,
        custom_dir="scripts",
        skill_scoped=True,
    ),
    LLMS: ArtifactDescriptor(
        id=LLMS,
        template="system/llms.md",
        sections=("Product",),
        default_path="llms.txt",
        max_tokens=1024,
    ),
    LLMS_API: ArtifactDescriptor(
        id=LLMS_API,
        template="system/llms-api.md",
        sections=(),
        default_path="llms-api.txt",
        max_tokens=4096,
    ),
    LLMS_FULL: ArtifactDescriptor(
        id=LLMS_FULL,
        template="system/llms-full.md",
        sections=(ALL_SECTIONS,),
        default_path="llms-full.txt",
        max_tokens=16384,
    ),
    CHANGELOG: ArtifactDescriptor(
        id=CHANGELOG,
        template="system/changelog.md",
        sections=(),
        default_path="CHANGELOG.md",
        max_tokens=4096,
    ),
}


__all__ = [
    "ALL_ARTIFACTS",
    "ALL_SECTIONS",
    "ARTIFACTS",
    "CHANGELOG",
    "CHANGELOG_INPUTS",
    "DEPENDENT_ARTIFACT",
    "EXAMPLES",
    "LLMS",
    "LLMS_API",
    "LLMS_FULL",
    "NO_PREVIOUS_ARTIFACTS_NOTE",
    "REFERENCE",
    "SCRIPTS",
    "SKILL",
    "ArtifactDescriptor",
]
