"""Builds per-artifact prompts from the IR and instruction sections."""

from __future__ import annotations

import json
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING, Dict, List, Mapping, Optional

from jinja2 import Environment, FileSystemLoader

from ..models import IntermediateRepr
from .constants import (
    ALL_SECTIONS,
    ARTIFACTS,
    CHANGELOG,
    CHANGELOG_INPUTS,
    NO_PREVIOUS_ARTIFACTS_NOTE,
    SKILL,
    ArtifactDescriptor,
)

if TYPE_CHECKING:  # pragma: no cover - typing aid
    from ..config import Instructions

_TEMPLATES_DIR = Path(__file__).with_name("templates")


class PromptBuilder:
    """Assembles system prompts, user messages and output paths per artifact."""

    def __init__(
        self,
        ir: IntermediateRepr,
        instructions: "Instructions",
        *,
        templates_dir: Path | None = None,
    ) -> None:
        self.ir = ir
        self.instructions = instructions
        self.templates_dir = templates_dir or _TEMPLATES_DIR
        self._env = Environment(
            loader=FileSystemLoader(str(self.templates_dir)),
            autoescape=False,
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=True,
        )
        self._spec_json: Optional[str] = None

    @property
    def spec_json(self) -> str:
        """Canonical IR serialization used for fingerprinting."""
        if self._spec_json is None:
            self._spec_json = self.ir.to_json()
        return self._spec_json

    @staticmethod
    def descriptor(artifact_id: str) -> ArtifactDescriptor:
        try:
            return ARTIFACTS[artifact_id]
        except KeyError:
            raise ValueError(f"unknown artifact: {artifact_id}") from None

    def system_prompt(self, artifact_id: str) -> str:
        """Return the static template text for an artifact, unrendered."""
        return self.template_source(self.descriptor(artifact_id).template)

    def template_source(self, name: str) -> str:
        source, _, _ = self._env.loader.get_source(self._env, name)  # type: ignore[union-attr]
        return source

    def relevant_section_names(self, artifact_id: str) -> List[str]:
        wanted = self.descriptor(artifact_id).sections
        sections = self.instructions.sections
        if ALL_SECTIONS in wanted:
            return sorted(sections)
        return [name for name in wanted if name in sections]

    def relevant_sections(self, artifact_id: str) -> str:
        """Concatenate the instruction sections an artifact depends on.

        Names are visited in sorted order (or the relevance table order) so
        the result never depends on how the sections mapping was built.
        """
        sections = self.instructions.sections
        parts = [f"{name}\n{sections[name]}" for name in self.relevant_section_names(artifact_id)]
        return "\n\n".join(parts)

    def user_message(
        self,
        artifact_id: str,
        *,
        current: Mapping[str, str] | None = None,
        previous: Mapping[str, str] | None = None,
    ) -> str:
        """Render the user message for one generation call.

        ``current`` and ``previous`` only matter for the changelog, which sees
        this run's sibling output and the prior run's content.
        """
        frontmatter = self.instructions.frontmatter
        skill_fields: List[tuple[str, str]] = []
        if artifact_id == SKILL:
            skill = frontmatter.skill
            for label, value in (
                ("License", skill.license),
                ("Compatibility", skill.compatibility),
                ("Allowed Tools", skill.allowed_tools),
            ):
                if value:
                    skill_fields.append((label, value))
            if skill.metadata:
                skill_fields.append(("Metadata", json.dumps(skill.metadata, sort_keys=True)))

        sections = [
            {"name": name, "body": self.instructions.sections[name]}
            for name in self.relevant_section_names(artifact_id)
        ]

        current_items: List[Dict[str, str]] = []
        previous_items: List[Dict[str, str]] = []
        first_generation = ""
        if artifact_id == CHANGELOG:
            current = current or {}
            previous = previous or {}
            for sibling in CHANGELOG_INPUTS:
                if current.get(sibling):
                    current_items.append({"id": sibling, "content": current[sibling]})
            for sibling in CHANGELOG_INPUTS:
                if previous.get(sibling):
                    previous_items.append({"label": sibling, "content": previous[sibling]})
            if previous.get(CHANGELOG):
                previous_items.append({"label": "CHANGELOG.md", "content": previous[CHANGELOG]})
            if not previous_items:
                first_generation = NO_PREVIOUS_ARTIFACTS_NOTE

        template = self._env.get_template("user_message.j2")
        return template.render(
            name=frontmatter.name,
            env_prefix=self.instructions.env_prefix,
            env=frontmatter.skill.env,
            skill_fields=skill_fields,
            sections=sections,
            current=current_items,
            previous=previous_items,
            first_generation=first_generation,
            spec_json=self.ir.to_json(indent=2),
        )

    def artifact_path(self, artifact_id: str) -> str:
        """Output path relative to the output directory, POSIX separators."""
        descriptor = self.descriptor(artifact_id)
        name = self.instructions.frontmatter.name
        toggle = self.instructions.frontmatter.artifacts.get(artifact_id)
        if toggle is not None and toggle.filename:
            if not descriptor.skill_scoped:
                return toggle.filename
            parts = [name]
            if descriptor.custom_dir:
                parts.append(descriptor.custom_dir)
            parts.append(toggle.filename)
            return str(PurePosixPath(*parts))
        if descriptor.skill_scoped:
            return str(PurePosixPath(name, descriptor.default_path))
        return descriptor.default_path


def estimate_tokens(text: str) -> int:
    """Rough input size estimate at roughly four characters per token."""
    return len(text) // 4


def init_prompts(
    ir: IntermediateRepr,
    *,
    name: str,
    spec_type: str,
    spec_config: str,
    templates_dir: Path | None = None,
) -> tuple[str, str]:
    """Return the system prompt and user message that draft an instructions file."""
    env = Environment(
        loader=FileSystemLoader(str(templates_dir or _TEMPLATES_DIR)),
        autoescape=False,
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=True,
    )
    system, _, _ = env.loader.get_source(env, "init.md")  # type: ignore[union-attr]
    user = env.get_template("init_message.j2").render(
        name=name,
        spec_type=spec_type or "openapi",
        spec_config=spec_config,
        spec_json=ir.to_json(indent=2),
    )
    return system, user


__all__ = ["PromptBuilder", "estimate_tokens", "init_prompts"]
