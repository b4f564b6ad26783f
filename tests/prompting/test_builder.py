"""Tests for per-artifact prompt assembly."""

from __future__ import annotations

from pathlib import Path

import pytest

from skillc.config import Frontmatter, Instructions, SkillSettings
from skillc.models import IntermediateRepr, Operation
from skillc.prompting import ALL_ARTIFACTS
from skillc.prompting.builder import PromptBuilder, estimate_tokens, init_prompts


@pytest.fixture
def builder(tmp_path: Path) -> PromptBuilder:
    instructions = Instructions(
        path=tmp_path / "COMPILER_INSTRUCTIONS.md",
        frontmatter=Frontmatter(
            name="pet-store",
            skill=SkillSettings(license="MIT", env=["PET_STORE_TOKEN"], metadata={"owner": "pets"}),
        ),
        sections={
            "Workflows": "List, then show.",
            "Product": "Tracks pets.",
            "Examples": "Show pet 42.",
            "Common patterns": "Paginate with limit.",
        },
    )
    ir = IntermediateRepr(operations=[Operation(id="listPets", method="GET", path="/pets")])
    return PromptBuilder(ir, instructions)


def test_every_artifact_has_a_distinct_system_prompt(builder: PromptBuilder) -> None:
    prompts = {artifact_id: builder.system_prompt(artifact_id) for artifact_id in ALL_ARTIFACTS}

    assert all(prompts.values())
    assert len(set(prompts.values())) == len(ALL_ARTIFACTS)


def test_unknown_artifact_is_rejected(builder: PromptBuilder) -> None:
    with pytest.raises(ValueError, match="unknown artifact"):
        builder.system_prompt("readme")


def test_relevant_sections_follow_relevance_table(builder: PromptBuilder) -> None:
    assert builder.relevant_section_names("skill") == ["Common patterns", "Examples", "Product", "Workflows"]
    assert builder.relevant_section_names("examples") == ["Workflows", "Examples", "Common patterns"]
    assert builder.relevant_section_names("llms") == ["Product"]
    assert builder.relevant_section_names("reference") == []
    assert builder.relevant_sections("llms") == "Product\nTracks pets."


def test_skill_message_carries_metadata_and_sections(builder: PromptBuilder) -> None:
    message = builder.user_message("skill")

    assert message.startswith("Tool/Project Name: pet-store\n")
    assert "Environment Variable Prefix: PET_STORE" in message
    assert "Environment Variables: PET_STORE_TOKEN" in message
    assert "License: MIT" in message
    assert 'Metadata: {"owner": "pets"}' in message
    assert "## Instructions: Product\nTracks pets." in message
    assert '"id": "listPets"' in message


def test_non_skill_message_omits_skill_fields(builder: PromptBuilder) -> None:
    message = builder.user_message("llms")

    assert "License:" not in message
    assert "## Instructions: Workflows" not in message
    assert "## Instructions: Product" in message


def test_artifact_paths_are_scoped_to_skill_directory(builder: PromptBuilder) -> None:
    assert builder.artifact_path("skill") == "pet-store/SKILL.md"
    assert builder.artifact_path("reference") == "pet-store/references/reference.md"
    assert builder.artifact_path("scripts") == "pet-store/scripts"
    assert builder.artifact_path("llms-api") == "llms-api.txt"
    assert builder.artifact_path("changelog") == "CHANGELOG.md"


def test_estimate_tokens_uses_four_chars_per_token() -> None:
    assert estimate_tokens("x" * 41) == 10


def test_init_prompts_render_project_details() -> None:
    ir = IntermediateRepr(operations=[Operation(id="listPets")])

    system, user = init_prompts(ir, name="petstore", spec_type="", spec_config="./openapi.yaml")

    assert "COMPILER_INSTRUCTIONS.md" in system
    assert user.startswith("Project name: petstore\nSpec type: openapi\nSpec config: ./openapi.yaml\n")
    assert '"id": "listPets"' in user
