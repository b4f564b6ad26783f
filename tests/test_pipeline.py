"""Tests for the artifact generation pipeline."""

from __future__ import annotations

import json
import threading
import time
from pathlib import Path
from typing import List

import pytest

from skillc.config import ArtifactToggle, Frontmatter, Instructions
from skillc.errors import ConfigError, GenerationError, RunCancelled
from skillc.llm.runner import AnthropicProvider, HTTPCall, RunContext
from skillc.models import IntermediateRepr, Operation
from skillc.pipeline import Pipeline, PipelineOptions, prepend_changelog_entry
from skillc.plugins import build_registry
from skillc.prompting import ALL_ARTIFACTS
from skillc.prompting.constants import NO_PREVIOUS_ARTIFACTS_NOTE
from skillc.stores.lockfile import load_lockfile
from tests._fixtures.project_builder import ProjectBuilder, RecordingProvider


def _build(project: ProjectBuilder, provider, **options) -> Pipeline:
    instructions = project.instructions()
    ir, _ = build_registry().process_sources(instructions.resolve_spec_sources())
    return Pipeline(provider, ir, instructions, PipelineOptions(**options))


@pytest.fixture
def petstore(project: ProjectBuilder) -> ProjectBuilder:
    project.write_openapi()
    project.write_instructions()
    return project


def _requested(provider: RecordingProvider) -> List[str]:
    return sorted(provider.artifact_of(request) for request in provider.requests)


def test_first_run_generates_every_artifact(petstore: ProjectBuilder, provider: RecordingProvider) -> None:
    pipeline = _build(petstore, provider)

    outcome = pipeline.run(load_lockfile(petstore.root))

    assert provider.calls == len(ALL_ARTIFACTS)
    assert _requested(provider) == sorted(ALL_ARTIFACTS)
    assert [result.artifact_id for result in outcome.results][-1] == "changelog"
    assert outcome.result_for("changelog").content == "# Changelog\n\ngenerated changelog\n"
    assert outcome.result_for("skill").file_path == "petstore/SKILL.md"
    assert not outcome.up_to_date


def test_recorded_run_short_circuits_next_time(petstore: ProjectBuilder, provider: RecordingProvider) -> None:
    lockfile = load_lockfile(petstore.root)
    pipeline = _build(petstore, provider)
    assert pipeline.record(lockfile, pipeline.run(lockfile).results) == len(ALL_ARTIFACTS)
    lockfile.save()

    second = RecordingProvider()
    outcome = _build(petstore, second).run(load_lockfile(petstore.root))

    assert outcome.up_to_date
    assert outcome.results == []
    assert second.calls == 0


def test_force_bypasses_fingerprints(petstore: ProjectBuilder, provider: RecordingProvider) -> None:
    lockfile = load_lockfile(petstore.root)
    pipeline = _build(petstore, provider)
    pipeline.record(lockfile, pipeline.run(lockfile).results)

    second = RecordingProvider()
    _build(petstore, second, force=True).run(lockfile)

    assert second.calls == len(ALL_ARTIFACTS)


def test_section_edit_regenerates_only_dependent_artifacts(
    petstore: ProjectBuilder, provider: RecordingProvider
) -> None:
    lockfile = load_lockfile(petstore.root)
    pipeline = _build(petstore, provider)
    pipeline.record(lockfile, pipeline.run(lockfile).results)

    petstore.write_instructions(body="# Product\nPetstore now tracks owners.\n\n# Workflows\nList pets, then fetch one.\n\n# Examples\nFetch pet 42.\n")
    second = RecordingProvider()
    outcome = _build(petstore, second).run(lockfile)

    assert _requested(second) == sorted(["skill", "scripts", "llms", "llms-full"])
    skipped = sorted(result.artifact_id for result in outcome.results if result.skipped)
    assert skipped == sorted(["reference", "examples", "llms-api", "changelog"])


def test_failure_aborts_before_changelog(petstore: ProjectBuilder) -> None:
    provider = RecordingProvider(fail={"reference": "quota exceeded"})
    lockfile = load_lockfile(petstore.root)
    pipeline = _build(petstore, provider)

    with pytest.raises(GenerationError) as excinfo:
        pipeline.run(lockfile)

    assert excinfo.value.artifact_id == "reference"
    assert "quota exceeded" in str(excinfo.value)
    assert "changelog" not in _requested(provider)
    assert lockfile.entries == {}
    assert not lockfile.dirty


def test_missing_provider_fails_the_batch(petstore: ProjectBuilder) -> None:
    with pytest.raises(GenerationError) as excinfo:
        _build(petstore, None).run()

    assert excinfo.value.artifact_id == "skill"


def test_fingerprints_ignore_section_and_metadata_order(tmp_path: Path) -> None:
    def pipeline(sections, metadata) -> Pipeline:
        instructions = Instructions(
            path=tmp_path / "COMPILER_INSTRUCTIONS.md",
            frontmatter=Frontmatter(name="demo"),
            sections=sections,
        )
        ir = IntermediateRepr(operations=[Operation(id="ping")], metadata=metadata)
        return Pipeline(None, ir, instructions)

    one = pipeline({"Product": "p", "Workflows": "w", "Examples": "e"}, {"title": "Demo", "version": "1"})
    two = pipeline({"Examples": "e", "Workflows": "w", "Product": "p"}, {"version": "1", "title": "Demo"})

    for artifact_id in ALL_ARTIFACTS:
        assert one.input_hash(artifact_id) == two.input_hash(artifact_id)


def test_fingerprint_changes_with_relevant_section_only(tmp_path: Path) -> None:
    def pipeline(product: str) -> Pipeline:
        instructions = Instructions(
            path=tmp_path / "COMPILER_INSTRUCTIONS.md",
            frontmatter=Frontmatter(name="demo"),
            sections={"Product": product, "Workflows": "w"},
        )
        return Pipeline(None, IntermediateRepr(), instructions)

    before, after = pipeline("old"), pipeline("new")

    assert before.input_hash("llms") != after.input_hash("llms")
    assert before.input_hash("examples") == after.input_hash("examples")
    assert before.input_hash("changelog") == after.input_hash("changelog")


def test_dry_run_reports_placeholders(petstore: ProjectBuilder, provider: RecordingProvider) -> None:
    lockfile = load_lockfile(petstore.root)
    pipeline = _build(petstore, provider, dry_run=True)

    outcome = pipeline.run(lockfile)

    assert provider.calls == 0
    assert len(outcome.results) == len(ALL_ARTIFACTS)
    for result in outcome.results:
        assert result.content.startswith(f"[dry-run] Would generate {result.artifact_id} (~")
        assert result.content.endswith("input tokens)")
    assert pipeline.record(lockfile, outcome.results) == 0
    assert not lockfile.dirty


def test_only_filter_restricts_enabled_set(petstore: ProjectBuilder, provider: RecordingProvider) -> None:
    pipeline = _build(petstore, provider, only=["LLMS", " changelog"])

    assert pipeline.enabled_artifacts() == ["llms", "changelog"]
    pipeline.run()
    assert _requested(provider) == ["changelog", "llms"]


def test_only_filter_rejects_unknown_artifact_ids(petstore: ProjectBuilder, provider: RecordingProvider) -> None:
    pipeline = _build(petstore, provider, only=["llms", "readme"])

    with pytest.raises(ConfigError, match=r"unknown artifact id\(s\) in --only: readme"):
        pipeline.run()
    assert provider.calls == 0


def test_toggles_disable_artifacts(petstore: ProjectBuilder, provider: RecordingProvider) -> None:
    petstore.write_instructions({"artifacts": {"scripts": False, "llms-full": {"enabled": False}}})

    pipeline = _build(petstore, provider)

    assert "scripts" not in pipeline.enabled_artifacts()
    assert "llms-full" not in pipeline.enabled_artifacts()
    assert pipeline.enabled_artifacts()[-1] == "changelog"


def test_changelog_sees_current_siblings_and_first_generation_note(
    petstore: ProjectBuilder, provider: RecordingProvider
) -> None:
    _build(petstore, provider).run()

    request = next(r for r in provider.requests if provider.artifact_of(r) == "changelog")
    assert "## Current skill\ngenerated skill" in request.user_message
    assert "## Current reference\ngenerated reference" in request.user_message
    assert "## Current llms" not in request.user_message
    assert NO_PREVIOUS_ARTIFACTS_NOTE in request.user_message


def test_changelog_sees_previous_artifacts(petstore: ProjectBuilder, provider: RecordingProvider) -> None:
    previous = {"skill": "old skill", "changelog": "# Changelog\n\n## 0.1.0\nFirst release."}

    outcome = _build(petstore, provider, previous_artifacts=previous).run()

    request = next(r for r in provider.requests if provider.artifact_of(r) == "changelog")
    assert "## Previous skill\nold skill" in request.user_message
    assert "## Previous CHANGELOG.md" in request.user_message
    assert NO_PREVIOUS_ARTIFACTS_NOTE not in request.user_message
    assert outcome.result_for("changelog").content == (
        "# Changelog\n\ngenerated changelog\n\n## 0.1.0\nFirst release.\n"
    )


def test_prepend_changelog_entry_keeps_single_title() -> None:
    assert prepend_changelog_entry("# Changelog\n\n## 1.1.0\nNew", "# Changelog\n\n## 1.0.0\nOld") == (
        "# Changelog\n\n## 1.1.0\nNew\n\n## 1.0.0\nOld\n"
    )
    assert prepend_changelog_entry("## 1.0.0\nFirst", "") == "# Changelog\n\n## 1.0.0\nFirst\n"


def test_multi_source_project_records_every_artifact(project: ProjectBuilder, provider: RecordingProvider) -> None:
    project.write_openapi("specs/pets.json")
    project.write_openapi(
        "specs/admin.yaml",
        {
            "openapi": "3.0.0",
            "info": {"title": "Admin"},
            "paths": {"/health": {"get": {"operationId": "health", "summary": "Health check"}}},
        },
    )
    project.write({"app/package.json": '{"dependencies": {"express": "4"}}'})
    project.write_instructions(
        {"spec": ["specs/pets.json", {"path": "specs/admin.yaml"}, {"type": "codebase", "path": "app"}]}
    )
    lockfile = load_lockfile(project.root)
    pipeline = _build(project, provider)

    assert [op.id for op in pipeline.ir.operations][-1] == "health"
    assert pipeline.ir.structure is not None
    assert pipeline.ir.metadata["type"] == "codebase"

    pipeline.record(lockfile, pipeline.run(lockfile).results)
    assert lockfile.save()
    assert sorted(load_lockfile(project.root).entries) == sorted(ALL_ARTIFACTS)

    second = RecordingProvider()
    assert _build(project, second).run(load_lockfile(project.root)).up_to_date
    assert second.calls == 0


def test_toggle_filename_changes_output_path(tmp_path: Path) -> None:
    instructions = Instructions(
        path=tmp_path / "COMPILER_INSTRUCTIONS.md",
        frontmatter=Frontmatter(
            name="demo",
            artifacts={"reference": ArtifactToggle(filename="API.md"), "llms": ArtifactToggle(filename="ai.txt")},
        ),
    )
    pipeline = Pipeline(None, IntermediateRepr(), instructions)

    assert pipeline.prompts.artifact_path("reference") == "demo/references/API.md"
    assert pipeline.prompts.artifact_path("llms") == "ai.txt"
    assert pipeline.prompts.artifact_path("llms-full") == "llms-full.txt"


class SlowTransport:
    """Holds each call open and tracks how many are in flight at once."""

    def __init__(self, *, hold: float = 0.0, release: threading.Event | None = None) -> None:
        self.hold = hold
        self.release = release
        self.systems: List[str] = []
        self.active = 0
        self.peak = 0
        self._lock = threading.Lock()

    def __call__(self, call: HTTPCall) -> bytes:
        with self._lock:
            self.systems.append(str(call.payload["system"]))
            self.active += 1
            self.peak = max(self.peak, self.active)
        try:
            if self.release is not None:
                self.release.wait(timeout=5)
            else:
                time.sleep(self.hold)
        finally:
            with self._lock:
                self.active -= 1
        return json.dumps({"content": [{"type": "text", "text": "body"}], "model": "m"}).encode()


def _anthropic(transport: SlowTransport) -> AnthropicProvider:
    return AnthropicProvider(api_key="k", model="m", base_url="http://localhost", transport=transport)


def test_independent_artifacts_are_generated_concurrently(petstore: ProjectBuilder) -> None:
    transport = SlowTransport(hold=0.5)

    outcome = _build(petstore, _anthropic(transport)).run()

    assert transport.peak == len(ALL_ARTIFACTS) - 1
    assert len(transport.systems) == len(ALL_ARTIFACTS)
    assert outcome.result_for("changelog").content.endswith("body\n")


def test_cancelling_in_flight_run_fails_batch_without_changelog(petstore: ProjectBuilder) -> None:
    release = threading.Event()
    transport = SlowTransport(release=release)
    lockfile = load_lockfile(petstore.root)
    pipeline = _build(petstore, _anthropic(transport))
    ctx = RunContext()

    def cancel() -> None:
        ctx.cancel()
        release.set()

    timer = threading.Timer(0.1, cancel)
    timer.start()
    try:
        with pytest.raises(GenerationError) as excinfo:
            pipeline.run(lockfile, ctx)
    finally:
        timer.cancel()

    assert isinstance(excinfo.value.cause, RunCancelled)
    assert excinfo.value.artifact_id == ALL_ARTIFACTS[0]
    assert transport.peak == len(ALL_ARTIFACTS) - 1
    assert len(transport.systems) == len(ALL_ARTIFACTS) - 1
    assert lockfile.entries == {}
    assert not lockfile.dirty


def test_expired_deadline_fails_batch_before_changelog(petstore: ProjectBuilder) -> None:
    transport = SlowTransport(hold=0.2)
    pipeline = _build(petstore, _anthropic(transport))
    ctx = RunContext(timeout=0.05)
    time.sleep(0.1)

    with pytest.raises(GenerationError) as excinfo:
        pipeline.run(ctx=ctx)

    assert isinstance(excinfo.value.cause, RunCancelled)
    assert transport.systems == []
