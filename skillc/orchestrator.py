"""Coordinates the generate, validate, diff and init flows."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .config import (
    INSTRUCTIONS_FILENAME,
    Instructions,
    ResolvedProvider,
    load_instructions,
    resolve_provider_config,
)
from .drift import DriftReport, FileChange, compare_directories, detect_input_drift, preview_changes, unified_diff
from .errors import ConfigError, SkillcError
from .llm.runner import GenerateRequest, Provider, RunContext, create_provider
from .logging import get_logger
from .models import IntermediateRepr, SpecSource, SpecWarning
from .pipeline import Pipeline, PipelineOptions, RunOutcome
from .plugins import Registry, build_registry
from .prompting import ALL_ARTIFACTS
from .prompting.builder import init_prompts
from .stores.lockfile import ContentCache, load_lockfile, load_previous_artifacts
from .writer import write_results

ProviderFactory = Callable[[ResolvedProvider], Provider]

_INIT_MAX_TOKENS = 8192


@dataclass
class GenerateReport:
    """What a generate invocation did."""

    output_dir: Path
    outcome: RunOutcome
    warnings: List[SpecWarning] = field(default_factory=list)
    written: List[Path] = field(default_factory=list)
    changes: List[FileChange] = field(default_factory=list)
    diffs: Dict[str, str] = field(default_factory=dict)
    lockfile_saved: bool = False


@dataclass
class ValidationReport:
    warnings: List[SpecWarning] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    operations: int = 0
    types: int = 0

    @property
    def ok(self) -> bool:
        return not self.errors


class Orchestrator:
    """Wires instructions, the plugin registry, the provider and the pipeline."""

    def __init__(
        self,
        registry: Registry | None = None,
        provider_factory: ProviderFactory | None = None,
    ) -> None:
        self.registry = registry or build_registry()
        self.provider_factory = provider_factory or create_provider
        self.logger = get_logger("orchestrator")

    def load(self, instructions_path: Path | str) -> Instructions:
        path = Path(instructions_path)
        try:
            return load_instructions(path)
        except FileNotFoundError:
            raise ConfigError(
                f"no {path.name} found at {path.parent} (run `skillc init` to create one)"
            ) from None

    def parse_specs(
        self, instructions: Instructions, *, spec_override: str | None = None
    ) -> Tuple[IntermediateRepr, List[SpecWarning]]:
        if spec_override:
            sources: Sequence[SpecSource] = [SpecSource(path=str(Path(spec_override).expanduser().resolve()))]
        else:
            sources = instructions.resolve_spec_sources()
        ir, warnings = self.registry.process_sources(sources)
        for warning in warnings:
            self.logger.warning("%s", warning)
        self.logger.info(
            "Parsed %d operations, %d types, %d auth schemes",
            len(ir.operations),
            len(ir.types),
            len(ir.auth),
        )
        return ir, warnings

    def run_generate(
        self,
        instructions_path: Path | str,
        *,
        spec: str | None = None,
        out: str | None = None,
        only: Sequence[str] = (),
        force: bool = False,
        dry_run: bool = False,
        diff: bool = False,
        verbose: bool = False,
        model: str | None = None,
        provider: str | None = None,
        timeout: float | None = None,
    ) -> GenerateReport:
        """Run the full generate flow; files and the lockfile change only on success."""
        instructions = self.load(instructions_path)
        output_dir = instructions.output_dir(out)
        project_dir = instructions.base_dir

        resolved = resolve_provider_config(
            provider=provider,
            model=model,
            frontmatter=instructions.frontmatter.provider,
        )
        ir, warnings = self.parse_specs(instructions, spec_override=spec)

        client: Optional[Provider] = None
        if not dry_run:
            client = self.provider_factory(resolved)
            self.logger.info("Using provider: %s (model: %s)", client.name, client.model)

        options = PipelineOptions(
            output_dir=output_dir,
            only=tuple(only),
            force=force,
            dry_run=dry_run,
            diff=diff,
            verbose=verbose,
        )
        pipeline = Pipeline(client, ir, instructions, options)
        content_cache = ContentCache(project_dir)
        options.previous_artifacts = load_previous_artifacts(
            output_dir, pipeline.previous_paths(), pipeline.previous_paths().keys(), content_cache
        )
        lockfile = load_lockfile(project_dir)

        outcome = pipeline.run(lockfile, RunContext(timeout=timeout))
        report = GenerateReport(output_dir=output_dir, outcome=outcome, warnings=warnings)
        if outcome.up_to_date or dry_run:
            return report

        if diff:
            report.changes = preview_changes(output_dir, outcome.results)
            report.diffs = dict(unified_diff(output_dir, outcome.results))
            return report

        report.written = write_results(output_dir, outcome.results)
        pipeline.record(lockfile, outcome.results, content_cache)
        report.lockfile_saved = lockfile.save()
        self.logger.info("Output written to %s", output_dir)
        return report

    def run_validate(self, instructions_path: Path | str) -> ValidationReport:
        instructions = self.load(instructions_path)
        report = ValidationReport(warnings=list(instructions.validate()))
        try:
            sources = instructions.resolve_spec_sources()
            ir, warnings = self.registry.process_sources(sources)
        except SkillcError as exc:
            report.errors.append(str(exc))
            return report
        report.warnings.extend(warnings)
        report.operations = len(ir.operations)
        report.types = len(ir.types)
        return report

    def run_diff(self, instructions_path: Path | str, *, against: str | None = None) -> DriftReport:
        """Report drift without touching the lockfile or any output."""
        instructions = self.load(instructions_path)
        lockfile = load_lockfile(instructions.base_dir)
        ir, _ = self.parse_specs(instructions)
        pipeline = Pipeline(None, ir, instructions)

        report = DriftReport(stale_artifacts=detect_input_drift(pipeline, lockfile))
        if against:
            against_dir = Path(against).expanduser()
            if not against_dir.is_absolute():
                against_dir = Path.cwd() / against_dir
            paths = [pipeline.prompts.artifact_path(artifact_id) for artifact_id in ALL_ARTIFACTS]
            report.file_changes = compare_directories(instructions.output_dir(), against_dir, paths)
        return report

    def run_init(
        self,
        directory: Path | str,
        *,
        name: str,
        spec: str | None = None,
        spec_type: str | None = None,
        force: bool = False,
    ) -> Path:
        """Draft ``COMPILER_INSTRUCTIONS.md`` from a spec with one generation call."""
        target = Path(directory).expanduser().resolve() / INSTRUCTIONS_FILENAME
        if target.exists() and not force:
            raise ConfigError(f"{INSTRUCTIONS_FILENAME} already exists (use --force to overwrite)")
        if not name:
            raise ConfigError("--name is required")

        kind = (spec_type or "").lower()
        base = target.parent
        if kind == "cli":
            if not spec:
                raise ConfigError("--spec (binary name) is required for CLI type")
            source = SpecSource(type="cli", binary=spec)
            spec_config = f"\n  type: cli\n  binary: {spec}"
        elif kind == "codebase":
            path = spec or "."
            source = SpecSource(type="codebase", path=str((base / path).resolve()))
            spec_config = f"\n  type: codebase\n  path: {path}"
        else:
            path = spec or "./openapi.yaml"
            source = SpecSource(path=str((base / path).resolve()))
            spec_config = path

        ir, _ = self.registry.process_sources([source])
        client = self.provider_factory(resolve_provider_config())
        system, user = init_prompts(ir, name=name, spec_type=kind, spec_config=spec_config)
        self.logger.info("Generating instructions file...")
        response = client.generate(
            GenerateRequest(system_prompt=system, user_message=user, max_tokens=_INIT_MAX_TOKENS),
            RunContext(),
        )
        target.write_text(response.content, encoding="utf-8")
        return target


__all__ = ["GenerateReport", "Orchestrator", "ProviderFactory", "ValidationReport"]
