"""Artifact generation pipeline.

A run moves through: resolve the enabled set, check fingerprints, generate
the independent artifacts in parallel, wait for all of them, then generate
the changelog from their final content.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence

from .config import Instructions
from .errors import ConfigError, GenerationError
from .llm.runner import GenerateRequest, GenerateResponse, Provider, RunContext
from .logging import get_logger
from .models import IntermediateRepr
from .prompting import ALL_ARTIFACTS, DEPENDENT_ARTIFACT
from .prompting.builder import PromptBuilder, estimate_tokens
from .prompting.constants import CHANGELOG_INPUTS
from .stores.lockfile import ContentCache, LockFile, hash_input, hash_output

CHANGELOG_TITLE = "# Changelog"


@dataclass
class PipelineOptions:
    """Per-invocation switches."""

    output_dir: Optional[Path] = None
    only: Sequence[str] = ()
    force: bool = False
    dry_run: bool = False
    diff: bool = False
    verbose: bool = False
    previous_artifacts: Dict[str, str] = field(default_factory=dict)


@dataclass
class GenerationResult:
    """Outcome for one artifact. Empty ``content`` means skipped."""

    artifact_id: str
    content: str = ""
    file_path: str = ""
    response: Optional[GenerateResponse] = None
    error: Optional[BaseException] = None

    @property
    def skipped(self) -> bool:
        return self.error is None and not self.content


@dataclass
class CacheStatus:
    """Fingerprint check result for the enabled artifacts."""

    input_hashes: Dict[str, str] = field(default_factory=dict)
    skip: List[str] = field(default_factory=list)
    stale: List[str] = field(default_factory=list)

    @property
    def all_up_to_date(self) -> bool:
        return bool(self.input_hashes) and not self.stale


@dataclass
class RunOutcome:
    results: List[GenerationResult] = field(default_factory=list)
    up_to_date: bool = False
    elapsed: float = 0.0

    def result_for(self, artifact_id: str) -> Optional[GenerationResult]:
        for result in self.results:
            if result.artifact_id == artifact_id:
                return result
        return None

    @property
    def generated(self) -> List[GenerationResult]:
        return [result for result in self.results if result.content and result.error is None]


class Pipeline:
    """Decides which artifacts to regenerate and runs the generation calls."""

    def __init__(
        self,
        provider: Provider | None,
        ir: IntermediateRepr,
        instructions: Instructions,
        options: PipelineOptions | None = None,
        *,
        prompt_builder: PromptBuilder | None = None,
    ) -> None:
        self.provider = provider
        self.ir = ir
        self.instructions = instructions
        self.options = options or PipelineOptions()
        self.prompts = prompt_builder or PromptBuilder(ir, instructions)
        self.logger = get_logger("pipeline")
        self._skip: set[str] = set()

    # ------------------------------------------------------------------
    # Enabled set and fingerprints

    def enabled_artifacts(self) -> List[str]:
        if self.options.only:
            wanted = {item.strip().lower() for item in self.options.only if item.strip()}
            unknown = sorted(wanted.difference(ALL_ARTIFACTS))
            if unknown:
                raise ConfigError(
                    f"unknown artifact id(s) in --only: {', '.join(unknown)} "
                    f"(valid: {', '.join(ALL_ARTIFACTS)})"
                )
            return [artifact_id for artifact_id in ALL_ARTIFACTS if artifact_id in wanted]
        toggles = self.instructions.frontmatter.artifacts
        return [
            artifact_id
            for artifact_id in ALL_ARTIFACTS
            if artifact_id not in toggles or toggles[artifact_id].is_enabled()
        ]

    def input_hash(self, artifact_id: str) -> str:
        return hash_input(
            self.prompts.spec_json,
            self.prompts.relevant_sections(artifact_id),
            self.prompts.system_prompt(artifact_id),
        )

    def check_cache(self, lockfile: LockFile) -> CacheStatus:
        status = CacheStatus()
        for artifact_id in self.enabled_artifacts():
            digest = self.input_hash(artifact_id)
            status.input_hashes[artifact_id] = digest
            if lockfile.is_up_to_date(artifact_id, digest):
                status.skip.append(artifact_id)
            else:
                status.stale.append(artifact_id)
        return status

    # ------------------------------------------------------------------
    # Execution

    def run(self, lockfile: LockFile | None = None, ctx: RunContext | None = None) -> RunOutcome:
        """Execute one run.

        Raises :class:`GenerationError` for the first failed artifact in
        enumeration order. The lockfile is only read here; call
        :meth:`record` after a successful run to update it.
        """
        started = time.monotonic()
        self._skip = set()
        if lockfile is not None and not (self.options.force or self.options.dry_run):
            status = self.check_cache(lockfile)
            if status.all_up_to_date:
                self.logger.info("All artifacts up to date; nothing to generate.")
                return RunOutcome(up_to_date=True, elapsed=time.monotonic() - started)
            self._skip = set(status.skip)

        enabled = self.enabled_artifacts()
        parallel = [artifact_id for artifact_id in enabled if artifact_id != DEPENDENT_ARTIFACT]

        results: List[GenerationResult] = []
        lock = threading.Lock()

        def worker(artifact_id: str) -> None:
            result = self._generate(artifact_id, ctx)
            with lock:
                results.append(result)

        threads = [
            threading.Thread(target=worker, args=(artifact_id,), name=f"skillc-{artifact_id}")
            for artifact_id in parallel
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        failed = {result.artifact_id: result for result in results if result.error is not None}
        for artifact_id in parallel:
            if artifact_id in failed:
                raise GenerationError(artifact_id, failed[artifact_id].error)  # type: ignore[arg-type]

        if DEPENDENT_ARTIFACT in enabled:
            current = {result.artifact_id: result.content for result in results if result.content}
            dependent = self._generate(DEPENDENT_ARTIFACT, ctx, current=current)
            if dependent.error is not None:
                raise GenerationError(DEPENDENT_ARTIFACT, dependent.error)
            if dependent.content and not self.options.dry_run:
                previous = self.options.previous_artifacts.get(DEPENDENT_ARTIFACT, "")
                dependent.content = prepend_changelog_entry(dependent.content, previous)
            results.append(dependent)

        return RunOutcome(results=results, elapsed=time.monotonic() - started)

    def _generate(
        self,
        artifact_id: str,
        ctx: RunContext | None,
        *,
        current: Mapping[str, str] | None = None,
    ) -> GenerationResult:
        file_path = self.prompts.artifact_path(artifact_id)
        try:
            system_prompt = self.prompts.system_prompt(artifact_id)
            user_message = self.prompts.user_message(
                artifact_id,
                current=current,
                previous=self.options.previous_artifacts,
            )
        except Exception as exc:
            return GenerationResult(artifact_id=artifact_id, file_path=file_path, error=exc)

        if self.options.dry_run:
            tokens = estimate_tokens(system_prompt + user_message)
            return GenerationResult(
                artifact_id=artifact_id,
                file_path=file_path,
                content=f"[dry-run] Would generate {artifact_id} (~{tokens} input tokens)",
            )

        if artifact_id in self._skip:
            self.logger.info("Skipping %s (cached)", artifact_id)
            return GenerationResult(artifact_id=artifact_id, file_path=file_path)

        if self.provider is None:
            return GenerationResult(
                artifact_id=artifact_id,
                file_path=file_path,
                error=RuntimeError("no provider configured"),
            )

        self.logger.info("Generating %s...", artifact_id)
        if self.options.verbose:
            self.logger.debug("%s system prompt: %d chars", artifact_id, len(system_prompt))
            self.logger.debug("%s user message: %d chars", artifact_id, len(user_message))

        request = GenerateRequest(
            system_prompt=system_prompt,
            user_message=user_message,
            max_tokens=self.prompts.descriptor(artifact_id).max_tokens,
        )
        try:
            response = self.provider.generate(request, ctx)
        except Exception as exc:
            self.logger.error("FAILED %s: %s", artifact_id, exc)
            return GenerationResult(artifact_id=artifact_id, file_path=file_path, error=exc)

        if self.options.verbose:
            self.logger.debug(
                "%s: %d in / %d out tokens, %.3fs",
                artifact_id,
                response.tokens_in,
                response.tokens_out,
                response.elapsed,
            )
        self.logger.info("Done %s (%.1fs)", artifact_id, response.elapsed)
        return GenerationResult(
            artifact_id=artifact_id,
            file_path=file_path,
            content=response.content,
            response=response,
        )

    # ------------------------------------------------------------------
    # Bookkeeping

    def record(
        self,
        lockfile: LockFile,
        results: Sequence[GenerationResult],
        content_cache: ContentCache | None = None,
    ) -> int:
        """Update fingerprints for generated artifacts. Returns the count updated."""
        if self.options.dry_run:
            return 0
        updated = 0
        for result in results:
            if result.error is not None or not result.content:
                continue
            model = result.response.model if result.response is not None else ""
            lockfile.update_entry(
                result.artifact_id,
                self.input_hash(result.artifact_id),
                hash_output(result.content),
                model,
            )
            if content_cache is not None:
                content_cache.write(result.artifact_id, result.content)
            updated += 1
        return updated

    def previous_paths(self) -> Dict[str, str]:
        """Relative output paths of the artifacts whose history feeds the changelog."""
        ids = list(CHANGELOG_INPUTS) + [DEPENDENT_ARTIFACT]
        return {artifact_id: self.prompts.artifact_path(artifact_id) for artifact_id in ids}


def prepend_changelog_entry(entry: str, existing: str) -> str:
    """Place ``entry`` ahead of the previous changelog body.

    A leading ``# Changelog`` title is kept once at the top of the merged
    document.
    """
    entry_body = _strip_title(entry).strip()
    existing_body = _strip_title(existing).strip()
    parts = [CHANGELOG_TITLE]
    if entry_body:
        parts.append(entry_body)
    if existing_body:
        parts.append(existing_body)
    return "\n\n".join(parts) + "\n"


def _strip_title(text: str) -> str:
    stripped = text.lstrip()
    first_line, _, rest = stripped.partition("\n")
    if first_line.strip().lower() == CHANGELOG_TITLE.lower():
        return rest
    return stripped


__all__ = [
    "CacheStatus",
    "GenerationResult",
    "Pipeline",
    "PipelineOptions",
    "RunOutcome",
    "prepend_changelog_entry",
]
