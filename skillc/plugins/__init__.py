"""Spec plugin implementations and the registry that merges their output."""

from __future__ import annotations

from typing import Iterable, List, Sequence, Tuple

from ..errors import SourceResolutionError, SpecParseError
from ..logging import get_logger
from ..models import IntermediateRepr, SpecSource, SpecWarning
from .base import SpecPlugin
from .cli import CLIPlugin
from .codebase import CodebasePlugin
from .openapi import OpenAPIPlugin


class Registry:
    """Ordered set of plugins; the first plugin whose ``detect`` matches wins."""

    def __init__(self, plugins: Iterable[SpecPlugin] | None = None) -> None:
        self._plugins: List[SpecPlugin] = []
        self.logger = get_logger("registry")
        for plugin in plugins or ():
            self.register(plugin)

    @property
    def plugins(self) -> Sequence[SpecPlugin]:
        return tuple(self._plugins)

    def register(self, plugin: SpecPlugin) -> None:
        if not isinstance(plugin, SpecPlugin):
            raise TypeError(f"{plugin!r} is not a SpecPlugin")
        self._plugins.append(plugin)

    def detect(self, source: SpecSource) -> SpecPlugin:
        for plugin in self._plugins:
            if plugin.detect(source):
                return plugin
        names = ", ".join(plugin.name for plugin in self._plugins) or "none"
        raise SourceResolutionError(
            f"no plugin can handle spec source {source.label} (registered: {names})"
        )

    def process_sources(
        self, sources: Sequence[SpecSource]
    ) -> Tuple[IntermediateRepr, List[SpecWarning]]:
        """Fetch, parse and validate every source, merging in the given order.

        Any resolution, fetch or parse failure aborts immediately. Validation
        warnings are collected across all sources.
        """
        merged = IntermediateRepr()
        warnings: List[SpecWarning] = []
        for source in sources:
            plugin = self.detect(source)
            self.logger.debug("Using %s plugin for %s", plugin.name, source.label)
            try:
                raw = plugin.fetch(source)
            except (OSError, SourceResolutionError) as exc:
                raise SourceResolutionError(f"[{plugin.name}] fetch {source.label}: {exc}") from exc
            try:
                fragment = plugin.parse(raw, source)
            except (SpecParseError, ValueError) as exc:
                raise SpecParseError(f"[{plugin.name}] parse {source.label}: {exc}") from exc
            warnings.extend(plugin.validate(fragment))
            merged.merge(fragment)
        return merged, warnings


def build_registry() -> Registry:
    """Return a registry with the built-in plugins in detection order."""
    return Registry([OpenAPIPlugin(), CLIPlugin(), CodebasePlugin()])


__all__ = [
    "CLIPlugin",
    "CodebasePlugin",
    "OpenAPIPlugin",
    "Registry",
    "SpecPlugin",
    "build_registry",
]
