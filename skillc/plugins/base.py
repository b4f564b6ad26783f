"""Base class for spec plugins."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List

from ..models import IntermediateRepr, SpecSource, SpecWarning


class SpecPlugin(ABC):
    """Contract for plugins that turn one spec source into an IR fragment."""

    name: str = ""

    @abstractmethod
    def detect(self, source: SpecSource) -> bool:
        """Return True when this plugin should handle the source."""

    @abstractmethod
    def fetch(self, source: SpecSource) -> bytes:
        """Retrieve the raw spec content for the source."""

    @abstractmethod
    def parse(self, raw: bytes, source: SpecSource) -> IntermediateRepr:
        """Interpret raw content as an IR fragment with deterministic ordering."""

    @abstractmethod
    def validate(self, ir: IntermediateRepr) -> List[SpecWarning]:
        """Report non-fatal issues in a parsed fragment."""
