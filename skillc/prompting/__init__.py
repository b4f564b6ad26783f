"""Prompt assembly for artifact generation."""

from .constants import ALL_ARTIFACTS, ARTIFACTS, DEPENDENT_ARTIFACT, ArtifactDescriptor

__all__ = ["ALL_ARTIFACTS", "ARTIFACTS", "DEPENDENT_ARTIFACT", "ArtifactDescriptor"]
