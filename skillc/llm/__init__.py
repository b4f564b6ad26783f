"""Generation service clients."""

from .runner import (
    AnthropicProvider,
    GenerateRequest,
    GenerateResponse,
    OpenAIProvider,
    Provider,
    RunContext,
    create_provider,
)

__all__ = [
    "AnthropicProvider",
    "GenerateRequest",
    "GenerateResponse",
    "OpenAIProvider",
    "Provider",
    "RunContext",
    "create_provider",
]
