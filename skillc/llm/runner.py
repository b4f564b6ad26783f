"""Clients for the hosted text-generation services (Anthropic, OpenAI)."""

from __future__ import annotations

import json
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from ..config import ResolvedProvider
from ..errors import ProviderError, RunCancelled

ANTHROPIC_DEFAULT_MODEL = "claude-sonnet-4-6"
OPENAI_DEFAULT_MODEL = "gpt-4o"
ANTHROPIC_BASE_URL = "https://api.anthropic.com"
OPENAI_BASE_URL = "https://api.openai.com"
ANTHROPIC_VERSION = "2023-06-01"
DEFAULT_REQUEST_TIMEOUT = 300.0


@dataclass
class GenerateRequest:
    """Input to a single generation call."""

    system_prompt: str
    user_message: str
    max_tokens: int
    model: str = ""


@dataclass
class GenerateResponse:
    """Output of a generation call plus usage and timing."""

    content: str
    model: str = ""
    tokens_in: int = 0
    tokens_out: int = 0
    elapsed: float = 0.0


@dataclass
class HTTPCall:
    """A fully prepared POST request handed to the transport."""

    url: str
    headers: Dict[str, str]
    payload: Dict[str, object]
    timeout: float


Transport = Callable[[HTTPCall], bytes]


class RunContext:
    """Cancellation flag and optional deadline shared by one run's calls."""

    def __init__(self, timeout: float | None = None) -> None:
        self._cancelled = threading.Event()
        self.deadline: Optional[float] = time.monotonic() + timeout if timeout else None

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def remaining(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return self.deadline - time.monotonic()

    def check(self) -> None:
        """Raise :class:`RunCancelled` when the run was cancelled or timed out."""
        if self.cancelled:
            raise RunCancelled("run cancelled")
        remaining = self.remaining()
        if remaining is not None and remaining <= 0:
            raise RunCancelled("run deadline exceeded")


def urllib_transport(call: HTTPCall) -> bytes:
    """POST ``call.payload`` as JSON and return the raw response body."""
    data = json.dumps(call.payload).encode("utf-8")
    headers = {"Content-Type": "application/json", **call.headers}
    request = Request(call.url, data=data, headers=headers, method="POST")
    try:
        with urlopen(request, timeout=call.timeout) as response:  # type: ignore[arg-type]
            return response.read()
    except HTTPError as exc:
        detail = exc.read().decode("utf-8", errors="ignore") if hasattr(exc, "read") else ""
        message = detail.strip() or exc.reason
        raise ProviderError(f"API error (status {exc.code}): {message}") from exc
    except URLError as exc:
        raise ProviderError(f"request failed: {exc.reason}") from exc
    except TimeoutError as exc:
        raise ProviderError(f"request timed out after {call.timeout:g}s") from exc


class Provider(ABC):
    """Base class for generation service clients."""

    name = ""
    endpoint = ""

    def __init__(
        self,
        *,
        api_key: str,
        model: str,
        base_url: str,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        transport: Transport | None = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.request_timeout = request_timeout
        self._transport = transport or urllib_transport

    def generate(self, request: GenerateRequest, ctx: RunContext | None = None) -> GenerateResponse:
        if ctx is not None:
            ctx.check()
        model = request.model or self.model
        call = HTTPCall(
            url=f"{self.base_url}{self.endpoint}",
            headers=self._headers(),
            payload=self._payload(request, model),
            timeout=self._timeout(ctx),
        )
        started = time.monotonic()
        raw = self._transport(call)
        elapsed = time.monotonic() - started
        if ctx is not None and ctx.cancelled:
            raise RunCancelled("run cancelled")

        try:
            payload = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise ProviderError(f"{self.name} returned invalid JSON") from exc
        if not isinstance(payload, dict):
            raise ProviderError(f"{self.name} returned an unexpected payload")

        response = self._parse(payload)
        response.model = response.model or model
        response.elapsed = elapsed
        return response

    def _timeout(self, ctx: RunContext | None) -> float:
        remaining = ctx.remaining() if ctx is not None else None
        if remaining is None:
            return self.request_timeout
        return max(min(self.request_timeout, remaining), 0.001)

    @abstractmethod
    def _headers(self) -> Dict[str, str]:
        """Return protocol-specific auth headers."""

    @abstractmethod
    def _payload(self, request: GenerateRequest, model: str) -> Dict[str, object]:
        """Build the JSON request body."""

    @abstractmethod
    def _parse(self, payload: Dict[str, object]) -> GenerateResponse:
        """Turn a decoded response body into a :class:`GenerateResponse`."""


class AnthropicProvider(Provider):
    name = "anthropic"
    endpoint = "/v1/messages"

    def _headers(self) -> Dict[str, str]:
        return {"x-api-key": self.api_key, "anthropic-version": ANTHROPIC_VERSION}

    def _payload(self, request: GenerateRequest, model: str) -> Dict[str, object]:
        return {
            "model": model,
            "max_tokens": request.max_tokens,
            "system": request.system_prompt,
            "messages": [{"role": "user", "content": request.user_message}],
        }

    def _parse(self, payload: Dict[str, object]) -> GenerateResponse:
        error = payload.get("error")
        if isinstance(error, dict):
            raise ProviderError(f"API error: {error.get('message', 'unknown error')}")
        blocks = payload.get("content")
        parts = []
        if isinstance(blocks, list):
            for block in blocks:
                if isinstance(block, dict) and block.get("type", "text") == "text":
                    text = block.get("text")
                    if isinstance(text, str):
                        parts.append(text)
        usage = payload.get("usage") if isinstance(payload.get("usage"), dict) else {}
        return GenerateResponse(
            content="".join(parts),
            model=str(payload.get("model") or ""),
            tokens_in=int(usage.get("input_tokens", 0) or 0),  # type: ignore[union-attr]
            tokens_out=int(usage.get("output_tokens", 0) or 0),  # type: ignore[union-attr]
        )


class OpenAIProvider(Provider):
    name = "openai"
    endpoint = "/v1/chat/completions"

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    def _payload(self, request: GenerateRequest, model: str) -> Dict[str, object]:
        messages = []
        if request.system_prompt:
            messages.append({"role": "system", "content": request.system_prompt})
        messages.append({"role": "user", "content": request.user_message})
        return {"model": model, "max_tokens": request.max_tokens, "messages": messages}

    def _parse(self, payload: Dict[str, object]) -> GenerateResponse:
        error = payload.get("error")
        if isinstance(error, dict):
            raise ProviderError(f"API error: {error.get('message', 'unknown error')}")
        content = ""
        choices = payload.get("choices")
        if isinstance(choices, list) and choices and isinstance(choices[0], dict):
            message = choices[0].get("message")
            if isinstance(message, dict) and isinstance(message.get("content"), str):
                content = message["content"]
        usage = payload.get("usage") if isinstance(payload.get("usage"), dict) else {}
        return GenerateResponse(
            content=content,
            model=str(payload.get("model") or ""),
            tokens_in=int(usage.get("prompt_tokens", 0) or 0),  # type: ignore[union-attr]
            tokens_out=int(usage.get("completion_tokens", 0) or 0),  # type: ignore[union-attr]
        )


def create_provider(resolved: ResolvedProvider, *, transport: Transport | None = None) -> Provider:
    """Build a provider client from resolved settings.

    A custom ``base_url`` without a known provider name speaks the OpenAI
    protocol unless the name mentions ``anthropic``.
    """
    name = resolved.provider.strip().lower()
    base_url = resolved.base_url
    model = resolved.model
    api_key = resolved.api_key

    if name == "anthropic" or (not name and not base_url):
        if not api_key:
            raise ProviderError(
                "API key required: set SKILLC_API_KEY, ANTHROPIC_API_KEY, or run `skillc config set api-key <key>`"
            )
        return AnthropicProvider(
            api_key=api_key,
            model=model or ANTHROPIC_DEFAULT_MODEL,
            base_url=base_url or ANTHROPIC_BASE_URL,
            transport=transport,
        )
    if name == "openai":
        if not api_key:
            raise ProviderError(
                "API key required: set SKILLC_API_KEY, OPENAI_API_KEY, or run `skillc config set api-key <key>`"
            )
        return OpenAIProvider(
            api_key=api_key,
            model=model or OPENAI_DEFAULT_MODEL,
            base_url=base_url or OPENAI_BASE_URL,
            transport=transport,
        )
    if base_url:
        if not api_key:
            raise ProviderError("API key required for custom provider")
        if "anthropic" in name:
            return AnthropicProvider(
                api_key=api_key,
                model=model or ANTHROPIC_DEFAULT_MODEL,
                base_url=base_url,
                transport=transport,
            )
        return OpenAIProvider(
            api_key=api_key,
            model=model or OPENAI_DEFAULT_MODEL,
            base_url=base_url,
            transport=transport,
        )
    raise ProviderError(
        f"unknown provider {name!r} (supported: anthropic, openai, or set base-url for custom)"
    )


__all__ = [
    "AnthropicProvider",
    "GenerateRequest",
    "GenerateResponse",
    "HTTPCall",
    "OpenAIProvider",
    "Provider",
    "RunContext",
    "Transport",
    "create_provider",
    "urllib_transport",
]
