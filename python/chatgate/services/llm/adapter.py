"""Backend interface and the shared HTTP backend base class.

ChatBackend is the capability every backend exposes and that ChatService
itself implements: synchronous chat, streaming chat, max context length.

HTTPChatBackend holds what all vendor adapters share:
- One httpx.AsyncClient per process (or the proxied one), never owned by the adapter
- Credentials bound at construction (from settings or a channel row)
- No retries
- No logging of request/response bodies
- HTTP failures normalized into LLMError here, in one place
- llm.request.started / llm.request.finished / llm.request.failed events
"""

import time
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from contextlib import aclosing
from typing import ClassVar

import httpx

from chatgate.logging import get_logger
from chatgate.services.llm.errors import LLMError, LLMErrorClass, classify_provider_error
from chatgate.services.llm.types import ChatRequest, ChatResponse
from chatgate.services.redact import safe_kv

logger = get_logger(__name__)

# Default timeout for backend requests in seconds
DEFAULT_TIMEOUT_S = 45


class ChatBackend(ABC):
    """A chat-capable backend, keyed by model identifier."""

    @abstractmethod
    async def chat(self, req: ChatRequest) -> ChatResponse:
        """Request/response chat. Returns the complete response."""

    @abstractmethod
    def chat_stream(self, req: ChatRequest) -> AsyncIterator[ChatResponse]:
        """Streaming chat. Yields partial responses until a terminal value."""

    @abstractmethod
    def max_context_length(self, model: str) -> int:
        """Maximum input tokens for the model, or 0 if unknown."""


class HTTPChatBackend(ChatBackend):
    """Base class for vendor adapters speaking HTTP.

    Subclasses implement _generate / _generate_stream and may raise raw httpx
    exceptions; chat / chat_stream normalize them.

    Attributes:
        family: Error-classification family ("openai", "anthropic", "gemini")
        context_windows: Known model context sizes, matched exactly or by prefix
    """

    family: ClassVar[str] = "openai"
    context_windows: ClassVar[dict[str, int]] = {}

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        api_key: str,
        name: str | None = None,
        timeout_s: int = DEFAULT_TIMEOUT_S,
    ):
        """Initialize backend with a shared HTTP client.

        Args:
            client: Shared httpx.AsyncClient for connection pooling.
            api_key: Credential sent with every request.
            name: Provider name used in logs and errors (defaults to family).
            timeout_s: Request timeout in seconds.
        """
        self._client = client
        self._api_key = api_key
        self.name = name or self.family
        self._timeout_s = timeout_s

    @property
    def timeout(self) -> httpx.Timeout:
        return httpx.Timeout(self._timeout_s, connect=10.0)

    @abstractmethod
    async def _generate(self, req: ChatRequest) -> ChatResponse:
        """Vendor-specific non-streaming call."""

    @abstractmethod
    def _generate_stream(self, req: ChatRequest) -> AsyncIterator[ChatResponse]:
        """Vendor-specific streaming call."""

    def max_context_length(self, model: str) -> int:
        if model in self.context_windows:
            return self.context_windows[model]

        # Longest prefix wins so "gpt-4-32k-0613" matches "gpt-4-32k" before "gpt-4"
        best = ""
        for known in self.context_windows:
            if model.startswith(known) and len(known) > len(best):
                best = known
        return self.context_windows[best] if best else 0

    async def chat(self, req: ChatRequest) -> ChatResponse:
        base = self._base_log_fields(req, streaming=False)
        logger.info(
            "llm.request.started",
            **safe_kv(**base, message_chars=sum(len(m.content) for m in req.messages)),
        )

        start = time.monotonic()
        try:
            response = await self._generate(req)
        except Exception as e:
            error = self._normalize_failure(e, base, start)
            if error is e:
                raise
            raise error from e

        logger.info(
            "llm.request.finished",
            **safe_kv(
                **base,
                outcome="success",
                latency_ms=int((time.monotonic() - start) * 1000),
                tokens_input=response.input_tokens,
                tokens_output=response.output_tokens,
                finish_reason=response.finish_reason,
            ),
        )
        return response

    async def chat_stream(self, req: ChatRequest) -> AsyncIterator[ChatResponse]:
        base = self._base_log_fields(req, streaming=True)
        logger.info(
            "llm.request.started",
            **safe_kv(**base, message_chars=sum(len(m.content) for m in req.messages)),
        )

        start = time.monotonic()
        try:
            async with aclosing(self._generate_stream(req)) as stream:
                async for chunk in stream:
                    if chunk.is_terminal:
                        logger.info(
                            "llm.request.finished",
                            **safe_kv(
                                **base,
                                outcome="error" if chunk.error else "success",
                                latency_ms=int((time.monotonic() - start) * 1000),
                                tokens_input=chunk.input_tokens,
                                tokens_output=chunk.output_tokens,
                                finish_reason=chunk.finish_reason,
                                error_class=chunk.error_code,
                            ),
                        )
                    yield chunk
        except Exception as e:
            error = self._normalize_failure(e, base, start)
            if error is e:
                raise
            raise error from e

    def _base_log_fields(self, req: ChatRequest, *, streaming: bool) -> dict:
        """Build base log fields for backend events."""
        fields: dict = {
            "provider": self.name,
            "model_name": req.model,
            "streaming": streaming,
        }
        if req.room_id:
            fields["room_id"] = req.room_id
        return fields

    def _normalize_failure(self, exc: Exception, base: dict, start: float) -> LLMError:
        """Translate a raw failure into LLMError and emit llm.request.failed."""
        latency_ms = int((time.monotonic() - start) * 1000)

        if isinstance(exc, LLMError):
            error = exc
        elif isinstance(exc, httpx.TimeoutException):
            error = LLMError(LLMErrorClass.TIMEOUT, "Request timed out", provider=self.name)
        elif isinstance(exc, httpx.HTTPStatusError):
            json_body = _safe_parse_json(exc.response)
            error_class = classify_provider_error(
                self.family, exc.response.status_code, json_body, None
            )
            error = LLMError(
                error_class,
                f"Provider returned HTTP {exc.response.status_code}",
                provider=self.name,
            )
        elif isinstance(exc, httpx.NetworkError):
            error = LLMError(LLMErrorClass.PROVIDER_DOWN, "Network error", provider=self.name)
        else:
            error = LLMError(
                LLMErrorClass.PROVIDER_DOWN,
                f"Unexpected error: {type(exc).__name__}",
                provider=self.name,
            )

        logger.error(
            "llm.request.failed",
            **safe_kv(
                **base,
                outcome="error",
                error_class=error.error_class.value,
                latency_ms=latency_ms,
            ),
        )
        return error


def _safe_parse_json(response: httpx.Response) -> dict | None:
    """Safely parse JSON from response, returning None on failure."""
    try:
        data = response.json()
    except Exception:
        return None
    return data if isinstance(data, dict) else None
