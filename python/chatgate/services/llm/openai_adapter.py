"""OpenAI-compatible chat backends.

Serves OpenAI itself, Azure OpenAI, and every vendor or aggregator exposing the
OpenAI chat completions API (OneAPI, OpenRouter, Moonshot, Zhipu, DashScope
compatible mode, ...).

- Endpoint: POST {server}/chat/completions
- Azure: POST {server}/openai/deployments/{deployment}/chat/completions?api-version=...
- Headers: Authorization: Bearer <key> (Azure: api-key: <key>), plus per-channel extras
- Streaming: Server-Sent Events with data: {...}, terminal event data: [DONE]
- Usage arrives in a trailing chunk when stream_options.include_usage is set

Message conversion:
- Plain turns: {"role": ..., "content": "<text>"}
- Multi-modal turns: content is a list of {"type": "text", "text": ...} and
  {"type": "image_url", "image_url": {"url": ..., "detail": ...}}
- File parts are never sent (purified before dispatch)
"""

import json
from collections.abc import AsyncIterator, Mapping

import httpx

from chatgate.logging import get_logger
from chatgate.services.llm.adapter import DEFAULT_TIMEOUT_S, HTTPChatBackend
from chatgate.services.llm.errors import ContentFilteredError, LLMError, LLMErrorClass
from chatgate.services.llm.types import ChatRequest, ChatResponse, ImageRef, Message, TextPart

logger = get_logger(__name__)

OPENAI_SERVER = "https://api.openai.com/v1"
OPENROUTER_SERVER = "https://openrouter.ai/api/v1"

CONTENT_FILTER_REASON = "content_filter"


class OpenAIChatBackend(HTTPChatBackend):
    """OpenAI chat completions backend.

    Handles conversion between Message objects and OpenAI message format,
    and parses both streaming and non-streaming responses.
    """

    family = "openai"
    context_windows = {
        "gpt-3.5-turbo": 16385,
        "gpt-3.5-turbo-instruct": 4096,
        "gpt-4": 8192,
        "gpt-4-32k": 32768,
        "gpt-4-turbo": 128000,
        "gpt-4-1106-preview": 128000,
        "gpt-4-0125-preview": 128000,
        "gpt-4-vision-preview": 128000,
        "gpt-4o": 128000,
    }

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        api_key: str,
        server: str = OPENAI_SERVER,
        name: str | None = None,
        azure: bool = False,
        azure_api_version: str = "",
        headers: Mapping[str, str] | None = None,
        timeout_s: int = DEFAULT_TIMEOUT_S,
    ):
        super().__init__(client, api_key=api_key, name=name, timeout_s=timeout_s)
        self.server = server.rstrip("/")
        self.azure = azure
        self.azure_api_version = azure_api_version
        self.extra_headers = dict(headers or {})

    async def _generate(self, req: ChatRequest) -> ChatResponse:
        """Non-streaming chat completion."""
        response = await self._client.post(
            self._chat_url(req.model),
            params=self._query_params(),
            headers=self._build_headers(),
            json=self._build_request_body(req, stream=False),
            timeout=self.timeout,
        )
        response.raise_for_status()
        return self._parse_response(response.json())

    async def _generate_stream(self, req: ChatRequest) -> AsyncIterator[ChatResponse]:
        """Streaming chat completion using Server-Sent Events."""
        async with self._client.stream(
            "POST",
            self._chat_url(req.model),
            params=self._query_params(),
            headers=self._build_headers(),
            json=self._build_request_body(req, stream=True),
            timeout=self.timeout,
        ) as response:
            if response.is_error:
                await response.aread()
            response.raise_for_status()

            finish_reason: str | None = None
            input_tokens = 0
            output_tokens = 0
            received_done = False

            async for line in response.aiter_lines():
                # OpenAI SSE format: "data: {...}" or "data: [DONE]"
                if not line or not line.startswith("data:"):
                    continue

                data_str = line[5:].strip()

                if data_str == "[DONE]":
                    received_done = True
                    break

                try:
                    data = json.loads(data_str)
                except json.JSONDecodeError:
                    continue

                # Some compatible vendors report failures in-band
                if data.get("error"):
                    error = data["error"]
                    code = error.get("code") if isinstance(error, dict) else None
                    message = error.get("message") if isinstance(error, dict) else str(error)
                    yield ChatResponse(
                        error=message or "provider error",
                        error_code=(
                            LLMErrorClass.CONTENT_FILTERED.value
                            if code == CONTENT_FILTER_REASON
                            else LLMErrorClass.PROVIDER_DOWN.value
                        ),
                    )
                    return

                usage_data = data.get("usage")
                if usage_data:
                    input_tokens = usage_data.get("prompt_tokens") or 0
                    output_tokens = usage_data.get("completion_tokens") or 0

                choices = data.get("choices") or []
                if not choices:
                    continue

                delta_text = (choices[0].get("delta") or {}).get("content") or ""
                if delta_text:
                    yield ChatResponse(text=delta_text)

                if choices[0].get("finish_reason"):
                    finish_reason = choices[0]["finish_reason"]

            if not received_done and finish_reason is None:
                raise LLMError(
                    LLMErrorClass.PROVIDER_DOWN,
                    "Stream ended without [DONE] marker",
                    provider=self.name,
                )

            if finish_reason == CONTENT_FILTER_REASON:
                yield ChatResponse(
                    finish_reason=finish_reason,
                    error=ContentFilteredError().message,
                    error_code=LLMErrorClass.CONTENT_FILTERED.value,
                    input_tokens=input_tokens,
                    output_tokens=output_tokens,
                )
                return

            yield ChatResponse(
                finish_reason=finish_reason or "stop",
                input_tokens=input_tokens,
                output_tokens=output_tokens,
            )

    def _chat_url(self, model: str) -> str:
        if self.azure:
            deployment = model.replace(".", "")
            return f"{self.server}/openai/deployments/{deployment}/chat/completions"
        return f"{self.server}/chat/completions"

    def _query_params(self) -> dict[str, str] | None:
        if self.azure and self.azure_api_version:
            return {"api-version": self.azure_api_version}
        return None

    def _build_headers(self) -> dict[str, str]:
        """Build request headers."""
        headers = {"Content-Type": "application/json"}
        if self.azure:
            headers["api-key"] = self._api_key
        else:
            headers["Authorization"] = f"Bearer {self._api_key}"
        headers.update(self.extra_headers)
        return headers

    def _build_request_body(self, req: ChatRequest, stream: bool) -> dict:
        """Build request body from ChatRequest."""
        body: dict = {
            "model": req.model,
            "messages": [self._message_to_dict(message) for message in req.messages],
            "stream": stream,
        }

        if req.max_tokens > 0:
            body["max_tokens"] = req.max_tokens

        if stream:
            body["stream_options"] = {"include_usage": True}

        return body

    def _message_to_dict(self, message: Message) -> dict:
        """Convert Message to OpenAI message format.

        OpenAI uses the same role names as our Message type.
        """
        if not message.parts:
            return {"role": message.role, "content": message.content}

        content: list[dict] = []
        for part in message.parts:
            if isinstance(part, TextPart):
                content.append({"type": "text", "text": part.text})
            elif isinstance(part, ImageRef):
                image: dict = {"url": part.url}
                if part.detail:
                    image["detail"] = part.detail
                content.append({"type": "image_url", "image_url": image})

        return {"role": message.role, "content": content}

    def _parse_response(self, data: dict) -> ChatResponse:
        """Parse non-streaming response."""
        choices = data.get("choices") or []
        if not choices:
            raise LLMError(
                LLMErrorClass.PROVIDER_DOWN,
                "Response missing choices",
                provider=self.name,
            )

        finish_reason = choices[0].get("finish_reason")
        if finish_reason == CONTENT_FILTER_REASON:
            raise ContentFilteredError(provider=self.name)

        usage_data = data.get("usage") or {}
        return ChatResponse(
            text=(choices[0].get("message") or {}).get("content") or "",
            finish_reason=finish_reason or "stop",
            input_tokens=usage_data.get("prompt_tokens") or 0,
            output_tokens=usage_data.get("completion_tokens") or 0,
        )


class OneAPIChatBackend(OpenAIChatBackend):
    """OneAPI aggregator: an OpenAI-compatible gateway fronting many vendors.

    Context sizes are unknown here; the model catalog is expected to carry them.
    """

    context_windows = {}


class OpenRouterChatBackend(OpenAIChatBackend):
    """OpenRouter aggregator.

    OpenRouter attributes traffic through the HTTP-Referer and X-Title headers.
    """

    context_windows = {}

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        api_key: str,
        server: str = "",
        referer: str = "",
        title: str = "",
        name: str | None = None,
        headers: Mapping[str, str] | None = None,
        timeout_s: int = DEFAULT_TIMEOUT_S,
    ):
        attribution: dict[str, str] = {}
        if referer:
            attribution["HTTP-Referer"] = referer
        if title:
            attribution["X-Title"] = title
        attribution.update(headers or {})

        super().__init__(
            client,
            api_key=api_key,
            server=server or OPENROUTER_SERVER,
            name=name,
            headers=attribution,
            timeout_s=timeout_s,
        )
