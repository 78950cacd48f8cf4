"""Anthropic chat backend.

- Endpoint: POST https://api.anthropic.com/v1/messages
- Headers: x-api-key: <key>, anthropic-version: 2023-06-01, Content-Type: application/json

Message conversion:
- System message extracted to the separate "system" field
- Remaining messages mapped with role preserved
- Multi-modal turns become content blocks; images are sent as url or base64 sources

Response (non-stream):
- text = concatenate all content[].text where type="text"
- input_tokens / output_tokens from usage
- finish_reason = stop_reason

Streaming:
- Events: content_block_delta with data: {"delta": {"type": "text_delta", "text": "..."}}
- message_start carries input usage, message_delta carries stop_reason and output usage
- Terminal: event: message_stop
"""

import json
from collections.abc import AsyncIterator

from chatgate.logging import get_logger
from chatgate.services.llm.adapter import HTTPChatBackend
from chatgate.services.llm.errors import LLMError, LLMErrorClass
from chatgate.services.llm.types import ChatRequest, ChatResponse, ImageRef, Message, TextPart

logger = get_logger(__name__)

ANTHROPIC_MESSAGES_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_API_VERSION = "2023-06-01"

# Anthropic requires max_tokens on every request
DEFAULT_MAX_TOKENS = 4096


class AnthropicChatBackend(HTTPChatBackend):
    """Anthropic messages API backend."""

    family = "anthropic"
    context_windows = {
        "claude-instant": 100000,
        "claude-2": 100000,
        "claude-2.1": 200000,
        "claude-3": 200000,
    }

    async def _generate(self, req: ChatRequest) -> ChatResponse:
        """Non-streaming message generation."""
        response = await self._client.post(
            ANTHROPIC_MESSAGES_URL,
            headers=self._build_headers(),
            json=self._build_request_body(req, stream=False),
            timeout=self.timeout,
        )
        response.raise_for_status()
        return self._parse_response(response.json())

    async def _generate_stream(self, req: ChatRequest) -> AsyncIterator[ChatResponse]:
        """Streaming message generation using Server-Sent Events."""
        async with self._client.stream(
            "POST",
            ANTHROPIC_MESSAGES_URL,
            headers=self._build_headers(),
            json=self._build_request_body(req, stream=True),
            timeout=self.timeout,
        ) as response:
            if response.is_error:
                await response.aread()
            response.raise_for_status()

            input_tokens = 0
            output_tokens = 0
            stop_reason: str | None = None

            async for line in response.aiter_lines():
                if not line:
                    continue

                # Anthropic SSE format: "event: <type>\ndata: {...}"
                if line.startswith("event: "):
                    if line[7:] == "message_stop":
                        yield ChatResponse(
                            finish_reason=stop_reason or "end_turn",
                            input_tokens=input_tokens,
                            output_tokens=output_tokens,
                        )
                        return
                    continue

                if not line.startswith("data: "):
                    continue

                try:
                    data = json.loads(line[6:])
                except json.JSONDecodeError:
                    continue

                event_type = data.get("type", "")

                if event_type == "message_start":
                    usage = (data.get("message") or {}).get("usage") or {}
                    input_tokens = usage.get("input_tokens") or 0
                elif event_type == "content_block_delta":
                    delta = data.get("delta") or {}
                    if delta.get("type") == "text_delta" and delta.get("text"):
                        yield ChatResponse(text=delta["text"])
                elif event_type == "message_delta":
                    stop_reason = (data.get("delta") or {}).get("stop_reason") or stop_reason
                    output_tokens = (data.get("usage") or {}).get("output_tokens") or output_tokens
                elif event_type == "error":
                    error = data.get("error") or {}
                    yield ChatResponse(
                        error=error.get("message") or "provider error",
                        error_code=LLMErrorClass.PROVIDER_DOWN.value,
                    )
                    return

            raise LLMError(
                LLMErrorClass.PROVIDER_DOWN,
                "Anthropic stream ended without message_stop event",
                provider=self.name,
            )

    def _build_headers(self) -> dict[str, str]:
        """Build request headers."""
        return {
            "x-api-key": self._api_key,
            "anthropic-version": ANTHROPIC_API_VERSION,
            "Content-Type": "application/json",
        }

    def _build_request_body(self, req: ChatRequest, stream: bool) -> dict:
        """Build request body from ChatRequest.

        Extracts the system message to a separate field.
        """
        system_prompt = None
        messages = []

        for message in req.messages:
            if message.role == "system":
                system_prompt = message.content
            else:
                messages.append(self._message_to_dict(message))

        body: dict = {
            "model": req.model,
            "max_tokens": req.max_tokens if req.max_tokens > 0 else DEFAULT_MAX_TOKENS,
            "messages": messages,
            "stream": stream,
        }

        if system_prompt:
            body["system"] = system_prompt

        return body

    def _message_to_dict(self, message: Message) -> dict:
        """Convert Message to Anthropic message format."""
        if not message.parts:
            return {"role": message.role, "content": message.content}

        blocks: list[dict] = []
        for part in message.parts:
            if isinstance(part, TextPart):
                blocks.append({"type": "text", "text": part.text})
            elif isinstance(part, ImageRef):
                blocks.append({"type": "image", "source": _image_source(part.url)})

        return {"role": message.role, "content": blocks}

    def _parse_response(self, data: dict) -> ChatResponse:
        """Parse non-streaming response."""
        text = "".join(
            block.get("text", "")
            for block in data.get("content") or []
            if block.get("type") == "text"
        )

        usage = data.get("usage") or {}
        return ChatResponse(
            text=text,
            finish_reason=data.get("stop_reason") or "end_turn",
            input_tokens=usage.get("input_tokens") or 0,
            output_tokens=usage.get("output_tokens") or 0,
        )


def _image_source(url: str) -> dict:
    """Build an Anthropic image source from a URL or a data URI."""
    if url.startswith("data:") and ";base64," in url:
        header, data = url.split(";base64,", 1)
        return {"type": "base64", "media_type": header[5:], "data": data}
    return {"type": "url", "url": url}
