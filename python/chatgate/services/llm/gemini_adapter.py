"""Google Gemini chat backend.

- Non-streaming: POST https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent
- Streaming: POST https://generativelanguage.googleapis.com/v1beta/models/{model}:streamGenerateContent?alt=sse

Auth:
- Header: x-goog-api-key: <key>
- NEVER put key in query param

Message conversion:
- System message → systemInstruction.parts[0].text
- "assistant" role → "model" role in Gemini
- Text parts → {"text": ...}; data-URI images → {"inline_data": {...}};
  remote images → {"file_data": {"file_uri": ...}}

Streaming:
- Each event: data: {"candidates":[{"content":{"parts":[{"text":"..."}]}}]}
- Terminal: an event whose candidate carries finishReason
- Usage in the final event's usageMetadata
"""

import json
from collections.abc import AsyncIterator

from chatgate.logging import get_logger
from chatgate.services.llm.adapter import HTTPChatBackend
from chatgate.services.llm.errors import ContentFilteredError, LLMError, LLMErrorClass
from chatgate.services.llm.types import ChatRequest, ChatResponse, ImageRef, Message, TextPart

logger = get_logger(__name__)

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models"

SAFETY_REASON = "SAFETY"


class GeminiChatBackend(HTTPChatBackend):
    """Google Gemini API backend."""

    family = "gemini"
    context_windows = {
        "gemini-pro": 30720,
        "gemini-pro-vision": 12288,
        "gemini-1.0-pro": 30720,
        "gemini-1.5-pro": 1048576,
        "gemini-1.5-flash": 1048576,
    }

    async def _generate(self, req: ChatRequest) -> ChatResponse:
        """Non-streaming content generation."""
        response = await self._client.post(
            f"{GEMINI_BASE_URL}/{req.model}:generateContent",
            headers=self._build_headers(),
            json=self._build_request_body(req),
            timeout=self.timeout,
        )
        response.raise_for_status()
        return self._parse_response(response.json())

    async def _generate_stream(self, req: ChatRequest) -> AsyncIterator[ChatResponse]:
        """Streaming content generation using Server-Sent Events."""
        async with self._client.stream(
            "POST",
            f"{GEMINI_BASE_URL}/{req.model}:streamGenerateContent?alt=sse",
            headers=self._build_headers(),
            json=self._build_request_body(req),
            timeout=self.timeout,
        ) as response:
            if response.is_error:
                await response.aread()
            response.raise_for_status()

            async for line in response.aiter_lines():
                # Gemini SSE format: "data: {...}"
                if not line or not line.startswith("data: "):
                    continue

                try:
                    data = json.loads(line[6:])
                except json.JSONDecodeError:
                    continue

                candidates = data.get("candidates") or []
                if not candidates:
                    continue

                candidate = candidates[0]
                delta_text = _join_text(candidate)
                if delta_text:
                    yield ChatResponse(text=delta_text)

                finish_reason = candidate.get("finishReason")
                if not finish_reason:
                    continue

                usage = data.get("usageMetadata") or {}
                if finish_reason == SAFETY_REASON:
                    yield ChatResponse(
                        finish_reason=finish_reason,
                        error=ContentFilteredError().message,
                        error_code=LLMErrorClass.CONTENT_FILTERED.value,
                    )
                else:
                    yield ChatResponse(
                        finish_reason=finish_reason,
                        input_tokens=usage.get("promptTokenCount") or 0,
                        output_tokens=usage.get("candidatesTokenCount") or 0,
                    )
                return

            raise LLMError(
                LLMErrorClass.PROVIDER_DOWN,
                "Gemini stream ended without a finish reason",
                provider=self.name,
            )

    def _build_headers(self) -> dict[str, str]:
        """Build request headers.

        Note: API key goes in header, NEVER in query param.
        """
        return {
            "x-goog-api-key": self._api_key,
            "Content-Type": "application/json",
        }

    def _build_request_body(self, req: ChatRequest) -> dict:
        """Build request body from ChatRequest.

        Extracts the system message to systemInstruction and maps roles.
        """
        system_prompt = None
        contents = []

        for message in req.messages:
            if message.role == "system":
                system_prompt = message.content
            else:
                contents.append(self._message_to_content(message))

        body: dict = {"contents": contents}

        if req.max_tokens > 0:
            body["generationConfig"] = {"maxOutputTokens": req.max_tokens}

        if system_prompt:
            body["systemInstruction"] = {"parts": [{"text": system_prompt}]}

        return body

    def _message_to_content(self, message: Message) -> dict:
        """Convert Message to Gemini content format.

        Note: Gemini uses "model" instead of "assistant" for the role.
        """
        role = "model" if message.role == "assistant" else message.role

        if not message.parts:
            return {"role": role, "parts": [{"text": message.content}]}

        parts: list[dict] = []
        for part in message.parts:
            if isinstance(part, TextPart):
                parts.append({"text": part.text})
            elif isinstance(part, ImageRef):
                parts.append(_image_part(part.url))

        return {"role": role, "parts": parts}

    def _parse_response(self, data: dict) -> ChatResponse:
        """Parse non-streaming response."""
        candidates = data.get("candidates") or []
        if not candidates:
            block_reason = (data.get("promptFeedback") or {}).get("blockReason")
            if block_reason:
                raise ContentFilteredError(provider=self.name)
            raise LLMError(
                LLMErrorClass.PROVIDER_DOWN,
                "Gemini response missing candidates",
                provider=self.name,
            )

        finish_reason = candidates[0].get("finishReason")
        if finish_reason == SAFETY_REASON:
            raise ContentFilteredError(provider=self.name)

        usage = data.get("usageMetadata") or {}
        return ChatResponse(
            text=_join_text(candidates[0]),
            finish_reason=finish_reason or "STOP",
            input_tokens=usage.get("promptTokenCount") or 0,
            output_tokens=usage.get("candidatesTokenCount") or 0,
        )


def _join_text(candidate: dict) -> str:
    parts = (candidate.get("content") or {}).get("parts") or []
    return "".join(part.get("text", "") for part in parts if "text" in part)


def _image_part(url: str) -> dict:
    if url.startswith("data:") and ";base64," in url:
        header, data = url.split(";base64,", 1)
        return {"inline_data": {"mime_type": header[5:], "data": data}}
    return {"file_data": {"file_uri": url}}
