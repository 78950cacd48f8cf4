"""Backend layer for provider-agnostic chat.

This module provides a unified interface for calling OpenAI-compatible,
Anthropic, and Gemini models. It includes:

- The ChatBackend capability and the shared HTTP base class
- Vendor adapters with async support (non-streaming + streaming)
- Error classification and normalization
- Token estimation for context budgeting

Usage:
    from chatgate.services.llm import ChatRequest, Message
    from chatgate.services.llm.openai_adapter import OpenAIChatBackend

    backend = OpenAIChatBackend(httpx_client, api_key="sk-...")
    response = await backend.chat(
        ChatRequest(model="gpt-4", messages=(Message(role="user", content="Hello!"),))
    )

Adapters:
- Use a shared httpx.AsyncClient
- Do not retry
- Do not log request/response bodies
- Normalize HTTP failures into LLMError
"""

from chatgate.services.llm.adapter import ChatBackend, HTTPChatBackend
from chatgate.services.llm.errors import (
    ChannelNotFoundError,
    ContentFilteredError,
    ContextExceedLimitError,
    LLMError,
    LLMErrorClass,
    MessageTooLargeError,
    classify_provider_error,
)
from chatgate.services.llm.types import (
    ChatRequest,
    ChatResponse,
    FileRef,
    ImageRef,
    Message,
    TextPart,
)

__all__ = [
    # Core types
    "TextPart",
    "ImageRef",
    "FileRef",
    "Message",
    "ChatRequest",
    "ChatResponse",
    # Backend interface
    "ChatBackend",
    "HTTPChatBackend",
    # Errors
    "LLMError",
    "LLMErrorClass",
    "ContextExceedLimitError",
    "ContentFilteredError",
    "MessageTooLargeError",
    "ChannelNotFoundError",
    "classify_provider_error",
]
