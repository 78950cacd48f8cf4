"""Shared type definitions for the chat gateway.

- TextPart / ImageRef / FileRef: content parts of a multi-modal message
- Message: Provider-agnostic conversation turn
- ChatRequest: Vendor-agnostic chat request flowing through normalization
- ChatResponse: Complete response, or one partial value of a stream

All types are frozen. Pipeline stages return new values via dataclasses.replace
instead of mutating shared state.

Streaming invariants:
- A stream yields ChatResponse values in the order the backend produced them
- The last value carries finish_reason or error, or the stream raises LLMError
"""

from dataclasses import dataclass
from typing import ClassVar, Literal

Role = Literal["system", "user", "assistant"]
ImageDetail = Literal["", "low", "high", "auto"]


@dataclass(frozen=True)
class TextPart:
    """Text content part."""

    type: ClassVar[str] = "text"

    text: str


@dataclass(frozen=True)
class ImageRef:
    """Image content part.

    Attributes:
        url: Either a URL of the image or base64-encoded image data
        detail: "low", "high" or "auto"; empty means "not specified"
    """

    type: ClassVar[str] = "image_url"

    url: str
    detail: ImageDetail = ""


@dataclass(frozen=True)
class FileRef:
    """Uploaded file reference.

    Accepted on input so callers can attach documents, but never sent to a model.
    """

    type: ClassVar[str] = "file"

    url: str
    name: str = ""


ContentPart = TextPart | ImageRef | FileRef

# Part types that may be transmitted to a backend
DISPATCHABLE_PARTS = (TextPart, ImageRef)


@dataclass(frozen=True)
class Message:
    """Provider-agnostic conversation turn.

    Attributes:
        role: One of "system", "user", or "assistant"
        content: Plain text content
        parts: Multi-modal content parts (empty for plain text turns)
    """

    role: Role
    content: str
    parts: tuple[ContentPart, ...] = ()


@dataclass(frozen=True)
class ChatRequest:
    """Vendor-agnostic chat request.

    Attributes:
        model: Model identifier, optionally prefixed with "namespace:"
        messages: Conversation in chronological order
        stream: Whether the caller wants a streamed response
        max_tokens: Maximum tokens in the completion (0 = backend default)
        n: Reserved legacy slot. Old clients send the room id here; it is promoted
           to room_id during decoding/initialization and cleared.
        room_id: Chat room the conversation belongs to
        history_id: Caller's history record id, carried through untouched
        temp_model: Model chosen by the user for this call only
        initialized: Set by initialize; a request is normalized at most once
    """

    model: str
    messages: tuple[Message, ...]
    stream: bool = False
    max_tokens: int = 0
    n: int = 0
    room_id: int = 0
    history_id: int = 0
    temp_model: str | None = None
    initialized: bool = False


@dataclass(frozen=True)
class ChatResponse:
    """Response from a backend.

    For non-streaming calls this is the complete response. For streaming calls
    each value carries a text delta; the terminal value carries finish_reason
    (and usage when the backend reports it) or an in-band error.
    """

    text: str = ""
    finish_reason: str | None = None
    error: str | None = None
    error_code: str | None = None
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def is_terminal(self) -> bool:
        """Whether this value ends a stream."""
        return bool(self.finish_reason or self.error)
