"""Chat request/response wire schemas.

Field-compatible with existing callers. Decoding converts wire models into the
frozen service types (chatgate.services.llm.types) and runs initialize.

Legacy room id:
Old clients send the chat room id in the `n` slot. ChatRequestIn.to_request
passes both fields to initialize, whose promote_legacy_room_id moves a non-zero
`n` into room_id unless an explicit room_id is set. `n` is always cleared. The
rule is versioned by ROOM_ID_SHIM_VERSION so it can be retired once no caller
depends on it.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from chatgate.logging import get_logger
from chatgate.services.chat.normalize import initialize
from chatgate.services.llm.errors import LLMError
from chatgate.services.llm.types import (
    ChatRequest,
    ChatResponse,
    ContentPart,
    FileRef,
    ImageRef,
    Message,
    TextPart,
)

logger = get_logger(__name__)

ROOM_ID_SHIM_VERSION = 1

MESSAGE_ROLES = Literal["system", "user", "assistant"]
IMAGE_DETAILS = Literal["", "low", "high", "auto"]


# =============================================================================
# Request Schemas
# =============================================================================


class ImageURLIn(BaseModel):
    """Image reference: a URL or base64-encoded image data."""

    url: str = ""
    detail: IMAGE_DETAILS = ""


class FileURLIn(BaseModel):
    """Uploaded file reference."""

    url: str = ""
    name: str = ""


class ContentPartIn(BaseModel):
    """One part of a multi-modal message ("text", "image_url" or "file")."""

    type: str
    text: str = ""
    image_url: ImageURLIn | None = None
    file_url: FileURLIn | None = None

    def to_part(self) -> ContentPart | None:
        """Convert to a service content part; None for unknown or empty parts."""
        if self.type == TextPart.type:
            return TextPart(text=self.text)
        if self.type == ImageRef.type and self.image_url is not None:
            return ImageRef(url=self.image_url.url, detail=self.image_url.detail)
        if self.type == FileRef.type and self.file_url is not None:
            return FileRef(url=self.file_url.url, name=self.file_url.name)
        return None


class MessageIn(BaseModel):
    role: MESSAGE_ROLES
    content: str = ""
    multipart_content: list[ContentPartIn] = Field(default_factory=list)

    def to_message(self) -> Message:
        parts = []
        for item in self.multipart_content:
            part = item.to_part()
            if part is None:
                logger.debug("schema.content_part_ignored", part_type=item.type)
                continue
            parts.append(part)
        return Message(role=self.role, content=self.content, parts=tuple(parts))


class ChatRequestIn(BaseModel):
    """Inbound chat request."""

    stream: bool = False
    model: str
    messages: list[MessageIn] = Field(default_factory=list)
    max_tokens: int = Field(0, ge=0)
    n: int = Field(0, description="Legacy slot carrying the room id")
    history_id: int = 0
    temp_model: str | None = None
    room_id: int = 0

    model_config = ConfigDict(extra="ignore")

    def to_request(self) -> ChatRequest:
        """Decode into a ChatRequest and run initialize."""
        req = ChatRequest(
            model=self.model,
            messages=tuple(m.to_message() for m in self.messages),
            stream=self.stream,
            max_tokens=self.max_tokens,
            n=self.n,
            room_id=self.room_id,
            history_id=self.history_id,
            temp_model=self.temp_model or None,
        )
        return initialize(req)


# =============================================================================
# Response Schemas
# =============================================================================


class ChatResponseOut(BaseModel):
    """Outbound chat response. Serialize with to_wire() so empty fields are omitted."""

    error: str | None = None
    error_code: str | None = None
    text: str | None = None
    finish_reason: str | None = None
    input_tokens: int | None = None
    output_tokens: int | None = None

    @classmethod
    def from_response(cls, response: ChatResponse) -> "ChatResponseOut":
        return cls(
            error=response.error or None,
            error_code=response.error_code or None,
            text=response.text or None,
            finish_reason=response.finish_reason or None,
            input_tokens=response.input_tokens or None,
            output_tokens=response.output_tokens or None,
        )

    @classmethod
    def from_error(cls, error: LLMError) -> "ChatResponseOut":
        return cls(error=error.message, error_code=error.error_class.value)

    def to_wire(self) -> dict:
        return self.model_dump(exclude_none=True)
