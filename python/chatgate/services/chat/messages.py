"""Pure transforms over conversations.

- purify: drop content parts a backend cannot receive (file uploads)
- redact_for_log: truncated copy for diagnostic capture, never dispatched
- has_image: whether any image part carries a URL
- uploaded_file: first uploaded file reference of a message
- assemble_transcript: plain "role: content" rendering of a conversation, for
  callers that need it as one string (summaries, moderation, prompt logging)
"""

from collections.abc import Sequence
from dataclasses import replace

from chatgate.services.llm.types import (
    DISPATCHABLE_PARTS,
    FileRef,
    ImageRef,
    Message,
    TextPart,
)
from chatgate.services.redact import truncate_text

# Characters kept per text/url field in log captures
LOG_TRUNCATE_CHARS = 20


def purify(messages: Sequence[Message]) -> tuple[Message, ...]:
    """Remove every content part that is not text or an image reference.

    Order, roles, count and plain-text content are preserved. A message whose
    parts are all removed keeps its plain-text content.
    """
    purified = []
    for message in messages:
        if not message.parts:
            purified.append(message)
            continue
        parts = tuple(p for p in message.parts if isinstance(p, DISPATCHABLE_PARTS))
        purified.append(replace(message, parts=parts))
    return tuple(purified)


def redact_for_log(
    messages: Sequence[Message], limit: int = LOG_TRUNCATE_CHARS
) -> tuple[Message, ...]:
    """Structurally identical copy with text and image URLs truncated to `limit`.

    For diagnostic capture only. The result must never be dispatched.
    """
    redacted = []
    for message in messages:
        parts = []
        for part in message.parts:
            if isinstance(part, TextPart):
                parts.append(TextPart(text=truncate_text(part.text, limit)))
            elif isinstance(part, ImageRef):
                parts.append(ImageRef(url=truncate_text(part.url, limit), detail=part.detail))
            else:
                # file references are reduced to their tag
                parts.append(FileRef(url=""))
        redacted.append(
            Message(
                role=message.role,
                content=truncate_text(message.content, limit),
                parts=tuple(parts),
            )
        )
    return tuple(redacted)


def has_image(messages: Sequence[Message]) -> bool:
    return any(
        isinstance(part, ImageRef) and part.url
        for message in messages
        for part in message.parts
    )


def uploaded_file(message: Message) -> FileRef | None:
    """Return the first uploaded file of a message, if any."""
    for part in message.parts:
        if isinstance(part, FileRef) and part.url:
            return part
    return None


def assemble_transcript(messages: Sequence[Message]) -> str:
    return "\n\n".join(f"{m.role}: {m.content}" for m in messages)
