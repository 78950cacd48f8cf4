"""Request normalization.

initialize runs once per request, before model lookup. ChatService calls it on
every request it receives; a request that already went through it is returned
as is.
- a temporary model chosen by the user replaces the requested model for this call
- the "namespace:" prefix is stripped from the model id
- a room id carried in the legacy `n` slot is promoted to room_id and `n` cleared
- messages with blank text and no content parts are dropped
- per-model quirks are applied

The remaining helpers are used by ChatService.fix_request once the model's
metadata is known. Every function returns a new request; nothing is mutated.
"""

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import replace

from chatgate.logging import get_logger
from chatgate.services.chat.quirks import (
    DEFAULT_CONTENT_REWRITES,
    DEFAULT_QUIRKS,
    ModelQuirk,
    apply_quirks,
)
from chatgate.services.llm.types import ChatRequest, Message

logger = get_logger(__name__)


def strip_namespace(model: str) -> str:
    """Drop a leading "namespace:" segment, keeping any colons inside the model id.

    "openai:gpt-4" -> "gpt-4", "ns:model:v1" -> "model:v1", "gpt-4" -> "gpt-4"
    """
    segments = model.split(":")
    if len(segments) > 1:
        segments = segments[1:]
    return ":".join(segments)


def promote_legacy_room_id(req: ChatRequest) -> ChatRequest:
    """Move a room id sent in the legacy `n` slot into room_id.

    An explicit room_id wins over `n`. `n` is cleared either way.
    """
    if req.n == 0:
        return req
    return replace(req, room_id=req.room_id or req.n, n=0)


def drop_blank_messages(messages: Sequence[Message]) -> tuple[Message, ...]:
    """Remove messages with blank text and no content parts."""
    return tuple(m for m in messages if m.content.strip() or m.parts)


def initialize(
    req: ChatRequest,
    quirks: Iterable[ModelQuirk] = DEFAULT_QUIRKS,
) -> ChatRequest:
    """Normalize an inbound request. Idempotent."""
    if req.initialized:
        return req

    model = req.temp_model or req.model
    req = promote_legacy_room_id(replace(req, model=strip_namespace(model)))

    messages = apply_quirks(req.model, drop_blank_messages(req.messages), quirks)

    if len(messages) != len(req.messages):
        logger.debug(
            "chat.request.messages_dropped",
            model=req.model,
            before=len(req.messages),
            after=len(messages),
        )

    return replace(req, messages=messages, initialized=True)


def replace_or_inject_system_prompt(req: ChatRequest, prompt: str) -> ChatRequest:
    """Overwrite the leading system message, or prepend one."""
    messages = req.messages
    if messages and messages[0].role == "system":
        messages = (replace(messages[0], content=prompt),) + messages[1:]
    else:
        messages = (Message(role="system", content=prompt),) + messages
    return replace(req, messages=messages)


def rewrite_content(
    messages: Sequence[Message],
    rewrites: Mapping[str, str] = DEFAULT_CONTENT_REWRITES,
) -> tuple[Message, ...]:
    """Replace whole-message texts listed in `rewrites`."""
    result = []
    for message in messages:
        replacement = rewrites.get(message.content.strip())
        result.append(replace(message, content=replacement) if replacement else message)
    return tuple(result)


def merge_system_prompt(messages: Sequence[Message], prompt: str) -> tuple[Message, ...]:
    """Put the model's mandatory prompt in front of the conversation.

    The caller's first system message is kept, appended after the mandatory prompt
    on a new line; further caller system messages are dropped. Without a mandatory
    prompt the conversation is returned unchanged.
    """
    if not prompt:
        return tuple(messages)

    system = [m for m in messages if m.role == "system"]
    turns = tuple(m for m in messages if m.role != "system")

    if system:
        head = replace(system[0], content=f"{prompt}\n{system[0].content}")
    else:
        head = Message(role="system", content=prompt)

    return (head,) + turns
