"""Test helpers shared across chatgate tests.

Provides:
- Message builders
- FakeBackend: in-memory ChatBackend recording what it was asked
- satisfies_alternation: checks the role alternation invariants
"""

from collections.abc import AsyncIterator, Sequence

from chatgate.services.llm.adapter import ChatBackend
from chatgate.services.llm.types import ChatRequest, ChatResponse, Message


def user(content: str, *parts) -> Message:
    return Message(role="user", content=content, parts=tuple(parts))


def assistant(content: str) -> Message:
    return Message(role="assistant", content=content)


def system(content: str) -> Message:
    return Message(role="system", content=content)


def roles(messages: Sequence[Message]) -> list[str]:
    return [m.role for m in messages]


def satisfies_alternation(messages: Sequence[Message]) -> bool:
    """Whether a conversation satisfies the alternation invariants.

    System messages come first; the remaining turns start and end on user and
    strictly alternate.
    """
    turns = [m for m in messages if m.role != "system"]
    leading_system = len(messages) - len(turns)
    if any(m.role == "system" for m in messages[leading_system:]):
        return False
    if not turns or turns[0].role != "user" or turns[-1].role != "user":
        return False
    return all(a.role != b.role for a, b in zip(turns, turns[1:]))


class FakeBackend(ChatBackend):
    """ChatBackend that records requests and replies from a script.

    Attributes:
        requests: Every request received, in order
        stream_closed: Whether the last stream reached its cleanup
    """

    def __init__(
        self,
        name: str = "fake",
        *,
        reply: str = "ok",
        chunks: Sequence[str] = ("Hel", "lo"),
        context_length: int = 0,
    ):
        self.name = name
        self.reply = reply
        self.chunks = tuple(chunks)
        self.context_length = context_length
        self.requests: list[ChatRequest] = []
        self.stream_closed = False
        self.chunks_sent = 0

    async def chat(self, req: ChatRequest) -> ChatResponse:
        self.requests.append(req)
        return ChatResponse(text=self.reply, finish_reason="stop")

    async def chat_stream(self, req: ChatRequest) -> AsyncIterator[ChatResponse]:
        self.requests.append(req)
        self.stream_closed = False
        try:
            for chunk in self.chunks:
                self.chunks_sent += 1
                yield ChatResponse(text=chunk)
            yield ChatResponse(finish_reason="stop")
        finally:
            self.stream_closed = True

    def max_context_length(self, model: str) -> int:
        return self.context_length
