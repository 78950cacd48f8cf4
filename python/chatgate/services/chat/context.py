"""Context window fitting.

Reduces conversation history to fit a model's token budget while keeping the
alternation invariants intact.

Order of operations:
1. System messages are separated and priced; they are always kept
2. Budget = min(caller's max_token_count, model context length - system cost)
3. History is capped by message count (cheap, bounds the tokenizer work)
4. History is reduced by token cost, oldest turns first
5. The trailing message is checked against absolute size ceilings
6. Image parts without a detail level default to "low", the level the
   tokenizer assumed when pricing them

Note: the message cap counts history only; the final user message is always kept
on top of it.
"""

from collections.abc import Sequence
from dataclasses import replace
from typing import Protocol

from chatgate.logging import get_logger
from chatgate.services.llm.errors import ContextExceedLimitError, MessageTooLargeError
from chatgate.services.llm.tokenizer import Tokenizer, word_count
from chatgate.services.llm.types import ChatRequest, ImageRef, Message

logger = get_logger(__name__)

# Absolute ceilings for the trailing message, independent of the model's limits
MAX_MESSAGE_TOKENS = 4000
MAX_MESSAGE_WORDS = 20000


class ContextLengthSource(Protocol):
    def max_context_length(self, model: str) -> int: ...


class ContextReducer(Protocol):
    def reduce(
        self, messages: Sequence[Message], model: str, budget: int
    ) -> tuple[tuple[Message, ...], int]: ...


class TokenBudgetReducer:
    """Drops the oldest turns until the conversation fits the token budget.

    After each drop, a leading assistant turn is dropped too, so the remaining
    conversation still starts on a user turn.
    """

    def __init__(self, tokenizer: Tokenizer):
        self._tokenizer = tokenizer

    def reduce(
        self, messages: Sequence[Message], model: str, budget: int
    ) -> tuple[tuple[Message, ...], int]:
        """Return the kept messages and their token count.

        Raises:
            ContextExceedLimitError: If not even the final turn fits.
        """
        kept = list(messages)
        while kept:
            tokens = self._tokenizer.count_messages(kept, model)
            if tokens <= budget:
                return tuple(kept), tokens

            kept.pop(0)
            while kept and kept[0].role != "user":
                kept.pop(0)

        raise ContextExceedLimitError()


def truncate_to_recent(
    messages: Sequence[Message], max_context_messages: int
) -> tuple[Message, ...]:
    """Keep the final message plus at most `max_context_messages` before it.

    A negative cap disables truncation. History never starts on an assistant turn.
    """
    if max_context_messages < 0 or not messages:
        return tuple(messages)

    last = messages[-1]
    history = list(messages[:-1])[-max_context_messages:] if max_context_messages else []
    while history and history[0].role != "user":
        history.pop(0)

    return (*history, last)


def default_image_detail(messages: Sequence[Message], detail: str = "low") -> tuple[Message, ...]:
    """Give every image part without a detail level the given level."""
    result = []
    for message in messages:
        if not any(isinstance(p, ImageRef) and not p.detail for p in message.parts):
            result.append(message)
            continue
        parts = tuple(
            replace(p, detail=detail) if isinstance(p, ImageRef) and not p.detail else p
            for p in message.parts
        )
        result.append(replace(message, parts=parts))
    return tuple(result)


def fit_to_budget(
    req: ChatRequest,
    chat: ContextLengthSource,
    max_context_messages: int,
    max_token_count: int,
    *,
    tokenizer: Tokenizer,
    reducer: ContextReducer | None = None,
    max_message_tokens: int = MAX_MESSAGE_TOKENS,
    max_message_words: int = MAX_MESSAGE_WORDS,
) -> tuple[ChatRequest, int]:
    """Fit the conversation into the model's token budget.

    Args:
        req: Normalized request (alternation already fixed).
        chat: Source of the model's maximum context length.
        max_context_messages: Cap on history turns kept before the final message.
        max_token_count: Caller's input-token budget.
        tokenizer: Token counting capability.
        reducer: Token-based reduction strategy (defaults to TokenBudgetReducer).
        max_message_tokens: Token ceiling for the trailing message.
        max_message_words: Word ceiling for the trailing message.

    Returns:
        The fitted request and the input token count of its non-system messages.

    Raises:
        ContextExceedLimitError: If no valid conversation fits the budget.
        MessageTooLargeError: If the trailing message exceeds a size ceiling.
    """
    reducer = reducer or TokenBudgetReducer(tokenizer)

    system = tuple(m for m in req.messages if m.role == "system")
    turns = tuple(m for m in req.messages if m.role != "system")
    system_tokens = tokenizer.count_messages(system, req.model) if system else 0

    budget = min(max_token_count, chat.max_context_length(req.model) - system_tokens)

    capped = truncate_to_recent(turns, max_context_messages)
    if budget <= 0:
        logger.info(
            "context.budget_exhausted",
            model=req.model,
            system_tokens=system_tokens,
            max_token_count=max_token_count,
        )
        raise ContextExceedLimitError()

    kept, input_tokens = reducer.reduce(capped, req.model, budget)
    if not kept:
        raise ContextExceedLimitError()

    last = kept[-1].content
    if (
        tokenizer.count_text(last, req.model) >= max_message_tokens
        or word_count(last) >= max_message_words
    ):
        raise MessageTooLargeError()

    if len(kept) < len(turns):
        logger.info(
            "context.reduced",
            model=req.model,
            turns_before=len(turns),
            turns_after=len(kept),
            budget=budget,
            tokens_input=input_tokens,
        )

    return replace(req, messages=default_image_detail(system + kept)), input_tokens
