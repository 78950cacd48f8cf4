"""Token counting for context fitting.

The Tokenizer protocol is what the context fitter consumes. EstimatingTokenizer is
the built-in implementation: a conservative character heuristic, good enough to keep
requests under a model's context limit. It is NOT used for billing; actual counts
come from provider responses.

Heuristic:
- CJK characters count as one token each
- Remaining text counts as ~4 characters per token
- Each message adds a fixed framing overhead
- Images without an explicit detail are priced as "low", matching the default the
  context fitter applies before dispatch
"""

import re
from collections.abc import Sequence
from typing import Protocol

from chatgate.services.llm.types import ImageRef, Message, TextPart

# Per-message framing overhead (role markers, separators)
MESSAGE_OVERHEAD_TOKENS = 4
# Reply priming added once per conversation
REPLY_PRIMING_TOKENS = 3

LOW_DETAIL_IMAGE_TOKENS = 85
HIGH_DETAIL_IMAGE_TOKENS = 765

_CJK_RE = re.compile(
    r"[\u3040-\u30ff\u3400-\u4dbf\u4e00-\u9fff\uac00-\ud7af\uf900-\ufaff\uff00-\uffef]"
)
_WORD_RE = re.compile(r"\S+")


class Tokenizer(Protocol):
    """Counts tokens the way a model's tokenizer would."""

    def count_text(self, text: str, model: str) -> int: ...

    def count_messages(self, messages: Sequence[Message], model: str) -> int: ...


def estimate_token_count(text: str) -> int:
    """Rough estimate of token count for a text string.

    Args:
        text: The text to estimate tokens for.

    Returns:
        Estimated token count (0 for empty text).
    """
    if not text:
        return 0
    cjk = len(_CJK_RE.findall(text))
    rest = len(text) - cjk
    return cjk + (rest + 3) // 4


def word_count(text: str) -> int:
    """Count words, treating each CJK character as one word."""
    cjk = len(_CJK_RE.findall(text))
    words = len(_WORD_RE.findall(_CJK_RE.sub(" ", text)))
    return cjk + words


def image_token_cost(image: ImageRef) -> int:
    """Token cost of an image part; unspecified detail is priced as low."""
    if image.detail in ("", "low"):
        return LOW_DETAIL_IMAGE_TOKENS
    return HIGH_DETAIL_IMAGE_TOKENS


class EstimatingTokenizer:
    """Character-heuristic tokenizer, independent of model."""

    def count_text(self, text: str, model: str) -> int:
        return estimate_token_count(text)

    def count_messages(self, messages: Sequence[Message], model: str) -> int:
        if not messages:
            return 0

        total = REPLY_PRIMING_TOKENS
        for message in messages:
            total += MESSAGE_OVERHEAD_TOKENS + estimate_token_count(message.content)
            for part in message.parts:
                if isinstance(part, TextPart):
                    total += estimate_token_count(part.text)
                elif isinstance(part, ImageRef) and part.url:
                    total += image_token_cost(part)
        return total
