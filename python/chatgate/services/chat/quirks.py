"""Per-model conversation quirks and content rewrites.

Some models impose structural rules beyond alternation. Each rule is a ModelQuirk
matched by model id and applied during initialization, so adding a rule never
touches the normalizer itself.

Content rewrites replace whole-message texts that trip a backend's automated
content filtering (Azure OpenAI flags a bare "继续").
"""

from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping, Sequence

from chatgate.services.llm.types import Message


class ModelQuirk(ABC):
    """A structural rewrite required by specific models."""

    @abstractmethod
    def matches(self, model: str) -> bool: ...

    @abstractmethod
    def apply(self, messages: Sequence[Message]) -> tuple[Message, ...]: ...


class SingleTurnQuirk(ModelQuirk):
    """Keep only the final message for models without multi-turn support.

    Vision models such as gemini-pro-vision require exactly one turn, and that
    turn must carry the image; earlier turns would lack image context.
    """

    def __init__(self, models: Iterable[str]):
        self.models = frozenset(models)

    def matches(self, model: str) -> bool:
        return model in self.models

    def apply(self, messages: Sequence[Message]) -> tuple[Message, ...]:
        return tuple(messages[-1:])


DEFAULT_QUIRKS: tuple[ModelQuirk, ...] = (SingleTurnQuirk({"gemini-pro-vision"}),)

DEFAULT_CONTENT_REWRITES: Mapping[str, str] = {"继续": "请接着说"}


def apply_quirks(
    model: str,
    messages: Sequence[Message],
    quirks: Iterable[ModelQuirk] = DEFAULT_QUIRKS,
) -> tuple[Message, ...]:
    result = tuple(messages)
    for quirk in quirks:
        if quirk.matches(model):
            result = quirk.apply(result)
    return result
