"""Tests for context window fitting (chatgate.services.chat.context).

Token math uses a character tokenizer (one token per character of content) so
budgets can be read straight off the fixtures.
"""

import pytest

from chatgate.services.chat.context import (
    TokenBudgetReducer,
    default_image_detail,
    fit_to_budget,
    truncate_to_recent,
)
from chatgate.services.llm.errors import (
    ContextExceedLimitError,
    LLMErrorClass,
    MessageTooLargeError,
)
from chatgate.services.llm.tokenizer import EstimatingTokenizer
from chatgate.services.llm.types import ChatRequest, ImageRef
from tests.helpers import assistant, roles, system, user


class CharTokenizer:
    """One token per character of message content."""

    def count_text(self, text, model):
        return len(text)

    def count_messages(self, messages, model):
        return sum(len(m.content) for m in messages)


class FixedContext:
    def __init__(self, length: int):
        self.length = length

    def max_context_length(self, model):
        return self.length


def _request(*messages) -> ChatRequest:
    return ChatRequest(model="gpt-4", messages=tuple(messages))


def _fit(req, *, context=1000, max_messages=-1, max_tokens=1000, **kwargs):
    return fit_to_budget(
        req,
        FixedContext(context),
        max_messages,
        max_tokens,
        tokenizer=kwargs.pop("tokenizer", CharTokenizer()),
        **kwargs,
    )


CONVERSATION = (
    system("ss"),
    user("aaaa"),
    assistant("bbbb"),
    user("cccc"),
)


class TestFitToBudget:
    """Tests for fit_to_budget."""

    def test_fitting_conversation_unchanged(self):
        req = _request(*CONVERSATION)

        fitted, input_tokens = _fit(req)

        assert fitted.messages == CONVERSATION
        assert input_tokens == 12

    def test_drops_oldest_turns_to_fit_caller_budget(self):
        """Dropping the oldest user turn also drops the then-leading assistant turn."""
        fitted, input_tokens = _fit(_request(*CONVERSATION), max_tokens=9)

        assert roles(fitted.messages) == ["system", "user"]
        assert fitted.messages[-1].content == "cccc"
        assert input_tokens == 4

    def test_system_cost_reduces_model_budget(self):
        req = _request(system("ssssss"), user("aaaa"), assistant("bbbb"), user("cccc"))

        fitted, _ = _fit(req, context=10)

        assert fitted.messages == (system("ssssss"), user("cccc"))

    def test_system_messages_always_kept(self):
        fitted, _ = _fit(_request(*CONVERSATION), max_tokens=4)
        assert fitted.messages[0] == system("ss")

    def test_exhausted_budget_raises(self):
        """System prompt alone consumes the model's context."""
        req = _request(system("ssssss"), user("hi"))

        with pytest.raises(ContextExceedLimitError) as exc_info:
            _fit(req, context=5)

        assert exc_info.value.error_class == LLMErrorClass.CONTEXT_EXCEED_LIMIT

    def test_zero_caller_budget_raises(self):
        with pytest.raises(ContextExceedLimitError):
            _fit(_request(user("hi")), max_tokens=0)

    def test_final_turn_larger_than_budget_raises(self):
        with pytest.raises(ContextExceedLimitError):
            _fit(_request(user("x" * 20)), max_tokens=10)

    def test_message_cap_applied_before_budget(self):
        req = _request(user("u1"), assistant("a1"), user("u2"), assistant("a2"), user("u3"))

        fitted, _ = _fit(req, max_messages=2)

        assert [m.content for m in fitted.messages] == ["u2", "a2", "u3"]

    def test_trailing_message_token_ceiling(self):
        with pytest.raises(MessageTooLargeError) as exc_info:
            _fit(_request(user("cccccc")), max_message_tokens=6)

        assert exc_info.value.error_class == LLMErrorClass.MESSAGE_TOO_LARGE

    def test_trailing_message_word_ceiling(self):
        """Word ceiling is independent of the token ceiling."""
        with pytest.raises(MessageTooLargeError):
            _fit(_request(user("a b c")), max_message_words=3)

    def test_below_ceilings_passes(self):
        fitted, _ = _fit(_request(user("a b")), max_message_tokens=4, max_message_words=3)
        assert fitted.messages == (user("a b"),)

    def test_ceiling_checks_only_trailing_message(self):
        req = _request(user("x" * 50), assistant("ok"), user("short"))

        fitted, _ = _fit(req, max_message_tokens=10)

        assert fitted.messages[-1].content == "short"

    def test_image_detail_defaults_to_low(self):
        req = _request(
            user(
                "look",
                ImageRef(url="https://img/1.png"),
                ImageRef(url="https://img/2.png", detail="high"),
            )
        )

        fitted, _ = _fit(req)

        parts = fitted.messages[0].parts
        assert parts[0].detail == "low"
        assert parts[1].detail == "high"

    def test_custom_reducer_returning_nothing_raises(self):
        class EmptyReducer:
            def reduce(self, messages, model, budget):
                return (), 0

        with pytest.raises(ContextExceedLimitError):
            _fit(_request(user("hi")), reducer=EmptyReducer())

    def test_logs_reduction(self, log_sink):
        _fit(_request(*CONVERSATION), max_tokens=9)

        events = [e for e in log_sink if e["event"] == "context.reduced"]
        assert len(events) == 1
        assert events[0]["turns_before"] == 3
        assert events[0]["turns_after"] == 1

    def test_with_estimating_tokenizer(self):
        """Long history is trimmed under the heuristic tokenizer too."""
        history = []
        for i in range(20):
            history += [user(f"question {i} " + "x" * 400), assistant("answer " + "y" * 400)]
        req = _request(system("be brief"), *history, user("final question"))

        fitted, input_tokens = _fit(req, context=1000, tokenizer=EstimatingTokenizer())

        assert fitted.messages[0] == system("be brief")
        assert fitted.messages[-1].content == "final question"
        assert fitted.messages[1].role == "user"
        assert 0 < input_tokens <= 1000


class TestTokenBudgetReducer:
    """Tests for TokenBudgetReducer."""

    def test_returns_kept_and_count(self):
        reducer = TokenBudgetReducer(CharTokenizer())
        kept, tokens = reducer.reduce([user("aa"), assistant("bb"), user("cc")], "m", 6)

        assert len(kept) == 3
        assert tokens == 6

    def test_never_starts_on_assistant(self):
        reducer = TokenBudgetReducer(CharTokenizer())
        kept, _ = reducer.reduce([user("aa"), assistant("bb"), user("cc")], "m", 5)

        assert kept == (user("cc"),)

    def test_raises_when_nothing_fits(self):
        reducer = TokenBudgetReducer(CharTokenizer())
        with pytest.raises(ContextExceedLimitError):
            reducer.reduce([user("toolong")], "m", 3)


class TestTruncateToRecent:
    """Tests for truncate_to_recent."""

    MESSAGES = (user("u1"), assistant("a1"), user("u2"), assistant("a2"), user("u3"))

    def test_negative_cap_keeps_everything(self):
        assert truncate_to_recent(self.MESSAGES, -1) == self.MESSAGES

    def test_keeps_last_plus_cap(self):
        result = truncate_to_recent(self.MESSAGES, 2)
        assert [m.content for m in result] == ["u2", "a2", "u3"]

    def test_never_starts_on_assistant(self):
        result = truncate_to_recent(self.MESSAGES, 1)
        assert result == (user("u3"),)

    def test_zero_cap_keeps_final_message(self):
        assert truncate_to_recent(self.MESSAGES, 0) == (user("u3"),)

    def test_empty(self):
        assert truncate_to_recent((), 3) == ()


class TestDefaultImageDetail:
    def test_messages_without_images_untouched(self):
        messages = (user("a"), assistant("b"))
        result = default_image_detail(messages)
        assert result == messages
        assert result[0] is messages[0]
