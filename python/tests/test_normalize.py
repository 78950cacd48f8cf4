"""Tests for request normalization.

Covers:
- initialize (namespace strip, temp model, legacy room id, empty message filter, quirks)
- system prompt helpers and content rewrites
- ChatService.fix_request end to end
"""

import pytest

from chatgate.services.chat.alternation import CONTINUE_PROMPT
from chatgate.services.chat.catalog import ModelDescriptor, ModelMeta, ModelProvider
from chatgate.services.chat.normalize import (
    initialize,
    merge_system_prompt,
    promote_legacy_room_id,
    replace_or_inject_system_prompt,
    rewrite_content,
    strip_namespace,
)
from chatgate.services.chat.quirks import (
    DEFAULT_QUIRKS,
    ModelQuirk,
    SingleTurnQuirk,
    apply_quirks,
)
from chatgate.services.llm.types import ChatRequest, FileRef, ImageRef, TextPart
from tests.helpers import assistant, roles, satisfies_alternation, system, user


def _request(model: str = "gpt-4", *messages, **kwargs) -> ChatRequest:
    return ChatRequest(model=model, messages=tuple(messages), **kwargs)


class TestStripNamespace:
    """Tests for strip_namespace."""

    @pytest.mark.parametrize(
        ("model", "expected"),
        [
            ("openai:gpt-4", "gpt-4"),
            ("ns:model:v1", "model:v1"),
            ("gpt-4", "gpt-4"),
            ("", ""),
        ],
    )
    def test_strip(self, model, expected):
        assert strip_namespace(model) == expected


class TestInitialize:
    """Tests for initialize."""

    def test_strips_namespace(self):
        req = initialize(_request("openai:gpt-4", user("hi")))
        assert req.model == "gpt-4"

    def test_temp_model_overrides_model(self):
        req = initialize(_request("gpt-3.5-turbo", user("hi"), temp_model="ns:gpt-4o"))
        assert req.model == "gpt-4o"

    def test_promotes_legacy_room_id(self):
        req = initialize(_request("gpt-4", user("hi"), n=42))

        assert req.room_id == 42
        assert req.n == 0

    def test_zero_n_leaves_room_id(self):
        req = initialize(_request("gpt-4", user("hi"), room_id=7))

        assert req.room_id == 7
        assert req.n == 0

    def test_explicit_room_id_wins_over_legacy_n(self):
        req = initialize(_request("gpt-4", user("hi"), n=7, room_id=5))

        assert req.room_id == 5
        assert req.n == 0

    def test_second_run_is_noop(self):
        """Model ids with inner colons are not stripped twice."""
        once = initialize(_request("ns:model:v1", user(" "), user("hi")))
        twice = initialize(once)

        assert once.initialized
        assert twice is once
        assert twice.model == "model:v1"

    def test_drops_blank_messages_without_parts(self):
        req = initialize(
            _request(
                "gpt-4",
                user("   "),
                assistant(""),
                user("", ImageRef(url="https://img/1.png")),
                user("hello"),
            )
        )

        assert len(req.messages) == 2
        assert req.messages[0].parts == (ImageRef(url="https://img/1.png"),)
        assert req.messages[1].content == "hello"

    def test_single_turn_quirk_for_vision_model(self):
        """gemini-pro-vision keeps only the final message."""
        req = initialize(
            _request(
                "google:gemini-pro-vision",
                user("earlier"),
                assistant("reply"),
                user("describe", ImageRef(url="https://img/cat.png")),
            )
        )

        assert len(req.messages) == 1
        assert req.messages[0].content == "describe"

    def test_other_models_keep_history(self):
        req = initialize(_request("gemini-pro", user("a"), assistant("b"), user("c")))
        assert len(req.messages) == 3

    def test_input_not_mutated(self):
        original = _request("ns:gpt-4", user(" "), user("hi"), n=3)
        initialize(original)

        assert original.model == "ns:gpt-4"
        assert original.n == 3
        assert len(original.messages) == 2


class TestQuirks:
    """Tests for pluggable model quirks."""

    def test_custom_quirk_applies(self):
        class DropSystem(ModelQuirk):
            def matches(self, model):
                return model.startswith("o1")

            def apply(self, messages):
                return tuple(m for m in messages if m.role != "system")

        req = initialize(_request("o1-mini", system("s"), user("hi")), quirks=(DropSystem(),))
        assert roles(req.messages) == ["user"]

    def test_no_match_is_identity(self):
        messages = (user("a"), assistant("b"), user("c"))
        assert apply_quirks("gpt-4", messages, DEFAULT_QUIRKS) == messages

    def test_single_turn_quirk_on_empty(self):
        assert SingleTurnQuirk({"m"}).apply(()) == ()


class TestPromoteLegacyRoomId:
    def test_noop_when_zero(self):
        req = _request("gpt-4", user("hi"))
        assert promote_legacy_room_id(req) is req

    def test_legacy_n_fills_missing_room_id(self):
        req = promote_legacy_room_id(_request("gpt-4", user("hi"), n=9))
        assert (req.room_id, req.n) == (9, 0)

    def test_both_set_keeps_explicit_room_id(self):
        req = promote_legacy_room_id(_request("gpt-4", user("hi"), n=9, room_id=3))
        assert (req.room_id, req.n) == (3, 0)


class TestReplaceOrInjectSystemPrompt:
    """Tests for replace_or_inject_system_prompt."""

    def test_overwrites_leading_system(self):
        req = replace_or_inject_system_prompt(_request("m", system("old"), user("hi")), "new")
        assert req.messages == (system("new"), user("hi"))

    def test_prepends_when_missing(self):
        req = replace_or_inject_system_prompt(_request("m", user("hi")), "new")
        assert req.messages == (system("new"), user("hi"))

    def test_idempotent(self):
        once = replace_or_inject_system_prompt(_request("m", user("hi")), "p")
        twice = replace_or_inject_system_prompt(once, "p")
        assert twice == once


class TestRewriteContent:
    """Tests for rewrite_content."""

    def test_rewrites_exact_match_after_trim(self):
        result = rewrite_content([user("  继续 "), user("继续写")])
        assert [m.content for m in result] == ["请接着说", "继续写"]

    def test_custom_rewrites(self):
        result = rewrite_content([user("go on")], {"go on": "please continue"})
        assert result[0].content == "please continue"


class TestMergeSystemPrompt:
    """Tests for merge_system_prompt."""

    def test_prepends_mandatory_prompt_to_caller_system(self):
        result = merge_system_prompt([system("caller"), user("hi")], "mandatory")
        assert result[0] == system("mandatory\ncaller")

    def test_only_first_caller_system_survives(self):
        result = merge_system_prompt([system("a"), user("hi"), system("b")], "m")

        assert roles(result) == ["system", "user"]
        assert result[0].content == "m\na"

    def test_injects_when_caller_has_none(self):
        result = merge_system_prompt([user("hi")], "mandatory")
        assert result == (system("mandatory"), user("hi"))

    def test_no_prompt_is_identity(self):
        messages = (system("a"), user("hi"), system("b"))
        assert merge_system_prompt(messages, "") == messages


class TestFixRequest:
    """End-to-end tests for ChatService.fix_request."""

    def test_continue_rewritten_and_alternation_kept(self, chat_service):
        req = _request("gpt-4", user("hi"), assistant("hello"), user("继续"))

        fixed, _ = chat_service.fix_request(req)

        assert roles(fixed.messages) == ["user", "assistant", "user"]
        assert fixed.messages[-1].content == "请接着说"

    def test_trailing_assistant_gets_continuation(self, chat_service):
        fixed, _ = chat_service.fix_request(_request("gpt-4", user("hi"), assistant("ok")))

        assert fixed.messages[-1].role == "user"
        assert fixed.messages[-1].content == CONTINUE_PROMPT

    def test_even_turns_end_on_user_and_alternate(self, chat_service):
        """Four alternating turns ending on assistant gain a continuation turn."""
        req = _request("gpt-4", user("a"), assistant("b"), user("c"), assistant("d"))

        fixed, _ = chat_service.fix_request(req)

        assert roles(fixed.messages) == ["user", "assistant", "user", "assistant", "user"]
        assert len(fixed.messages) % 2 == 1
        assert satisfies_alternation(fixed.messages)

    def test_purifies_file_parts(self, chat_service):
        req = _request("gpt-4", user("x", TextPart("t"), FileRef(url="https://f/doc.pdf")))

        fixed, _ = chat_service.fix_request(req)

        assert fixed.messages[0].parts == (TextPart("t"),)

    def test_applies_model_rewrite_and_prompt(self, chat_service, model_catalog):
        model_catalog.add(
            ModelDescriptor(
                model_id="house-model",
                providers=(ModelProvider(name="openai", model_rewrite="gpt-4o"),),
                meta=ModelMeta(prompt="You are the house assistant."),
            )
        )

        fixed, provider = chat_service.fix_request(
            _request("house-model", system("Answer in French."), user("hi"))
        )

        assert provider.name == "openai"
        assert fixed.model == "gpt-4o"
        assert fixed.messages[0] == system("You are the house assistant.\nAnswer in French.")
        assert fixed.messages[1:] == (user("hi"),)

    def test_unknown_model_uses_default_provider(self, chat_service):
        fixed, provider = chat_service.fix_request(_request("mystery", user("hi")))

        assert provider == ModelProvider(name="openai")
        assert fixed.model == "mystery"

    def test_never_fails_on_empty_conversation(self, chat_service):
        fixed, _ = chat_service.fix_request(_request("gpt-4"))
        assert fixed.messages == (user(CONTINUE_PROMPT),)

    def test_file_only_turn_dropped_after_purify(self, chat_service):
        """A turn whose only part is a file has nothing left to send once files are removed."""
        req = initialize(
            _request(
                "gpt-4",
                user("hi"),
                assistant("ok"),
                user("", FileRef(url="https://f/doc.pdf", name="doc.pdf")),
            )
        )
        assert len(req.messages) == 3

        fixed, _ = chat_service.fix_request(req)

        assert all(m.content.strip() or m.parts for m in fixed.messages)
        assert [m.content for m in fixed.messages] == ["hi", "ok", CONTINUE_PROMPT]

    def test_initializes_raw_request(self, chat_service, model_catalog):
        model_catalog.add(
            ModelDescriptor(
                model_id="gpt-4o",
                providers=(ModelProvider(name="openai", model_rewrite="gpt-4o-2024-08-06"),),
            )
        )
        req = _request("openai:gpt-4", user("hi"), temp_model="ns:gpt-4o", n=12)

        fixed, provider = chat_service.fix_request(req)

        assert provider.model_rewrite == "gpt-4o-2024-08-06"
        assert fixed.model == "gpt-4o-2024-08-06"
        assert fixed.room_id == 12
