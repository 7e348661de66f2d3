"""Tests for the normalized request and response models."""

import re

import pytest
from pydantic import ValidationError

from model_hub.models import (
    ChatMessage,
    ChatRequest,
    GenerationParams,
    Role,
    Usage,
    as_request,
    last_user_message,
    new_log_id,
    truncate,
)


class TestChatMessage:
    def test_constructors_set_role(self) -> None:
        assert ChatMessage.system("s").role == "system"
        assert ChatMessage.user("u").role == "user"
        assert ChatMessage.assistant("a").role == "assistant"

    def test_messages_are_immutable(self) -> None:
        """Messages cannot be changed after construction."""
        message = ChatMessage.user("hi")
        with pytest.raises(ValidationError):
            message.content = "changed"  # type: ignore[misc]

    def test_rejects_unknown_role(self) -> None:
        with pytest.raises(ValidationError):
            ChatMessage(role="tool", content="x")  # type: ignore[arg-type]


class TestChatRequestPayload:
    def test_only_set_parameters_are_serialized(self) -> None:
        """A request with only temperature set sends nothing else optional."""
        request = ChatRequest(messages=[ChatMessage.user("hi")], temperature=0.5)

        payload = request.to_payload()

        assert payload == {
            "messages": [{"role": "user", "content": "hi"}],
            "temperature": 0.5,
        }
        for field in ("max_tokens", "stop", "top_p", "seed", "stream", "stream_options", "model"):
            assert field not in payload

    def test_snake_case_keys(self) -> None:
        request = ChatRequest(
            messages=[ChatMessage.user("hi")],
            max_tokens=100,
            presence_penalty=0.1,
            enable_thinking=True,
            thinking_budget=1024,
        )

        payload = request.to_payload()

        assert payload["max_tokens"] == 100
        assert payload["presence_penalty"] == 0.1
        assert payload["enable_thinking"] is True
        assert payload["thinking_budget"] == 1024

    def test_zero_values_are_sent(self) -> None:
        """Zero is a set value, unlike None."""
        payload = ChatRequest(messages=[ChatMessage.user("hi")], temperature=0.0).to_payload()
        assert payload["temperature"] == 0.0

    def test_web_search_becomes_tool_entry(self) -> None:
        request = ChatRequest(messages=[ChatMessage.user("news?")], web_search=True)

        payload = request.to_payload()

        assert "web_search" not in payload
        assert payload["tools"] == [{"type": "web_search", "web_search": {"enable": True}}]

    def test_generation_fields_lists_set_values(self) -> None:
        params = GenerationParams(temperature=0.3, top_k=5)
        assert params.generation_fields() == {"temperature": 0.3, "top_k": 5}


class TestPromptHelpers:
    def test_string_becomes_single_user_message(self) -> None:
        request = as_request("hello")
        assert request.messages == [ChatMessage.user("hello")]

    def test_request_is_passed_through(self) -> None:
        request = ChatRequest(messages=[ChatMessage.user("x")])
        assert as_request(request) is request

    def test_last_user_message_scans_from_end(self) -> None:
        messages = [
            ChatMessage.system("sys"),
            ChatMessage.user("first"),
            ChatMessage.assistant("reply"),
            ChatMessage.user("second"),
            ChatMessage.assistant("reply 2"),
        ]
        assert last_user_message(messages) == "second"

    def test_last_user_message_none_without_user(self) -> None:
        assert last_user_message([ChatMessage.system("sys")]) is None
        assert last_user_message([]) is None


class TestUsage:
    def test_total_prefers_reported_value(self) -> None:
        assert Usage(prompt_tokens=3, completion_tokens=2, total_tokens=7).total == 7

    def test_total_falls_back_to_sum(self) -> None:
        assert Usage(prompt_tokens=3, completion_tokens=2).total == 5


def test_truncate_marks_cut_text() -> None:
    assert truncate("abcdef", 3) == "abc..."
    assert truncate("abc", 3) == "abc"
    assert truncate(None, 3) is None


def test_log_ids_have_prefix_and_suffix() -> None:
    assert re.fullmatch(r"chatlog-[0-9a-f]{8}", new_log_id())
    assert new_log_id() != new_log_id()


def test_role_values() -> None:
    assert [role.value for role in Role] == ["system", "user", "assistant"]
