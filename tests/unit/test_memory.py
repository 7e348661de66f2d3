"""Tests for the stateful memory decorator."""

import asyncio
import threading

import pytest
from mock_provider import MockChatClient

from model_hub.exceptions import ApiError
from model_hub.memory import MemoryChatClient
from model_hub.models import ChatMessage, ChatResponse, Role


class TestUnaryMemory:
    @pytest.mark.asyncio
    async def test_expands_prompt_with_system_and_history(self) -> None:
        delegate = MockChatClient(reply="pong")
        session = MemoryChatClient(delegate, system_prompt="You are terse.")

        await session.chat("ping")
        await session.chat("again")

        sent = delegate.requests[1].messages
        assert sent == [
            ChatMessage.system("You are terse."),
            ChatMessage.user("ping"),
            ChatMessage.assistant("pong"),
            ChatMessage.user("again"),
        ]

    @pytest.mark.asyncio
    async def test_blank_system_prompt_is_omitted(self) -> None:
        delegate = MockChatClient()
        session = MemoryChatClient(delegate, system_prompt="   ")

        await session.chat("hi")

        assert [m.role for m in delegate.requests[0].messages] == [Role.USER]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(("turns", "max_history"), [(1, 4), (2, 4), (3, 4), (5, 3), (12, 20)])
    async def test_trim_keeps_most_recent(self, turns: int, max_history: int) -> None:
        """History length is min(2N, M) and holds the newest messages."""
        session = MemoryChatClient(MockChatClient(reply="ok"), max_history=max_history)

        for turn in range(turns):
            await session.chat(f"message {turn}")

        history = session.history
        assert len(history) == min(2 * turns, max_history)
        assert history[-2:] == [ChatMessage.user(f"message {turns - 1}"), ChatMessage.assistant("ok")]

    @pytest.mark.asyncio
    async def test_failed_call_leaves_history_untouched(self) -> None:
        delegate = MockChatClient(reply="first")
        session = MemoryChatClient(delegate)
        await session.chat("one")
        before = session.history

        delegate.error = ApiError("boom")
        with pytest.raises(ApiError):
            await session.chat("two")

        assert session.history == before

    @pytest.mark.asyncio
    async def test_last_active_updates_on_failure(self) -> None:
        session = MemoryChatClient(MockChatClient(error=ApiError("boom")))
        assert session.last_active_at is None

        with pytest.raises(ApiError):
            await session.chat("hi")

        assert session.last_active_at is not None

    @pytest.mark.asyncio
    async def test_message_list_bypasses_memory(self) -> None:
        delegate = MockChatClient()
        session = MemoryChatClient(delegate, system_prompt="ignored")
        messages = [ChatMessage.user("direct")]

        await session.chat(messages)

        assert delegate.requests[0].messages == messages
        assert session.history == []

    def test_non_positive_max_history_uses_default(self) -> None:
        assert MemoryChatClient(MockChatClient(), max_history=0).max_history == 20
        assert MemoryChatClient(MockChatClient(), max_history=-5).max_history == 20

    @pytest.mark.asyncio
    async def test_clear_history(self) -> None:
        session = MemoryChatClient(MockChatClient())
        await session.chat("hi")

        session.clear_history()

        assert session.history == []


class TestStreamingMemory:
    @pytest.mark.asyncio
    async def test_completed_stream_appends_reply(self) -> None:
        session = MemoryChatClient(MockChatClient(chunks=["Hel", "lo"]))

        chunks = [c.content async for c in session.chat_stream("Hi")]

        assert chunks == ["Hel", "lo"]
        assert session.history == [ChatMessage.user("Hi"), ChatMessage.assistant("Hello")]

    @pytest.mark.asyncio
    async def test_user_message_present_during_stream(self) -> None:
        session = MemoryChatClient(MockChatClient(chunks=["a", "b"]))

        stream = session.chat_stream("Hi")
        await anext(stream)

        assert session.history == [ChatMessage.user("Hi")]
        await stream.aclose()

    @pytest.mark.asyncio
    async def test_stream_error_rolls_back(self) -> None:
        """A failed stream leaves history exactly as it was before the call."""
        delegate = MockChatClient(reply="r1", chunks=["partial"])
        session = MemoryChatClient(delegate, max_history=10)
        await session.chat("earlier")
        before = session.history

        delegate.stream_error = ApiError("reset")
        with pytest.raises(ApiError):
            async for _ in session.chat_stream("Hi"):
                pass

        assert session.history == before

    @pytest.mark.asyncio
    async def test_cancelled_stream_rolls_back(self) -> None:
        session = MemoryChatClient(MockChatClient(chunks=["a", "b", "c"]))

        stream = session.chat_stream("Hi")
        await anext(stream)
        await stream.aclose()

        assert session.history == []

    @pytest.mark.asyncio
    async def test_rollback_removes_only_inserted_message(self) -> None:
        """An identical earlier user message is kept when rolling back."""
        delegate = MockChatClient(reply="r", chunks=["x"])
        session = MemoryChatClient(delegate)
        await session.chat("same")

        delegate.stream_error = ApiError("fail")
        with pytest.raises(ApiError):
            async for _ in session.chat_stream("same"):
                pass

        assert session.history == [ChatMessage.user("same"), ChatMessage.assistant("r")]

    @pytest.mark.asyncio
    async def test_stream_message_list_bypasses_memory(self) -> None:
        session = MemoryChatClient(MockChatClient(chunks=["x"]))

        chunks = [c async for c in session.chat_stream([ChatMessage.user("direct")])]

        assert len(chunks) == 1
        assert session.history == []


class EchoChatClient:
    """Replies to the last message after yielding to the event loop."""

    async def chat(self, prompt):
        await asyncio.sleep(0)
        return ChatResponse(content=f"re: {prompt[-1].content}")

    async def chat_stream(self, prompt):
        await asyncio.sleep(0)
        yield ChatResponse(content=f"re: {prompt[-1].content}")


def assert_paired(history: list[ChatMessage]) -> None:
    assert len(history) % 2 == 0
    for user, assistant in zip(history[::2], history[1::2], strict=True):
        assert user.role == Role.USER
        assert assistant.role == Role.ASSISTANT
        assert assistant.content == f"re: {user.content}"


class TestConcurrentMemory:
    @pytest.mark.asyncio
    async def test_concurrent_chats_keep_exchanges_paired(self) -> None:
        session = MemoryChatClient(EchoChatClient(), max_history=100)

        await asyncio.gather(*(session.chat(f"message {i}") for i in range(20)))

        history = session.history
        assert len(history) == 40
        assert_paired(history)
        assert {m.content for m in history[::2]} == {f"message {i}" for i in range(20)}

    @pytest.mark.asyncio
    async def test_concurrent_chats_respect_trim(self) -> None:
        session = MemoryChatClient(EchoChatClient(), max_history=6)

        await asyncio.gather(*(session.chat(f"message {i}") for i in range(10)))

        history = session.history
        assert len(history) == 6
        assert_paired(history)

    def test_chats_from_threads(self) -> None:
        session = MemoryChatClient(EchoChatClient(), max_history=100)

        def run(worker: int) -> None:
            for i in range(5):
                asyncio.run(session.chat(f"worker {worker} message {i}"))

        threads = [threading.Thread(target=run, args=(n,)) for n in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        history = session.history
        assert len(history) == 40
        assert_paired(history)
