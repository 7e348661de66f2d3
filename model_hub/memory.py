"""Stateful multi-turn conversation on top of any chat client."""

import asyncio
import threading
from collections.abc import AsyncIterator
from contextlib import aclosing
from datetime import UTC, datetime

from .clients import ChatClient
from .models import DEFAULT_MAX_HISTORY, ChatMessage, ChatResponse, Prompt


class MemoryChatClient:
    """Keeps a system prompt and a bounded rolling history for one session.

    A plain string prompt is expanded to ``[system] + history + [user]`` and
    the exchange is recorded. Message lists and ChatRequest objects bypass the
    history and go straight to the wrapped client.
    """

    def __init__(
        self,
        delegate: ChatClient,
        system_prompt: str | None = None,
        max_history: int = DEFAULT_MAX_HISTORY,
    ) -> None:
        self.delegate = delegate
        self.system_prompt = system_prompt
        self.max_history = max_history if max_history > 0 else DEFAULT_MAX_HISTORY
        self.last_active_at: datetime | None = None
        self._history: list[ChatMessage] = []
        self._lock = threading.Lock()

    @property
    def history(self) -> list[ChatMessage]:
        """Copy of the conversation history, oldest first."""
        with self._lock:
            return list(self._history)

    def clear_history(self) -> None:
        with self._lock:
            self._history.clear()

    def _touch(self) -> None:
        self.last_active_at = datetime.now(UTC)

    def _context(self) -> list[ChatMessage]:
        messages = []
        if self.system_prompt and self.system_prompt.strip():
            messages.append(ChatMessage.system(self.system_prompt))
        messages.extend(self._history)
        return messages

    def _trim(self) -> None:
        # Caller holds the lock
        excess = len(self._history) - self.max_history
        if excess > 0:
            del self._history[:excess]

    def _rollback(self, message: ChatMessage) -> None:
        with self._lock:
            for index in range(len(self._history) - 1, -1, -1):
                if self._history[index] is message:
                    del self._history[index]
                    return

    async def chat(self, prompt: Prompt) -> ChatResponse:
        if not isinstance(prompt, str):
            return await self.delegate.chat(prompt)

        self._touch()
        user = ChatMessage.user(prompt)
        with self._lock:
            messages = [*self._context(), user]

        response = await self.delegate.chat(messages)

        with self._lock:
            self._history.append(user)
            self._history.append(ChatMessage.assistant(response.content or ""))
            self._trim()
        return response

    async def chat_stream(self, prompt: Prompt) -> AsyncIterator[ChatResponse]:
        """Stream a reply, recording the exchange once the stream completes.

        The user message is added to the history before the call and removed
        again if the stream fails or is closed early.
        """
        if not isinstance(prompt, str):
            async with aclosing(self.delegate.chat_stream(prompt)) as chunks:
                async for chunk in chunks:
                    yield chunk
            return

        self._touch()
        user = ChatMessage.user(prompt)
        with self._lock:
            messages = [*self._context(), user]
            self._history.append(user)

        buffer: list[str] = []
        try:
            async with aclosing(self.delegate.chat_stream(messages)) as chunks:
                async for chunk in chunks:
                    if chunk.content:
                        buffer.append(chunk.content)
                    yield chunk
        except (Exception, GeneratorExit, asyncio.CancelledError):
            self._rollback(user)
            raise

        with self._lock:
            self._history.append(ChatMessage.assistant("".join(buffer)))
            self._trim()
