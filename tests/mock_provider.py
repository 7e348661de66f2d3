"""Scripted chat client and upstream payload builders for tests."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator, Iterable
from typing import Any

import httpx

from model_hub.models import ChatRequest, ChatResponse, Prompt, Usage, as_request


class MockChatClient:
    """Scripted ChatClient recording every request it receives."""

    def __init__(
        self,
        reply: str = "Hello!",
        chunks: list[str | None] | None = None,
        usage: Usage | None = None,
        error: Exception | None = None,
        stream_error: Exception | None = None,
    ) -> None:
        self.reply = reply
        self.chunks = chunks if chunks is not None else ["Hel", "lo"]
        self.usage = usage
        self.error = error
        self.stream_error = stream_error
        self.requests: list[ChatRequest] = []
        self.stream_closed = False

    async def chat(self, prompt: Prompt) -> ChatResponse:
        self.requests.append(as_request(prompt))
        if self.error:
            raise self.error
        return ChatResponse(content=self.reply, usage=self.usage, model="mock-model")

    async def chat_stream(self, prompt: Prompt) -> AsyncIterator[ChatResponse]:
        self.requests.append(as_request(prompt))
        if self.error:
            raise self.error
        try:
            for content in self.chunks:
                yield ChatResponse(content=content)
            if self.stream_error:
                raise self.stream_error
            if self.usage:
                yield ChatResponse(content=None, usage=self.usage, finish_reason="stop")
        finally:
            self.stream_closed = True


def completion(content: str, usage: dict[str, int] | None = None, model: str = "gpt-4o") -> dict[str, Any]:
    """Unary chat completion body."""
    body: dict[str, Any] = {
        "id": "chatcmpl-123",
        "model": model,
        "choices": [
            {"index": 0, "message": {"role": "assistant", "content": content}, "finish_reason": "stop"}
        ],
    }
    if usage:
        body["usage"] = usage
    return body


def delta(content: str | None, finish_reason: str | None = None) -> dict[str, Any]:
    """Streaming chunk body."""
    return {"choices": [{"index": 0, "delta": {"content": content}, "finish_reason": finish_reason}]}


def sse(*events: dict[str, Any] | str, done: bool = True) -> bytes:
    """Encode events as an SSE body, optionally terminated by [DONE]."""
    lines = []
    for event in events:
        data = event if isinstance(event, str) else json.dumps(event)
        lines.append(f"data: {data}\n\n")
    if done:
        lines.append("data: [DONE]\n\n")
    return "".join(lines).encode()


class TrackingStream(httpx.AsyncByteStream):
    """Response body that records whether it was closed."""

    def __init__(self, chunks: list[bytes]) -> None:
        self.chunks = chunks
        self.closed = False

    async def __aiter__(self) -> AsyncIterator[bytes]:
        for chunk in self.chunks:
            yield chunk

    async def aclose(self) -> None:
        self.closed = True


async def async_lines(items: Iterable[str]) -> AsyncIterator[str]:
    """Async iterator over a list, standing in for a live line source."""
    for item in items:
        yield item
