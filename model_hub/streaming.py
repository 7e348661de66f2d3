"""Server-Sent-Events decoding for OpenAI-compatible chat streams.

The decoder works strictly per chunk: every JSON event becomes one
``ChatResponse``. Concatenating partial content is the caller's job.
"""

import json
from collections.abc import AsyncIterable, AsyncIterator
from typing import Any

from loguru import logger
from pydantic import BaseModel, ValidationError

from .models import ChatResponse, Usage

DONE_SIGNAL = "[DONE]"


class _WireMessage(BaseModel):
    content: Any = None


class _WireChoice(BaseModel):
    index: int | None = None
    message: _WireMessage | None = None
    delta: _WireMessage | None = None
    finish_reason: str | None = None


class _WireCompletion(BaseModel):
    id: str | None = None
    model: str | None = None
    choices: list[_WireChoice] = []
    usage: Usage | None = None


def _content_text(message: _WireMessage | None) -> str | None:
    if message is None or message.content is None:
        return None
    return message.content if isinstance(message.content, str) else str(message.content)


def normalize_completion(payload: Any) -> ChatResponse:
    """Map a vendor completion (or completion chunk) body to a ChatResponse.

    Raises:
        ValidationError: If the payload does not have the completion shape.
    """
    wire = _WireCompletion.model_validate(payload)
    content = None
    finish_reason = None
    if wire.choices:
        choice = wire.choices[0]
        content = _content_text(choice.message)
        if content is None:
            content = _content_text(choice.delta)
        finish_reason = choice.finish_reason
    return ChatResponse(
        content=content,
        finish_reason=finish_reason,
        usage=wire.usage,
        model=wire.model,
        id=wire.id,
    )


async def iter_sse_data(lines: AsyncIterable[str]) -> AsyncIterator[str]:
    """Group raw SSE lines into event payloads.

    Multi-line ``data:`` fields are joined with newlines, comment lines and
    other fields (``event:``, ``id:``, ``retry:``) are ignored. An event is
    dispatched on a blank line, and a trailing event without one is flushed
    at end of input.
    """
    data_lines: list[str] = []
    async for raw_line in lines:
        line = raw_line.rstrip("\r")
        if not line:
            if data_lines:
                yield "\n".join(data_lines)
                data_lines = []
            continue
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        if field != "data":
            continue
        data_lines.append(value[1:] if value.startswith(" ") else value)
    if data_lines:
        yield "\n".join(data_lines)


async def decode_chunks(events: AsyncIterable[str]) -> AsyncIterator[ChatResponse]:
    """Decode SSE payloads into normalized chunks until the ``[DONE]`` sentinel.

    Payloads that are not valid JSON completion chunks are dropped so a single
    corrupt frame does not abort the stream.
    """
    async for data in events:
        data = data.strip()
        if not data:
            continue
        if data == DONE_SIGNAL:
            return
        try:
            chunk = normalize_completion(json.loads(data))
        except json.JSONDecodeError:
            logger.debug(f"Dropping non-JSON stream frame: {data[:100]}")
            continue
        except ValidationError as e:
            logger.warning(f"Dropping malformed stream frame: {e.error_count()} error(s)")
            continue
        yield chunk
