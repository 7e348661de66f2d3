"""The chat client protocol and the logging and rate-limit decorators.

Every decorator takes the client it wraps and implements the same protocol,
so they stack in any order.
"""

import asyncio
import time
from collections.abc import AsyncIterator
from contextlib import aclosing
from typing import Protocol

from .chat_log import ChatLogService
from .exceptions import RateLimitedError
from .models import CallType, ChatResponse, Prompt, Usage, as_request, last_user_message
from .rate_limiter import RateLimiter

CALL_CANCELLED = "call cancelled"
STREAM_CANCELLED = "stream cancelled"


class ChatClient(Protocol):
    """Protocol for chat clients and their decorators."""

    async def chat(self, prompt: Prompt) -> ChatResponse: ...
    def chat_stream(self, prompt: Prompt) -> AsyncIterator[ChatResponse]: ...


class LoggingChatClient:
    """Records one log record per call without delaying the caller."""

    def __init__(
        self,
        delegate: ChatClient,
        log_service: ChatLogService,
        provider: str,
        model: str | None = None,
        caller: str | None = None,
    ) -> None:
        self.delegate = delegate
        self.log_service = log_service
        self.provider = provider
        self.model = model
        self.caller = caller

    async def chat(self, prompt: Prompt) -> ChatResponse:
        request = as_request(prompt)
        user_message = last_user_message(request.messages)
        model = request.model or self.model
        started = time.perf_counter()
        try:
            response = await self.delegate.chat(request)
        except Exception as e:
            self.log_service.log_call(
                provider=self.provider,
                model=model,
                call_type=CallType.CHAT,
                started=started,
                user_message=user_message,
                error=e,
                caller=self.caller,
            )
            raise
        except asyncio.CancelledError:
            self.log_service.log_call(
                provider=self.provider,
                model=model,
                call_type=CallType.CHAT,
                started=started,
                user_message=user_message,
                error=CALL_CANCELLED,
                caller=self.caller,
            )
            raise

        self.log_service.log_call(
            provider=self.provider,
            model=model,
            call_type=CallType.CHAT,
            started=started,
            user_message=user_message,
            response=response.content,
            usage=response.usage,
            caller=self.caller,
        )
        return response

    async def chat_stream(self, prompt: Prompt) -> AsyncIterator[ChatResponse]:
        """Stream non-empty chunks, logging the concatenated reply at the end.

        The reply and the last usage block seen are logged on natural
        completion. Errors and early closes by the consumer are logged as
        failures and propagated.
        """
        request = as_request(prompt)
        user_message = last_user_message(request.messages)
        model = request.model or self.model
        started = time.perf_counter()
        buffer: list[str] = []
        usage: Usage | None = None

        def log(error: BaseException | str | None = None) -> None:
            self.log_service.log_call(
                provider=self.provider,
                model=model,
                call_type=CallType.STREAM,
                started=started,
                user_message=user_message,
                response="".join(buffer),
                usage=usage,
                error=error,
                caller=self.caller,
            )

        try:
            async with aclosing(self.delegate.chat_stream(request)) as chunks:
                async for chunk in chunks:
                    if chunk.usage is not None:
                        usage = chunk.usage
                    if chunk.content:
                        buffer.append(chunk.content)
                        yield chunk
        except Exception as e:
            log(e)
            raise
        except (GeneratorExit, asyncio.CancelledError):
            log(STREAM_CANCELLED)
            raise
        log()


class RateLimitedChatClient:
    """Admits calls through a RateLimiter keyed by the caller.

    Raises RateLimitedError instead of calling the wrapped client when the
    key's budget is exhausted. For streams the check runs when iteration starts.
    """

    def __init__(self, delegate: ChatClient, limiter: RateLimiter, key: str) -> None:
        self.delegate = delegate
        self.limiter = limiter
        self.key = key

    def _admit(self) -> None:
        if not self.limiter.allow(self.key):
            raise RateLimitedError(self.key)

    async def chat(self, prompt: Prompt) -> ChatResponse:
        self._admit()
        return await self.delegate.chat(prompt)

    async def chat_stream(self, prompt: Prompt) -> AsyncIterator[ChatResponse]:
        self._admit()
        async with aclosing(self.delegate.chat_stream(prompt)) as chunks:
            async for chunk in chunks:
                yield chunk
