"""Chat log service: builds log records and persists them off the response path."""

import asyncio
import time

from loguru import logger

from .models import (
    RESPONSE_SUMMARY_MAX_LENGTH,
    USER_MESSAGE_MAX_LENGTH,
    CallType,
    ChatLogRecord,
    ChatLogStats,
    LogPage,
    LogQuery,
    Usage,
    truncate,
)
from .storage import ChatLogSink


def elapsed_ms(started: float) -> int:
    """Milliseconds since a time.perf_counter() reading."""
    return int((time.perf_counter() - started) * 1000)


class ChatLogService:
    """Records one ChatLogRecord per chat, stream or image invocation.

    Records are written by background tasks so a slow or failing sink never
    delays or breaks the caller.
    """

    def __init__(self, sink: ChatLogSink) -> None:
        self.sink = sink
        self._pending: set[asyncio.Task[None]] = set()

    def log_call(
        self,
        *,
        provider: str,
        model: str | None,
        call_type: CallType,
        started: float,
        user_message: str | None = None,
        response: str | None = None,
        usage: Usage | None = None,
        error: BaseException | str | None = None,
        caller: str | None = None,
    ) -> ChatLogRecord:
        """Build a record for a finished call and submit it for persistence."""
        success = error is None
        record = ChatLogRecord(
            caller=caller,
            provider=provider,
            model=model,
            user_message=truncate(user_message, USER_MESSAGE_MAX_LENGTH),
            call_type=call_type,
            duration_ms=elapsed_ms(started),
            success=success,
            error_message=None if success else str(error) or type(error).__name__,
            response_summary=truncate(response, RESPONSE_SUMMARY_MAX_LENGTH) if success else None,
        )
        if success and usage is not None:
            record.prompt_tokens = usage.prompt_tokens
            record.completion_tokens = usage.completion_tokens
            record.total_tokens = usage.total
        self.submit(record)
        return record

    def submit(self, record: ChatLogRecord) -> None:
        """Schedule persistence of a record without waiting for it."""
        task = asyncio.get_running_loop().create_task(self._persist(record))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _persist(self, record: ChatLogRecord) -> None:
        try:
            await self.sink.save(record)
        except Exception as e:  # noqa: BLE001
            logger.warning(f"Failed to save chat log {record.id}: {e}")
        else:
            logger.debug(
                f"Chat log saved: {record.id} {record.provider}/{record.model} "
                f"success={record.success} duration={record.duration_ms}ms"
            )

    async def flush(self) -> None:
        """Wait for every submitted record to be persisted."""
        while self._pending:
            await asyncio.gather(*list(self._pending))

    async def list_logs(self, query: LogQuery) -> LogPage:
        return await self.sink.list_logs(query)

    async def stats(self) -> ChatLogStats:
        return await self.sink.stats()
