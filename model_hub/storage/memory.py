"""In-memory chat log sink."""

from collections import deque
from datetime import UTC, datetime

from loguru import logger

from ..models import ChatLogRecord, ChatLogStats, LogPage, LogQuery


class InMemoryChatLogSink:
    """Keeps log records in a bounded deque, dropping the oldest when full."""

    def __init__(self, max_size: int = 10_000) -> None:
        self.records: deque[ChatLogRecord] = deque(maxlen=max_size)
        self.max_size = max_size
        logger.info(f"In-memory log sink initialized with max size {self.max_size}")

    async def startup(self) -> None:
        pass

    async def shutdown(self) -> None:
        self.records.clear()

    async def save(self, record: ChatLogRecord) -> None:
        if len(self.records) == self.max_size:
            logger.debug(f"Evicting oldest log record: {self.records[0].id}")
        self.records.append(record)

    def _matches(self, record: ChatLogRecord, query: LogQuery) -> bool:
        if query.caller and record.caller != query.caller:
            return False
        if query.provider and record.provider != query.provider:
            return False
        if query.model and record.model != query.model:
            return False
        if query.success is not None and record.success != query.success:
            return False
        return True

    async def list_logs(self, query: LogQuery) -> LogPage:
        matched = [r for r in reversed(self.records) if self._matches(r, query)]
        items = matched[query.offset : query.offset + query.size]
        return LogPage(items=items, total=len(matched), page=query.page, size=query.size)

    async def stats(self) -> ChatLogStats:
        stats = ChatLogStats()
        today = datetime.now(UTC).date()
        for record in self.records:
            stats.add(record, today)
        return stats

    async def health_check(self) -> bool:
        return True
