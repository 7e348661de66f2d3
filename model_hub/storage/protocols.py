"""Storage protocol definitions using typing.Protocol."""

from typing import Protocol

from ..models import ChatLogRecord, ChatLogStats, LogPage, LogQuery


class ChatLogSink(Protocol):
    """Persistence for chat log records."""

    async def save(self, record: ChatLogRecord) -> None:
        """Append one log record."""
        ...

    async def list_logs(self, query: LogQuery) -> LogPage:
        """List records matching the query, newest first."""
        ...

    async def stats(self) -> ChatLogStats:
        """Aggregate statistics over every stored record."""
        ...

    async def health_check(self) -> bool:
        """Check if the sink is healthy."""
        ...

    async def startup(self) -> None:
        """Initialize the sink on startup."""
        ...

    async def shutdown(self) -> None:
        """Cleanup the sink on shutdown."""
        ...
