"""Chat log storage with a factory choosing the sink from configuration."""

from loguru import logger

from .memory import InMemoryChatLogSink
from .protocols import ChatLogSink
from .sqlite import SQLiteChatLogSink


def create_log_sink(database_url: str | None = None) -> ChatLogSink:
    """Create a log sink.

    Args:
        database_url: SQLite URL or path. Uses settings if not provided;
            when neither is set, records are kept in memory.

    Returns:
        Log sink instance.
    """
    from ..config import get_settings

    url = database_url or get_settings().log_database_url
    if not url:
        logger.info("Creating in-memory log sink")
        return InMemoryChatLogSink()
    logger.info("Creating SQLite log sink")
    return SQLiteChatLogSink(url)


__all__ = [
    "ChatLogSink",
    "InMemoryChatLogSink",
    "SQLiteChatLogSink",
    "create_log_sink",
]
