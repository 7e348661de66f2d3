"""SQLite chat log sink using databases and SQLAlchemy Core."""

from datetime import UTC, datetime
from typing import Any

import databases
import sqlalchemy as sa
from loguru import logger

from ..exceptions import StorageError
from ..models import ChatLogRecord, ChatLogStats, LogPage, LogQuery


class SQLiteChatLogSink:
    """Chat log records in a single ``chat_log`` table."""

    def __init__(self, database_url: str) -> None:
        """Initialize SQLite sink.

        Args:
            database_url: Database connection URL, or a bare file path.
        """
        if "://" not in database_url:
            database_url = f"sqlite+aiosqlite:///{database_url}"
        self.database = databases.Database(database_url)
        self.metadata = sa.MetaData()

        # request_time is a UTC isoformat string so it sorts and slices by day
        self.chat_log = sa.Table(
            "chat_log",
            self.metadata,
            sa.Column("id", sa.String, primary_key=True),
            sa.Column("caller", sa.String),
            sa.Column("provider", sa.String, nullable=False),
            sa.Column("model", sa.String),
            sa.Column("user_message", sa.Text),
            sa.Column("call_type", sa.String, nullable=False),
            sa.Column("request_time", sa.String, nullable=False, index=True),
            sa.Column("duration_ms", sa.Integer, nullable=False, default=0),
            sa.Column("success", sa.Boolean, nullable=False),
            sa.Column("error_message", sa.Text),
            sa.Column("response_summary", sa.Text),
            sa.Column("prompt_tokens", sa.Integer),
            sa.Column("completion_tokens", sa.Integer),
            sa.Column("total_tokens", sa.Integer),
        )
        logger.info(f"SQLite log sink configured: {self.database.url.database}")

    async def startup(self) -> None:
        """Connect and create the table and its index if missing."""
        await self.database.connect()
        await self.database.execute(sa.schema.CreateTable(self.chat_log, if_not_exists=True))
        for index in self.chat_log.indexes:
            await self.database.execute(sa.schema.CreateIndex(index, if_not_exists=True))
        logger.info("SQLite log sink initialized")

    async def shutdown(self) -> None:
        """Close database connection."""
        if self.database.is_connected:
            await self.database.disconnect()

    def _require_connection(self) -> None:
        if not self.database.is_connected:
            raise StorageError("Database connection not initialized")

    async def save(self, record: ChatLogRecord) -> None:
        self._require_connection()
        values = record.model_dump(mode="json")
        values["request_time"] = record.request_time.astimezone(UTC).isoformat(timespec="microseconds")
        await self.database.execute(self.chat_log.insert().values(**values))

    def _filters(self, query: LogQuery) -> list[Any]:
        c = self.chat_log.c
        filters = [
            c[name] == getattr(query, name)
            for name in ("caller", "provider", "model")
            if getattr(query, name)
        ]
        if query.success is not None:
            filters.append(c.success == query.success)
        return filters

    def _to_record(self, row: Any) -> ChatLogRecord:
        data = {column.name: row[column.name] for column in self.chat_log.columns}
        data["request_time"] = datetime.fromisoformat(data["request_time"])
        return ChatLogRecord.model_validate(data)

    async def list_logs(self, query: LogQuery) -> LogPage:
        self._require_connection()
        filters = self._filters(query)

        count_query = sa.select(sa.func.count()).select_from(self.chat_log).where(*filters)
        total = await self.database.fetch_val(count_query) or 0

        page_query = (
            self.chat_log.select()
            .where(*filters)
            .order_by(self.chat_log.c.request_time.desc(), sa.literal_column("rowid").desc())
            .limit(query.size)
            .offset(query.offset)
        )
        rows = await self.database.fetch_all(page_query)

        return LogPage(
            items=[self._to_record(row) for row in rows],
            total=total,
            page=query.page,
            size=query.size,
        )

    async def stats(self) -> ChatLogStats:
        self._require_connection()
        c = self.chat_log.c
        today = c.request_time.startswith(datetime.now(UTC).date().isoformat())

        def total_of(expression: Any, label: str) -> Any:
            return sa.func.coalesce(sa.func.sum(expression), 0).label(label)

        query = sa.select(
            sa.func.count().label("total_calls"),
            total_of(sa.case((c.success, 1), else_=0), "success_count"),
            total_of(c.prompt_tokens, "total_prompt_tokens"),
            total_of(c.completion_tokens, "total_completion_tokens"),
            total_of(c.total_tokens, "total_tokens"),
            total_of(sa.case((today, 1), else_=0), "today_calls"),
            total_of(sa.case((today, c.total_tokens), else_=0), "today_tokens"),
        ).select_from(self.chat_log)
        row = await self.database.fetch_one(query)

        if row is None:
            return ChatLogStats()
        return ChatLogStats(
            total_calls=row["total_calls"],
            success_count=row["success_count"],
            fail_count=row["total_calls"] - row["success_count"],
            total_prompt_tokens=row["total_prompt_tokens"],
            total_completion_tokens=row["total_completion_tokens"],
            total_tokens=row["total_tokens"],
            today_calls=row["today_calls"],
            today_tokens=row["today_tokens"],
        )

    async def health_check(self) -> bool:
        """Check if database is accessible.

        Returns:
            True if database is healthy, False otherwise.
        """
        if not self.database.is_connected:
            return False

        try:
            await self.database.execute("SELECT 1")
            return True
        except (ConnectionError, TimeoutError, OSError):
            logger.exception("Database health check failed")
            return False
