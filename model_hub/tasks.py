"""Periodic background jobs: rate limit config refresh and idle bucket sweep."""

import asyncio
from collections.abc import Callable

from loguru import logger

from .config import Settings, reload_settings
from .rate_limiter import RateLimiter


class RateLimitConfigRefresher:
    """Re-reads rate limit settings and applies them when they change."""

    def __init__(
        self,
        limiter: RateLimiter,
        settings_source: Callable[[], Settings] = reload_settings,
    ) -> None:
        self.limiter = limiter
        self.settings_source = settings_source

    def refresh(self) -> bool:
        """Returns True if a changed configuration was applied."""
        config = self.settings_source().rate_limit
        if config == self.limiter.config:
            return False
        self.limiter.update_config(config)
        return True


async def run_periodically(name: str, interval: float, action: Callable[[], object]) -> None:
    """Call action every interval seconds until cancelled. Failures are logged."""
    while True:
        await asyncio.sleep(interval)
        try:
            action()
        except Exception as e:  # noqa: BLE001
            logger.warning(f"Background job {name} failed: {e}")


class BackgroundJobs:
    """Owns the periodic tasks started with the application."""

    def __init__(self) -> None:
        self.tasks: list[asyncio.Task[None]] = []

    def start(self, name: str, interval: float, action: Callable[[], object]) -> None:
        task = asyncio.get_running_loop().create_task(
            run_periodically(name, interval, action), name=name
        )
        self.tasks.append(task)
        logger.info(f"Started background job {name} every {interval}s")

    async def stop(self) -> None:
        for task in self.tasks:
            task.cancel()
        await asyncio.gather(*self.tasks, return_exceptions=True)
        self.tasks.clear()
