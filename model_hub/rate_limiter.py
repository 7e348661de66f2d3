"""Dual-window token-bucket rate limiter keyed by an arbitrary string.

Each key gets a bucket holding a per-minute and a per-day budget. A window
that has expired is reset to full capacity (a hard reset, not a gradual
refill). Buckets are created on first use and evicted once idle for a day.
"""

import threading
import time
from collections.abc import Callable

from loguru import logger

from .config import RateLimitConfig

MINUTE_SECONDS = 60.0
DAY_SECONDS = 24 * 60 * 60.0
IDLE_EVICTION_SECONDS = DAY_SECONDS


class TokenBucket:
    """Budgets and window timestamps for one key, guarded by its own lock."""

    def __init__(self, max_per_minute: int, max_per_day: int, now: float) -> None:
        self.lock = threading.Lock()
        self.minute_tokens = max_per_minute
        self.day_tokens = max_per_day
        self.last_minute_reset = now
        self.last_day_reset = now
        self.last_access_time = now
        self.evicted = False

    def reset(self, max_per_minute: int, max_per_day: int, now: float) -> None:
        """Refill both windows to the given capacities. Caller holds the lock."""
        self.minute_tokens = max_per_minute
        self.day_tokens = max_per_day
        self.last_minute_reset = now
        self.last_day_reset = now

    def try_acquire(self, config: RateLimitConfig, now: float) -> bool:
        """Reset expired windows, then take one token from each. Caller holds the lock."""
        self.last_access_time = now
        if now - self.last_minute_reset >= MINUTE_SECONDS:
            self.minute_tokens = config.max_per_minute
            self.last_minute_reset = now
        if now - self.last_day_reset >= DAY_SECONDS:
            self.day_tokens = config.max_per_day
            self.last_day_reset = now

        if self.minute_tokens > 0 and self.day_tokens > 0:
            self.minute_tokens -= 1
            self.day_tokens -= 1
            return True
        return False


class RateLimiter:
    """Non-blocking admission filter: allow() answers immediately, never queues.

    Locks are never held across an await, so the limiter can be shared between
    coroutines and worker threads alike. The bucket map lock and a bucket lock
    are never held at the same time by allow().
    """

    def __init__(
        self,
        config: RateLimitConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config or RateLimitConfig()
        self._clock = clock
        self._buckets: dict[str, TokenBucket] = {}
        self._lock = threading.Lock()

    @property
    def config(self) -> RateLimitConfig:
        return self._config

    def __len__(self) -> int:
        return len(self._buckets)

    def _bucket(self, key: str) -> TokenBucket:
        bucket = self._buckets.get(key)
        if bucket is not None:
            return bucket
        with self._lock:
            bucket = self._buckets.get(key)
            if bucket is None:
                config = self._config
                bucket = TokenBucket(config.max_per_minute, config.max_per_day, self._clock())
                self._buckets[key] = bucket
            return bucket

    def allow(self, key: str | None) -> bool:
        """Take one unit of budget for key.

        Returns:
            True if the call is admitted. Always True when the limiter is
            disabled or the key is empty.
        """
        config = self._config
        if not config.enabled or not key:
            return True

        while True:
            bucket = self._bucket(key)
            with bucket.lock:
                if bucket.evicted:
                    # Swept between lookup and lock; retry against a fresh bucket
                    continue
                allowed = bucket.try_acquire(self._config, self._clock())
            if not allowed:
                logger.debug(f"Rate limit exceeded for key: {key}")
            return allowed

    def update_config(self, config: RateLimitConfig) -> None:
        """Apply a new configuration and hard-reset every bucket to its capacities."""
        with self._lock:
            self._config = config
            buckets = list(self._buckets.values())
        now = self._clock()
        for bucket in buckets:
            with bucket.lock:
                bucket.reset(config.max_per_minute, config.max_per_day, now)
        logger.info(
            f"Rate limit config updated: enabled={config.enabled}, "
            f"per_minute={config.max_per_minute}, per_day={config.max_per_day}"
        )

    def cleanup_expired_buckets(self) -> int:
        """Evict buckets idle for at least a day.

        Returns:
            Number of evicted buckets
        """
        now = self._clock()
        evicted = 0
        with self._lock:
            for key, bucket in list(self._buckets.items()):
                with bucket.lock:
                    if now - bucket.last_access_time < IDLE_EVICTION_SECONDS:
                        continue
                    bucket.evicted = True
                del self._buckets[key]
                evicted += 1
        if evicted:
            logger.info(f"Evicted {evicted} idle rate limit bucket(s)")
        return evicted
