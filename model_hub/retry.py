"""Retry policy for upstream calls using tenacity."""

import httpx
from loguru import logger
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)


def upstream_retrying(provider: str, max_retries: int = 3) -> AsyncRetrying:
    """Retry transport-level failures (connect errors, timeouts) of a unary call.

    Non-2xx responses are not retried. The last exception is re-raised
    unchanged once attempts are exhausted.

    Args:
        provider: Name of the provider for log messages
        max_retries: Total number of attempts, at least one

    Returns:
        Configured AsyncRetrying iterator
    """

    def log_attempt(retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else "Unknown error"
        logger.warning(f"{provider} attempt {retry_state.attempt_number}: {error}")

    return AsyncRetrying(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(max(1, max_retries)),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        before_sleep=log_attempt,
        reraise=True,
    )
