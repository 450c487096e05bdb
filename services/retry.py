"""Bounded exponential-backoff retry for calls to the assistant provider."""
import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from errors import ProviderError

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_RETRIES_CAP = 5
BASE_RETRIES = 2


def compute_max_retries(retry_count: int) -> int:
    """Total attempts allowed for one request: base plus client-requested, capped."""
    return min(MAX_RETRIES_CAP, retry_count + BASE_RETRIES)


def backoff_delay(attempt: int, initial_delay: float) -> float:
    """Delay to wait after failed ``attempt`` (1-based) before the next one."""
    return initial_delay * (2 ** (attempt - 1))


def is_transient(error: Exception) -> bool:
    """Network failures, 429 and 5xx are worth retrying; other 4xx are not."""
    if not isinstance(error, ProviderError):
        return False
    if error.status is None:
        return True
    return error.status == 429 or error.status >= 500


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    max_retries: int,
    initial_delay: float,
    should_retry: Optional[Callable[[Exception], bool]] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Run ``operation`` up to ``max_retries`` times in total.

    After failed attempt n the wrapper waits ``initial_delay * 2 ** (n - 1)``
    seconds. When ``should_retry`` rejects an error it is raised at once.
    The last error is re-raised once every attempt has failed.
    """
    attempts = max(1, max_retries)
    attempt = 1
    while True:
        try:
            return await operation()
        except Exception as e:
            if should_retry is not None and not should_retry(e):
                logger.warning(f"Non-retryable error on attempt {attempt}: {e}")
                raise
            if attempt >= attempts:
                logger.error(f"Giving up after {attempt} attempt(s): {e}")
                raise
            delay = backoff_delay(attempt, initial_delay)
            logger.warning(f"Attempt {attempt}/{attempts} failed: {e}. Retrying in {delay:.2f}s")
            await sleep(delay)
            attempt += 1
