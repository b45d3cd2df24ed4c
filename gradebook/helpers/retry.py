import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    *,
    max_retries: int,
    base_delay: float,
    multiplier: float,
    max_delay: float,
    retryable: Callable[[BaseException], bool],
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Await `fn()` until it succeeds, retrying errors accepted by `retryable`.

    The n-th retry waits base_delay * multiplier ** (n - 1) seconds, capped at
    max_delay. After max_retries retries the last error is re-raised as is.
    Errors rejected by `retryable` propagate immediately.
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(max_retries + 1),
        wait=wait_exponential(multiplier=base_delay, exp_base=multiplier, max=max_delay),
        retry=retry_if_exception(retryable),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        sleep=sleep,
        reraise=True,
    )

    async for attempt in retrying:
        with attempt:
            return await fn()
