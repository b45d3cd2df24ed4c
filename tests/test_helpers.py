import asyncio

import pytest

from gradebook.errors import PermanentGradingError, TransientGradingError
from gradebook.helpers.cache import GradingCache
from gradebook.helpers.keyed_lock import KeyedLock
from gradebook.helpers.retry import retry_with_backoff


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


def is_transient(exc):
    return isinstance(exc, TransientGradingError)


# ---------------------------
# retry_with_backoff
# ---------------------------
async def test_retry_succeeds_after_transient_failures():
    sleep = RecordingSleep()
    attempts = []

    async def flaky():
        attempts.append(1)
        if len(attempts) < 3:
            raise TransientGradingError("503")
        return "ok"

    result = await retry_with_backoff(
        flaky, max_retries=3, base_delay=1.0, multiplier=1.5, max_delay=10.0,
        retryable=is_transient, sleep=sleep,
    )

    assert result == "ok"
    assert len(attempts) == 3
    assert sleep.delays == [1.0, 1.5]


async def test_retry_gives_up_after_max_retries():
    sleep = RecordingSleep()
    attempts = []

    async def always_down():
        attempts.append(1)
        raise TransientGradingError("timeout")

    with pytest.raises(TransientGradingError):
        await retry_with_backoff(
            always_down, max_retries=3, base_delay=1.0, multiplier=2.0, max_delay=3.0,
            retryable=is_transient, sleep=sleep,
        )

    assert len(attempts) == 4
    assert sleep.delays == [1.0, 2.0, 3.0]


async def test_retry_does_not_retry_permanent_errors():
    sleep = RecordingSleep()
    attempts = []

    async def rejected():
        attempts.append(1)
        raise PermanentGradingError("bad request", status_code=400)

    with pytest.raises(PermanentGradingError):
        await retry_with_backoff(
            rejected, max_retries=3, base_delay=1.0, multiplier=1.5, max_delay=10.0,
            retryable=is_transient, sleep=sleep,
        )

    assert len(attempts) == 1
    assert sleep.delays == []


# ---------------------------
# GradingCache
# ---------------------------
def test_cache_roundtrip_and_delete():
    cache = GradingCache(maxsize=10, ttl=60)
    key = GradingCache.generate_key("ai_grading", "sub-1")
    other = GradingCache.generate_key("ai_grading", "sub-2")
    cache.set(key, {"score": 80})
    cache.set(other, {"score": 70})

    assert key == "ai_grading_sub-1"
    assert cache.get(key) == {"score": 80}

    cache.delete(key)
    cache.delete(key)
    assert cache.get(key) is None
    assert cache.get(other) == {"score": 70}
    assert len(cache) == 1


def test_cache_respects_capacity():
    cache = GradingCache(maxsize=2, ttl=60)
    for i in range(5):
        cache.set(f"k{i}", i)
    assert len(cache) == 2


# ---------------------------
# KeyedLock
# ---------------------------
async def test_keyed_lock_serializes_same_key():
    locks = KeyedLock()
    events = []

    async def worker(name):
        async with locks.lock("submission-1"):
            events.append(f"{name} start")
            await asyncio.sleep(0.01)
            events.append(f"{name} end")

    await asyncio.gather(worker("a"), worker("b"))

    assert events in (
        ["a start", "a end", "b start", "b end"],
        ["b start", "b end", "a start", "a end"],
    )
    assert len(locks) == 0


async def test_keyed_lock_does_not_block_other_keys():
    locks = KeyedLock()
    entered = asyncio.Event()

    async def holder():
        async with locks.lock("a"):
            await asyncio.wait_for(entered.wait(), timeout=1)

    async def other():
        async with locks.lock("b"):
            entered.set()

    await asyncio.gather(holder(), other())
    assert len(locks) == 0
