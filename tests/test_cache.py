"""
tests.test_cache

Single-flight TTL cache behaviour shared by all three engine caches.
"""

from __future__ import annotations

import asyncio

import pytest

from tokenbridge.cache import CacheLoadTimeout, SingleFlightCache


class _Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _loader(counter: list[int], *, value: str = "v", delay: float = 0.0):
    async def load() -> str:
        counter.append(1)
        if delay:
            await asyncio.sleep(delay)
        return value

    return load


@pytest.mark.asyncio
async def test_concurrent_misses_share_one_load() -> None:
    cache: SingleFlightCache[str, str] = SingleFlightCache(name="t", ttl=60, timeout=1)
    calls: list[int] = []

    results = await asyncio.gather(
        *(cache.get("k", _loader(calls, delay=0.05)) for _ in range(20))
    )

    assert results == ["v"] * 20
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_entry_expires_after_ttl() -> None:
    clock = _Clock()
    cache: SingleFlightCache[str, str] = SingleFlightCache(name="t", ttl=60, timeout=1, clock=clock)
    calls: list[int] = []

    await cache.get("k", _loader(calls))
    clock.now += 59
    await cache.get("k", _loader(calls))
    assert len(calls) == 1

    clock.now += 2
    await cache.get("k", _loader(calls, value="v2"))
    assert len(calls) == 2
    assert cache.peek("k").value == "v2"


@pytest.mark.asyncio
async def test_refresh_respects_min_age() -> None:
    clock = _Clock()
    cache: SingleFlightCache[str, str] = SingleFlightCache(name="t", ttl=600, timeout=1, clock=clock)
    calls: list[int] = []

    await cache.get("k", _loader(calls))
    assert await cache.refresh("k", _loader(calls, value="new"), min_age=30) == "v"
    assert len(calls) == 1

    clock.now += 31
    assert await cache.refresh("k", _loader(calls, value="new"), min_age=30) == "new"
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_timeout_reaches_every_waiter_and_is_not_cached() -> None:
    cache: SingleFlightCache[str, str] = SingleFlightCache(name="t", ttl=60, timeout=0.05)
    calls: list[int] = []

    results = await asyncio.gather(
        *(cache.get("k", _loader(calls, delay=1.0)) for _ in range(3)),
        return_exceptions=True,
    )

    assert len(calls) == 1
    assert all(isinstance(r, CacheLoadTimeout) for r in results)
    assert cache.peek("k") is None


@pytest.mark.asyncio
async def test_failures_are_not_cached() -> None:
    cache: SingleFlightCache[str, str] = SingleFlightCache(name="t", ttl=60, timeout=1)

    async def boom() -> str:
        raise RuntimeError("upstream down")

    with pytest.raises(RuntimeError):
        await cache.get("k", boom)

    calls: list[int] = []
    assert await cache.get("k", _loader(calls)) == "v"
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_cancelled_waiter_does_not_cancel_shared_load() -> None:
    cache: SingleFlightCache[str, str] = SingleFlightCache(name="t", ttl=60, timeout=1)
    calls: list[int] = []
    load = _loader(calls, delay=0.05)

    first = asyncio.ensure_future(cache.get("k", load))
    second = asyncio.ensure_future(cache.get("k", load))
    await asyncio.sleep(0.01)
    first.cancel()

    assert await second == "v"
    assert first.cancelled()
    assert len(calls) == 1
