"""
tokenbridge.cache

TTL cache with single-flight refresh, shared by the trust anchor resolver, the
signer's public key cache and the key set publisher.

Responsibilities:
- Serve valid entries without locking or awaiting anything.
- Run at most one loader per key at a time; every concurrent caller awaits it.
- Bound each load with a timeout and deliver its failure to all waiters.
- Never cache failures.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Hashable
from dataclasses import dataclass
from functools import partial
from typing import Generic, TypeVar

from tokenbridge.observability.logging import get_logger

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

log = get_logger(__name__)


class CacheLoadTimeout(TimeoutError):
    pass


@dataclass(frozen=True, slots=True)
class CacheEntry(Generic[V]):
    value: V
    loaded_at: float
    expires_at: float


class SingleFlightCache(Generic[K, V]):
    """
    Read-through cache keyed by `K`.

    Loaders run in their own task and callers await it through `asyncio.shield`, so a
    cancelled caller abandons only its own wait and never the shared load.
    """

    def __init__(
        self,
        *,
        name: str,
        ttl: float,
        timeout: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._name = name
        self._ttl = ttl
        self._timeout = timeout
        self._clock = clock
        self._entries: dict[K, CacheEntry[V]] = {}
        self._inflight: dict[K, asyncio.Future[V]] = {}

    @property
    def name(self) -> str:
        return self._name

    def peek(self, key: K) -> CacheEntry[V] | None:
        return self._entries.get(key)

    def invalidate(self, key: K) -> None:
        self._entries.pop(key, None)

    async def get(self, key: K, loader: Callable[[], Awaitable[V]]) -> V:
        entry = self._entries.get(key)
        if entry is not None and entry.expires_at > self._clock():
            return entry.value
        return await self._join(key, loader)

    async def refresh(
        self,
        key: K,
        loader: Callable[[], Awaitable[V]],
        *,
        min_age: float = 0.0,
    ) -> V:
        """
        Force a reload unless the current entry was loaded less than `min_age` ago.

        Callers racing on the same key share a single reload.
        """

        entry = self._entries.get(key)
        if entry is not None and self._clock() - entry.loaded_at < min_age:
            return entry.value
        return await self._join(key, loader)

    async def _join(self, key: K, loader: Callable[[], Awaitable[V]]) -> V:
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._load(key, loader))
            self._inflight[key] = task
            task.add_done_callback(partial(self._finish, key))
        return await asyncio.shield(task)

    async def _load(self, key: K, loader: Callable[[], Awaitable[V]]) -> V:
        log.info("cache_load", cache=self._name, key=str(key))
        try:
            value = await asyncio.wait_for(loader(), timeout=self._timeout)
        except TimeoutError as e:
            log.error("cache_load_timeout", cache=self._name, key=str(key), timeout=self._timeout)
            raise CacheLoadTimeout(f"{self._name}: load timed out after {self._timeout}s") from e
        now = self._clock()
        self._entries[key] = CacheEntry(value=value, loaded_at=now, expires_at=now + self._ttl)
        return value

    def _finish(self, key: K, task: asyncio.Future[V]) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if not task.cancelled():
            # Mark the exception as retrieved even if every waiter went away.
            task.exception()


# --- Module Notes -----------------------------------------------------------
# Instances are created by the composition root (`tokenbridge.services.registry`)
# and passed to the components that own them; there are no module-level caches.
