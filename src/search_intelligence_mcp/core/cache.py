from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from search_intelligence_mcp.core.models import AnalyticsQuery

logger = logging.getLogger(__name__)

Loader = Callable[[], Awaitable[Any]]


@dataclass
class _CacheEntry:
    value: Any
    created_at: float


def _retrieve_exception(task: asyncio.Future[Any]) -> None:
    # Marks the failure as seen when every waiter was cancelled.
    if not task.cancelled():
        task.exception()


class AnalyticsCache:
    """In-memory TTL cache that collapses concurrent identical fetches.

    At most one loader runs per key at a time; every caller that arrives while
    it is in flight awaits the same task and observes the same value (or the
    same exception). Failed loads are not stored. Expired entries are dropped
    lazily when they are looked up.
    """

    def __init__(
        self,
        ttl_seconds: float = 300.0,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[str, _CacheEntry] = {}
        self._pending: dict[str, asyncio.Future[Any]] = {}
        self._hits = 0
        self._misses = 0
        self._joins = 0

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def __len__(self) -> int:
        return len(self._entries)

    @staticmethod
    def key_for(key: AnalyticsQuery | str, namespace: str = "") -> str:
        if isinstance(key, AnalyticsQuery):
            return key.fingerprint(namespace)
        return f"{namespace}:{key}" if namespace else key

    def _lookup(self, key: str) -> _CacheEntry | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.created_at > self._ttl:
            del self._entries[key]
            return None
        return entry

    async def get(
        self,
        key: AnalyticsQuery | str,
        loader: Loader,
        *,
        namespace: str = "",
    ) -> Any:
        cache_key = self.key_for(key, namespace)

        entry = self._lookup(cache_key)
        if entry is not None:
            self._hits += 1
            return entry.value

        pending = self._pending.get(cache_key)
        if pending is not None:
            self._joins += 1
            logger.debug("Joining in-flight fetch for %s", cache_key[:12])
            # A cancelled waiter must not cancel the shared fetch.
            return await asyncio.shield(pending)

        self._misses += 1
        logger.debug("Cache miss for %s", cache_key[:12])
        # The fetch runs in its own task so cancelling the first caller does not
        # cancel it for callers that joined later.
        task = asyncio.ensure_future(self._load(cache_key, loader))
        task.add_done_callback(_retrieve_exception)
        self._pending[cache_key] = task
        return await asyncio.shield(task)

    async def _load(self, cache_key: str, loader: Loader) -> Any:
        try:
            value = await loader()
            self._entries[cache_key] = _CacheEntry(value=value, created_at=self._clock())
            return value
        finally:
            self._pending.pop(cache_key, None)

    def invalidate(self, key: AnalyticsQuery | str, *, namespace: str = "") -> bool:
        return self._entries.pop(self.key_for(key, namespace), None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def stats(self) -> dict[str, int]:
        return {
            "entries": len(self._entries),
            "pending": len(self._pending),
            "hits": self._hits,
            "misses": self._misses,
            "joins": self._joins,
        }
