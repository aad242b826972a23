"""In-process cache for the for-you candidate pool.

Key schema
----------
for_you:first_page   list[FeedItem]   TTL 60 s   boosted, sorted pool; no viewer flags

The TTL is FeedConfig.cache_ttl_seconds when the cache is built with from_config().

Only requests without preference filters share a key; filtered requests bypass
the cache (for_you_cache_key returns None).

get_or_compute() is single-flight: the first caller to miss starts one fill task
and every concurrent caller for that key awaits the same task. The task is
shielded, so a caller that is cancelled while waiting never cancels the fill.
Readers of a fresh entry return immediately without touching the in-flight map.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Collection
from dataclasses import dataclass
from typing import Any

from vibefeed.feed.schemas import FeedItem
from vibefeed.feed.scoring import DEFAULT_FEED_CONFIG, FeedConfig

logger = logging.getLogger(__name__)

FIRST_PAGE_KEY = "for_you:first_page"
DEFAULT_TTL_S: float = DEFAULT_FEED_CONFIG.cache_ttl_seconds


def for_you_cache_key(
    tool_ids: Collection[str] = (), stack_ids: Collection[str] = ()
) -> str | None:
    if tool_ids or stack_ids:
        return None
    return FIRST_PAGE_KEY


@dataclass
class CacheEntry:
    key: str
    value: list[FeedItem]
    expires_at: float

    def is_fresh(self, now: float) -> bool:
        return now < self.expires_at


class FeedCache:
    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_S,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._inflight: dict[str, asyncio.Task[list[FeedItem]]] = {}
        self._hits = 0
        self._misses = 0

    @classmethod
    def from_config(
        cls, config: FeedConfig = DEFAULT_FEED_CONFIG, **kwargs: Any
    ) -> FeedCache:
        """Cache whose entries live for `config.cache_ttl_seconds`."""
        return cls(ttl_seconds=config.cache_ttl_seconds, **kwargs)

    # -----------------------------------------------------------------------
    # Plain access
    # -----------------------------------------------------------------------

    def get(self, key: str) -> list[FeedItem] | None:
        """Return the cached value, or None if absent or expired (expired entries are evicted)."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if not entry.is_fresh(self._clock()):
            del self._entries[key]
            return None
        return entry.value

    def put(self, key: str, value: list[FeedItem], ttl_seconds: float | None = None) -> None:
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        self._entries[key] = CacheEntry(key=key, value=value, expires_at=self._clock() + ttl)

    def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)

    def invalidate_prefix(self, prefix: str) -> int:
        """Drop every entry whose key starts with `prefix`. Returns how many were dropped."""
        doomed = [key for key in self._entries if key.startswith(prefix)]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    def clear(self) -> None:
        self._entries.clear()

    def purge_expired(self) -> int:
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if not entry.is_fresh(now)]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("Purged %d expired feed cache entries", len(expired))
        return len(expired)

    def stats(self) -> dict[str, Any]:
        total = self._hits + self._misses
        return {
            "size": len(self._entries),
            "inflight": len(self._inflight),
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": self._hits / total if total else 0.0,
        }

    # -----------------------------------------------------------------------
    # Single-flight fill
    # -----------------------------------------------------------------------

    async def get_or_compute(
        self,
        key: str,
        compute: Callable[[], Awaitable[list[FeedItem]]],
    ) -> tuple[list[FeedItem], bool]:
        """Return (value, was_cached). At most one `compute` runs per key at a time."""
        cached = self.get(key)
        if cached is not None:
            self._hits += 1
            logger.debug("Feed cache hit for %s", key)
            return cached, True

        task = self._inflight.get(key)
        if task is None:
            self._misses += 1
            task = asyncio.ensure_future(self._fill(key, compute))
            self._inflight[key] = task
            task.add_done_callback(lambda done, key=key: self._fill_done(key, done))
        else:
            logger.debug("Joining in-flight feed cache fill for %s", key)
        return await asyncio.shield(task), False

    async def _fill(
        self, key: str, compute: Callable[[], Awaitable[list[FeedItem]]]
    ) -> list[FeedItem]:
        value = await compute()
        self.put(key, value)
        return value

    def _fill_done(self, key: str, task: asyncio.Task[list[FeedItem]]) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            # Waiters re-raise it; this also marks it retrieved when nobody is left waiting.
            logger.warning("Feed cache fill for %s failed: %r", key, exc)
