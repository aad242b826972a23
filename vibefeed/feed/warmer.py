"""Background refresh of the for-you first-page pool.

CacheWarmer recomputes the unfiltered pool every ttl * 0.8 seconds so the common
request (first page, no filters) never finds the cache cold. Start it in the
application lifespan and stop it on shutdown:

    warmer = CacheWarmer(lambda: warm_for_you_cache(content, graph, cache), cache.ttl_seconds)
    warmer.start()
    ...
    await warmer.stop()
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any

from vibefeed.feed.scoring import utcnow

logger = logging.getLogger(__name__)

_WARM_INTERVAL_RATIO: float = 0.8
_INITIAL_DELAY_S: float = 15.0


class CacheWarmer:
    def __init__(
        self,
        warm: Callable[[], Awaitable[int]],
        ttl_seconds: float,
        *,
        initial_delay_seconds: float = _INITIAL_DELAY_S,
    ) -> None:
        self._warm = warm
        self.interval_seconds = ttl_seconds * _WARM_INTERVAL_RATIO
        self.initial_delay_seconds = initial_delay_seconds
        self._task: asyncio.Task[None] | None = None
        self.warms_count = 0
        self.errors_count = 0
        self.last_warm_at: datetime | None = None
        self.last_warm_duration_ms: float | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="feed-cache-warmer")
        logger.info(
            "Feed cache warmer started, first warm in %.1fs then every %.1fs",
            self.initial_delay_seconds,
            self.interval_seconds,
        )

    async def stop(self) -> None:
        if self._task is None:
            return
        task, self._task = self._task, None
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Feed cache warmer stopped after %d warms", self.warms_count)

    async def warm_now(self) -> bool:
        """Run one warm immediately. Returns False when it failed (already logged)."""
        started = time.monotonic()
        try:
            size = await self._warm()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.errors_count += 1
            logger.warning("Feed cache warm failed: %r", exc)
            return False
        self.warms_count += 1
        self.last_warm_at = utcnow()
        self.last_warm_duration_ms = (time.monotonic() - started) * 1000.0
        logger.debug(
            "Feed cache warmed in %.0fms, %d items cached", self.last_warm_duration_ms, size
        )
        return True

    def stats(self) -> dict[str, Any]:
        return {
            "warms_count": self.warms_count,
            "last_warm_at": self.last_warm_at,
            "last_warm_duration_ms": self.last_warm_duration_ms,
            "errors_count": self.errors_count,
            "running": self.running,
        }

    async def _run(self) -> None:
        await asyncio.sleep(self.initial_delay_seconds)
        while True:
            await self.warm_now()
            await asyncio.sleep(self.interval_seconds)
