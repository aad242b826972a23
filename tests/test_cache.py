import asyncio

import pytest

from vibefeed.config import Settings
from vibefeed.feed.cache import FIRST_PAGE_KEY, FeedCache, for_you_cache_key
from vibefeed.feed.scoring import DEFAULT_FEED_CONFIG
from tests.fakes import feed_item


class _Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class _SlowCompute:
    """Compute callable that blocks until released and counts its runs."""

    def __init__(self, value=None, error: Exception | None = None) -> None:
        self.value = value if value is not None else [feed_item("author", 1.0)]
        self.error = error
        self.calls = 0
        self.release = asyncio.Event()

    async def __call__(self):
        self.calls += 1
        await self.release.wait()
        if self.error is not None:
            raise self.error
        return self.value


def test_cache_key_only_for_unfiltered_requests() -> None:
    assert for_you_cache_key() == FIRST_PAGE_KEY
    assert for_you_cache_key(["gpt"], []) is None
    assert for_you_cache_key([], ["react"]) is None


def test_entries_expire_after_ttl() -> None:
    clock = _Clock()
    cache = FeedCache(ttl_seconds=60, clock=clock)
    value = [feed_item("a", 1.0)]
    cache.put("k", value)

    clock.now += 59.9
    assert cache.get("k") is value
    clock.now += 0.1
    assert cache.get("k") is None
    assert cache.stats()["size"] == 0


def test_from_config_uses_configured_ttl(monkeypatch) -> None:
    monkeypatch.setenv("FEED_CACHE_TTL_SECONDS", "5")
    clock = _Clock()
    cache = FeedCache.from_config(Settings(_env_file=None).feed_config(), clock=clock)
    value = [feed_item("a", 1.0)]
    cache.put("k", value)

    clock.now += 4
    assert cache.get("k") is value
    clock.now += 1
    assert cache.get("k") is None
    assert FeedCache.from_config().ttl_seconds == DEFAULT_FEED_CONFIG.cache_ttl_seconds


def test_put_accepts_custom_ttl() -> None:
    clock = _Clock()
    cache = FeedCache(ttl_seconds=60, clock=clock)
    cache.put("short", [], ttl_seconds=5)
    clock.now += 6
    assert cache.get("short") is None


def test_invalidate_prefix_clear_and_purge() -> None:
    clock = _Clock()
    cache = FeedCache(ttl_seconds=10, clock=clock)
    cache.put("for_you:a", [])
    cache.put("for_you:b", [])
    cache.put("trending:1", [])

    assert cache.invalidate_prefix("for_you:") == 2
    assert cache.get("trending:1") == []

    cache.invalidate("trending:1")
    assert cache.get("trending:1") is None

    cache.put("x", [])
    cache.put("y", [], ttl_seconds=100)
    clock.now += 20
    assert cache.purge_expired() == 1
    assert cache.stats()["size"] == 1
    cache.clear()
    assert cache.stats()["size"] == 0


@pytest.mark.asyncio
async def test_concurrent_misses_share_one_compute() -> None:
    cache = FeedCache()
    compute = _SlowCompute()

    waiters = [asyncio.ensure_future(cache.get_or_compute("k", compute)) for _ in range(5)]
    await asyncio.sleep(0)
    assert cache.stats()["inflight"] == 1
    compute.release.set()
    results = await asyncio.gather(*waiters)

    assert compute.calls == 1
    assert all(value is compute.value and not cached for value, cached in results)

    value, cached = await cache.get_or_compute("k", compute)
    assert cached is True
    assert value is compute.value
    stats = cache.stats()
    assert stats["hits"] == 1
    assert stats["misses"] == 1
    assert stats["hit_rate"] == 0.5
    assert stats["inflight"] == 0


@pytest.mark.asyncio
async def test_cancelled_waiter_does_not_cancel_fill() -> None:
    cache = FeedCache()
    compute = _SlowCompute()

    first = asyncio.ensure_future(cache.get_or_compute("k", compute))
    second = asyncio.ensure_future(cache.get_or_compute("k", compute))
    await asyncio.sleep(0)
    first.cancel()
    with pytest.raises(asyncio.CancelledError):
        await first

    compute.release.set()
    value, cached = await second
    assert value is compute.value
    assert cached is False
    assert compute.calls == 1
    assert cache.get("k") is compute.value


@pytest.mark.asyncio
async def test_fill_completes_even_when_every_waiter_is_cancelled() -> None:
    cache = FeedCache()
    compute = _SlowCompute()

    waiter = asyncio.ensure_future(cache.get_or_compute("k", compute))
    await asyncio.sleep(0)
    waiter.cancel()
    with pytest.raises(asyncio.CancelledError):
        await waiter

    compute.release.set()
    for _ in range(5):
        await asyncio.sleep(0)
    assert cache.get("k") is compute.value


@pytest.mark.asyncio
async def test_failed_fill_reaches_all_waiters_and_is_retried() -> None:
    cache = FeedCache()
    failing = _SlowCompute(error=RuntimeError("boom"))

    waiters = [asyncio.ensure_future(cache.get_or_compute("k", failing)) for _ in range(3)]
    await asyncio.sleep(0)
    failing.release.set()
    results = await asyncio.gather(*waiters, return_exceptions=True)

    assert failing.calls == 1
    assert all(isinstance(result, RuntimeError) for result in results)
    assert cache.get("k") is None
    assert cache.stats()["inflight"] == 0

    healthy = _SlowCompute()
    healthy.release.set()
    value, cached = await cache.get_or_compute("k", healthy)
    assert value is healthy.value
    assert cached is False
    assert healthy.calls == 1
