"""Redis cache helpers for the recommendation domain.

Key schema
----------
recs:trending:{limit}   JSON list   TTL 5 min   ranked trending entries (id, scores)

Redis is best-effort here: any Redis error is logged and reads as a miss, writes
are dropped. The ranking never fails because the cache is down.
"""

import json
import logging
from dataclasses import asdict, dataclass
from datetime import datetime

from redis.asyncio import Redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

_TRENDING_TTL_S: int = 300  # 5 minutes


@dataclass(frozen=True)
class TrendingEntry:
    project_id: str
    author_id: str
    sort_date: datetime
    score: float
    base_score: float
    velocity_boost: float


def _trending_key(limit: int) -> str:
    return f"recs:trending:{limit}"


def _dump(entries: list[TrendingEntry]) -> str:
    rows = []
    for entry in entries:
        row = asdict(entry)
        row["sort_date"] = entry.sort_date.isoformat()
        rows.append(row)
    return json.dumps(rows)


def _load(raw: str) -> list[TrendingEntry]:
    entries = []
    for row in json.loads(raw):
        row["sort_date"] = datetime.fromisoformat(row["sort_date"])
        entries.append(TrendingEntry(**row))
    return entries


async def get_trending(redis: Redis, limit: int) -> list[TrendingEntry] | None:
    """Return cached trending entries, or None on miss (including Redis failures)."""
    try:
        raw = await redis.get(_trending_key(limit))
    except (RedisError, OSError) as exc:
        logger.warning("Trending cache read failed, recomputing: %s", exc)
        return None
    if raw is None:
        return None
    try:
        return _load(raw)
    except (ValueError, KeyError, TypeError) as exc:
        logger.warning("Discarding malformed trending cache entry: %s", exc)
        return None


async def set_trending(
    redis: Redis, limit: int, entries: list[TrendingEntry], ttl_seconds: int = _TRENDING_TTL_S
) -> None:
    try:
        await redis.setex(_trending_key(limit), ttl_seconds, _dump(entries))
    except (RedisError, OSError) as exc:
        logger.warning("Trending cache write failed: %s", exc)


async def invalidate_trending(redis: Redis, *limits: int) -> None:
    if not limits:
        return
    try:
        await redis.delete(*(_trending_key(limit) for limit in limits))
    except (RedisError, OSError) as exc:
        logger.warning("Trending cache invalidation failed: %s", exc)
