"""Trending projects.

    base    = (likes*1.0 + comments*13.5 + reposts*20.0 + bookmarks*10.0 + quotes*15.0)
              * quality / (age_hours + 2) ** 1.8
    quality = 1.0 + 0.1*has_images + 0.1*(description > 100 chars) + 0.1*has_tech_stacks

Published projects from the last 14 days are ranked by base score, the top
3 * limit get a velocity boost from their hourly engagement, and the pool is
re-ranked and truncated:

    velocity = engagement(last 6 h) / (engagement(6-24 h ago) + 1)
    final    = base * min(1 + velocity, 3.0)

The ranked ids are cached in Redis for 5 minutes when a client is given.
"""

from __future__ import annotations

import asyncio
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from redis.asyncio import Redis

from vibefeed.feed.schemas import ContentKind, FeedItem, ProjectPayload, ScoredProject
from vibefeed.feed.scoring import hours_since, utcnow
from vibefeed.recommendations import cache as recs_cache
from vibefeed.recommendations.cache import TrendingEntry
from vibefeed.sources.base import CandidateRank, CandidateRow, ContentSource

__all__ = [
    "DEFAULT_TRENDING_CONFIG",
    "ScoredProject",
    "TrendingConfig",
    "TrendingWeights",
    "trending_projects",
]


@dataclass(frozen=True)
class TrendingWeights:
    """Reposts and quotes spread a project furthest, so they weigh most."""

    like: float = 1.0
    comment: float = 13.5
    repost: float = 20.0
    bookmark: float = 10.0
    quote: float = 15.0


@dataclass(frozen=True)
class TrendingConfig:
    weights: TrendingWeights = field(default_factory=TrendingWeights)
    gravity: float = 1.8
    window_days: int = 14
    # Top rows by base score read from the window before the velocity pass.
    candidate_limit: int = 500
    overfetch_factor: int = 3
    quality_step: float = 0.1
    long_description_chars: int = 100
    recent_hours: int = 6
    older_hours: int = 24
    velocity_cap: float = 3.0
    cache_ttl_seconds: int = 300


DEFAULT_TRENDING_CONFIG = TrendingConfig()


def quality_multiplier(row: CandidateRow, config: TrendingConfig = DEFAULT_TRENDING_CONFIG) -> float:
    multiplier = 1.0
    if row.has_images:
        multiplier += config.quality_step
    if row.description_length > config.long_description_chars:
        multiplier += config.quality_step
    if row.has_tech_stacks:
        multiplier += config.quality_step
    return multiplier


def base_score(
    row: CandidateRow,
    now: datetime | None = None,
    config: TrendingConfig = DEFAULT_TRENDING_CONFIG,
) -> float:
    w = config.weights
    counts = row.engagement
    weighted = (
        counts.likes * w.like
        + counts.comments * w.comment
        + counts.reposts * w.repost
        + counts.bookmarks * w.bookmark
        + counts.quotes * w.quote
    )
    age_hours = hours_since(row.sort_date, now)
    return weighted * quality_multiplier(row, config) / math.pow(age_hours + 2.0, config.gravity)


def velocity_boost(
    recent: int, older: int, config: TrendingConfig = DEFAULT_TRENDING_CONFIG
) -> float:
    velocity = max(0, recent) / (max(0, older) + 1)
    return min(1.0 + velocity, config.velocity_cap)


def candidate_rank(config: TrendingConfig, now: datetime) -> CandidateRank:
    """Store-side ordering identical to base_score, so the window is cut by score."""
    return CandidateRank(
        weights=config.weights,
        decay_at=now,
        gravity=config.gravity,
        quality_step=config.quality_step,
        long_description_chars=config.long_description_chars,
    )


async def _rank(
    content: ContentSource, limit: int, config: TrendingConfig
) -> list[TrendingEntry]:
    now = utcnow()
    rows = await content.fetch_candidates(
        ContentKind.PROJECT,
        since=now - timedelta(days=config.window_days),
        until=None,
        limit=config.candidate_limit,
        rank=candidate_rank(config, now),
    )
    if not rows:
        return []
    scored = sorted(
        ((base_score(row, now, config), row) for row in rows),
        key=lambda pair: (pair[0], pair[1].id),
        reverse=True,
    )[: limit * config.overfetch_factor]

    ids = [row.id for _, row in scored]
    recent_start = now - timedelta(hours=config.recent_hours)
    recent, older = await asyncio.gather(
        content.hourly_engagement(ContentKind.PROJECT, ids, start=recent_start, end=now),
        content.hourly_engagement(
            ContentKind.PROJECT,
            ids,
            start=now - timedelta(hours=config.older_hours),
            end=recent_start,
        ),
    )

    entries = []
    for base, row in scored:
        boost = velocity_boost(recent.get(row.id, 0), older.get(row.id, 0), config)
        entries.append(
            TrendingEntry(
                project_id=row.id,
                author_id=row.author_id,
                sort_date=row.sort_date,
                score=base * boost,
                base_score=base,
                velocity_boost=boost,
            )
        )
    entries.sort(key=lambda entry: (entry.score, entry.project_id), reverse=True)
    return entries[:limit]


async def trending_projects(
    content: ContentSource,
    *,
    limit: int = 10,
    viewer_id: str | None = None,
    redis: Redis | None = None,
    config: TrendingConfig = DEFAULT_TRENDING_CONFIG,
) -> list[ScoredProject]:
    """Top `limit` trending projects, with the viewer's engagement flags when known."""
    if limit <= 0:
        return []

    entries = await recs_cache.get_trending(redis, limit) if redis is not None else None
    if entries is None:
        entries = await _rank(content, limit, config)
        if redis is not None:
            await recs_cache.set_trending(redis, limit, entries, config.cache_ttl_seconds)
    if not entries:
        return []

    ids = [entry.project_id for entry in entries]
    if viewer_id is not None:
        details, flags = await asyncio.gather(
            content.preload(ContentKind.PROJECT, ids),
            content.engagement_flags(viewer_id, {(ContentKind.PROJECT, pid) for pid in ids}),
        )
    else:
        details, flags = await content.preload(ContentKind.PROJECT, ids), {}

    results = []
    for entry in entries:
        found = details.get(entry.project_id)
        # Deleted or unpublished since the ranking was cached.
        if found is None or not isinstance(found.payload, ProjectPayload):
            continue
        viewer = flags.get((ContentKind.PROJECT, entry.project_id))
        project = FeedItem(
            id=entry.project_id,
            author_id=entry.author_id,
            author=found.author,
            score=entry.score,
            sort_date=entry.sort_date,
            engagement=found.engagement,
            payload=found.payload,
            liked=viewer.liked if viewer else False,
            bookmarked=viewer.bookmarked if viewer else False,
            reposted=viewer.reposted if viewer else False,
        )
        results.append(
            ScoredProject(
                project=project,
                score=entry.score,
                base_score=entry.base_score,
                velocity_boost=entry.velocity_boost,
            )
        )
    return results
