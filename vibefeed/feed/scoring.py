"""Pure feed scoring functions. No I/O and no framework imports.

Score for posts and projects (for-you candidate pool):

    weighted  = likes*1.0 + comments*10.0 + reposts*5.0 + bookmarks*4.0 + quotes*8.0
    freshness = max(0, 10.0 * (1 - age_hours / 6))
    score     = (weighted + freshness) / (age_hours + 2) ** 1.8

Gigs are scored on bids and views and dampened by 0.5 so they surface less often
than posts and projects. Older backfill candidates are scored on engagement alone.

The FeedConfig dataclass carries every tunable. All callers that omit the
config= argument use DEFAULT_FEED_CONFIG.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Protocol


class EngagementLike(Protocol):
    likes: int
    comments: int
    reposts: int
    bookmarks: int
    quotes: int


@dataclass(frozen=True)
class EngagementWeights:
    """Points per engagement type. Comments require effort, so they weigh most."""

    like: float = 1.0
    comment: float = 10.0
    repost: float = 5.0
    bookmark: float = 4.0
    quote: float = 8.0


@dataclass(frozen=True)
class FeedConfig:
    """Feed ranking configuration.

    Immutable so a single instance can be shared by concurrent requests; tests and
    experiments build their own with dataclasses.replace().
    """

    weights: EngagementWeights = field(default_factory=EngagementWeights)
    # Exponent of the (age_hours + 2) denominator. Higher = older posts sink faster.
    gravity: float = 1.8
    candidate_window_days: int = 7
    # Rows fetched per content kind from the recent window.
    candidate_limit: int = 500
    # Below this many recent candidates the first page is backfilled with older items.
    minimum_feed_items: int = 30
    freshness_bonus_hours: float = 6.0
    freshness_bonus_base: float = 10.0
    gig_bid_weight: float = 15.0
    gig_view_weight: float = 0.5
    gig_dampening: float = 0.5
    # 0.0 = the author's own likes/reposts/bookmarks count for nothing, 1.0 = count normally.
    self_engagement_discount: float = 0.0
    preference_boost: float = 1.5
    premium_boost: float = 1.3
    premium_statuses: frozenset[str] = frozenset({"active", "trialing"})
    new_creator_boost_max: float = 1.8
    new_creator_threshold_days: int = 30
    max_items_per_author: int = 3
    min_discovery_slots: int = 2
    small_creator_follower_threshold: int = 100
    cache_ttl_seconds: float = 60.0


DEFAULT_FEED_CONFIG = FeedConfig()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(moment: datetime) -> datetime:
    """Treat naive datetimes as UTC (SQLite and some drivers drop the tzinfo)."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def hours_since(moment: datetime, now: datetime | None = None) -> float:
    """Fractional hours elapsed since `moment`, never negative."""
    now = now or utcnow()
    return max(0.0, (as_utc(now) - as_utc(moment)).total_seconds() / 3600.0)


def time_decay(age_hours: float, gravity: float = DEFAULT_FEED_CONFIG.gravity) -> float:
    """Decay factor relative to a brand-new item.

    Returns 1.0 at age 0 and shrinks strictly as the item ages:
    (2 / (age_hours + 2)) ** gravity.
    """
    return math.pow(2.0 / (max(0.0, age_hours) + 2.0), gravity)


def weighted_engagement(
    counts: EngagementLike,
    weights: EngagementWeights = DEFAULT_FEED_CONFIG.weights,
) -> float:
    return (
        max(0, counts.likes) * weights.like
        + max(0, counts.comments) * weights.comment
        + max(0, counts.reposts) * weights.repost
        + max(0, counts.bookmarks) * weights.bookmark
        + max(0, counts.quotes) * weights.quote
    )


def _discounted_engagement(
    counts: EngagementLike,
    self_engagement: EngagementLike | None,
    config: FeedConfig,
) -> float:
    weighted = weighted_engagement(counts, config.weights)
    if self_engagement is not None:
        own = weighted_engagement(self_engagement, config.weights)
        weighted -= (1.0 - config.self_engagement_discount) * own
    return max(0.0, weighted)


def freshness_bonus(age_hours: float, config: FeedConfig = DEFAULT_FEED_CONFIG) -> float:
    """Temporary bonus so brand-new items with no engagement can still appear."""
    if config.freshness_bonus_hours <= 0:
        return 0.0
    return max(
        0.0,
        config.freshness_bonus_base * (1.0 - age_hours / config.freshness_bonus_hours),
    )


def score_content(
    counts: EngagementLike,
    age_hours: float,
    config: FeedConfig = DEFAULT_FEED_CONFIG,
    self_engagement: EngagementLike | None = None,
) -> float:
    """Time-decayed score for a post or project. Always finite and >= 0."""
    age_hours = max(0.0, age_hours)
    weighted = _discounted_engagement(counts, self_engagement, config)
    numerator = weighted + freshness_bonus(age_hours, config)
    return numerator / math.pow(age_hours + 2.0, config.gravity)


def score_gig(
    bids: int,
    views: int,
    age_hours: float,
    config: FeedConfig = DEFAULT_FEED_CONFIG,
) -> float:
    """Dampened, time-decayed score for an open gig."""
    age_hours = max(0.0, age_hours)
    raw = max(0, bids) * config.gig_bid_weight + max(0, views) * config.gig_view_weight
    return raw * config.gig_dampening / math.pow(age_hours + 2.0, config.gravity)


def score_engagement_only(
    counts: EngagementLike,
    config: FeedConfig = DEFAULT_FEED_CONFIG,
    self_engagement: EngagementLike | None = None,
) -> float:
    """Backfill score for items older than the candidate window (no decay)."""
    return _discounted_engagement(counts, self_engagement, config)
