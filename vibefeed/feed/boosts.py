"""Multiplicative score boosts applied after base scoring.

All three boosts multiply `FeedItem.score` in one pass:

    preference   x1.5  project/gig shares a tool or tech stack with the caller's filters
    premium      x1.3  author subscription is active or trialing
    new creator  1.8 -> 1.0 linearly over the author's first 30 days

Author metadata is fetched once for the distinct authors of the whole batch. An
item whose author is missing from that lookup passes through unboosted.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import datetime

from vibefeed.feed.schemas import FeedItem, GigPayload, ProjectPayload
from vibefeed.feed.scoring import DEFAULT_FEED_CONFIG, FeedConfig, as_utc, utcnow
from vibefeed.sources.base import AuthorProfile, SocialGraphSource, TagSet


def preference_multiplier(
    item: FeedItem, tags: TagSet, config: FeedConfig = DEFAULT_FEED_CONFIG
) -> float:
    if not tags or not isinstance(item.payload, (ProjectPayload, GigPayload)):
        return 1.0
    payload = item.payload
    if tags.tool_ids.intersection(payload.ai_tool_ids) or tags.stack_ids.intersection(
        payload.tech_stack_ids
    ):
        return config.preference_boost
    return 1.0


def premium_multiplier(
    profile: AuthorProfile, config: FeedConfig = DEFAULT_FEED_CONFIG
) -> float:
    if profile.subscription_status in config.premium_statuses:
        return config.premium_boost
    return 1.0


def new_creator_multiplier(
    joined_at: datetime | None,
    now: datetime | None = None,
    config: FeedConfig = DEFAULT_FEED_CONFIG,
) -> float:
    """1.8 for a brand-new account, falling linearly to 1.0 at the threshold age."""
    if joined_at is None:
        return 1.0
    threshold_seconds = config.new_creator_threshold_days * 86400
    if threshold_seconds <= 0:
        return 1.0
    age_seconds = max(0.0, (as_utc(now or utcnow()) - as_utc(joined_at)).total_seconds())
    if age_seconds >= threshold_seconds:
        return 1.0
    span = config.new_creator_boost_max - 1.0
    return config.new_creator_boost_max - span * age_seconds / threshold_seconds


def apply_boosts(
    items: Iterable[FeedItem],
    profiles: Mapping[str, AuthorProfile],
    tags: TagSet = TagSet(),
    *,
    now: datetime | None = None,
    config: FeedConfig = DEFAULT_FEED_CONFIG,
) -> None:
    """Multiply each item's score in place."""
    now = now or utcnow()
    for item in items:
        multiplier = preference_multiplier(item, tags, config)
        profile = profiles.get(item.author_id)
        if profile is not None:
            multiplier *= premium_multiplier(profile, config)
            multiplier *= new_creator_multiplier(profile.joined_at, now, config)
        item.score *= multiplier


async def boost_items(
    items: list[FeedItem],
    graph: SocialGraphSource,
    tags: TagSet = TagSet(),
    *,
    now: datetime | None = None,
    config: FeedConfig = DEFAULT_FEED_CONFIG,
) -> list[FeedItem]:
    """Batch-load author profiles for `items` and boost them. Returns the same list."""
    if not items:
        return items
    author_ids = {item.author_id for item in items}
    profiles = await graph.author_profiles(author_ids)
    apply_boosts(items, profiles, tags, now=now, config=config)
    return items
