"""Who-to-follow suggestions.

Four signals are computed concurrently, each giving a raw score per candidate:

    graph       friends-of-friends + liked creators + 2 x bookmarked creators
    popularity  ln(followers + 1) * recency (1.0 / 0.8 / 0.5 / 0.0 for 7 / 30 / 60 / older days)
    relevance   distinct AI tools and tech stacks shared with the viewer's liked
                and bookmarked projects
    diversity   ln(followers + 1) * (1 + avg project likes / 100) for creators of
                recent projects using tags the viewer has never liked

Raw scores are divided by their signal's maximum and combined as
0.35*graph + 0.25*popularity + 0.25*relevance + 0.15*diversity.

Viewers with no follows and at most 3 likes skip all of that and get the most
followed recently-active creators instead.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import math
from collections import defaultdict
from collections.abc import Collection, Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta

from vibefeed.feed.schemas import UserSummary
from vibefeed.feed.scoring import as_utc, utcnow
from vibefeed.sources.base import SocialGraphSource

logger = logging.getLogger(__name__)


class Signal(str, enum.Enum):
    GRAPH = "graph"
    POPULARITY = "popularity"
    RELEVANCE = "relevance"
    DIVERSITY = "diversity"


@dataclass(frozen=True)
class SignalScore:
    user_id: str
    signal: Signal
    raw_score: float


@dataclass(frozen=True)
class SuggestionConfig:
    graph_weight: float = 0.35
    popularity_weight: float = 0.25
    relevance_weight: float = 0.25
    diversity_weight: float = 0.15
    like_weight: float = 1.0
    bookmark_weight: float = 2.0
    # Graph, popularity and relevance read overfetch_factor * limit candidates, diversity reads limit.
    overfetch_factor: int = 3
    dismiss_cooldown_days: int = 30
    cold_start_max_likes: int = 3
    cold_start_active_days: int = 7
    # (max days since last activity, multiplier), checked in order
    activity_tiers: tuple[tuple[int, float], ...] = ((7, 1.0), (30, 0.8), (60, 0.5))
    diversity_window_days: int = 30
    diversity_likes_divisor: float = 100.0

    @property
    def weights(self) -> dict[Signal, float]:
        return {
            Signal.GRAPH: self.graph_weight,
            Signal.POPULARITY: self.popularity_weight,
            Signal.RELEVANCE: self.relevance_weight,
            Signal.DIVERSITY: self.diversity_weight,
        }


DEFAULT_SUGGESTION_CONFIG = SuggestionConfig()


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def activity_multiplier(
    last_active_at: datetime | None,
    now: datetime | None = None,
    config: SuggestionConfig = DEFAULT_SUGGESTION_CONFIG,
) -> float:
    if last_active_at is None:
        return 0.0
    age = as_utc(now or utcnow()) - as_utc(last_active_at)
    for days, multiplier in config.activity_tiers:
        if age <= timedelta(days=days):
            return multiplier
    return 0.0


def normalize(scores: Iterable[SignalScore]) -> dict[str, dict[Signal, float]]:
    """Per-user normalised signal values in [0, 1].

    Each raw score is summed per (user, signal), then divided by that signal's
    maximum over all users; a maximum <= 0 normalises the whole signal to 0.
    """
    raw: dict[str, dict[Signal, float]] = defaultdict(dict)
    for score in scores:
        per_user = raw[score.user_id]
        per_user[score.signal] = per_user.get(score.signal, 0.0) + score.raw_score

    maxima: dict[Signal, float] = {}
    for per_user in raw.values():
        for signal, value in per_user.items():
            maxima[signal] = max(maxima.get(signal, value), value)

    normalised: dict[str, dict[Signal, float]] = {}
    for user_id, per_user in raw.items():
        normalised[user_id] = {
            signal: min(value / maxima[signal], 1.0) if maxima[signal] > 0 else 0.0
            for signal, value in per_user.items()
        }
    return normalised


def combine(
    scores: Iterable[SignalScore],
    config: SuggestionConfig = DEFAULT_SUGGESTION_CONFIG,
) -> list[tuple[str, float]]:
    """(user_id, final score) pairs, best first; ties broken by user id."""
    weights = config.weights
    ranked = [
        (user_id, sum(weights[signal] * value for signal, value in signals.items()))
        for user_id, signals in normalize(scores).items()
    ]
    ranked.sort(key=lambda pair: (pair[1], pair[0]), reverse=True)
    return ranked


# ---------------------------------------------------------------------------
# Signals
# ---------------------------------------------------------------------------


async def graph_signal(
    graph: SocialGraphSource,
    viewer_id: str,
    exclude: Collection[str],
    limit: int,
    config: SuggestionConfig = DEFAULT_SUGGESTION_CONFIG,
) -> list[SignalScore]:
    friends, engaged = await asyncio.gather(
        graph.friends_of_friends(viewer_id, exclude=exclude, limit=limit),
        graph.engaged_creators(viewer_id, exclude=exclude, limit=limit),
    )
    totals: dict[str, float] = defaultdict(float)
    for user_id, mutuals in friends.items():
        totals[user_id] += mutuals
    for creator in engaged:
        totals[creator.user_id] += (
            creator.likes * config.like_weight + creator.bookmarks * config.bookmark_weight
        )
    return [SignalScore(user_id, Signal.GRAPH, score) for user_id, score in totals.items()]


async def popularity_signal(
    graph: SocialGraphSource,
    exclude: Collection[str],
    limit: int,
    now: datetime,
    config: SuggestionConfig = DEFAULT_SUGGESTION_CONFIG,
) -> list[SignalScore]:
    oldest_tier = max(days for days, _ in config.activity_tiers)
    creators = await graph.creator_activity(
        exclude=exclude, since=now - timedelta(days=oldest_tier), limit=limit
    )
    return [
        SignalScore(
            creator.user_id,
            Signal.POPULARITY,
            math.log(creator.followers + 1)
            * activity_multiplier(creator.last_active_at, now, config),
        )
        for creator in creators
    ]


async def relevance_signal(
    graph: SocialGraphSource,
    viewer_id: str,
    exclude: Collection[str],
    limit: int,
) -> list[SignalScore]:
    tags = await graph.viewer_tags(viewer_id, include_bookmarks=True)
    if not tags:
        return []
    shared = await graph.creators_sharing_tags(tags, exclude=exclude, limit=limit)
    return [
        SignalScore(user_id, Signal.RELEVANCE, float(count)) for user_id, count in shared.items()
    ]


async def diversity_signal(
    graph: SocialGraphSource,
    viewer_id: str,
    exclude: Collection[str],
    limit: int,
    now: datetime,
    config: SuggestionConfig = DEFAULT_SUGGESTION_CONFIG,
) -> list[SignalScore]:
    """Creators outside the viewer's liked tags. Empty when the viewer has liked nothing tagged."""
    tags = await graph.viewer_tags(viewer_id, include_bookmarks=False)
    if not tags:
        return []
    creators = await graph.creators_outside_tags(
        tags,
        exclude=exclude,
        since=now - timedelta(days=config.diversity_window_days),
        limit=limit,
    )
    return [
        SignalScore(
            creator.user_id,
            Signal.DIVERSITY,
            math.log(creator.followers + 1)
            * (1.0 + creator.avg_project_likes / config.diversity_likes_divisor),
        )
        for creator in creators
    ]


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


async def is_cold_start(
    graph: SocialGraphSource,
    viewer_id: str,
    config: SuggestionConfig = DEFAULT_SUGGESTION_CONFIG,
) -> bool:
    activity = await graph.activity_counts(viewer_id)
    return activity.follows == 0 and activity.likes <= config.cold_start_max_likes


async def excluded_candidates(
    graph: SocialGraphSource,
    viewer_id: str,
    now: datetime,
    config: SuggestionConfig = DEFAULT_SUGGESTION_CONFIG,
) -> set[str]:
    """The viewer, who they follow, blocks either way, and recent dismissals."""
    following, blocked, dismissed = await asyncio.gather(
        graph.following_ids(viewer_id),
        graph.blocked_ids(viewer_id),
        graph.dismissed_ids(
            viewer_id, since=now - timedelta(days=config.dismiss_cooldown_days)
        ),
    )
    return {viewer_id} | following | blocked | dismissed


async def _popular_fallback(
    graph: SocialGraphSource,
    viewer_id: str,
    limit: int,
    now: datetime,
    config: SuggestionConfig,
) -> list[UserSummary]:
    blocked = await graph.blocked_ids(viewer_id)
    users = await graph.popular_active_users(
        viewer_id,
        since=now - timedelta(days=config.cold_start_active_days),
        limit=limit + len(blocked),
    )
    return [user for user in users if user.id not in blocked][:limit]


async def suggested_users(
    graph: SocialGraphSource,
    viewer_id: str,
    *,
    limit: int = 10,
    config: SuggestionConfig = DEFAULT_SUGGESTION_CONFIG,
) -> list[UserSummary]:
    if limit <= 0:
        return []
    now = utcnow()
    if await is_cold_start(graph, viewer_id, config):
        logger.debug("Cold-start suggestions for %s", viewer_id)
        return await _popular_fallback(graph, viewer_id, limit, now, config)

    exclude = await excluded_candidates(graph, viewer_id, now, config)
    pool = limit * config.overfetch_factor
    signal_lists = await asyncio.gather(
        graph_signal(graph, viewer_id, exclude, pool, config),
        popularity_signal(graph, exclude, pool, now, config),
        relevance_signal(graph, viewer_id, exclude, pool),
        diversity_signal(graph, viewer_id, exclude, limit, now, config),
    )
    scores = [
        score
        for signal_scores in signal_lists
        for score in signal_scores
        if score.user_id not in exclude
    ]
    ranked = combine(scores, config)[:limit]
    if not ranked:
        return []
    users = await graph.load_users([user_id for user_id, _ in ranked])
    return [users[user_id] for user_id, _ in ranked if user_id in users]
