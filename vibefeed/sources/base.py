"""Collaborator interfaces the ranking core reads from.

The core never talks to storage directly. Everything it needs comes through two
protocols, ContentSource and SocialGraphSource, each answering in batches keyed
by id sets (never one call per item). vibefeed.sources.sql implements both
against the platform's relational schema; tests use in-memory fakes.

Implementations raise vibefeed.exceptions.SourceUnavailableError when the
underlying store fails. The core never retries.
"""

from __future__ import annotations

import math
from collections.abc import Collection, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol

from vibefeed.feed.scoring import hours_since, weighted_engagement
from vibefeed.feed.schemas import (
    AuthorSummary,
    ContentKind,
    EngagementCounts,
    Payload,
    UserSummary,
)

EngagementKey = tuple[ContentKind, str]


# ---------------------------------------------------------------------------
# Content rows
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CandidateRow:
    """Scoring input for one post, project or gig.

    `sort_date` is inserted_at for posts and gigs, published_at for projects.
    `self_engagement` holds the author's own likes/reposts/bookmarks on the item
    when the source can tell; None means unknown and nothing is discounted.
    """

    id: str
    kind: ContentKind
    author_id: str
    sort_date: datetime
    engagement: EngagementCounts = field(default_factory=EngagementCounts)
    self_engagement: EngagementCounts | None = None
    bids_count: int = 0
    views_count: int = 0
    # Quality signals (projects only, used by trending)
    has_images: bool = False
    description_length: int = 0
    has_tech_stacks: bool = False


@dataclass(frozen=True)
class RepostRow:
    id: str
    reposter_id: str
    original_kind: ContentKind
    original_id: str
    reposted_at: datetime


@dataclass(frozen=True)
class ContentDetails:
    """Associations batch-loaded for one content id (author, media, tags)."""

    id: str
    author_id: str
    payload: Payload
    author: AuthorSummary | None = None
    engagement: EngagementCounts = field(default_factory=EngagementCounts)


@dataclass(frozen=True)
class EngagementFlags:
    liked: bool = False
    bookmarked: bool = False
    reposted: bool = False


# ---------------------------------------------------------------------------
# Social graph rows
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AuthorProfile:
    """What the boost stage needs about an author."""

    id: str
    subscription_status: str | None
    joined_at: datetime | None


@dataclass(frozen=True)
class ViewerActivity:
    follows: int = 0
    likes: int = 0


@dataclass(frozen=True)
class CreatorEngagement:
    """How often the viewer liked/bookmarked one creator's posts and projects."""

    user_id: str
    likes: int = 0
    bookmarks: int = 0


@dataclass(frozen=True)
class CreatorActivity:
    user_id: str
    followers: int
    last_active_at: datetime | None


@dataclass(frozen=True)
class CreatorReach:
    """Follower count and average project likes of a creator outside the viewer's tags."""

    user_id: str
    followers: int
    avg_project_likes: float


@dataclass(frozen=True)
class TagSet:
    tool_ids: frozenset[str] = frozenset()
    stack_ids: frozenset[str] = frozenset()

    @classmethod
    def of(cls, tool_ids: Iterable[str] = (), stack_ids: Iterable[str] = ()) -> TagSet:
        return cls(frozenset(tool_ids), frozenset(stack_ids))

    def __bool__(self) -> bool:
        return bool(self.tool_ids or self.stack_ids)


# ---------------------------------------------------------------------------
# Ranked fetch
# ---------------------------------------------------------------------------


class RankWeights(Protocol):
    like: float
    comment: float
    repost: float
    bookmark: float
    quote: float


@dataclass(frozen=True)
class CandidateRank:
    """Ordering for a ranked fetch_candidates call.

        engagement = weighted counts - (1 - self_engagement_discount) * own counts
        gigs       = bids*gig_bid_weight + views*gig_view_weight
        score      = engagement                                      (decay_at None)
        score      = (engagement + freshness) * quality
                     / (age_hours + 2) ** gravity                    (age at decay_at)

    freshness applies to posts and projects only; quality is
    1 + quality_step per project signal (images, long description, tech stacks).
    SQL sources evaluate the same expression in the ORDER BY, so score() is the
    reference for what "top `limit`" means.
    """

    weights: RankWeights
    self_engagement_discount: float = 1.0
    decay_at: datetime | None = None
    gravity: float = 1.8
    freshness_bonus_base: float = 0.0
    freshness_bonus_hours: float = 0.0
    quality_step: float = 0.0
    long_description_chars: int = 100
    gig_bid_weight: float = 15.0
    gig_view_weight: float = 0.5

    def quality(self, row: CandidateRow) -> float:
        signals = (
            row.has_images,
            row.description_length > self.long_description_chars,
            row.has_tech_stacks,
        )
        return 1.0 + self.quality_step * sum(signals)

    def freshness(self, age_hours: float) -> float:
        if self.freshness_bonus_hours <= 0:
            return 0.0
        return max(
            0.0, self.freshness_bonus_base * (1.0 - age_hours / self.freshness_bonus_hours)
        )

    def score(self, row: CandidateRow) -> float:
        if row.kind == ContentKind.GIG:
            raw = (
                max(0, row.bids_count) * self.gig_bid_weight
                + max(0, row.views_count) * self.gig_view_weight
            )
        else:
            raw = weighted_engagement(row.engagement, self.weights)
            if row.self_engagement is not None:
                own = weighted_engagement(row.self_engagement, self.weights)
                raw -= (1.0 - self.self_engagement_discount) * own
            raw = max(0.0, raw)
        if self.decay_at is None:
            return raw
        age_hours = hours_since(row.sort_date, self.decay_at)
        if row.kind != ContentKind.GIG:
            raw += self.freshness(age_hours)
        return raw * self.quality(row) / math.pow(age_hours + 2.0, self.gravity)


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


class ContentSource(Protocol):
    async def fetch_candidates(
        self,
        kind: ContentKind,
        *,
        since: datetime | None,
        until: datetime | None,
        limit: int,
        exclude_ids: Collection[str] = (),
        rank: CandidateRank | None = None,
    ) -> list[CandidateRow]:
        """Live items of `kind` with since <= sort_date < until (either bound optional).

        Newest first, or by descending `rank.score(row)` when a rank is given; the
        ordering is applied before `limit`, so a ranked fetch returns the top
        `limit` of the whole window. Projects are published ones only, gigs open
        ones only.
        """
        ...

    async def fetch_by_authors(
        self,
        kind: ContentKind,
        author_ids: Collection[str],
        *,
        before: datetime | None,
        limit: int,
    ) -> list[CandidateRow]:
        """Items by any of `author_ids` with sort_date < before, newest first."""
        ...

    async def fetch_reposts(
        self,
        user_ids: Collection[str],
        *,
        before: datetime | None,
        limit: int,
    ) -> list[RepostRow]:
        ...

    async def preload(
        self, kind: ContentKind, ids: Collection[str]
    ) -> dict[str, ContentDetails]:
        """One batch load of author, media and tag associations. Unknown ids are omitted."""
        ...

    async def engagement_flags(
        self, viewer_id: str, keys: Collection[EngagementKey]
    ) -> dict[EngagementKey, EngagementFlags]:
        ...

    async def hourly_engagement(
        self,
        kind: ContentKind,
        ids: Collection[str],
        *,
        start: datetime,
        end: datetime,
    ) -> dict[str, int]:
        """Summed hourly engagement per id for start <= hour_bucket < end."""
        ...


class SocialGraphSource(Protocol):
    async def following_ids(self, user_id: str) -> set[str]: ...

    async def activity_counts(self, user_id: str) -> ViewerActivity: ...

    async def blocked_ids(self, user_id: str) -> set[str]:
        """Users blocked by, or blocking, `user_id`."""
        ...

    async def muted_ids(self, user_id: str) -> set[str]: ...

    async def dismissed_ids(self, user_id: str, *, since: datetime) -> set[str]: ...

    async def author_profiles(
        self, user_ids: Collection[str]
    ) -> dict[str, AuthorProfile]: ...

    async def follower_counts(self, user_ids: Collection[str]) -> dict[str, int]: ...

    async def load_users(self, user_ids: Collection[str]) -> dict[str, UserSummary]: ...

    async def friends_of_friends(
        self, user_id: str, *, exclude: Collection[str], limit: int
    ) -> dict[str, int]:
        """Candidate id -> number of the viewer's followees who follow them."""
        ...

    async def engaged_creators(
        self, user_id: str, *, exclude: Collection[str], limit: int
    ) -> list[CreatorEngagement]: ...

    async def creator_activity(
        self, *, exclude: Collection[str], since: datetime, limit: int
    ) -> list[CreatorActivity]:
        """Creators with a post or published project since `since`, most followed first."""
        ...

    async def viewer_tags(self, user_id: str, *, include_bookmarks: bool) -> TagSet:
        """AI tools and tech stacks of the projects the viewer liked (and bookmarked)."""
        ...

    async def creators_sharing_tags(
        self, tags: TagSet, *, exclude: Collection[str], limit: int
    ) -> dict[str, int]:
        """Creator id -> number of distinct `tags` used across their published projects."""
        ...

    async def creators_outside_tags(
        self, tags: TagSet, *, exclude: Collection[str], since: datetime, limit: int
    ) -> list[CreatorReach]:
        """Creators whose projects published since `since` use a tag absent from `tags`."""
        ...

    async def popular_active_users(
        self, user_id: str, *, since: datetime, limit: int
    ) -> list[UserSummary]:
        """Followed-by-someone users active since `since`, most followed first.

        Excludes `user_id` and everyone they follow.
        """
        ...
