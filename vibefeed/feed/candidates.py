"""Candidate fetch for the for-you feed.

Posts, projects and gigs are fetched with three concurrent queries, each ranked
by the store with candidate_rank() and cut to the candidate limit, then their
associations with three concurrent batch preloads. Rows come back as
CandidateRow, get scored here, and leave as FeedItem.
"""

from __future__ import annotations

import asyncio
from collections.abc import Collection, Mapping
from datetime import datetime, timedelta

from vibefeed.feed.schemas import (
    ContentKind,
    FeedItem,
    GigPayload,
    PostPayload,
    ProjectPayload,
)
from vibefeed.feed.scoring import (
    DEFAULT_FEED_CONFIG,
    FeedConfig,
    hours_since,
    score_content,
    score_engagement_only,
    score_gig,
    utcnow,
)
from vibefeed.sources.base import CandidateRank, CandidateRow, ContentDetails, ContentSource

_WINDOW_KINDS = (ContentKind.POST, ContentKind.PROJECT, ContentKind.GIG)
_BACKFILL_KINDS = (ContentKind.POST, ContentKind.PROJECT)

_EMPTY_PAYLOADS = {
    ContentKind.POST: PostPayload,
    ContentKind.PROJECT: ProjectPayload,
    ContentKind.GIG: GigPayload,
}


def score_row(
    row: CandidateRow, now: datetime, config: FeedConfig = DEFAULT_FEED_CONFIG
) -> float:
    age_hours = hours_since(row.sort_date, now)
    if row.kind == ContentKind.GIG:
        return score_gig(row.bids_count, row.views_count, age_hours, config)
    return score_content(row.engagement, age_hours, config, row.self_engagement)


def candidate_rank(
    config: FeedConfig = DEFAULT_FEED_CONFIG, now: datetime | None = None
) -> CandidateRank:
    """Store-side ordering matching score_row for posts and projects, and score_gig
    up to its constant dampening. Without `now` it ranks on engagement alone, as
    backfill scoring does.
    """
    if now is None:
        return CandidateRank(
            weights=config.weights,
            self_engagement_discount=config.self_engagement_discount,
        )
    return CandidateRank(
        weights=config.weights,
        self_engagement_discount=config.self_engagement_discount,
        decay_at=now,
        gravity=config.gravity,
        freshness_bonus_base=config.freshness_bonus_base,
        freshness_bonus_hours=config.freshness_bonus_hours,
        gig_bid_weight=config.gig_bid_weight,
        gig_view_weight=config.gig_view_weight,
    )


def build_item(row: CandidateRow, details: ContentDetails | None, score: float) -> FeedItem:
    """Combine a scored row with its preloaded associations.

    A row whose details vanished between the two queries keeps an empty payload
    rather than dropping out of the page.
    """
    if details is not None:
        payload = details.payload
        author = details.author
    else:
        payload = _EMPTY_PAYLOADS[row.kind]()
        author = None
    return FeedItem(
        id=row.id,
        author_id=row.author_id,
        author=author,
        score=score,
        sort_date=row.sort_date,
        engagement=row.engagement,
        payload=payload,
    )


async def preload_all(
    content: ContentSource, ids_by_kind: Mapping[ContentKind, Collection[str]]
) -> dict[ContentKind, dict[str, ContentDetails]]:
    """One concurrent batch preload per kind; kinds with no ids are skipped."""
    kinds = [kind for kind, ids in ids_by_kind.items() if ids]
    results = await asyncio.gather(
        *(content.preload(kind, ids_by_kind[kind]) for kind in kinds)
    )
    loaded: dict[ContentKind, dict[str, ContentDetails]] = {kind: {} for kind in ids_by_kind}
    loaded.update(zip(kinds, results))
    return loaded


async def fetch_window(
    content: ContentSource,
    *,
    now: datetime | None = None,
    config: FeedConfig = DEFAULT_FEED_CONFIG,
) -> list[FeedItem]:
    """Score the top posts, projects and gigs from the recent window (full time decay).

    Each kind is cut to `candidate_limit` rows by the store, ordered by the same
    decayed score, so a busy window keeps its most engaging items rather than
    just its newest ones.
    """
    now = now or utcnow()
    since = now - timedelta(days=config.candidate_window_days)
    rank = candidate_rank(config, now)
    batches = await asyncio.gather(
        *(
            content.fetch_candidates(
                kind,
                since=since,
                until=None,
                limit=config.candidate_limit,
                rank=rank,
            )
            for kind in _WINDOW_KINDS
        )
    )
    rows = [row for batch in batches for row in batch]
    details = await preload_all(
        content,
        {kind: [row.id for row in batch] for kind, batch in zip(_WINDOW_KINDS, batches)},
    )
    return [
        build_item(row, details[row.kind].get(row.id), score_row(row, now, config))
        for row in rows
    ]


async def fetch_backfill(
    content: ContentSource,
    *,
    needed: int,
    exclude_ids: Collection[str],
    now: datetime | None = None,
    config: FeedConfig = DEFAULT_FEED_CONFIG,
) -> list[FeedItem]:
    """Older posts and projects ranked by engagement alone, at most `needed` of them."""
    if needed <= 0:
        return []
    now = now or utcnow()
    until = now - timedelta(days=config.candidate_window_days)
    batches = await asyncio.gather(
        *(
            content.fetch_candidates(
                kind,
                since=None,
                until=until,
                limit=needed,
                exclude_ids=exclude_ids,
                rank=candidate_rank(config),
            )
            for kind in _BACKFILL_KINDS
        )
    )
    excluded = set(exclude_ids)
    scored = [
        (score_engagement_only(row.engagement, config, row.self_engagement), row)
        for batch in batches
        for row in batch
        if row.id not in excluded
    ]
    scored.sort(key=lambda pair: (pair[0], pair[1].id), reverse=True)
    scored = scored[:needed]
    details = await preload_all(
        content,
        {
            kind: [row.id for _, row in scored if row.kind == kind]
            for kind in _BACKFILL_KINDS
        },
    )
    return [build_item(row, details[row.kind].get(row.id), score) for score, row in scored]
