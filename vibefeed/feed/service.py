"""Feed service: ranking entry points, no transport imports.

Feed strategies implemented
---------------------------
- For You feed   : time-decayed engagement score + boosts, author diversity and
                   small-creator discovery slots, score cursor. The unfiltered
                   candidate pool is shared through FeedCache (60 s).
- Following tab  : reverse-chronological posts, projects and reposts from followed
                   users, timestamp cursor.

Authors the viewer blocked (either direction) or muted are removed from both
feeds. For the for-you feed that happens after the cache read so cached pools
stay viewer-independent; viewer engagement flags are applied to copies, never
to cached items.
"""

from __future__ import annotations

import asyncio
from collections.abc import Collection
from datetime import datetime

from vibefeed.feed import candidates
from vibefeed.feed.boosts import boost_items
from vibefeed.feed.cache import FIRST_PAGE_KEY, FeedCache, for_you_cache_key
from vibefeed.feed.diversity import diversify_with_discovery, rank_key, sort_by_score
from vibefeed.feed.schemas import (
    AuthorSummary,
    ContentKind,
    FeedItem,
    PostPayload,
    ProjectPayload,
    RepostPayload,
)
from vibefeed.feed.scoring import DEFAULT_FEED_CONFIG, FeedConfig, utcnow
from vibefeed.pagination import (
    CursorPage,
    decode_score_cursor,
    decode_timestamp_cursor,
    encode_score_cursor,
    encode_timestamp_cursor,
)
from vibefeed.sources.base import (
    ContentDetails,
    ContentSource,
    RepostRow,
    SocialGraphSource,
    TagSet,
)

_FOLLOWING_KINDS = (ContentKind.POST, ContentKind.PROJECT)


# ===========================================================================
# Shared helpers
# ===========================================================================


async def excluded_author_ids(graph: SocialGraphSource, viewer_id: str) -> set[str]:
    """Authors hidden from `viewer_id`: blocked in either direction, or muted."""
    blocked, muted = await asyncio.gather(
        graph.blocked_ids(viewer_id), graph.muted_ids(viewer_id)
    )
    return blocked | muted


async def apply_viewer_flags(
    content: ContentSource, items: list[FeedItem], viewer_id: str | None
) -> list[FeedItem]:
    """Return copies of `items` carrying the viewer's liked/bookmarked/reposted flags.

    One batch lookup for the whole page. Without a viewer every flag stays False.
    """
    if not items:
        return []
    if viewer_id is None:
        return [item.model_copy() for item in items]
    flags = await content.engagement_flags(viewer_id, {item.engagement_key for item in items})
    flagged: list[FeedItem] = []
    for item in items:
        found = flags.get(item.engagement_key)
        if found is None:
            flagged.append(item.model_copy())
            continue
        flagged.append(
            item.model_copy(
                update={
                    "liked": found.liked,
                    "bookmarked": found.bookmarked,
                    "reposted": found.reposted,
                }
            )
        )
    return flagged


# ===========================================================================
# For You feed
# ===========================================================================


async def build_for_you_pool(
    content: ContentSource,
    graph: SocialGraphSource,
    *,
    tags: TagSet = TagSet(),
    include_backfill: bool = True,
    now: datetime | None = None,
    config: FeedConfig = DEFAULT_FEED_CONFIG,
) -> list[FeedItem]:
    """Scored, boosted and sorted candidate pool before any viewer-specific step.

    Backfills with older items ranked by engagement when the recent window holds
    fewer than minimum_feed_items (first page only).
    """
    now = now or utcnow()
    items = await candidates.fetch_window(content, now=now, config=config)
    if include_backfill and len(items) < config.minimum_feed_items:
        items += await candidates.fetch_backfill(
            content,
            needed=config.minimum_feed_items - len(items),
            exclude_ids={item.id for item in items},
            now=now,
            config=config,
        )
    await boost_items(items, graph, tags, now=now, config=config)
    return sort_by_score(items)


async def for_you_feed(
    content: ContentSource,
    graph: SocialGraphSource,
    cache: FeedCache | None,
    *,
    limit: int = 20,
    cursor: str | None = None,
    viewer_id: str | None = None,
    tool_ids: Collection[str] = (),
    stack_ids: Collection[str] = (),
    config: FeedConfig = DEFAULT_FEED_CONFIG,
) -> CursorPage[FeedItem]:
    """Personalised ranked feed.

    Pages are cut on the final boosted (score, id): the next cursor carries the
    lowest key on this page and the next page holds only items ranking below it.
    An unparsable cursor is ignored and the first page is served.

    Known limitations:
    - The first page may come from a pool cached up to the cache TTL earlier,
      while cursor pages are scored fresh. Decay between the two can move a
      first-page item below the cursor, so it is served again; only the cursor
      item itself is excluded by id.
    - First pages are backfilled with older items when the window is thin, but
      cursor pages never fetch backfill. A first page's has_more may therefore
      count leftover backfill items that no later page returns.
    """
    if limit <= 0:
        return CursorPage(items=[], has_more=False)

    decoded = decode_score_cursor(cursor)
    tags = TagSet.of(tool_ids, stack_ids)

    async def compute() -> list[FeedItem]:
        return await build_for_you_pool(
            content, graph, tags=tags, include_backfill=decoded is None, config=config
        )

    async def load_pool() -> list[FeedItem]:
        key = for_you_cache_key(tool_ids, stack_ids) if decoded is None else None
        if key is None or cache is None:
            return await compute()
        pool, _ = await cache.get_or_compute(key, compute)
        return pool

    if viewer_id is not None:
        pool, hidden = await asyncio.gather(load_pool(), excluded_author_ids(graph, viewer_id))
        if hidden:
            pool = [item for item in pool if item.author_id not in hidden]
    else:
        pool = await load_pool()

    if decoded is not None:
        # Scores keep decaying between requests, so the boundary item itself may
        # now rank below the cursor; its id is excluded explicitly.
        cursor_id = decoded[1]
        pool = [
            item for item in pool if rank_key(item) < decoded and item.id != cursor_id
        ]

    page = await diversify_with_discovery(pool, graph, limit, config)
    if not page:
        return CursorPage(items=[], has_more=False)

    last = min(page, key=rank_key)
    has_more = any(rank_key(item) < rank_key(last) for item in pool)
    next_cursor = encode_score_cursor(last.score, last.id) if has_more else None
    items = await apply_viewer_flags(content, page, viewer_id)
    return CursorPage(items=items, next_cursor=next_cursor, has_more=has_more)


async def warm_for_you_cache(
    content: ContentSource,
    graph: SocialGraphSource,
    cache: FeedCache,
    config: FeedConfig = DEFAULT_FEED_CONFIG,
) -> int:
    """Recompute the unfiltered first-page pool and store it. Returns the pool size."""
    pool = await build_for_you_pool(content, graph, config=config)
    cache.put(FIRST_PAGE_KEY, pool)
    return len(pool)


# ===========================================================================
# Following feed
# ===========================================================================


def _repost_item(
    repost: RepostRow,
    original: ContentDetails,
    reposter_summary: AuthorSummary | None,
) -> FeedItem | None:
    if not isinstance(original.payload, (PostPayload, ProjectPayload)):
        return None
    return FeedItem(
        id=repost.id,
        author_id=original.author_id,
        author=original.author,
        sort_date=repost.reposted_at,
        engagement=original.engagement,
        payload=RepostPayload(
            reposter_id=repost.reposter_id,
            reposter=reposter_summary,
            original_id=repost.original_id,
            original=original.payload,
        ),
    )


async def following_feed(
    content: ContentSource,
    graph: SocialGraphSource,
    viewer_id: str,
    *,
    limit: int = 20,
    cursor: str | None = None,
) -> CursorPage[FeedItem]:
    """Reverse-chronological posts, projects and reposts from followed users."""
    if limit <= 0:
        return CursorPage(items=[], has_more=False)

    decoded = decode_timestamp_cursor(cursor)
    before = decoded[0] if decoded is not None else None

    followed, hidden = await asyncio.gather(
        graph.following_ids(viewer_id), excluded_author_ids(graph, viewer_id)
    )
    followed = followed - hidden - {viewer_id}
    if not followed:
        return CursorPage(items=[], has_more=False)

    fetch_limit = limit + 1
    posts, projects, reposts = await asyncio.gather(
        content.fetch_by_authors(ContentKind.POST, followed, before=before, limit=fetch_limit),
        content.fetch_by_authors(
            ContentKind.PROJECT, followed, before=before, limit=fetch_limit
        ),
        content.fetch_reposts(followed, before=before, limit=fetch_limit),
    )

    ids_by_kind: dict[ContentKind, set[str]] = {kind: set() for kind in _FOLLOWING_KINDS}
    for row in (*posts, *projects):
        ids_by_kind[row.kind].add(row.id)
    for repost in reposts:
        if repost.original_kind in ids_by_kind:
            ids_by_kind[repost.original_kind].add(repost.original_id)

    reposter_ids = {repost.reposter_id for repost in reposts}
    if reposter_ids:
        details, reposters = await asyncio.gather(
            candidates.preload_all(content, ids_by_kind), graph.load_users(reposter_ids)
        )
    else:
        details = await candidates.preload_all(content, ids_by_kind)
        reposters = {}

    items: list[FeedItem] = [
        candidates.build_item(row, details[row.kind].get(row.id), 0.0)
        for row in (*posts, *projects)
    ]
    for repost in reposts:
        original = details.get(repost.original_kind, {}).get(repost.original_id)
        if original is None or original.author_id in hidden:
            continue
        item = _repost_item(repost, original, reposters.get(repost.reposter_id))
        if item is not None:
            items.append(item)

    items.sort(key=lambda item: (item.sort_date, item.id), reverse=True)
    has_more = len(items) > limit
    page = items[:limit]
    next_cursor = (
        encode_timestamp_cursor(page[-1].sort_date, page[-1].id) if has_more else None
    )
    return CursorPage(
        items=await apply_viewer_flags(content, page, viewer_id),
        next_cursor=next_cursor,
        has_more=has_more,
    )
