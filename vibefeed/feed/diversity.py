"""Author diversity and small-creator discovery for a ranked page.

diversify() caps how many items one author can place on a page: an item is kept
only while its author's running count is below max_items_per_author and the page
is not full. allocate_discovery() then reserves a few positions for authors with
fewer than small_creator_follower_threshold followers and spreads them evenly
through the page instead of stacking them at one end.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Iterable, Mapping

from vibefeed.exceptions import SourceUnavailableError
from vibefeed.feed.schemas import FeedItem
from vibefeed.feed.scoring import DEFAULT_FEED_CONFIG, FeedConfig
from vibefeed.sources.base import SocialGraphSource

logger = logging.getLogger(__name__)


def rank_key(item: FeedItem) -> tuple[float, str]:
    return item.score, item.id


def sort_by_score(items: Iterable[FeedItem]) -> list[FeedItem]:
    """Score descending, id descending on ties."""
    return sorted(items, key=rank_key, reverse=True)


def diversify(
    items: Iterable[FeedItem],
    limit: int,
    config: FeedConfig = DEFAULT_FEED_CONFIG,
) -> list[FeedItem]:
    """Drop items whose author already has max_items_per_author kept, stop at `limit`."""
    kept: list[FeedItem] = []
    per_author: Counter[str] = Counter()
    for item in items:
        if len(kept) >= limit:
            break
        if per_author[item.author_id] >= config.max_items_per_author:
            continue
        per_author[item.author_id] += 1
        kept.append(item)
    return kept


def _pick_slots(small: list[FeedItem], slots: int) -> tuple[list[FeedItem], list[FeedItem]]:
    """Top `slots` small-creator items, one per author first, then by score."""
    chosen: list[FeedItem] = []
    seen_authors: set[str] = set()
    for item in small:
        if len(chosen) == slots:
            break
        if item.author_id not in seen_authors:
            seen_authors.add(item.author_id)
            chosen.append(item)
    if len(chosen) < slots:
        chosen_ids = {id(item) for item in chosen}
        for item in small:
            if len(chosen) == slots:
                break
            if id(item) not in chosen_ids:
                chosen.append(item)
    chosen = sort_by_score(chosen)
    chosen_ids = {id(item) for item in chosen}
    rest = [item for item in small if id(item) not in chosen_ids]
    return chosen, rest


def interleave(main: list[FeedItem], discovery: list[FeedItem]) -> list[FeedItem]:
    """Insert one discovery item after every `interval`-th main item.

    interval = max(1, (len(main) + len(discovery)) // (len(discovery) + 1)).
    Discovery items left over once the main list is exhausted go to the front.
    """
    if not discovery:
        return list(main)
    if not main:
        return list(discovery)
    interval = max(1, (len(main) + len(discovery)) // (len(discovery) + 1))
    result: list[FeedItem] = []
    pending = list(discovery)
    for position, item in enumerate(main, start=1):
        result.append(item)
        if pending and position % interval == 0:
            result.append(pending.pop(0))
    return pending + result


def allocate_discovery(
    items: list[FeedItem],
    follower_counts: Mapping[str, int],
    limit: int,
    config: FeedConfig = DEFAULT_FEED_CONFIG,
) -> list[FeedItem]:
    """Guarantee up to min_discovery_slots small-creator items in the page.

    Authors missing from `follower_counts` count as established.
    Output length is min(limit, len(items)).
    """
    if limit <= 0 or not items:
        return []
    threshold = config.small_creator_follower_threshold
    small: list[FeedItem] = []
    established: list[FeedItem] = []
    for item in items:
        followers = follower_counts.get(item.author_id)
        if followers is not None and followers < threshold:
            small.append(item)
        else:
            established.append(item)
    small = sort_by_score(small)
    established = sort_by_score(established)

    slots = min(config.min_discovery_slots, len(small), limit)
    discovery, small_rest = _pick_slots(small, slots)
    main = sort_by_score(established + small_rest)[: limit - slots]
    return interleave(main, discovery)


async def diversify_with_discovery(
    items: list[FeedItem],
    graph: SocialGraphSource,
    limit: int,
    config: FeedConfig = DEFAULT_FEED_CONFIG,
) -> list[FeedItem]:
    """diversify() then allocate_discovery(), degrading to no discovery on lookup failure."""
    diversified = diversify(items, limit, config)
    if not diversified:
        return diversified
    author_ids = {item.author_id for item in diversified}
    try:
        follower_counts = await graph.follower_counts(author_ids)
    except SourceUnavailableError as exc:
        logger.warning("Follower counts unavailable, skipping discovery slots: %s", exc)
        return diversified[:limit]
    return allocate_discovery(diversified, follower_counts, limit, config)
