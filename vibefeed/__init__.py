from vibefeed.exceptions import RankingError, SourceUnavailableError
from vibefeed.feed.cache import FeedCache
from vibefeed.feed.schemas import FeedItem, ScoredProject, UserSummary
from vibefeed.feed.service import following_feed, for_you_feed
from vibefeed.pagination import (
    CursorPage,
    decode_score_cursor,
    decode_timestamp_cursor,
    encode_score_cursor,
    encode_timestamp_cursor,
)
from vibefeed.recommendations.suggestions import suggested_users
from vibefeed.recommendations.trending import trending_projects

__all__ = [
    "CursorPage",
    "FeedCache",
    "FeedItem",
    "RankingError",
    "ScoredProject",
    "SourceUnavailableError",
    "UserSummary",
    "decode_score_cursor",
    "decode_timestamp_cursor",
    "encode_score_cursor",
    "encode_timestamp_cursor",
    "following_feed",
    "for_you_feed",
    "suggested_users",
    "trending_projects",
]
