from vibefeed.sources.base import ContentSource, SocialGraphSource
from vibefeed.sources.sql import SqlContentSource, SqlSocialGraphSource

__all__ = [
    "ContentSource",
    "SocialGraphSource",
    "SqlContentSource",
    "SqlSocialGraphSource",
]
