"""Feed domain Pydantic V2 schemas."""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, computed_field


class ContentKind(str, enum.Enum):
    POST = "post"
    PROJECT = "project"
    GIG = "gig"
    REPOST = "repost"


class EngagementCounts(BaseModel):
    """Denormalised engagement counters carried by every content row."""

    model_config = ConfigDict(frozen=True)

    likes: int = Field(default=0, ge=0)
    comments: int = Field(default=0, ge=0)
    reposts: int = Field(default=0, ge=0)
    bookmarks: int = Field(default=0, ge=0)
    quotes: int = Field(default=0, ge=0)


class AuthorSummary(BaseModel):
    """Author card embedded in feed items."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    username: str
    display_name: str | None = None
    avatar_url: str | None = None


class UserSummary(AuthorSummary):
    """User card returned by who-to-follow."""

    bio: str | None = None
    follower_count: int | None = Field(
        default=None, description="Present when the source already knows it."
    )


# ---------------------------------------------------------------------------
# Payloads (tagged union keyed by `kind`)
# ---------------------------------------------------------------------------


class PostPayload(BaseModel):
    kind: Literal["post"] = "post"
    content: str = ""
    media_urls: list[str] = Field(default_factory=list)
    quoted_post_id: str | None = None
    quoted_project_id: str | None = None


class ProjectPayload(BaseModel):
    kind: Literal["project"] = "project"
    title: str = ""
    description: str = ""
    image_urls: list[str] = Field(default_factory=list)
    ai_tool_ids: list[str] = Field(default_factory=list)
    tech_stack_ids: list[str] = Field(default_factory=list)
    published_at: datetime | None = None


class GigPayload(BaseModel):
    kind: Literal["gig"] = "gig"
    title: str = ""
    description: str = ""
    bids_count: int = 0
    views_count: int = 0
    ai_tool_ids: list[str] = Field(default_factory=list)
    tech_stack_ids: list[str] = Field(default_factory=list)


class RepostPayload(BaseModel):
    """A followed user's repost; `original` is the reposted post or project."""

    kind: Literal["repost"] = "repost"
    reposter_id: str
    reposter: AuthorSummary | None = None
    original_id: str
    original: Annotated[
        Union[PostPayload, ProjectPayload], Field(discriminator="kind")
    ]

    @property
    def original_kind(self) -> ContentKind:
        return ContentKind(self.original.kind)


Payload = Annotated[
    Union[PostPayload, ProjectPayload, GigPayload, RepostPayload],
    Field(discriminator="kind"),
]


# ---------------------------------------------------------------------------
# Feed item
# ---------------------------------------------------------------------------


class FeedItem(BaseModel):
    """One ranked entry of a feed page.

    `score` is mutated in place by the boost stage; everything else is treated
    as read-only once the item leaves the candidate fetch. Viewer flags are
    applied on a copy (see feed.service.apply_viewer_flags) so cached items
    never carry them.
    """

    id: str
    author_id: str
    author: AuthorSummary | None = None
    score: float = Field(default=0.0, ge=0.0)
    sort_date: datetime
    engagement: EngagementCounts = Field(default_factory=EngagementCounts)
    payload: Payload
    liked: bool = False
    bookmarked: bool = False
    reposted: bool = False

    @computed_field  # type: ignore[prop-decorator]
    @property
    def kind(self) -> ContentKind:
        return ContentKind(self.payload.kind)

    @property
    def engagement_key(self) -> tuple[ContentKind, str]:
        """(kind, id) of the content a viewer can like/bookmark/repost.

        For reposts this is the original content, not the repost row.
        """
        if isinstance(self.payload, RepostPayload):
            return self.payload.original_kind, self.payload.original_id
        return self.kind, self.id


class ScoredProject(BaseModel):
    """Trending project with its score breakdown."""

    project: FeedItem
    score: float
    base_score: float
    velocity_boost: float = Field(description="min(1 + velocity, 3.0)")
