"""SQLAlchemy implementations of ContentSource and SocialGraphSource.

Read-only: nothing here creates, migrates or writes rows. Each method opens its
own AsyncSession from the factory, because one session cannot serve the
concurrent calls the feed fans out. SQLAlchemy and socket errors surface as
SourceUnavailableError.

Polymorphic tables (likes, bookmarks, reposts, engagement_hourly) store the
content type as "Post" / "Project".
"""

from __future__ import annotations

import uuid
from collections import defaultdict
from collections.abc import AsyncIterator, Collection
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, NamedTuple

from sqlalchemy import DateTime, Float, and_, case, func, literal, or_, select, union, union_all
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.orm import aliased
from sqlalchemy.sql.functions import FunctionElement

from vibefeed.exceptions import SourceUnavailableError
from vibefeed.feed.schemas import (
    AuthorSummary,
    ContentKind,
    EngagementCounts,
    GigPayload,
    PostPayload,
    ProjectPayload,
    UserSummary,
)
from vibefeed.feed.scoring import as_utc
from vibefeed.models import (
    Bookmark,
    DismissedSuggestion,
    EngagementHourly,
    Follow,
    Gig,
    Like,
    Post,
    PostMedia,
    Project,
    ProjectImage,
    Repost,
    User,
    UserBlock,
    UserMute,
    gig_ai_tools,
    gig_tech_stacks,
    project_ai_tools,
    project_tech_stacks,
)
from vibefeed.sources.base import (
    AuthorProfile,
    CandidateRank,
    CandidateRow,
    ContentDetails,
    CreatorActivity,
    CreatorEngagement,
    CreatorReach,
    EngagementFlags,
    EngagementKey,
    RepostRow,
    TagSet,
    ViewerActivity,
)

_TYPE_NAMES: dict[ContentKind, str] = {
    ContentKind.POST: "Post",
    ContentKind.PROJECT: "Project",
}
_KINDS_BY_TYPE = {name: kind for kind, name in _TYPE_NAMES.items()}

_PUBLISHED = "published"
_OPEN = "open"


def _uuid(value: str | uuid.UUID) -> uuid.UUID:
    return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))


def _uuids(values: Collection[str]) -> list[uuid.UUID]:
    return [_uuid(value) for value in values]


def _tags(values: Collection[str]) -> list[uuid.UUID]:
    return sorted(_uuids(values))


def _counts(model: Post | Project) -> EngagementCounts:
    return EngagementCounts(
        likes=model.likes_count or 0,
        comments=model.comments_count or 0,
        reposts=model.reposts_count or 0,
        bookmarks=model.bookmarks_count or 0,
        quotes=model.quotes_count or 0,
    )


def _author(user: User | None) -> AuthorSummary | None:
    if user is None:
        return None
    return AuthorSummary(
        id=str(user.id),
        username=user.username,
        display_name=user.display_name,
        avatar_url=user.avatar_url,
    )


def _user_summary(user: User) -> UserSummary:
    return UserSummary(
        id=str(user.id),
        username=user.username,
        display_name=user.display_name,
        avatar_url=user.avatar_url,
        bio=user.bio,
    )


class _SqlSource:
    source_name = "sql"

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session:
                yield session
        except (SQLAlchemyError, OSError) as exc:
            raise SourceUnavailableError(self.source_name, operation, str(exc)) from exc


# ===========================================================================
# Content
# ===========================================================================


def _self_engagement_columns(model: Any, type_name: str) -> list[Any]:
    """Correlated counts of the author's own likes, bookmarks and reposts on each row."""
    own_likes = (
        select(func.count(Like.id))
        .where(
            Like.likeable_type == type_name,
            Like.likeable_id == model.id,
            Like.user_id == model.user_id,
        )
        .correlate(model)
        .scalar_subquery()
        .label("own_likes")
    )
    own_bookmarks = (
        select(func.count(Bookmark.id))
        .where(
            Bookmark.bookmarkable_type == type_name,
            Bookmark.bookmarkable_id == model.id,
            Bookmark.user_id == model.user_id,
        )
        .correlate(model)
        .scalar_subquery()
        .label("own_bookmarks")
    )
    own_reposts = (
        select(func.count(Repost.id))
        .where(
            Repost.repostable_type == type_name,
            Repost.repostable_id == model.id,
            Repost.user_id == model.user_id,
        )
        .correlate(model)
        .scalar_subquery()
        .label("own_reposts")
    )
    return [own_likes, own_bookmarks, own_reposts]


# ---------------------------------------------------------------------------
# Ranked fetch expressions
# ---------------------------------------------------------------------------


class greatest(FunctionElement):
    type = Float()
    name = "greatest"
    inherit_cache = True


@compiles(greatest)
def _compile_greatest(element: greatest, compiler: Any, **kw: Any) -> str:
    return "GREATEST(%s)" % compiler.process(element.clauses, **kw)


@compiles(greatest, "sqlite")
def _compile_greatest_sqlite(element: greatest, compiler: Any, **kw: Any) -> str:
    # SQLite's multi-argument max() is its scalar GREATEST.
    return "max(%s)" % compiler.process(element.clauses, **kw)


class hours_between(FunctionElement):
    """Fractional hours from a timestamp column to a later timestamp."""

    type = Float()
    name = "hours_between"
    inherit_cache = True


@compiles(hours_between)
def _compile_hours_between(element: hours_between, compiler: Any, **kw: Any) -> str:
    start, end = list(element.clauses)
    return "(EXTRACT(EPOCH FROM (CAST(%s AS TIMESTAMP WITH TIME ZONE) - %s)) / 3600.0)" % (
        compiler.process(end, **kw),
        compiler.process(start, **kw),
    )


@compiles(hours_between, "sqlite")
def _compile_hours_between_sqlite(element: hours_between, compiler: Any, **kw: Any) -> str:
    start, end = list(element.clauses)
    return "((julianday(%s) - julianday(%s)) * 24.0)" % (
        compiler.process(end, **kw),
        compiler.process(start, **kw),
    )


class _CandidateQuery(NamedTuple):
    stmt: Any
    model: Any
    sort_col: Any
    # Author's own likes, bookmarks, reposts (posts and projects)
    own: tuple[Any, ...] = ()
    # has_images, description_length, has_stacks (projects)
    quality: tuple[Any, ...] = ()


def _rank_expression(kind: ContentKind, query: _CandidateQuery, rank: CandidateRank) -> Any:
    """SQL form of CandidateRank.score for one candidate query."""
    model = query.model
    if kind == ContentKind.GIG:
        raw = (
            func.coalesce(model.bids_count, 0) * rank.gig_bid_weight
            + func.coalesce(model.views_count, 0) * rank.gig_view_weight
        )
    else:
        w = rank.weights
        raw = (
            func.coalesce(model.likes_count, 0) * w.like
            + func.coalesce(model.comments_count, 0) * w.comment
            + func.coalesce(model.reposts_count, 0) * w.repost
            + func.coalesce(model.bookmarks_count, 0) * w.bookmark
            + func.coalesce(model.quotes_count, 0) * w.quote
        )
        if rank.self_engagement_discount != 1.0:
            own_likes, own_bookmarks, own_reposts = query.own
            own = own_likes * w.like + own_bookmarks * w.bookmark + own_reposts * w.repost
            raw = raw - own * (1.0 - rank.self_engagement_discount)
        raw = greatest(raw, 0.0)
    if rank.decay_at is None:
        return raw

    now = literal(as_utc(rank.decay_at), DateTime(timezone=True))
    age = greatest(hours_between(query.sort_col, now), 0.0)
    if kind != ContentKind.GIG and rank.freshness_bonus_hours > 0:
        fresh = (1.0 - age / rank.freshness_bonus_hours) * rank.freshness_bonus_base
        raw = raw + greatest(fresh, 0.0)
    if query.quality and rank.quality_step:
        has_images, description_length, has_stacks = query.quality
        step = rank.quality_step
        raw = raw * (
            1.0
            + case((has_images, step), else_=0.0)
            + case((description_length > rank.long_description_chars, step), else_=0.0)
            + case((has_stacks, step), else_=0.0)
        )
    return raw / func.power(age + 2.0, rank.gravity)


class SqlContentSource(_SqlSource):
    source_name = "content"

    def _candidate_query(self, kind: ContentKind) -> _CandidateQuery:
        """Select, model, sort_date column and rank inputs for live items of `kind`."""
        if kind == ContentKind.POST:
            own = _self_engagement_columns(Post, "Post")
            return _CandidateQuery(select(Post, *own), Post, Post.inserted_at, tuple(own))
        if kind == ContentKind.PROJECT:
            own = _self_engagement_columns(Project, "Project")
            has_images = (
                select(ProjectImage.id)
                .where(ProjectImage.project_id == Project.id)
                .correlate(Project)
                .exists()
                .label("has_images")
            )
            has_stacks = (
                select(project_tech_stacks.c.project_id)
                .where(project_tech_stacks.c.project_id == Project.id)
                .correlate(Project)
                .exists()
                .label("has_stacks")
            )
            description_length = func.length(func.coalesce(Project.description, "")).label(
                "description_length"
            )
            stmt = select(
                Project, *own, has_images, has_stacks, description_length
            ).where(Project.status == _PUBLISHED, Project.published_at.is_not(None))
            return _CandidateQuery(
                stmt,
                Project,
                Project.published_at,
                tuple(own),
                (has_images, description_length, has_stacks),
            )
        if kind == ContentKind.GIG:
            return _CandidateQuery(select(Gig).where(Gig.status == _OPEN), Gig, Gig.inserted_at)
        raise ValueError(f"No candidate query for {kind!r}")

    @staticmethod
    def _to_row(kind: ContentKind, row: Any) -> CandidateRow:
        model = row[0]
        if kind == ContentKind.GIG:
            return CandidateRow(
                id=str(model.id),
                kind=kind,
                author_id=str(model.user_id),
                sort_date=as_utc(model.inserted_at),
                bids_count=model.bids_count or 0,
                views_count=model.views_count or 0,
            )
        own = EngagementCounts(
            likes=row.own_likes or 0,
            bookmarks=row.own_bookmarks or 0,
            reposts=row.own_reposts or 0,
        )
        if kind == ContentKind.PROJECT:
            return CandidateRow(
                id=str(model.id),
                kind=kind,
                author_id=str(model.user_id),
                sort_date=as_utc(model.published_at),
                engagement=_counts(model),
                self_engagement=own,
                has_images=bool(row.has_images),
                description_length=row.description_length or 0,
                has_tech_stacks=bool(row.has_stacks),
            )
        return CandidateRow(
            id=str(model.id),
            kind=kind,
            author_id=str(model.user_id),
            sort_date=as_utc(model.inserted_at),
            engagement=_counts(model),
            self_engagement=own,
        )

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
        query = self._candidate_query(kind)
        stmt, model, sort_col = query.stmt, query.model, query.sort_col
        if since is not None:
            stmt = stmt.where(sort_col >= since)
        if until is not None:
            stmt = stmt.where(sort_col < until)
        if exclude_ids:
            stmt = stmt.where(model.id.not_in(_uuids(exclude_ids)))
        if rank is not None:
            stmt = stmt.order_by(_rank_expression(kind, query, rank).desc(), model.id.desc())
        else:
            stmt = stmt.order_by(sort_col.desc(), model.id.desc())
        async with self._session("fetch_candidates") as session:
            result = await session.execute(stmt.limit(limit))
            return [self._to_row(kind, row) for row in result.all()]

    async def fetch_by_authors(
        self,
        kind: ContentKind,
        author_ids: Collection[str],
        *,
        before: datetime | None,
        limit: int,
    ) -> list[CandidateRow]:
        if not author_ids:
            return []
        query = self._candidate_query(kind)
        stmt, model, sort_col = query.stmt, query.model, query.sort_col
        stmt = stmt.where(model.user_id.in_(_uuids(author_ids)))
        if before is not None:
            stmt = stmt.where(sort_col < before)
        stmt = stmt.order_by(sort_col.desc(), model.id.desc()).limit(limit)
        async with self._session("fetch_by_authors") as session:
            result = await session.execute(stmt)
            return [self._to_row(kind, row) for row in result.all()]

    async def fetch_reposts(
        self,
        user_ids: Collection[str],
        *,
        before: datetime | None,
        limit: int,
    ) -> list[RepostRow]:
        if not user_ids:
            return []
        stmt = select(Repost).where(
            Repost.user_id.in_(_uuids(user_ids)),
            Repost.repostable_type.in_(list(_KINDS_BY_TYPE)),
        )
        if before is not None:
            stmt = stmt.where(Repost.inserted_at < before)
        stmt = stmt.order_by(Repost.inserted_at.desc(), Repost.id.desc()).limit(limit)
        async with self._session("fetch_reposts") as session:
            reposts = (await session.execute(stmt)).scalars().all()
        return [
            RepostRow(
                id=str(repost.id),
                reposter_id=str(repost.user_id),
                original_kind=_KINDS_BY_TYPE[repost.repostable_type],
                original_id=str(repost.repostable_id),
                reposted_at=as_utc(repost.inserted_at),
            )
            for repost in reposts
        ]

    # -----------------------------------------------------------------------
    # Association preload
    # -----------------------------------------------------------------------

    async def preload(
        self, kind: ContentKind, ids: Collection[str]
    ) -> dict[str, ContentDetails]:
        if not ids:
            return {}
        keys = _uuids(ids)
        async with self._session("preload") as session:
            if kind == ContentKind.POST:
                return await self._preload_posts(session, keys)
            if kind == ContentKind.PROJECT:
                return await self._preload_projects(session, keys)
            if kind == ContentKind.GIG:
                return await self._preload_gigs(session, keys)
        raise ValueError(f"Cannot preload {kind!r}")

    @staticmethod
    async def _grouped(session: AsyncSession, stmt: Any) -> dict[uuid.UUID, list[Any]]:
        grouped: dict[uuid.UUID, list[Any]] = defaultdict(list)
        for owner_id, value in (await session.execute(stmt)).all():
            grouped[owner_id].append(value)
        return grouped

    async def _preload_posts(
        self, session: AsyncSession, keys: list[uuid.UUID]
    ) -> dict[str, ContentDetails]:
        rows = (
            await session.execute(
                select(Post, User).outerjoin(User, User.id == Post.user_id).where(Post.id.in_(keys))
            )
        ).all()
        media = await self._grouped(
            session,
            select(PostMedia.post_id, PostMedia.url)
            .where(PostMedia.post_id.in_(keys))
            .order_by(PostMedia.post_id, PostMedia.position),
        )
        return {
            str(post.id): ContentDetails(
                id=str(post.id),
                author_id=str(post.user_id),
                author=_author(user),
                engagement=_counts(post),
                payload=PostPayload(
                    content=post.content or "",
                    media_urls=media.get(post.id, []),
                    quoted_post_id=str(post.quoted_post_id) if post.quoted_post_id else None,
                    quoted_project_id=(
                        str(post.quoted_project_id) if post.quoted_project_id else None
                    ),
                ),
            )
            for post, user in rows
        }

    async def _preload_projects(
        self, session: AsyncSession, keys: list[uuid.UUID]
    ) -> dict[str, ContentDetails]:
        rows = (
            await session.execute(
                select(Project, User)
                .outerjoin(User, User.id == Project.user_id)
                .where(Project.id.in_(keys))
            )
        ).all()
        images = await self._grouped(
            session,
            select(ProjectImage.project_id, ProjectImage.url)
            .where(ProjectImage.project_id.in_(keys))
            .order_by(ProjectImage.project_id, ProjectImage.position),
        )
        tools = await self._grouped(
            session,
            select(project_ai_tools.c.project_id, project_ai_tools.c.ai_tool_id).where(
                project_ai_tools.c.project_id.in_(keys)
            ),
        )
        stacks = await self._grouped(
            session,
            select(project_tech_stacks.c.project_id, project_tech_stacks.c.tech_stack_id).where(
                project_tech_stacks.c.project_id.in_(keys)
            ),
        )
        return {
            str(project.id): ContentDetails(
                id=str(project.id),
                author_id=str(project.user_id),
                author=_author(user),
                engagement=_counts(project),
                payload=ProjectPayload(
                    title=project.title,
                    description=project.description or "",
                    image_urls=images.get(project.id, []),
                    ai_tool_ids=[str(tag) for tag in tools.get(project.id, [])],
                    tech_stack_ids=[str(tag) for tag in stacks.get(project.id, [])],
                    published_at=as_utc(project.published_at) if project.published_at else None,
                ),
            )
            for project, user in rows
        }

    async def _preload_gigs(
        self, session: AsyncSession, keys: list[uuid.UUID]
    ) -> dict[str, ContentDetails]:
        rows = (
            await session.execute(
                select(Gig, User).outerjoin(User, User.id == Gig.user_id).where(Gig.id.in_(keys))
            )
        ).all()
        tools = await self._grouped(
            session,
            select(gig_ai_tools.c.gig_id, gig_ai_tools.c.ai_tool_id).where(
                gig_ai_tools.c.gig_id.in_(keys)
            ),
        )
        stacks = await self._grouped(
            session,
            select(gig_tech_stacks.c.gig_id, gig_tech_stacks.c.tech_stack_id).where(
                gig_tech_stacks.c.gig_id.in_(keys)
            ),
        )
        return {
            str(gig.id): ContentDetails(
                id=str(gig.id),
                author_id=str(gig.user_id),
                author=_author(user),
                payload=GigPayload(
                    title=gig.title,
                    description=gig.description or "",
                    bids_count=gig.bids_count or 0,
                    views_count=gig.views_count or 0,
                    ai_tool_ids=[str(tag) for tag in tools.get(gig.id, [])],
                    tech_stack_ids=[str(tag) for tag in stacks.get(gig.id, [])],
                ),
            )
            for gig, user in rows
        }

    # -----------------------------------------------------------------------
    # Viewer flags and hourly rollups
    # -----------------------------------------------------------------------

    async def engagement_flags(
        self, viewer_id: str, keys: Collection[EngagementKey]
    ) -> dict[EngagementKey, EngagementFlags]:
        flags = {key: EngagementFlags() for key in keys}
        by_type: dict[str, list[uuid.UUID]] = defaultdict(list)
        for kind, item_id in keys:
            type_name = _TYPE_NAMES.get(ContentKind(kind))
            if type_name is not None:
                by_type[type_name].append(_uuid(item_id))
        if not by_type:
            return flags

        viewer = _uuid(viewer_id)
        tables = (
            ("liked", Like.likeable_type, Like.likeable_id, Like.user_id),
            ("bookmarked", Bookmark.bookmarkable_type, Bookmark.bookmarkable_id, Bookmark.user_id),
            ("reposted", Repost.repostable_type, Repost.repostable_id, Repost.user_id),
        )
        hits: dict[EngagementKey, dict[str, bool]] = defaultdict(dict)
        async with self._session("engagement_flags") as session:
            for flag, type_col, id_col, user_col in tables:
                conditions = [
                    and_(type_col == type_name, id_col.in_(ids))
                    for type_name, ids in by_type.items()
                ]
                result = await session.execute(
                    select(type_col, id_col).where(user_col == viewer, or_(*conditions))
                )
                for type_name, item_id in result.all():
                    hits[(_KINDS_BY_TYPE[type_name], str(item_id))][flag] = True

        for key, found in hits.items():
            if key in flags:
                flags[key] = EngagementFlags(**found)
        return flags

    async def hourly_engagement(
        self,
        kind: ContentKind,
        ids: Collection[str],
        *,
        start: datetime,
        end: datetime,
    ) -> dict[str, int]:
        type_name = _TYPE_NAMES.get(kind)
        if not ids or type_name is None:
            return {}
        total = (
            EngagementHourly.likes
            + EngagementHourly.comments
            + EngagementHourly.reposts
            + EngagementHourly.bookmarks
        )
        stmt = (
            select(EngagementHourly.content_id, func.sum(total))
            .where(
                EngagementHourly.content_type == type_name,
                EngagementHourly.content_id.in_(_uuids(ids)),
                EngagementHourly.hour_bucket >= start,
                EngagementHourly.hour_bucket < end,
            )
            .group_by(EngagementHourly.content_id)
        )
        async with self._session("hourly_engagement") as session:
            result = await session.execute(stmt)
            return {str(content_id): int(value or 0) for content_id, value in result.all()}


# ===========================================================================
# Social graph
# ===========================================================================


def _follower_counts_subquery() -> Any:
    return (
        select(Follow.following_id.label("user_id"), func.count(Follow.id).label("followers"))
        .group_by(Follow.following_id)
        .subquery()
    )


def _recent_activity_subquery(since: datetime) -> Any:
    """user_id -> latest post or published project at/after `since`."""
    posts = select(
        Post.user_id.label("user_id"), Post.inserted_at.label("active_at")
    ).where(Post.inserted_at >= since)
    projects = select(
        Project.user_id.label("user_id"), Project.published_at.label("active_at")
    ).where(Project.status == _PUBLISHED, Project.published_at >= since)
    activity = union_all(posts, projects).subquery()
    return (
        select(
            activity.c.user_id.label("user_id"),
            func.max(activity.c.active_at).label("last_active_at"),
        )
        .group_by(activity.c.user_id)
        .subquery()
    )


class SqlSocialGraphSource(_SqlSource):
    source_name = "social_graph"

    async def _ids(self, operation: str, stmt: Any) -> set[str]:
        async with self._session(operation) as session:
            return {str(value) for value in (await session.execute(stmt)).scalars().all()}

    async def following_ids(self, user_id: str) -> set[str]:
        return await self._ids(
            "following_ids",
            select(Follow.following_id).where(Follow.follower_id == _uuid(user_id)),
        )

    async def activity_counts(self, user_id: str) -> ViewerActivity:
        viewer = _uuid(user_id)
        async with self._session("activity_counts") as session:
            follows = await session.scalar(
                select(func.count(Follow.id)).where(Follow.follower_id == viewer)
            )
            likes = await session.scalar(
                select(func.count(Like.id)).where(Like.user_id == viewer)
            )
        return ViewerActivity(follows=follows or 0, likes=likes or 0)

    async def blocked_ids(self, user_id: str) -> set[str]:
        viewer = _uuid(user_id)
        return await self._ids(
            "blocked_ids",
            union(
                select(UserBlock.blocked_id).where(UserBlock.blocker_id == viewer),
                select(UserBlock.blocker_id).where(UserBlock.blocked_id == viewer),
            ),
        )

    async def muted_ids(self, user_id: str) -> set[str]:
        return await self._ids(
            "muted_ids", select(UserMute.muted_id).where(UserMute.muter_id == _uuid(user_id))
        )

    async def dismissed_ids(self, user_id: str, *, since: datetime) -> set[str]:
        return await self._ids(
            "dismissed_ids",
            select(DismissedSuggestion.dismissed_user_id).where(
                DismissedSuggestion.user_id == _uuid(user_id),
                DismissedSuggestion.dismissed_at > since,
            ),
        )

    async def author_profiles(self, user_ids: Collection[str]) -> dict[str, AuthorProfile]:
        if not user_ids:
            return {}
        stmt = select(User.id, User.subscription_status, User.inserted_at).where(
            User.id.in_(_uuids(user_ids))
        )
        async with self._session("author_profiles") as session:
            rows = (await session.execute(stmt)).all()
        return {
            str(user_id): AuthorProfile(
                id=str(user_id),
                subscription_status=status,
                joined_at=as_utc(joined) if joined else None,
            )
            for user_id, status, joined in rows
        }

    async def follower_counts(self, user_ids: Collection[str]) -> dict[str, int]:
        if not user_ids:
            return {}
        stmt = (
            select(Follow.following_id, func.count(Follow.id))
            .where(Follow.following_id.in_(_uuids(user_ids)))
            .group_by(Follow.following_id)
        )
        async with self._session("follower_counts") as session:
            rows = (await session.execute(stmt)).all()
        counts = {str(user_id): 0 for user_id in user_ids}
        counts.update({str(user_id): count for user_id, count in rows})
        return counts

    async def load_users(self, user_ids: Collection[str]) -> dict[str, UserSummary]:
        if not user_ids:
            return {}
        async with self._session("load_users") as session:
            users = (
                await session.execute(select(User).where(User.id.in_(_uuids(user_ids))))
            ).scalars().all()
        return {str(user.id): _user_summary(user) for user in users}

    # -----------------------------------------------------------------------
    # Suggestion signals
    # -----------------------------------------------------------------------

    async def friends_of_friends(
        self, user_id: str, *, exclude: Collection[str], limit: int
    ) -> dict[str, int]:
        mine = aliased(Follow)
        theirs = aliased(Follow)
        mutuals = func.count(func.distinct(theirs.follower_id))
        stmt = (
            select(theirs.following_id, mutuals)
            .join(mine, mine.following_id == theirs.follower_id)
            .where(
                mine.follower_id == _uuid(user_id),
                theirs.following_id.not_in(_uuids(exclude)),
            )
            .group_by(theirs.following_id)
            .order_by(mutuals.desc(), theirs.following_id)
            .limit(limit)
        )
        async with self._session("friends_of_friends") as session:
            rows = (await session.execute(stmt)).all()
        return {str(candidate): count for candidate, count in rows}

    async def engaged_creators(
        self, user_id: str, *, exclude: Collection[str], limit: int
    ) -> list[CreatorEngagement]:
        viewer = _uuid(user_id)
        excluded = _uuids(exclude)

        def creators(model: Any, type_name: str, table: Any, type_col: Any, id_col: Any) -> Any:
            count = func.count(func.distinct(table.id))
            return (
                select(model.user_id, count)
                .join(table, and_(id_col == model.id, type_col == type_name))
                .where(table.user_id == viewer, model.user_id.not_in(excluded))
                .group_by(model.user_id)
                .order_by(count.desc())
                .limit(limit)
            )

        likes: dict[str, int] = defaultdict(int)
        bookmarks: dict[str, int] = defaultdict(int)
        async with self._session("engaged_creators") as session:
            for model, type_name in ((Post, "Post"), (Project, "Project")):
                liked = await session.execute(
                    creators(model, type_name, Like, Like.likeable_type, Like.likeable_id)
                )
                for creator, count in liked.all():
                    likes[str(creator)] += count
                saved = await session.execute(
                    creators(
                        model,
                        type_name,
                        Bookmark,
                        Bookmark.bookmarkable_type,
                        Bookmark.bookmarkable_id,
                    )
                )
                for creator, count in saved.all():
                    bookmarks[str(creator)] += count
        return [
            CreatorEngagement(user_id=creator, likes=likes[creator], bookmarks=bookmarks[creator])
            for creator in sorted(set(likes) | set(bookmarks))
        ]

    async def creator_activity(
        self, *, exclude: Collection[str], since: datetime, limit: int
    ) -> list[CreatorActivity]:
        activity = _recent_activity_subquery(since)
        followers = _follower_counts_subquery()
        follower_count = func.coalesce(followers.c.followers, 0)
        stmt = (
            select(activity.c.user_id, follower_count, activity.c.last_active_at)
            .outerjoin(followers, followers.c.user_id == activity.c.user_id)
            .where(activity.c.user_id.not_in(_uuids(exclude)))
            .order_by(follower_count.desc(), activity.c.user_id)
            .limit(limit)
        )
        async with self._session("creator_activity") as session:
            rows = (await session.execute(stmt)).all()
        return [
            CreatorActivity(
                user_id=str(creator),
                followers=count,
                last_active_at=as_utc(last_active) if last_active else None,
            )
            for creator, count, last_active in rows
        ]

    async def viewer_tags(self, user_id: str, *, include_bookmarks: bool) -> TagSet:
        viewer = _uuid(user_id)
        engaged = [
            select(Like.likeable_id.label("project_id")).where(
                Like.user_id == viewer, Like.likeable_type == "Project"
            )
        ]
        if include_bookmarks:
            engaged.append(
                select(Bookmark.bookmarkable_id.label("project_id")).where(
                    Bookmark.user_id == viewer, Bookmark.bookmarkable_type == "Project"
                )
            )
        project_ids = union(*engaged).subquery() if len(engaged) > 1 else engaged[0].subquery()
        async with self._session("viewer_tags") as session:
            tools = await session.execute(
                select(project_ai_tools.c.ai_tool_id)
                .where(project_ai_tools.c.project_id.in_(select(project_ids.c.project_id)))
                .distinct()
            )
            stacks = await session.execute(
                select(project_tech_stacks.c.tech_stack_id)
                .where(project_tech_stacks.c.project_id.in_(select(project_ids.c.project_id)))
                .distinct()
            )
            return TagSet.of(
                (str(tag) for tag in tools.scalars().all()),
                (str(tag) for tag in stacks.scalars().all()),
            )

    async def creators_sharing_tags(
        self, tags: TagSet, *, exclude: Collection[str], limit: int
    ) -> dict[str, int]:
        excluded = _uuids(exclude)
        shared: dict[str, int] = defaultdict(int)
        pairs = (
            (project_ai_tools, project_ai_tools.c.ai_tool_id, tags.tool_ids),
            (project_tech_stacks, project_tech_stacks.c.tech_stack_id, tags.stack_ids),
        )
        async with self._session("creators_sharing_tags") as session:
            for table, tag_col, wanted in pairs:
                if not wanted:
                    continue
                result = await session.execute(
                    select(Project.user_id, func.count(func.distinct(tag_col)))
                    .join(table, table.c.project_id == Project.id)
                    .where(
                        Project.status == _PUBLISHED,
                        tag_col.in_(_tags(wanted)),
                        Project.user_id.not_in(excluded),
                    )
                    .group_by(Project.user_id)
                )
                for creator, count in result.all():
                    shared[str(creator)] += count
        ranked = sorted(shared.items(), key=lambda pair: (pair[1], pair[0]), reverse=True)
        return dict(ranked[:limit])

    async def creators_outside_tags(
        self, tags: TagSet, *, exclude: Collection[str], since: datetime, limit: int
    ) -> list[CreatorReach]:
        recent = and_(
            Project.status == _PUBLISHED,
            Project.published_at >= since,
            Project.user_id.not_in(_uuids(exclude)),
        )
        outside = union(
            select(Project.user_id.label("user_id"))
            .join(project_ai_tools, project_ai_tools.c.project_id == Project.id)
            .where(recent, project_ai_tools.c.ai_tool_id.not_in(_tags(tags.tool_ids))),
            select(Project.user_id.label("user_id"))
            .join(project_tech_stacks, project_tech_stacks.c.project_id == Project.id)
            .where(recent, project_tech_stacks.c.tech_stack_id.not_in(_tags(tags.stack_ids))),
        ).subquery()
        avg_likes = (
            select(
                Project.user_id.label("user_id"),
                func.avg(Project.likes_count).label("avg_likes"),
            )
            .where(Project.status == _PUBLISHED, Project.published_at >= since)
            .group_by(Project.user_id)
            .subquery()
        )
        followers = _follower_counts_subquery()
        follower_count = func.coalesce(followers.c.followers, 0)
        stmt = (
            select(outside.c.user_id, follower_count, func.coalesce(avg_likes.c.avg_likes, 0))
            .outerjoin(followers, followers.c.user_id == outside.c.user_id)
            .outerjoin(avg_likes, avg_likes.c.user_id == outside.c.user_id)
            .order_by(follower_count.desc(), outside.c.user_id)
            .limit(limit)
        )
        async with self._session("creators_outside_tags") as session:
            rows = (await session.execute(stmt)).all()
        return [
            CreatorReach(user_id=str(creator), followers=count, avg_project_likes=float(avg))
            for creator, count, avg in rows
        ]

    async def popular_active_users(
        self, user_id: str, *, since: datetime, limit: int
    ) -> list[UserSummary]:
        viewer = _uuid(user_id)
        activity = _recent_activity_subquery(since)
        followers = _follower_counts_subquery()
        followed = select(Follow.following_id).where(Follow.follower_id == viewer)
        stmt = (
            select(User, followers.c.followers)
            .join(activity, activity.c.user_id == User.id)
            .join(followers, followers.c.user_id == User.id)
            .where(User.id != viewer, User.id.not_in(followed))
            .order_by(followers.c.followers.desc(), User.id)
            .limit(limit)
        )
        async with self._session("popular_active_users") as session:
            rows = (await session.execute(stmt)).all()
        return [
            _user_summary(user).model_copy(update={"follower_count": count})
            for user, count in rows
        ]
