import uuid
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
import pytest_asyncio
from sqlalchemy import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vibefeed.database import get_async_engine
from vibefeed.exceptions import SourceUnavailableError
from vibefeed.feed.candidates import candidate_rank
from vibefeed.feed.schemas import ContentKind
from vibefeed.feed.scoring import DEFAULT_FEED_CONFIG, EngagementWeights
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
    project_ai_tools,
    project_tech_stacks,
)
from vibefeed.recommendations import trending
from vibefeed.sources.base import CandidateRank, TagSet, ViewerActivity
from vibefeed.sources.sql import SqlContentSource, SqlSocialGraphSource


@pytest_asyncio.fixture
async def world(session_factory):
    now = datetime.now(timezone.utc)

    def ago(**delta) -> datetime:
        return now - timedelta(**delta)

    users = {
        name: User(id=uuid.uuid4(), username=name, inserted_at=ago(days=400))
        for name in ("viewer", "alice", "bob", "carol", "dave", "eve")
    }
    users["eve"].subscription_status = "active"
    users["eve"].inserted_at = ago(days=3)
    u = {name: user.id for name, user in users.items()}

    p1 = Post(user_id=u["alice"], content="shipping", inserted_at=ago(hours=1), likes_count=5)
    p2 = Post(user_id=u["alice"], content="older", inserted_at=ago(hours=30))
    p3 = Post(
        user_id=u["bob"], content="classic", inserted_at=ago(days=10),
        likes_count=50, comments_count=1,
    )
    proj1 = Project(
        user_id=u["carol"], title="Agent", description="x" * 150, status="published",
        published_at=ago(hours=2), likes_count=10,
    )
    proj2 = Project(user_id=u["dave"], title="Draft", status="draft")
    proj3 = Project(
        user_id=u["carol"], title="CLI", description="short", status="published",
        published_at=ago(days=3), likes_count=4,
    )
    open_gig = Gig(user_id=u["eve"], title="Build a bot", bids_count=2, views_count=10,
                   inserted_at=ago(hours=1))
    closed_gig = Gig(user_id=u["eve"], title="Done", status="completed", inserted_at=ago(hours=1))
    for model in (p1, p2, p3, proj1, proj2, proj3, open_gig, closed_gig):
        model.id = uuid.uuid4()

    tool_1, tool_2, stack_1 = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()

    async with session_factory() as session:
        session.add_all(users.values())
        await session.flush()
        session.add_all([p1, p2, p3, proj1, proj2, proj3, open_gig, closed_gig])
        await session.flush()
        session.add_all(
            [
                PostMedia(post_id=p1.id, url="b.png", position=1),
                PostMedia(post_id=p1.id, url="a.png", position=0),
                ProjectImage(project_id=proj1.id, url="cover.png"),
                Follow(follower_id=u["viewer"], following_id=u["alice"]),
                Follow(follower_id=u["viewer"], following_id=u["bob"]),
                Follow(follower_id=u["alice"], following_id=u["carol"]),
                Follow(follower_id=u["bob"], following_id=u["carol"]),
                Follow(follower_id=u["alice"], following_id=u["dave"]),
                Follow(follower_id=u["carol"], following_id=u["alice"]),
                Follow(follower_id=u["dave"], following_id=u["alice"]),
                Like(user_id=u["alice"], likeable_type="Post", likeable_id=p1.id),
                Like(user_id=u["viewer"], likeable_type="Post", likeable_id=p1.id),
                Like(user_id=u["viewer"], likeable_type="Project", likeable_id=proj1.id),
                Bookmark(user_id=u["viewer"], bookmarkable_type="Project", bookmarkable_id=proj3.id),
                Repost(user_id=u["bob"], repostable_type="Project", repostable_id=proj1.id,
                       inserted_at=ago(minutes=30)),
                UserBlock(blocker_id=u["eve"], blocked_id=u["viewer"]),
                UserMute(muter_id=u["viewer"], muted_id=u["dave"]),
                DismissedSuggestion(user_id=u["viewer"], dismissed_user_id=u["carol"],
                                    dismissed_at=ago(days=2)),
                DismissedSuggestion(user_id=u["viewer"], dismissed_user_id=u["dave"],
                                    dismissed_at=ago(days=40)),
                EngagementHourly(content_type="Project", content_id=proj1.id,
                                 hour_bucket=ago(hours=1), likes=3, comments=1, quotes=5),
                EngagementHourly(content_type="Project", content_id=proj1.id,
                                 hour_bucket=ago(hours=10), likes=2),
                EngagementHourly(content_type="Project", content_id=proj1.id,
                                 hour_bucket=ago(hours=30), likes=7),
            ]
        )
        await session.execute(
            insert(project_ai_tools),
            [
                {"project_id": proj1.id, "ai_tool_id": tool_1},
                {"project_id": proj3.id, "ai_tool_id": tool_2},
            ],
        )
        await session.execute(
            insert(project_tech_stacks), [{"project_id": proj1.id, "tech_stack_id": stack_1}]
        )
        await session.commit()

    ids = {name: str(value) for name, value in u.items()}
    return SimpleNamespace(
        now=now,
        u=ids,
        p1=str(p1.id), p2=str(p2.id), p3=str(p3.id),
        proj1=str(proj1.id), proj2=str(proj2.id), proj3=str(proj3.id),
        open_gig=str(open_gig.id),
        tool_1=str(tool_1), tool_2=str(tool_2), stack_1=str(stack_1),
        content=SqlContentSource(session_factory),
        graph=SqlSocialGraphSource(session_factory),
    )


# ===========================================================================
# Content
# ===========================================================================


@pytest.mark.asyncio
async def test_fetch_candidates_window(world) -> None:
    rows = await world.content.fetch_candidates(
        ContentKind.POST, since=world.now - timedelta(days=7), until=None, limit=10
    )
    assert [row.id for row in rows] == [world.p1, world.p2]
    assert rows[0].author_id == world.u["alice"]
    assert rows[0].engagement.likes == 5
    assert rows[0].self_engagement.likes == 1
    assert rows[0].sort_date.tzinfo is not None


@pytest.mark.asyncio
async def test_fetch_candidates_projects_carry_quality_fields(world) -> None:
    rows = await world.content.fetch_candidates(
        ContentKind.PROJECT, since=world.now - timedelta(days=14), until=None, limit=10
    )
    assert [row.id for row in rows] == [world.proj1, world.proj3]
    agent, cli = rows
    assert agent.has_images and agent.has_tech_stacks
    assert agent.description_length == 150
    assert not cli.has_images and not cli.has_tech_stacks


@pytest.mark.asyncio
async def test_fetch_candidates_open_gigs_only(world) -> None:
    rows = await world.content.fetch_candidates(
        ContentKind.GIG, since=world.now - timedelta(days=7), until=None, limit=10
    )
    assert [row.id for row in rows] == [world.open_gig]
    assert (rows[0].bids_count, rows[0].views_count) == (2, 10)


@pytest.mark.asyncio
async def test_fetch_candidates_backfill_ranking(world) -> None:
    older = await world.content.fetch_candidates(
        ContentKind.POST,
        since=None,
        until=world.now - timedelta(days=7),
        limit=10,
        rank=CandidateRank(weights=EngagementWeights()),
    )
    assert [row.id for row in older] == [world.p3]

    everything = await world.content.fetch_candidates(
        ContentKind.POST, since=None, until=None, limit=10,
        exclude_ids=[world.p1], rank=CandidateRank(weights=EngagementWeights()),
    )
    assert [row.id for row in everything] == [world.p3, world.p2]


@pytest.mark.asyncio
async def test_ranked_fetch_orders_the_whole_window_by_score(session_factory) -> None:
    now = datetime.now(timezone.utc)
    author = User(id=uuid.uuid4(), username="author", inserted_at=now - timedelta(days=90))
    fan = User(id=uuid.uuid4(), username="fan", inserted_at=now - timedelta(days=90))

    def post(hours: float, **counts) -> Post:
        return Post(
            id=uuid.uuid4(), user_id=author.id, content="post",
            inserted_at=now - timedelta(hours=hours), **counts,
        )

    def project(hours: float, **fields) -> Project:
        return Project(
            id=uuid.uuid4(), user_id=author.id, title="project", status="published",
            published_at=now - timedelta(hours=hours), **fields,
        )

    def gig(hours: float, **counts) -> Gig:
        return Gig(
            id=uuid.uuid4(), user_id=author.id, title="gig",
            inserted_at=now - timedelta(hours=hours), **counts,
        )

    hot_post = post(48, likes_count=5000, comments_count=500)
    self_liked = post(2, likes_count=1)
    fan_liked = post(2, likes_count=1)
    hot_project = project(72, likes_count=5000, comments_count=500)
    polished = project(10, likes_count=20, description="x" * 150)
    plain = project(10, likes_count=20)
    hot_gig = gig(72, bids_count=40)
    rows = [hot_post, self_liked, fan_liked, hot_project, polished, plain, hot_gig]
    rows += [post(7) for _ in range(5)]
    rows += [project(1) for _ in range(5)]
    rows += [gig(1) for _ in range(5)]

    async with session_factory() as session:
        session.add_all([author, fan])
        await session.flush()
        session.add_all(rows)
        await session.flush()
        session.add_all(
            [
                Like(user_id=author.id, likeable_type="Post", likeable_id=self_liked.id),
                Like(user_id=fan.id, likeable_type="Post", likeable_id=fan_liked.id),
                ProjectImage(project_id=polished.id, url="cover.png"),
            ]
        )
        await session.commit()

    content = SqlContentSource(session_factory)
    since = now - timedelta(days=14)
    feed_rank = candidate_rank(DEFAULT_FEED_CONFIG, now)
    trending_rank = trending.candidate_rank(trending.DEFAULT_TRENDING_CONFIG, now)

    newest = await content.fetch_candidates(ContentKind.POST, since=since, until=None, limit=3)
    assert str(hot_post.id) not in {row.id for row in newest}

    posts = await content.fetch_candidates(
        ContentKind.POST, since=since, until=None, limit=3, rank=feed_rank
    )
    assert [row.id for row in posts] == [str(hot_post.id), str(fan_liked.id), str(self_liked.id)]

    projects = await content.fetch_candidates(
        ContentKind.PROJECT, since=since, until=None, limit=3, rank=trending_rank
    )
    assert [row.id for row in projects] == [
        str(hot_project.id), str(polished.id), str(plain.id),
    ]

    gigs = await content.fetch_candidates(
        ContentKind.GIG, since=since, until=None, limit=1, rank=feed_rank
    )
    assert [row.id for row in gigs] == [str(hot_gig.id)]

    everything = await content.fetch_candidates(
        ContentKind.PROJECT, since=since, until=None, limit=50, rank=trending_rank
    )
    scores = [trending_rank.score(row) for row in everything]
    assert scores == sorted(scores, reverse=True)


@pytest.mark.asyncio
async def test_fetch_by_authors_and_reposts(world) -> None:
    first = await world.content.fetch_by_authors(
        ContentKind.POST, {world.u["alice"]}, before=None, limit=1
    )
    assert [row.id for row in first] == [world.p1]
    rest = await world.content.fetch_by_authors(
        ContentKind.POST, {world.u["alice"]}, before=first[0].sort_date, limit=5
    )
    assert [row.id for row in rest] == [world.p2]

    reposts = await world.content.fetch_reposts({world.u["bob"]}, before=None, limit=5)
    assert len(reposts) == 1
    assert reposts[0].original_kind == ContentKind.PROJECT
    assert reposts[0].original_id == world.proj1
    assert await world.content.fetch_reposts(set(), before=None, limit=5) == []


@pytest.mark.asyncio
async def test_preload_projects_and_posts(world) -> None:
    projects = await world.content.preload(
        ContentKind.PROJECT, [world.proj1, str(uuid.uuid4())]
    )
    assert list(projects) == [world.proj1]
    agent = projects[world.proj1]
    assert agent.author.username == "carol"
    assert agent.payload.title == "Agent"
    assert agent.payload.image_urls == ["cover.png"]
    assert agent.payload.ai_tool_ids == [world.tool_1]
    assert agent.payload.tech_stack_ids == [world.stack_1]
    assert agent.engagement.likes == 10

    posts = await world.content.preload(ContentKind.POST, [world.p1])
    assert posts[world.p1].payload.media_urls == ["a.png", "b.png"]

    gigs = await world.content.preload(ContentKind.GIG, [world.open_gig])
    assert gigs[world.open_gig].payload.bids_count == 2
    assert await world.content.preload(ContentKind.POST, []) == {}


@pytest.mark.asyncio
async def test_engagement_flags(world) -> None:
    keys = {
        (ContentKind.POST, world.p1),
        (ContentKind.PROJECT, world.proj1),
        (ContentKind.PROJECT, world.proj3),
        (ContentKind.GIG, world.open_gig),
    }
    flags = await world.content.engagement_flags(world.u["viewer"], keys)
    assert flags[(ContentKind.POST, world.p1)].liked
    assert flags[(ContentKind.PROJECT, world.proj1)].liked
    assert flags[(ContentKind.PROJECT, world.proj3)].bookmarked
    assert not flags[(ContentKind.PROJECT, world.proj3)].liked
    assert not any(vars(flags[(ContentKind.GIG, world.open_gig)]).values())


@pytest.mark.asyncio
async def test_hourly_engagement_windows(world) -> None:
    six_hours_ago = world.now - timedelta(hours=6)
    recent = await world.content.hourly_engagement(
        ContentKind.PROJECT, [world.proj1], start=six_hours_ago, end=world.now
    )
    older = await world.content.hourly_engagement(
        ContentKind.PROJECT, [world.proj1],
        start=world.now - timedelta(hours=24), end=six_hours_ago,
    )
    # Quotes are not part of the hourly total.
    assert recent == {world.proj1: 4}
    assert older == {world.proj1: 2}


# ===========================================================================
# Social graph
# ===========================================================================


@pytest.mark.asyncio
async def test_relationship_lookups(world) -> None:
    graph, u = world.graph, world.u
    assert await graph.following_ids(u["viewer"]) == {u["alice"], u["bob"]}
    assert await graph.blocked_ids(u["viewer"]) == {u["eve"]}
    assert await graph.blocked_ids(u["eve"]) == {u["viewer"]}
    assert await graph.muted_ids(u["viewer"]) == {u["dave"]}
    assert await graph.dismissed_ids(
        u["viewer"], since=world.now - timedelta(days=30)
    ) == {u["carol"]}
    assert await graph.activity_counts(u["viewer"]) == ViewerActivity(follows=2, likes=2)


@pytest.mark.asyncio
async def test_profiles_counts_and_users(world) -> None:
    graph, u = world.graph, world.u
    assert await graph.follower_counts({u["alice"], u["eve"]}) == {u["alice"]: 3, u["eve"]: 0}

    profiles = await graph.author_profiles({u["eve"], u["bob"]})
    assert profiles[u["eve"]].subscription_status == "active"
    assert profiles[u["bob"]].subscription_status == "free"
    assert profiles[u["eve"]].joined_at > world.now - timedelta(days=4)

    users = await graph.load_users([u["carol"]])
    assert users[u["carol"]].username == "carol"


@pytest.mark.asyncio
async def test_friends_of_friends_counts_mutual_follows(world) -> None:
    u = world.u
    exclude = {u["viewer"], u["alice"], u["bob"]}
    assert await world.graph.friends_of_friends(u["viewer"], exclude=exclude, limit=10) == {
        u["carol"]: 2,
        u["dave"]: 1,
    }


@pytest.mark.asyncio
async def test_engaged_creators(world) -> None:
    u = world.u
    creators = await world.graph.engaged_creators(u["viewer"], exclude={u["viewer"]}, limit=10)
    by_id = {creator.user_id: creator for creator in creators}
    assert (by_id[u["alice"]].likes, by_id[u["alice"]].bookmarks) == (1, 0)
    assert (by_id[u["carol"]].likes, by_id[u["carol"]].bookmarks) == (1, 1)


@pytest.mark.asyncio
async def test_creator_activity_orders_by_followers(world) -> None:
    u = world.u
    creators = await world.graph.creator_activity(
        exclude={u["viewer"]}, since=world.now - timedelta(days=60), limit=10
    )
    assert [(c.user_id, c.followers) for c in creators] == [
        (u["alice"], 3), (u["carol"], 2), (u["bob"], 1),
    ]
    assert creators[0].last_active_at > world.now - timedelta(hours=2)


@pytest.mark.asyncio
async def test_tag_queries(world) -> None:
    u = world.u
    liked = await world.graph.viewer_tags(u["viewer"], include_bookmarks=False)
    assert liked == TagSet.of([world.tool_1], [world.stack_1])
    both = await world.graph.viewer_tags(u["viewer"], include_bookmarks=True)
    assert both == TagSet.of([world.tool_1, world.tool_2], [world.stack_1])

    assert await world.graph.creators_sharing_tags(
        liked, exclude={u["viewer"]}, limit=10
    ) == {u["carol"]: 2}

    outside = await world.graph.creators_outside_tags(
        liked, exclude={u["viewer"]}, since=world.now - timedelta(days=30), limit=10
    )
    assert [(c.user_id, c.followers) for c in outside] == [(u["carol"], 2)]
    assert outside[0].avg_project_likes == pytest.approx(7.0)


@pytest.mark.asyncio
async def test_popular_active_users_skips_followed(world) -> None:
    u = world.u
    users = await world.graph.popular_active_users(
        u["viewer"], since=world.now - timedelta(days=7), limit=10
    )
    assert [(user.id, user.follower_count) for user in users] == [(u["carol"], 2)]


# ===========================================================================
# Failures
# ===========================================================================


@pytest.mark.asyncio
async def test_database_errors_become_source_unavailable(tmp_path) -> None:
    engine = get_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'nope.db'}")
    factory = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    try:
        with pytest.raises(SourceUnavailableError) as exc_info:
            await SqlContentSource(factory).fetch_candidates(
                ContentKind.POST, since=None, until=None, limit=5
            )
        assert exc_info.value.source == "content"
        assert exc_info.value.operation == "fetch_candidates"

        with pytest.raises(SourceUnavailableError) as exc_info:
            await SqlSocialGraphSource(factory).following_ids(str(uuid.uuid4()))
        assert exc_info.value.source == "social_graph"
    finally:
        await engine.dispose()
