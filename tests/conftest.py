from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio

import vibefeed.models  # noqa: F401 - register tables with Base
from vibefeed.database import AsyncSessionFactory, Base, get_async_session_factory
from vibefeed.feed.cache import FeedCache

from tests.fakes import FakeContentSource, FakeRedis, FakeSocialGraph


@pytest.fixture
def content() -> FakeContentSource:
    return FakeContentSource()


@pytest.fixture
def graph() -> FakeSocialGraph:
    return FakeSocialGraph()


@pytest.fixture
def feed_cache() -> FeedCache:
    return FeedCache.from_config()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest_asyncio.fixture
async def session_factory(tmp_path) -> AsyncGenerator[AsyncSessionFactory, None]:
    factory = get_async_session_factory(f"sqlite+aiosqlite:///{tmp_path / 'vibefeed.db'}")
    engine = factory.kw["bind"]
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield factory
    await engine.dispose()
