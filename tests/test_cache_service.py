"""Tests for cache stores and request logs (in-memory and SQLAlchemy)."""

from collections.abc import AsyncGenerator

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from memegen.db.base import Base
from memegen.models import MemeCache, RequestLog  # noqa: F401
from memegen.services.cache_service import (
    InMemoryCacheStore,
    InMemoryRequestLog,
    SqlCacheStore,
    SqlRequestLog,
)


@pytest.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture(params=["memory", "sql"])
async def stores(request, session_factory):
    if request.param == "memory":
        return InMemoryCacheStore(), InMemoryRequestLog()
    return SqlCacheStore(session_factory), SqlRequestLog(session_factory)


class TestCacheStore:
    @pytest.mark.asyncio
    async def test_miss(self, stores):
        cache, _ = stores
        assert await cache.lookup("表白", "glm-4-air") is None
        assert await cache.count() == 0

    @pytest.mark.asyncio
    async def test_hit_bumps_access_count(self, stores):
        cache, _ = stores
        await cache.insert("表白", "glm-4-air", "text")

        first = await cache.lookup("表白", "glm-4-air")
        second = await cache.lookup("表白", "glm-4-air")

        assert first.generated_text == "text"
        assert first.access_count == 2
        assert second.access_count == 3

    @pytest.mark.asyncio
    async def test_keyed_by_keyword_and_backend(self, stores):
        cache, _ = stores
        await cache.insert("表白", "glm-4-air", "air text")
        await cache.insert("表白", "kimi-k2", "kimi text")

        assert (await cache.lookup("表白", "kimi-k2")).generated_text == "kimi text"
        assert await cache.lookup("表白", "glm-4.7") is None
        assert await cache.count() == 2

    @pytest.mark.asyncio
    async def test_insert_overwrites(self, stores):
        cache, _ = stores
        await cache.insert("表白", "glm-4-air", "old")
        await cache.insert("表白", "glm-4-air", "new")

        assert (await cache.lookup("表白", "glm-4-air")).generated_text == "new"
        assert await cache.count() == 1

    @pytest.mark.asyncio
    async def test_returned_entry_is_detached(self, stores):
        cache, _ = stores
        await cache.insert("表白", "glm-4-air", "old")

        held = await cache.lookup("表白", "glm-4-air")
        await cache.lookup("表白", "glm-4-air")
        await cache.insert("表白", "glm-4-air", "new")

        assert held.access_count == 2
        assert held.generated_text == "old"


class TestRequestLog:
    @pytest.mark.asyncio
    async def test_totals(self, stores):
        _, log = stores
        assert await log.totals() == (0, 0)

        await log.append("表白", "glm-4-air", False, 1200)
        await log.append("表白", "glm-4-air", True, 3)
        await log.append("旮旯给木", "template", True)

        assert await log.totals() == (3, 2)

    @pytest.mark.asyncio
    async def test_memory_entries_keep_timing(self):
        log = InMemoryRequestLog()
        await log.append("表白", "kimi-k2", False, 850)

        entry = log.entries[0]
        assert entry.backend_id == "kimi-k2"
        assert entry.response_time_ms == 850
        assert entry.cache_hit is False
