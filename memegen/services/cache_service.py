"""Cache store and request log: result reuse and request accounting.

Two interchangeable implementations of each collaborator:
  - in-memory (process lifetime; default and test double)
  - SQLAlchemy async (meme_cache / request_logs tables)

Implementations raise on failure. Absorbing those failures is the
pipeline's job, so a broken store never changes a generation result.
"""

from __future__ import annotations

import dataclasses
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from memegen.gateway.types import CacheEntry, RequestLogEntry
from memegen.models.meme_cache import MemeCache
from memegen.models.request_log import RequestLog

logger = logging.getLogger(__name__)


class CacheStore(ABC):
    """Generated text keyed by (keyword, backend_id)."""

    @abstractmethod
    async def lookup(self, keyword: str, backend_id: str) -> CacheEntry | None:
        """Return the entry and bump its access metadata, or None on a miss."""
        ...

    @abstractmethod
    async def insert(self, keyword: str, backend_id: str, text: str) -> None:
        """Store text; an existing entry for the same key is overwritten."""
        ...

    @abstractmethod
    async def count(self) -> int: ...


class RequestLogSink(ABC):
    """Append-only request accounting."""

    @abstractmethod
    async def append(self, keyword: str, backend_id: str, cache_hit: bool, elapsed_ms: int | None = None) -> None: ...

    @abstractmethod
    async def totals(self) -> tuple[int, int]:
        """Return (total requests, cache hits)."""
        ...


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------


class InMemoryCacheStore(CacheStore):
    def __init__(self):
        self._entries: dict[tuple[str, str], CacheEntry] = {}

    async def lookup(self, keyword: str, backend_id: str) -> CacheEntry | None:
        entry = self._entries.get((keyword, backend_id))
        if entry is None:
            return None
        entry.access_count += 1
        entry.last_accessed_at = datetime.now(timezone.utc)
        return dataclasses.replace(entry)

    async def insert(self, keyword: str, backend_id: str, text: str) -> None:
        self._entries[(keyword, backend_id)] = CacheEntry(keyword=keyword, backend_id=backend_id, generated_text=text)

    async def count(self) -> int:
        return len(self._entries)


class InMemoryRequestLog(RequestLogSink):
    def __init__(self):
        self.entries: list[RequestLogEntry] = []

    async def append(self, keyword: str, backend_id: str, cache_hit: bool, elapsed_ms: int | None = None) -> None:
        self.entries.append(
            RequestLogEntry(keyword=keyword, backend_id=backend_id, cache_hit=cache_hit, response_time_ms=elapsed_ms)
        )

    async def totals(self) -> tuple[int, int]:
        return len(self.entries), sum(1 for e in self.entries if e.cache_hit)


# ---------------------------------------------------------------------------
# SQLAlchemy
# ---------------------------------------------------------------------------


class SqlCacheStore(CacheStore):
    """meme_cache table; sessions come from the caller-owned factory."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def lookup(self, keyword: str, backend_id: str) -> CacheEntry | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(MemeCache).where(MemeCache.keyword == keyword, MemeCache.backend_id == backend_id).limit(1)
            )
            row = result.scalar_one_or_none()
            if row is None:
                return None

            now = datetime.now(timezone.utc)
            await session.execute(
                update(MemeCache)
                .where(MemeCache.id == row.id)
                .values(access_count=MemeCache.access_count + 1, last_accessed_at=now)
            )
            await session.commit()
            await session.refresh(row)

            return CacheEntry(
                keyword=row.keyword,
                backend_id=row.backend_id,
                generated_text=row.generated_text,
                created_at=row.created_at,
                access_count=row.access_count,
                last_accessed_at=row.last_accessed_at,
            )

    async def insert(self, keyword: str, backend_id: str, text: str) -> None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(MemeCache).where(MemeCache.keyword == keyword, MemeCache.backend_id == backend_id).limit(1)
            )
            row = result.scalar_one_or_none()
            if row is None:
                session.add(MemeCache(keyword=keyword, backend_id=backend_id, generated_text=text))
            else:
                row.generated_text = text
            await session.commit()

    async def count(self) -> int:
        async with self._session_factory() as session:
            result = await session.execute(select(func.count()).select_from(MemeCache))
            return int(result.scalar_one())


class SqlRequestLog(RequestLogSink):
    """request_logs table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def append(self, keyword: str, backend_id: str, cache_hit: bool, elapsed_ms: int | None = None) -> None:
        async with self._session_factory() as session:
            session.add(
                RequestLog(keyword=keyword, backend_id=backend_id, cache_hit=cache_hit, response_time_ms=elapsed_ms)
            )
            await session.commit()

    async def totals(self) -> tuple[int, int]:
        async with self._session_factory() as session:
            total = await session.execute(select(func.count()).select_from(RequestLog))
            hits = await session.execute(
                select(func.count()).select_from(RequestLog).where(RequestLog.cache_hit.is_(True))
            )
            return int(total.scalar_one()), int(hits.scalar_one())
