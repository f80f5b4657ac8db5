"""Repository utilities for the response cache table."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List

from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.models.response_cache import ResponseCacheEntry


class CacheRepo:
    """Data-access helpers for :class:`ResponseCacheEntry`."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_live_by_hash(
        self, query_hash: str, now: datetime
    ) -> ResponseCacheEntry | None:
        result = await self.session.execute(
            select(ResponseCacheEntry).where(
                ResponseCacheEntry.query_hash == query_hash,
                ResponseCacheEntry.expires_at > now,
            )
        )
        return result.scalar_one_or_none()

    async def recent_live(self, now: datetime, limit: int) -> List[ResponseCacheEntry]:
        """Return up to ``limit`` unexpired entries, newest first."""

        result = await self.session.execute(
            select(ResponseCacheEntry)
            .where(ResponseCacheEntry.expires_at > now)
            .order_by(ResponseCacheEntry.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def record_hit(self, entry: ResponseCacheEntry, now: datetime) -> int:
        await self.session.execute(
            update(ResponseCacheEntry)
            .where(ResponseCacheEntry.id == entry.id)
            .values(
                hit_count=ResponseCacheEntry.hit_count + 1,
                last_accessed_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        await self.session.flush()
        await self.session.refresh(entry)
        return entry.hit_count

    async def insert_or_replace_expired(self, values: Dict[str, Any], now: datetime) -> bool:
        """Insert a row for ``query_hash``.

        A live entry for the same hash is kept (first write wins); an entry
        that expired but has not been cleaned up yet is overwritten.
        """

        table = ResponseCacheEntry.__table__
        dialect = self.session.get_bind().dialect.name
        insert_fn = pg_insert if dialect == "postgresql" else sqlite_insert
        statement = insert_fn(table).values(**values)
        statement = statement.on_conflict_do_update(
            index_elements=[table.c.query_hash],
            set_={
                key: statement.excluded[key]
                for key in values
                if key not in ("id", "query_hash")
            },
            where=table.c.expires_at <= now,
        )
        result = await self.session.execute(statement)
        await self.session.flush()
        return bool(result.rowcount)

    async def delete_expired(self, now: datetime) -> int:
        result = await self.session.execute(
            delete(ResponseCacheEntry)
            .where(ResponseCacheEntry.expires_at < now)
            .execution_options(synchronize_session=False)
        )
        await self.session.flush()
        return int(result.rowcount or 0)

    async def aggregate(self) -> Dict[str, int]:
        extra_hits = ResponseCacheEntry.hit_count - 1
        result = await self.session.execute(
            select(
                func.count(ResponseCacheEntry.id),
                func.coalesce(func.sum(extra_hits), 0),
                func.coalesce(func.sum(ResponseCacheEntry.tokens_used * extra_hits), 0),
            )
        )
        total, hits, tokens_saved = result.one()
        return {
            "total_cached": int(total or 0),
            "total_hits": int(hits or 0),
            "total_tokens_saved": int(tokens_saved or 0),
        }
