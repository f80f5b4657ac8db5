"""Repository helpers for usage tracking."""
from __future__ import annotations

from datetime import date

from sqlalchemy import Date, bindparam, func, select, text
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.models.usage_daily import UsageDaily


class UsageRepo:
    """Provides the atomic daily counter and aggregation helpers."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def increment_request(
        self, user_id: str, usage_date: date, tokens_used: int, cost_usd: float
    ) -> None:
        """Add one request to the user's daily row, creating it if needed.

        The increment happens inside the upsert so concurrent requests from the
        same user never overwrite each other's counts.
        """

        query = text(
            """
            INSERT INTO usage_daily (user_id, usage_date, requests_count, tokens_used, cost_usd)
            VALUES (:u, :d, 1, :tokens, :cost)
            ON CONFLICT (user_id, usage_date)
            DO UPDATE SET
              requests_count = usage_daily.requests_count + 1,
              tokens_used = usage_daily.tokens_used + EXCLUDED.tokens_used,
              cost_usd = usage_daily.cost_usd + EXCLUDED.cost_usd
            """
        ).bindparams(bindparam("d", type_=Date()))
        await self.session.execute(
            query,
            {
                "u": user_id,
                "d": usage_date,
                "tokens": tokens_used,
                "cost": cost_usd,
            },
        )
        await self.session.flush()

    async def get_for_day(self, user_id: str, usage_date: date) -> UsageDaily | None:
        result = await self.session.execute(
            select(UsageDaily).where(
                UsageDaily.user_id == user_id,
                UsageDaily.usage_date == usage_date,
            )
            # the counter is bumped with raw SQL, so reload cached instances
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def requests_on(self, user_id: str, usage_date: date) -> int:
        record = await self.get_for_day(user_id, usage_date)
        return record.requests_count if record is not None else 0

    async def total_requests(self) -> int:
        """Return the number of provider requests recorded across all users."""

        result = await self.session.execute(
            select(func.coalesce(func.sum(UsageDaily.requests_count), 0))
        )
        value = result.scalar_one()
        return int(value or 0)
