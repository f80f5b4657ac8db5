"""Per-user daily quota check and usage counter."""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Optional

from dateutil.relativedelta import relativedelta
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import settings
from src.db.models.profile import TIER_FREE, TIER_PREMIUM
from src.repositories.profile_repo import ProfileRepo
from src.repositories.usage_repo import UsageRepo

logger = logging.getLogger(__name__)


@dataclass
class RateLimitStatus:
    allowed: bool
    remaining: int
    reset_time: datetime
    tier: str

    def to_dict(self) -> dict:
        return {
            "allowed": self.allowed,
            "remaining": self.remaining,
            "reset_time": self.reset_time.isoformat(),
            "tier": self.tier,
        }


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def next_reset_time(now: Optional[datetime] = None) -> datetime:
    """Return the next UTC midnight after ``now``."""

    now = (now or utcnow()).astimezone(timezone.utc)
    return now + relativedelta(days=+1, hour=0, minute=0, second=0, microsecond=0)


def daily_quota(tier: str) -> int:
    if tier == TIER_PREMIUM:
        return settings.limits.premium_daily_requests
    return settings.limits.free_daily_requests


def usage_cost(tokens_used: int) -> float:
    return (tokens_used / 1000) * settings.limits.cost_per_1k_tokens


def rate_limit_message(status: RateLimitStatus, now: Optional[datetime] = None) -> str:
    """Human readable summary of a quota check."""

    if status.tier == TIER_PREMIUM:
        return f"Premium tier: {status.remaining} requests remaining today"
    if status.remaining == 0:
        seconds = (status.reset_time - (now or utcnow())).total_seconds()
        hours = max(1, math.ceil(seconds / 3600))
        return (
            f"Daily limit reached. Resets in {hours}h. "
            "Upgrade to Premium for more daily questions!"
        )
    quota = daily_quota(status.tier)
    return f"Free tier: {status.remaining}/{quota} requests remaining today"


class RateLimiter:
    """Checks and records daily request usage for a student."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.profile_repo = ProfileRepo(session)
        self.usage_repo = UsageRepo(session)

    async def get_tier(self, user_id: str) -> str:
        profile = await self.profile_repo.get(user_id)
        if profile is not None and profile.tier == TIER_PREMIUM:
            return TIER_PREMIUM
        return TIER_FREE

    async def check(self, user_id: str, now: Optional[datetime] = None) -> RateLimitStatus:
        """Return the quota status; allows the request if the lookup fails."""

        now = now or utcnow()
        reset_time = next_reset_time(now)
        try:
            async with self.session.begin_nested():
                tier = await self.get_tier(user_id)
                used = await self.usage_repo.requests_on(user_id, now.date())
            quota = daily_quota(tier)
        except Exception as exc:
            logger.error(f"Rate limit check failed for {user_id}, allowing: {exc}")
            return RateLimitStatus(
                allowed=True,
                remaining=settings.limits.free_daily_requests,
                reset_time=reset_time,
                tier=TIER_FREE,
            )

        return RateLimitStatus(
            allowed=used < quota,
            remaining=max(0, quota - used),
            reset_time=reset_time,
            tier=tier,
        )

    async def increment(
        self, user_id: str, tokens_used: int = 0, now: Optional[datetime] = None
    ) -> None:
        """Record one request; failures propagate so usage is never lost silently."""

        usage_date: date = (now or utcnow()).date()
        try:
            await self.usage_repo.increment_request(
                user_id, usage_date, tokens_used, usage_cost(tokens_used)
            )
        except Exception:
            logger.exception(f"Failed to record usage for {user_id}")
            raise

    async def usage_today(self, user_id: str, now: Optional[datetime] = None) -> dict:
        usage_date = (now or utcnow()).date()
        record = await self.usage_repo.get_for_day(user_id, usage_date)
        return {
            "usage_date": usage_date.isoformat(),
            "requests_count": record.requests_count if record else 0,
            "tokens_used": record.tokens_used if record else 0,
            "cost_usd": record.cost_usd if record else 0.0,
        }
