"""Endpoints exposing the caller's daily quota and usage."""
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.deps import get_db_session
from src.auth.jwt import require_auth
from src.services.limits import check_rate_limit
from src.services.rate_limiter import RateLimiter, daily_quota, rate_limit_message


router = APIRouter(prefix="/limits", tags=["limits"])


@router.get("/current")
async def current_limits(
    auth=Depends(require_auth), db: AsyncSession = Depends(get_db_session)
):
    user_id = auth["user_id"]
    await check_rate_limit(user_id)

    limiter = RateLimiter(db)
    rate_status = await limiter.check(user_id)
    usage = await limiter.usage_today(user_id)

    return {
        **rate_status.to_dict(),
        "daily_limit": daily_quota(rate_status.tier),
        "message": rate_limit_message(rate_status),
        "usage": usage,
    }
