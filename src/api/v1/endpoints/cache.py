"""Endpoints for response cache maintenance and statistics."""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.deps import get_db_session
from src.auth.jwt import require_auth
from src.services.response_cache import ResponseCache


router = APIRouter(prefix="/cache", tags=["cache"])


@router.get("/stats")
async def cache_stats(
    auth=Depends(require_auth), db: AsyncSession = Depends(get_db_session)
):
    return await ResponseCache(db).stats()


@router.post("/cleanup")
async def cleanup_cache(
    auth=Depends(require_auth), db: AsyncSession = Depends(get_db_session)
):
    if auth["claims"].get("role") != "admin":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin role required",
        )
    deleted = await ResponseCache(db).cleanup()
    return {"deleted": deleted}
