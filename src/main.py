"""FastAPI application factory for the tutor gateway."""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from src.api.v1.router import api_router
from src.core.config import settings
from src.core.exceptions import TutorError
from src.core.logging import setup_logging
from src.db.session import get_session_factory
from src.services.response_cache import ResponseCache

logger = logging.getLogger(__name__)


async def _cache_cleanup_loop(interval: float) -> None:
    """Periodically delete expired cache entries."""

    session_factory = get_session_factory()
    while True:
        await asyncio.sleep(interval)
        try:
            async with session_factory() as session:
                await ResponseCache(session).cleanup()
                await session.commit()
        except Exception:
            logger.exception("Scheduled cache cleanup failed")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    task = None
    if settings.scheduler.enabled:
        task = asyncio.create_task(
            _cache_cleanup_loop(settings.scheduler.cache_cleanup_interval_seconds)
        )
        logger.info("Cache cleanup scheduler started")
    try:
        yield
    finally:
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass


def create_application() -> FastAPI:
    setup_logging()

    application = FastAPI(
        title=settings.PROJECT_NAME,
        openapi_url=f"{settings.API_PREFIX}/openapi.json",
        lifespan=lifespan,
    )

    @application.exception_handler(HTTPException)
    async def http_exception_handler(_request: Request, exc: HTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"message": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @application.exception_handler(RequestValidationError)
    async def validation_exception_handler(_request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=422,
            content={"message": "Invalid request", "errors": jsonable_encoder(exc.errors())},
        )

    @application.exception_handler(TutorError)
    async def tutor_exception_handler(_request: Request, exc: TutorError):
        if exc.status_code >= 500:
            logger.error(f"{exc.error_type}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

    @application.get("/health", tags=["health"])
    async def health():
        return {"status": "ok", "env": settings.ENV}

    application.include_router(api_router, prefix=f"{settings.API_PREFIX}/v1")
    return application


app = create_application()
