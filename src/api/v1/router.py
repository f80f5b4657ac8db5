"""Aggregate router for version 1 of the API."""
from fastapi import APIRouter

from src.api.v1.endpoints import cache, documents, limits, tutor

api_router = APIRouter()
api_router.include_router(tutor.router)
api_router.include_router(documents.router)
api_router.include_router(limits.router)
api_router.include_router(cache.router)
