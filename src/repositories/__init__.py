"""Repository layer package."""

from src.repositories.cache_repo import CacheRepo
from src.repositories.document_repo import DocumentRepo
from src.repositories.message_repo import MessageRepo
from src.repositories.profile_repo import ProfileRepo
from src.repositories.usage_repo import UsageRepo

__all__ = [
    "CacheRepo",
    "DocumentRepo",
    "MessageRepo",
    "ProfileRepo",
    "UsageRepo",
]
