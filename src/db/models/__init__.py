"""Database models package exports."""

from src.db.models.document import Document, DocumentChunk
from src.db.models.message import ConversationMessage
from src.db.models.profile import Profile
from src.db.models.response_cache import ResponseCacheEntry
from src.db.models.usage_daily import UsageDaily

__all__ = [
    "ConversationMessage",
    "Document",
    "DocumentChunk",
    "Profile",
    "ResponseCacheEntry",
    "UsageDaily",
]
