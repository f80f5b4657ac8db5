"""
Response cache for tutor answers.

Lookups try an exact match on the hash of the normalized question first and
fall back to a bag-of-words cosine similarity scan over the most recent
entries. The scan is bounded by ``settings.cache.scan_window``: a paraphrase of
an older question is not found once newer entries push it out of the window.
"""
from __future__ import annotations

import logging
import math
import re
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import settings
from src.repositories.cache_repo import CacheRepo
from src.repositories.usage_repo import UsageRepo

logger = logging.getLogger(__name__)

_PUNCTUATION_RE = re.compile(r"[^\w\s]")
_FILLER_PHRASES: Tuple[Tuple[str, ...], ...] = (
    ("could", "you"),
    ("can", "you"),
    ("would", "you"),
    ("please",),
    ("kindly",),
)

_FNV_OFFSET = 0xCBF29CE484222325
_FNV_PRIME = 0x100000001B3
_MASK_64 = 0xFFFFFFFFFFFFFFFF


def _drop_fillers(tokens: List[str]) -> List[str]:
    out: List[str] = []
    i = 0
    while i < len(tokens):
        for phrase in _FILLER_PHRASES:
            if tuple(tokens[i : i + len(phrase)]) == phrase:
                i += len(phrase)
                break
        else:
            out.append(tokens[i])
            i += 1
    return out


def normalize_question(text: str) -> str:
    """Lowercase, strip punctuation and politeness fillers, collapse whitespace."""

    tokens = _PUNCTUATION_RE.sub("", text.lower()).split()
    # removing "can you" from "can can you you" exposes a new filler
    while True:
        stripped = _drop_fillers(tokens)
        if stripped == tokens:
            break
        tokens = stripped
    return " ".join(tokens)


def question_hash(text: str) -> str:
    """64-bit FNV-1a hash of the normalized question, as hex."""

    value = _FNV_OFFSET
    for byte in normalize_question(text).encode("utf-8"):
        value ^= byte
        value = (value * _FNV_PRIME) & _MASK_64
    return f"{value:016x}"


def text_similarity(first: str, second: str) -> float:
    """Cosine similarity of the two questions' word-count vectors."""

    bag_a = Counter(normalize_question(first).split())
    bag_b = Counter(normalize_question(second).split())
    if bag_a == bag_b:
        return 1.0
    if not bag_a or not bag_b:
        return 0.0
    dot = sum(count * bag_b[word] for word, count in bag_a.items())
    norm_a = math.sqrt(sum(count * count for count in bag_a.values()))
    norm_b = math.sqrt(sum(count * count for count in bag_b.values()))
    return min(1.0, dot / (norm_a * norm_b))


@dataclass
class CacheHit:
    response: str
    similarity: float
    cache_id: str
    hit_count: int
    model: str
    tokens_used: int = 0


class ResponseCache:
    """Lookup and store of prior answers; all failures degrade to a miss."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.repo = CacheRepo(session)

    async def lookup(
        self,
        question: str,
        threshold: Optional[float] = None,
        now: Optional[datetime] = None,
    ) -> Optional[CacheHit]:
        threshold = settings.cache.similarity_threshold if threshold is None else threshold
        now = now or datetime.now(timezone.utc)
        try:
            async with self.session.begin_nested():
                entry, similarity = await self._find(question, threshold, now)
                if entry is None:
                    logger.debug(f"Cache miss for question hash {question_hash(question)}")
                    return None
                hit_count = await self.repo.record_hit(entry, now)
        except Exception as exc:
            logger.error(f"Cache error during lookup: {exc}")
            return None

        logger.info(f"Cache hit {entry.id} similarity={similarity:.2f} hits={hit_count}")
        return CacheHit(
            response=entry.response_text,
            similarity=similarity,
            cache_id=str(entry.id),
            hit_count=hit_count,
            model=entry.model,
        )

    async def _find(self, question: str, threshold: float, now: datetime):
        entry = await self.repo.get_live_by_hash(question_hash(question), now)
        if entry is not None and normalize_question(entry.query_text) == normalize_question(question):
            return entry, 1.0
        # a miss or a hash collision falls through to the similarity scan
        return await self._best_similar(question, threshold, now)

    async def _best_similar(self, question: str, threshold: float, now: datetime):
        candidates = await self.repo.recent_live(now, settings.cache.scan_window)
        best = None
        best_similarity = 0.0
        # candidates are newest first; strict ">" keeps the most recent on ties
        for candidate in candidates:
            similarity = text_similarity(question, candidate.query_text)
            if similarity >= threshold and similarity > best_similarity:
                best, best_similarity = candidate, similarity
        return best, best_similarity

    async def store(
        self,
        question: str,
        response: str,
        metadata: Dict[str, Any],
        now: Optional[datetime] = None,
    ) -> bool:
        """Cache an answer; a live entry for the same hash is kept."""

        now = now or datetime.now(timezone.utc)
        expires_at = now + timedelta(days=settings.cache.ttl_days)
        values = {
            "query_hash": question_hash(question),
            "query_text": question,
            "response_text": response,
            "model": metadata.get("model") or settings.provider.model,
            "tokens_used": int(metadata.get("tokens_used") or 0),
            "hit_count": 1,
            "metadata": {
                "topic": metadata.get("topic"),
                "difficulty": metadata.get("difficulty"),
                "language": metadata.get("language") or "en",
                "expires_at": expires_at.isoformat(),
            },
            "created_at": now,
            "last_accessed_at": now,
            "expires_at": expires_at,
        }
        try:
            # a savepoint keeps a failed write from aborting the caller's transaction
            async with self.session.begin_nested():
                inserted = await self.repo.insert_or_replace_expired(values, now)
        except Exception as exc:
            logger.error(f"Cache error during store: {exc}")
            return False
        return inserted

    async def cleanup(self, now: Optional[datetime] = None) -> int:
        """Delete every entry whose expiry has passed and return the count."""

        deleted = await self.repo.delete_expired(now or datetime.now(timezone.utc))
        if deleted:
            logger.info(f"Removed {deleted} expired cache entries")
        return deleted

    async def stats(self) -> Dict[str, Any]:
        totals = await self.repo.aggregate()
        total_requests = await UsageRepo(self.session).total_requests()
        hit_rate = (totals["total_hits"] / total_requests * 100) if total_requests else 0.0
        return {**totals, "cache_hit_rate": round(hit_rate, 2)}
