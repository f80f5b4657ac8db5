from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from src.db.models.response_cache import ResponseCacheEntry
from src.services.response_cache import (
    ResponseCache,
    normalize_question,
    question_hash,
    text_similarity,
)


NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("What is 2+2?", "what is 22"),
        ("  Could you   PLEASE explain Newton's laws?! ", "explain newtons laws"),
        ("can can you you help", "help"),
        ("Kindly, would you define entropy", "define entropy"),
        ("", ""),
    ],
)
def test_normalize_question(raw, expected):
    assert normalize_question(raw) == expected


@pytest.mark.parametrize(
    "text",
    ["What is 2+2?", "can can you you please please tell", "Could you... kindly?", "x"],
)
def test_normalize_is_idempotent(text):
    once = normalize_question(text)
    assert normalize_question(once) == once


def test_question_hash_is_deterministic_over_normalization():
    assert question_hash("What is 2+2?") == question_hash("what is 2+2")
    assert question_hash("Please, what is 2+2?") == question_hash("what is 2+2")
    assert question_hash("What is 2+2?") != question_hash("What is 3+3?")
    assert len(question_hash("anything")) == 16


def test_text_similarity_properties():
    a = "How do plants make energy from light"
    b = "how do plants make energy from sunlight"

    assert text_similarity(a, a) == 1.0
    assert text_similarity("", "") == 1.0
    assert text_similarity(a, b) == pytest.approx(text_similarity(b, a))
    assert 0.0 <= text_similarity(a, b) <= 1.0
    assert text_similarity(a, b) == pytest.approx(6 / 7)
    assert text_similarity("algebra", "") == 0.0
    assert text_similarity("algebra basics", "french revolution") == 0.0


@pytest.mark.asyncio
async def test_exact_duplicate_hits_and_bumps_hit_count(test_db):
    cache = ResponseCache(test_db)

    assert await cache.lookup("What is 2+2?", now=NOW) is None
    stored = await cache.store(
        "What is 2+2?", "4", {"model": "m", "tokens_used": 12, "topic": "math"}, now=NOW
    )
    assert stored is True

    hit = await cache.lookup("What is 2+2?", now=NOW + timedelta(minutes=1))
    assert hit is not None
    assert hit.response == "4"
    assert hit.similarity == 1.0
    assert hit.hit_count == 2

    entry = (await test_db.execute(select(ResponseCacheEntry))).scalar_one()
    assert entry.meta["topic"] == "math"
    assert entry.meta["language"] == "en"


@pytest.mark.asyncio
async def test_store_keeps_first_write(test_db):
    cache = ResponseCache(test_db)

    assert await cache.store("Define entropy", "first", {"model": "m"}, now=NOW) is True
    assert await cache.store("define entropy!", "second", {"model": "m"}, now=NOW) is False

    hit = await cache.lookup("Define entropy", now=NOW)
    assert hit.response == "first"
    count = await test_db.scalar(select(func.count(ResponseCacheEntry.id)))
    assert count == 1


@pytest.mark.asyncio
async def test_store_replaces_expired_entry_not_yet_cleaned(test_db):
    cache = ResponseCache(test_db)
    later = NOW + timedelta(days=31)
    await cache.store("Define entropy", "stale", {"model": "m"}, now=NOW)

    assert await cache.lookup("Define entropy", now=later) is None
    assert await cache.store("Define entropy", "fresh", {"model": "m"}, now=later) is True

    hit = await cache.lookup("Define entropy", now=later + timedelta(minutes=1))
    assert hit.response == "fresh"
    assert hit.hit_count == 2
    count = await test_db.scalar(select(func.count(ResponseCacheEntry.id)))
    assert count == 1


@pytest.mark.asyncio
async def test_failed_lookup_leaves_session_usable(test_db, monkeypatch):
    cache = ResponseCache(test_db)

    async def _broken_flush(*_args, **_kwargs):
        # query_text is NOT NULL, so this flush fails
        test_db.add(ResponseCacheEntry(query_hash="broken"))
        await test_db.flush()

    monkeypatch.setattr(cache.repo, "get_live_by_hash", _broken_flush)

    assert await cache.lookup("What is 2+2?", now=NOW) is None
    assert await cache.store("What is 2+2?", "4", {"model": "m"}, now=NOW) is True
    await test_db.commit()
    count = await test_db.scalar(select(func.count(ResponseCacheEntry.id)))
    assert count == 1


@pytest.mark.asyncio
async def test_similar_question_hits_above_threshold(test_db):
    cache = ResponseCache(test_db)
    await cache.store(
        "How do plants make energy from light", "Photosynthesis.", {"model": "m"}, now=NOW
    )

    hit = await cache.lookup("how do plants make energy from sunlight?", now=NOW)
    assert hit is not None
    assert hit.response == "Photosynthesis."
    assert hit.similarity == pytest.approx(6 / 7)

    assert await cache.lookup("what causes the tides", now=NOW) is None
    assert (
        await cache.lookup("how do plants make energy from sunlight", threshold=0.9, now=NOW)
        is None
    )


@pytest.mark.asyncio
async def test_ties_prefer_most_recent_entry(test_db):
    cache = ResponseCache(test_db)
    await cache.store("plants make energy from light", "older", {"model": "m"}, now=NOW)
    await cache.store(
        "plants make energy from heat",
        "newer",
        {"model": "m"},
        now=NOW + timedelta(minutes=5),
    )

    hit = await cache.lookup(
        "plants make energy from sunlight", threshold=0.5, now=NOW + timedelta(minutes=6)
    )
    assert hit.response == "newer"


@pytest.mark.asyncio
async def test_cleanup_removes_expired_entry_and_question_then_misses(test_db):
    cache = ResponseCache(test_db)
    await cache.store("What is 2+2?", "4", {"model": "m"}, now=NOW - timedelta(days=31))
    await cache.store("What is 3+3?", "6", {"model": "m"}, now=NOW)

    assert await cache.cleanup(now=NOW) == 1
    assert await cache.lookup("What is 2+2?", now=NOW) is None
    assert (await cache.lookup("What is 3+3?", now=NOW)).response == "6"


@pytest.mark.asyncio
async def test_lookup_degrades_to_miss_on_error(test_db, monkeypatch):
    cache = ResponseCache(test_db)

    async def _boom(*_args, **_kwargs):
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(cache.repo, "get_live_by_hash", _boom)
    monkeypatch.setattr(cache.repo, "insert_or_replace_expired", _boom)

    assert await cache.lookup("What is 2+2?", now=NOW) is None
    assert await cache.store("What is 2+2?", "4", {"model": "m"}, now=NOW) is False


@pytest.mark.asyncio
async def test_stats_reports_hits_and_tokens_saved(test_db):
    cache = ResponseCache(test_db)
    await cache.store("What is 2+2?", "4", {"model": "m", "tokens_used": 10}, now=NOW)
    await cache.lookup("What is 2+2?", now=NOW)
    await cache.lookup("what is 2+2", now=NOW)

    stats = await cache.stats()
    assert stats["total_cached"] == 1
    assert stats["total_hits"] == 2
    assert stats["total_tokens_saved"] == 20
    assert stats["cache_hit_rate"] == 0.0
