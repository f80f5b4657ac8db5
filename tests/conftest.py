"""
Pytest configuration for the application
"""
import io
import os
import re
from typing import AsyncGenerator, Dict, List, Optional, Sequence

import httpx
import jwt
import pytest
import pytest_asyncio
from asgi_lifespan import LifespanManager
from docx import Document as DocxDocument
from fastapi import FastAPI
from sqlalchemy.ext.asyncio import (
    AsyncSession, async_sessionmaker, create_async_engine
)

from src.core.config import settings
from src.core.exceptions import EmbeddingError
from src.db import models  # noqa: F401  registers tables on Base.metadata
from src.db.base import Base
from src.db.session import get_db, get_session_factory
from src.main import create_application
from src.repositories.document_repo import DocumentRepo
from src.services import limits as limits_service
from src.services.embeddings import EmbeddingClient, get_embedding_client
from src.services.provider import ChatProvider, Completion, get_chat_provider
from src.services.storage import LocalDocumentStorage, get_document_storage


# Set test environment and override runtime settings to avoid external deps
os.environ["ENV"] = "test"
settings.ENV = "test"
settings.scheduler.enabled = False
API_PREFIX = f"{settings.API_PREFIX}/v1"

VOCABULARY = (
    "photosynthesis",
    "plants",
    "light",
    "energy",
    "algebra",
    "equation",
    "history",
    "revolution",
)
_WORD_RE = re.compile(r"[a-z]+")


class FakeRedis:
    """Minimal async Redis stub for rate limiting and idempotency tests."""

    def __init__(self) -> None:
        self.store: Dict[str, int | str] = {}

    async def incr(self, key: str) -> int:
        current = int(self.store.get(key, 0)) + 1
        self.store[key] = current
        return current

    async def expire(self, key: str, seconds: int) -> None:
        self.store.setdefault(f"{key}:ttl", seconds)

    async def set(self, key: str, value: str, ex: int | None = None, nx: bool = False) -> bool:
        if nx and key in self.store:
            return False
        self.store[key] = value
        if ex is not None:
            self.store[f"{key}:ttl"] = ex
        return True


class FakeEmbedder(EmbeddingClient):
    """Keyword-count embeddings over a small fixed vocabulary."""

    def __init__(self, fail: bool = False) -> None:
        super().__init__(client=None, model="fake-embedding", dimensions=len(VOCABULARY))
        self.fail = fail
        self.calls: List[List[str]] = []

    async def embed(self, texts: Sequence[str]) -> List[List[float]]:
        self.calls.append(list(texts))
        if self.fail:
            raise EmbeddingError("Embedding generation failed: boom")
        return [keyword_vector(text) for text in texts]


class FakeProvider(ChatProvider):
    """Returns canned completions and records the messages it received."""

    def __init__(
        self,
        content: str = "Mock answer",
        total_tokens: int = 42,
        errors: Optional[List[Exception]] = None,
    ) -> None:
        super().__init__(client=None)
        self.content = content
        self.total_tokens = total_tokens
        self.errors = list(errors or [])
        self.calls: List[List[Dict[str, str]]] = []

    async def complete(self, messages, model=None, max_tokens=None, temperature=None):
        self.calls.append(messages)
        if self.errors:
            raise self.errors.pop(0)
        return Completion(
            content=self.content,
            total_tokens=self.total_tokens,
            model=model or "fake-model",
        )


def keyword_vector(text: str) -> List[float]:
    words = _WORD_RE.findall(text.lower())
    return [float(words.count(term)) for term in VOCABULARY]


def make_docx(*paragraphs: str) -> bytes:
    document = DocxDocument()
    for paragraph in paragraphs:
        document.add_paragraph(paragraph)
    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


def build_auth_header(user_id: str, **claims) -> Dict[str, str]:
    token = jwt.encode(
        {"sub": user_id, **claims}, settings.JWT_SECRET, algorithm=settings.JWT_ALG
    )
    return {"Authorization": f"Bearer {token}"}


async def seed_document(session, owner_id, file_name, contents, status="completed"):
    """Insert a document with keyword-embedded chunks and commit it."""

    repo = DocumentRepo(session)
    document = await repo.create(
        owner_id=owner_id,
        file_name=file_name,
        file_type="application/pdf",
        storage_path=f"{owner_id}/{file_name}",
    )
    await repo.add_chunks(
        document.id,
        [
            (index, content, keyword_vector(content), {"total_chunks": len(contents)})
            for index, content in enumerate(contents)
        ],
    )
    document.status = status
    document.chunks_count = len(contents)
    document.embedded_chunks = len(contents)
    await repo.save(document)
    await session.commit()
    return document


@pytest_asyncio.fixture
async def test_db_engine(tmp_path):
    """
    Create a test database engine backed by a per-test SQLite file.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test_app.db'}")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_db_engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def test_db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """
    Create a new database session for a test.
    """
    async with session_factory() as session:
        yield session


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def fake_embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def storage(tmp_path) -> LocalDocumentStorage:
    return LocalDocumentStorage(str(tmp_path / "documents"))


@pytest.fixture(autouse=True)
def fake_redis(monkeypatch) -> FakeRedis:
    """Patch the limits module to use an in-memory Redis stub."""

    fake = FakeRedis()
    monkeypatch.setattr(limits_service, "_redis_client", fake, raising=False)
    yield fake
    monkeypatch.setattr(limits_service, "_redis_client", None, raising=False)


@pytest_asyncio.fixture
async def test_app(
    session_factory, fake_provider, fake_embedder, storage
) -> AsyncGenerator[FastAPI, None]:
    """
    Create a FastAPI test application.
    """
    app = create_application()

    async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_chat_provider] = lambda: fake_provider
    app.dependency_overrides[get_embedding_client] = lambda: fake_embedder
    app.dependency_overrides[get_document_storage] = lambda: storage
    async with LifespanManager(app):
        yield app


@pytest_asyncio.fixture
async def client(test_app: FastAPI) -> AsyncGenerator[httpx.AsyncClient, None]:
    """
    Create an async HTTP client for testing.
    """
    transport = httpx.ASGITransport(app=test_app)
    async with httpx.AsyncClient(
        transport=transport,
        base_url="http://test",
    ) as client:
        yield client
