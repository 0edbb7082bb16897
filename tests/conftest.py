"""Shared fixtures for embedstore tests."""

from __future__ import annotations

import hashlib
import math
from typing import TYPE_CHECKING

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

from embedstore import codec
from embedstore._store_async import EmbeddingStoreAsync
from embedstore.config import Settings
from embedstore.models.embeddings import ContentType, EmbeddingRecord
from embedstore.records import EmbeddingRecordService

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from sqlalchemy.ext.asyncio import AsyncEngine

TEST_MODEL = "test-model"
TEST_DIM = 8
OTHER_MODEL = "other-model"
OTHER_DIM = 4


def hash_vector(text: str, dim: int = TEST_DIM) -> list[float]:
    """Deterministic unit vector from a text hash."""
    h = hashlib.sha256(text.encode()).digest()
    raw = [float(b) + 1.0 for b in h[:dim]]
    norm = math.sqrt(sum(x * x for x in raw))
    return [x / norm for x in raw]


def unit(index: int, dim: int = TEST_DIM) -> list[float]:
    """Basis vector ``e_index``."""
    return [1.0 if i == index else 0.0 for i in range(dim)]


def make_record(
    content_id: str = "c1",
    content_type: ContentType | str = ContentType.CODE_SNIPPET,
    content_text: str = "hello",
    *,
    vector: list[float] | None = None,
    model: str = TEST_MODEL,
    chunk_index: int = 0,
    chunk_total: int = 1,
    **kwargs: object,
) -> EmbeddingRecord:
    return EmbeddingRecord(
        content_id=content_id,
        content_type=ContentType.parse(content_type),
        content_text=content_text,
        embedding_vector=codec.encode(vector) if vector is not None else None,
        embedding_model=model,
        chunk_index=chunk_index,
        chunk_total=chunk_total,
        **kwargs,
    )


class HashEmbedding:
    """Sync embedding provider returning hash vectors; records every call."""

    def __init__(self, model: str = TEST_MODEL, dim: int = TEST_DIM) -> None:
        self._model = model
        self._dim = dim
        self.calls: list[list[str]] = []

    def embed(self, text: str) -> list[float]:
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        return [hash_vector(t, self._dim) for t in texts]

    @property
    def dimensions(self) -> int:
        return self._dim

    @property
    def model_name(self) -> str:
        return self._model


class AsyncHashEmbedding(HashEmbedding):
    """Async variant of :class:`HashEmbedding`."""

    async def embed(self, text: str) -> list[float]:  # type: ignore[override]
        return hash_vector(text, self._dim)

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:  # type: ignore[override]
        return HashEmbedding.embed_batch(self, texts)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url=None,
        model_dimensions={TEST_MODEL: TEST_DIM, OTHER_MODEL: OTHER_DIM},
        default_model=TEST_MODEL,
        max_chunk_chars=50,
    )


@pytest.fixture
def record_service(settings: Settings) -> EmbeddingRecordService:
    return EmbeddingRecordService(EmbeddingRecord, settings.dimensions_registry())


@pytest.fixture
async def async_engine() -> AsyncIterator[AsyncEngine]:
    """Async in-memory SQLite engine with all tables created."""
    eng = create_async_engine("sqlite+aiosqlite://", echo=False)
    async with eng.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
async def async_session(async_engine: AsyncEngine) -> AsyncIterator[AsyncSession]:
    """Async SQLModel session, rolled back after each test."""
    factory = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    async with factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def provider() -> HashEmbedding:
    return HashEmbedding()


@pytest.fixture
async def store(
    async_engine: AsyncEngine,
    settings: Settings,
    provider: HashEmbedding,
) -> AsyncIterator[EmbeddingStoreAsync]:
    s = EmbeddingStoreAsync(engine=async_engine, settings=settings, embedding_provider=provider)
    await s.init_schema()
    yield s
    await s.close()
