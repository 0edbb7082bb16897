"""Search layer protocols — interfaces for embedding providers and vector indexes."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from embedstore.search.filters import FilterExpression
    from embedstore.search.types import DeleteResult, UpsertResult, VectorEntry, VectorSearchResult


@runtime_checkable
class EmbeddingProvider(Protocol):
    """Protocol for text-to-vector embedding.

    Implementations convert text into fixed-dimension float vectors.
    ``embed`` and ``embed_batch`` may be plain or ``async`` methods; the
    store awaits the result when needed.
    """

    def embed(self, text: str) -> list[float]:
        """Embed a single text string into a vector."""
        ...

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed multiple texts into vectors."""
        ...

    @property
    def dimensions(self) -> int:
        """Number of dimensions in the embedding vectors."""
        ...

    @property
    def model_name(self) -> str:
        """Name of the embedding model."""
        ...


@runtime_checkable
class VectorIndex(Protocol):
    """Async protocol for the nearest-neighbour engine behind similarity search.

    The record table is the source of truth; an index only holds
    ``record id → vector`` plus the metadata needed for filtering.
    """

    async def upsert(self, entries: list[VectorEntry]) -> UpsertResult:
        """Insert or replace vectors by record ID."""
        ...

    async def search(
        self,
        vector: list[float],
        *,
        k: int = 10,
        filter: FilterExpression | None = None,  # noqa: A002
        score_threshold: float | None = None,
    ) -> list[VectorSearchResult]:
        """Return up to *k* nearest vectors, best first."""
        ...

    async def delete(self, ids: list[str]) -> DeleteResult:
        """Remove vectors by record ID. Unknown IDs are ignored."""
        ...

    async def clear(self) -> None:
        """Remove every vector."""
        ...

    async def connect(self) -> None:
        """Open connection / initialize resources."""
        ...

    async def close(self) -> None:
        """Release connection / clean up resources."""
        ...


@runtime_checkable
class SupportsSessionSearch(Protocol):
    """Index that can search through the caller's database session.

    Used when the vectors live in the records table, so a search inside
    an open transaction sees that transaction's writes.
    """

    async def search_in_session(
        self,
        session: AsyncSession,
        vector: list[float],
        *,
        k: int = 10,
        filter: FilterExpression | None = None,  # noqa: A002
        score_threshold: float | None = None,
    ) -> list[VectorSearchResult]: ...


@runtime_checkable
class SupportsPersistence(Protocol):
    """Index can be saved to and loaded from a directory."""

    def save(self, directory: str) -> None: ...

    def load(self, directory: str) -> None: ...
