"""Vector index value objects — entries, raw results, and operation counts."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True, slots=True)
class VectorEntry:
    """A vector with its record ID and filterable metadata, ready for indexing.

    Attributes:
        id: Embedding record ID.
        vector: Embedding vector.
        metadata: Filterable attributes (``content_type``, ``embedding_model``, ...).
    """

    id: str
    vector: list[float]
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class VectorSearchResult:
    """A single result from a :class:`~embedstore.search.protocols.VectorIndex` search.

    Attributes:
        id: Embedding record ID of the match.
        score: Similarity score (higher is more similar).
        metadata: Metadata stored with the vector.
    """

    id: str
    score: float
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class UpsertResult:
    """Result of an index upsert.

    Attributes:
        upserted_count: Number of vectors written.
    """

    upserted_count: int


@dataclass(frozen=True, slots=True)
class DeleteResult:
    """Result of an index delete.

    Attributes:
        deleted_count: Number of vectors removed.
    """

    deleted_count: int
