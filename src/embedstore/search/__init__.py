"""Similarity search layer — engine, indexes, filters, embedding providers."""

from embedstore.search._engine import SimilaritySearch
from embedstore.search.filters import FilterExpression, and_, eq, exists, in_, ne, not_in, or_
from embedstore.search.index.local import LocalVectorIndex
from embedstore.search.protocols import (
    EmbeddingProvider,
    SupportsPersistence,
    SupportsSessionSearch,
    VectorIndex,
)
from embedstore.search.types import VectorEntry, VectorSearchResult

__all__ = [
    "EmbeddingProvider",
    "FilterExpression",
    "LocalVectorIndex",
    "SimilaritySearch",
    "SupportsPersistence",
    "SupportsSessionSearch",
    "VectorEntry",
    "VectorIndex",
    "VectorSearchResult",
    "and_",
    "eq",
    "exists",
    "in_",
    "ne",
    "not_in",
    "or_",
]
