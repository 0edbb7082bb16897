"""SQLModel database models for the embedding store."""

from embedstore.models.embeddings import (
    DEFAULT_EMBEDDING_MODEL,
    ContentType,
    EmbeddingRecord,
    EmbeddingRecordBase,
)

__all__ = [
    "DEFAULT_EMBEDDING_MODEL",
    "ContentType",
    "EmbeddingRecord",
    "EmbeddingRecordBase",
]
