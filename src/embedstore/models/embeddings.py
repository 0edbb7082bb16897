"""Embedding record model — one row per embedded chunk.

Provides ``EmbeddingRecordBase`` (non-table base) and ``EmbeddingRecord``
(concrete table).  Subclass ``EmbeddingRecordBase`` with ``table=True`` and
a custom ``__tablename__`` to use a different table name.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import Any, TypeVar

from sqlalchemy import JSON, DateTime, Index, Text
from sqlalchemy.ext.mutable import MutableDict
from sqlmodel import Field, SQLModel

from embedstore import codec
from embedstore.chunking import chunk_position
from embedstore.exceptions import ValidationError, VectorDecodeError

T = TypeVar("T")

DEFAULT_EMBEDDING_MODEL = "text-embedding-ada-002"


class ContentType(str, Enum):
    """Closed set of content categories that can be embedded."""

    PROJECT_DESCRIPTION = "project-description"
    PROJECT_DOCUMENTATION = "project-documentation"
    CODE_SNIPPET = "code-snippet"
    USER_PROFILE = "user-profile"
    COMMIT_MESSAGE = "commit-message"
    ISSUE_DESCRIPTION = "issue-description"
    PULL_REQUEST_DESCRIPTION = "pull-request-description"
    COMMENT = "comment"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def parse(cls, value: ContentType | str) -> ContentType:
        """Accept a member, its value (``"code-snippet"``) or its name (``"CODE_SNIPPET"``)."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.lower())
            except ValueError:
                pass
            try:
                return cls[value.upper().replace("-", "_")]
            except KeyError:
                pass
        msg = f"Unknown content type: {value!r}"
        raise ValidationError(msg)


def _now() -> datetime:
    return datetime.now(UTC)


class EmbeddingRecordBase(SQLModel):
    """Base fields for an embedding record. Subclass with ``table=True`` for a concrete table."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    content_id: str = Field(index=True)
    content_type: ContentType = Field(index=True)
    content_text: str = Field(sa_type=Text)  # type: ignore[invalid-argument-type]
    embedding_vector: str | None = Field(default=None, sa_type=Text)  # type: ignore[invalid-argument-type]
    embedding_model: str = Field(default=DEFAULT_EMBEDDING_MODEL, max_length=100, index=True)
    chunk_index: int = Field(default=0)
    chunk_total: int = Field(default=1)
    metadata_: dict[str, Any] = Field(
        default_factory=dict,
        sa_type=MutableDict.as_mutable(JSON),  # type: ignore[invalid-argument-type]
        sa_column_kwargs={"name": "metadata"},
    )
    created_at: datetime = Field(
        default_factory=_now,
        index=True,
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )
    updated_at: datetime = Field(
        default_factory=_now,
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )

    # ------------------------------------------------------------------
    # Chunk helpers
    # ------------------------------------------------------------------

    @property
    def is_multi_chunk(self) -> bool:
        return self.chunk_total is not None and self.chunk_total > 1

    @property
    def is_first_chunk(self) -> bool:
        return self.chunk_index == 0

    @property
    def is_last_chunk(self) -> bool:
        return self.chunk_index == self.chunk_total - 1

    @property
    def chunk_position(self) -> str:
        """Display position such as ``"2/3"``; always ``"1/1"`` for single-chunk content."""
        return chunk_position(self.chunk_index, self.chunk_total)

    # ------------------------------------------------------------------
    # Vector helpers
    # ------------------------------------------------------------------

    @property
    def vector_dimensions(self) -> int:
        """Number of stored dimensions, or ``-1`` when the vector is absent or unreadable."""
        return codec.dimensions(self.embedding_vector)

    @property
    def vector(self) -> list[float] | None:
        """Decoded vector, or ``None`` when absent or unreadable."""
        if self.embedding_vector is None:
            return None
        try:
            return codec.decode(self.embedding_vector)
        except VectorDecodeError:
            return None

    @property
    def has_vector(self) -> bool:
        return self.vector_dimensions >= 0

    # ------------------------------------------------------------------
    # Metadata helpers
    # ------------------------------------------------------------------

    def add_metadata(self, key: str, value: Any) -> None:
        if self.metadata_ is None:
            self.metadata_ = {}
        self.metadata_[key] = value

    def get_metadata(self, key: str, default: Any = None, type_: type[T] | None = None) -> Any:
        """Return the metadata value for *key*.

        When *type_* is given, values of any other type yield *default*.
        """
        if not self.metadata_ or key not in self.metadata_:
            return default
        value = self.metadata_[key]
        if type_ is not None and not isinstance(value, type_):
            return default
        return value

    def has_metadata(self, key: str) -> bool:
        return bool(self.metadata_) and key in self.metadata_


class EmbeddingRecord(EmbeddingRecordBase, table=True):
    """Default embedding table — ``embeddings``."""

    __tablename__ = "embeddings"
    __table_args__ = (
        Index("ix_embeddings_content_chunk", "content_id", "content_type", "chunk_index"),
    )
