"""Result types returned by the record store and the facades."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Generic, TypeVar

if TYPE_CHECKING:
    from embedstore.models.embeddings import ContentType, EmbeddingRecordBase

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Page(Generic[T]):
    """One page of a paged query.

    Attributes:
        items: Records on this page.
        total: Number of records matching the query across all pages.
        offset: Offset of the first item.
        limit: Requested page size.
    """

    items: list[T] = field(default_factory=list)
    total: int = 0
    offset: int = 0
    limit: int = 0

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.items) < self.total

    @property
    def next_offset(self) -> int | None:
        """Offset of the following page, or ``None`` on the last page."""
        return self.offset + len(self.items) if self.has_more else None

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self):
        return iter(self.items)


@dataclass(frozen=True, slots=True)
class SearchHit:
    """A record returned by similarity search.

    Attributes:
        record: The matched embedding record.
        score: Similarity score (higher is more similar).
    """

    record: EmbeddingRecordBase
    score: float

    @property
    def content_id(self) -> str:
        return self.record.content_id

    @property
    def content_text(self) -> str:
        return self.record.content_text


@dataclass(frozen=True, slots=True)
class ContentTypeStats:
    """Aggregate statistics for one content type.

    Attributes:
        content_type: The content category.
        total: Number of records.
        with_vector: Records whose vector has been computed.
        multi_chunk: Records that belong to a multi-chunk set.
        distinct_content: Number of distinct ``content_id`` values.
    """

    content_type: ContentType
    total: int
    with_vector: int
    multi_chunk: int = 0
    distinct_content: int = 0

    @property
    def vector_ratio(self) -> float:
        """Fraction of records with a vector (``0.0`` when empty)."""
        if self.total == 0:
            return 0.0
        return self.with_vector / self.total
