"""Custom exception hierarchy for the embedding store."""

from __future__ import annotations


class EmbedStoreError(Exception):
    """Base exception for all embedding store errors."""


class ValidationError(EmbedStoreError):
    """Raised when input is rejected before any write (missing field, bad dimension, ...)."""


class InvalidQueryError(ValidationError):
    """Raised when a similarity query is malformed (bad dimension, non-positive limit)."""


class RecordNotFoundError(EmbedStoreError):
    """Raised when an operation targets an embedding record that does not exist."""

    def __init__(self, record_id: str, message: str | None = None) -> None:
        self.record_id = record_id
        super().__init__(message or f"Embedding record not found: {record_id}")


class ContentNotFoundError(RecordNotFoundError):
    """Raised when no records exist for a content identity."""

    def __init__(self, content_id: str, content_type: str | None = None) -> None:
        self.content_id = content_id
        self.content_type = content_type
        label = content_id if content_type is None else f"{content_id} ({content_type})"
        super().__init__(content_id, f"No embeddings stored for content {label}")


class IncompleteChunkSetError(EmbedStoreError):
    """Raised when a chunk set has missing or duplicate indices.

    Distinct from :class:`RecordNotFoundError`: rows exist but do not form a
    consistent ``[0, chunk_total)`` range, so the logical document must be
    treated as unavailable until it is rewritten.
    """

    def __init__(
        self,
        content_id: str,
        content_type: str,
        *,
        expected_total: int,
        missing: list[int] | None = None,
        duplicates: list[int] | None = None,
        detail: str = "",
    ) -> None:
        self.content_id = content_id
        self.content_type = content_type
        self.expected_total = expected_total
        self.missing = missing or []
        self.duplicates = duplicates or []
        details: list[str] = []
        if self.missing:
            details.append(f"missing indices {self.missing}")
        if self.duplicates:
            details.append(f"duplicate indices {self.duplicates}")
        if detail:
            details.append(detail)
        msg = f"Incomplete chunk set for {content_id} ({content_type})"
        if details:
            msg = f"{msg}: {', '.join(details)}"
        super().__init__(msg)


class VectorDecodeError(EmbedStoreError):
    """Raised when stored vector text cannot be parsed."""

    def __init__(self, message: str, *, record_id: str | None = None) -> None:
        self.record_id = record_id
        if record_id is not None:
            message = f"{message} (record {record_id})"
        super().__init__(message)
