"""Chunk splitting and reassembly for content stored across multiple records."""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from typing import TYPE_CHECKING, TypeVar

from embedstore.exceptions import IncompleteChunkSetError, ValidationError

if TYPE_CHECKING:
    from collections.abc import Sequence

    from embedstore.models.embeddings import EmbeddingRecordBase

logger = logging.getLogger(__name__)

R = TypeVar("R", bound="EmbeddingRecordBase")

# Split points in order of preference.  The separator stays with the
# chunk that precedes it, so joining chunks restores the input exactly.
_BOUNDARIES: tuple[str, ...] = ("\n\n", "\n", ". ", "! ", "? ", "; ", ", ", " ", "\t")


@dataclass(frozen=True, slots=True)
class Chunk:
    """One ordered slice of a larger text.

    Attributes:
        index: Zero-based position within the chunk set.
        total: Number of chunks in the set.
        text: The exact slice of the source text.
    """

    index: int
    total: int
    text: str

    @property
    def position(self) -> str:
        return chunk_position(self.index, self.total)


def chunk_position(index: int, total: int) -> str:
    """Format a chunk position for display (``"2/3"``; ``"1/1"`` for single chunks)."""
    if total <= 1:
        return "1/1"
    return f"{index + 1}/{total}"


def split_text(text: str, max_chunk_chars: int) -> list[Chunk]:
    """Split *text* into ordered chunks of at most *max_chunk_chars* characters.

    Chunks cover the text with no loss and no overlap.  Breaks prefer
    paragraph and line boundaries, then sentence ends, then any
    whitespace; a boundary is only taken when it falls in the second half
    of the window, otherwise the window is cut at the hard limit.

    Text that fits in one window (including the empty string) yields a
    single chunk with ``index=0, total=1``.
    """
    if max_chunk_chars <= 0:
        msg = f"max_chunk_chars must be positive, got {max_chunk_chars}"
        raise ValidationError(msg)

    if len(text) <= max_chunk_chars:
        return [Chunk(index=0, total=1, text=text)]

    pieces: list[str] = []
    start = 0
    length = len(text)
    while start < length:
        end = start + max_chunk_chars
        if end >= length:
            pieces.append(text[start:])
            break
        cut = _find_cut(text, start, end)
        pieces.append(text[start:cut])
        start = cut

    total = len(pieces)
    logger.debug("Split %d chars into %d chunks (max %d)", length, total, max_chunk_chars)
    return [Chunk(index=i, total=total, text=piece) for i, piece in enumerate(pieces)]


def _find_cut(text: str, start: int, end: int) -> int:
    """Return the cut offset for the window ``text[start:end]``."""
    window = text[start:end]
    floor = len(window) // 2
    for sep in _BOUNDARIES:
        pos = window.rfind(sep)
        if pos >= floor:
            return start + pos + len(sep)
    return end


def assemble(records: Sequence[R]) -> list[R]:
    """Order *records* by ``chunk_index`` and verify they form a complete set.

    A complete set has exactly one record for every index in
    ``[0, chunk_total)`` and all records agree on ``chunk_total``.
    Anything else raises :class:`IncompleteChunkSetError` rather than
    returning a subset.
    """
    if not records:
        return []

    ordered = sorted(records, key=lambda r: r.chunk_index)
    first = ordered[0]
    content_type = str(first.content_type)

    totals = {max(r.chunk_total, 1) for r in ordered}
    if len(totals) > 1:
        raise IncompleteChunkSetError(
            first.content_id,
            content_type,
            expected_total=max(totals),
            detail=f"conflicting chunk totals {sorted(totals)}",
        )
    total = totals.pop()

    counts = Counter(r.chunk_index for r in ordered)
    missing = [i for i in range(total) if counts[i] == 0]
    duplicates = sorted(i for i, n in counts.items() if n > 1)
    out_of_range = sorted(i for i in counts if i < 0 or i >= total)
    if missing or duplicates or out_of_range:
        raise IncompleteChunkSetError(
            first.content_id,
            content_type,
            expected_total=total,
            missing=missing,
            duplicates=duplicates,
            detail=f"indices out of range {out_of_range}" if out_of_range else "",
        )
    return ordered


def reconstruct(records: Sequence[EmbeddingRecordBase]) -> str:
    """Reassemble the original text from a complete chunk set."""
    return "".join(r.content_text for r in assemble(records))
