"""SimilaritySearch — validates queries, dispatches to a VectorIndex, shapes hits."""

from __future__ import annotations

import inspect
import logging
import math
from typing import TYPE_CHECKING, Any

from embedstore import codec
from embedstore.exceptions import InvalidQueryError, VectorDecodeError
from embedstore.models.embeddings import ContentType
from embedstore.search.filters import and_, eq, in_
from embedstore.search.protocols import SupportsSessionSearch
from embedstore.search.types import VectorEntry
from embedstore.types import SearchHit

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy.ext.asyncio import AsyncSession

    from embedstore.models.embeddings import EmbeddingRecordBase
    from embedstore.records import EmbeddingRecordService
    from embedstore.search.filters import FilterExpression
    from embedstore.search.protocols import EmbeddingProvider, VectorIndex
    from embedstore.types import Page

logger = logging.getLogger(__name__)


async def embed_texts(provider: EmbeddingProvider, texts: list[str]) -> list[list[float]]:
    """Embed *texts* with *provider*, handling both sync and async providers."""
    if not texts:
        return []
    result = provider.embed_batch(texts)
    if inspect.isawaitable(result):
        result = await result
    vectors = [list(v) for v in result]
    if len(vectors) != len(texts):
        msg = f"Provider returned {len(vectors)} vectors for {len(texts)} texts"
        raise RuntimeError(msg)
    return vectors


def record_to_entry(record: EmbeddingRecordBase, vector: list[float]) -> VectorEntry:
    """Build the index entry for *record*.

    Entry metadata is the record's own metadata plus the identity fields
    used for filtering; the identity fields win on a key clash.
    """
    metadata: dict[str, Any] = dict(record.metadata_ or {})
    metadata.update(
        content_id=record.content_id,
        content_type=str(ContentType.parse(record.content_type)),
        embedding_model=record.embedding_model,
        chunk_index=record.chunk_index,
    )
    return VectorEntry(id=record.id, vector=vector, metadata=metadata)


class SimilaritySearch:
    """Orchestrates a :class:`VectorIndex` and the record store.

    The nearest-neighbour computation belongs to the index; this class
    validates the query vector against the model registry, applies the
    content-type and model filters, resolves hits back to records, and
    orders and truncates the result.
    """

    def __init__(self, index: VectorIndex, records: EmbeddingRecordService) -> None:
        self._index = index
        self._records = records

    @property
    def index(self) -> VectorIndex:
        return self._index

    # ------------------------------------------------------------------
    # Query
    # ------------------------------------------------------------------

    def validate_query(
        self,
        query_vector: Sequence[float],
        model: str,
        limit: int,
        threshold: float,
    ) -> list[float]:
        """Return the query as a list of floats, or raise :class:`InvalidQueryError`."""
        if limit <= 0:
            msg = f"limit must be positive, got {limit}"
            raise InvalidQueryError(msg)
        if not isinstance(threshold, (int, float)) or not math.isfinite(threshold):
            msg = f"threshold must be a finite number, got {threshold!r}"
            raise InvalidQueryError(msg)
        if len(query_vector) == 0:
            raise InvalidQueryError("query vector is empty")
        expected = self._records.expected_dimensions(model)
        if expected is None:
            msg = f"Unknown embedding model {model!r}"
            raise InvalidQueryError(msg)
        if len(query_vector) != expected:
            msg = (
                f"Query vector has {len(query_vector)} dimensions but model "
                f"{model!r} produces {expected}"
            )
            raise InvalidQueryError(msg)
        try:
            vector = [float(v) for v in query_vector]
        except (TypeError, ValueError):
            raise InvalidQueryError("query vector must contain numbers only") from None
        if not all(math.isfinite(v) for v in vector):
            raise InvalidQueryError("query vector must contain finite numbers only")
        return vector

    async def search(
        self,
        session: AsyncSession,
        query_vector: Sequence[float],
        *,
        model: str,
        content_type: ContentType | str | Sequence[ContentType | str] | None = None,
        threshold: float = 0.0,
        limit: int = 10,
        filter: FilterExpression | None = None,  # noqa: A002
    ) -> list[SearchHit]:
        """Return up to *limit* records scoring at least *threshold*, best first.

        *filter* is ANDed with the model and content-type restriction; its
        fields are entry fields or record metadata keys.

        Raises :class:`InvalidQueryError` before dispatch for bad input, and
        :class:`VectorDecodeError` naming the record if a matched row holds
        an unreadable vector.
        """
        vector = self.validate_query(query_vector, model, limit, threshold)
        expr = self._build_filter(model, content_type)
        if filter is not None:
            expr = and_(expr, filter)
        if isinstance(self._index, SupportsSessionSearch):
            raw = await self._index.search_in_session(
                session, vector, k=limit, filter=expr, score_threshold=threshold
            )
        else:
            raw = await self._index.search(vector, k=limit, filter=expr, score_threshold=threshold)
        if not raw:
            return []

        by_id = await self._records.get_many(session, [r.id for r in raw])
        hits: list[SearchHit] = []
        for result in raw:
            record = by_id.get(result.id)
            if record is None or record.embedding_vector is None:
                logger.debug("Skipping stale index entry %s", result.id)
                continue
            try:
                codec.decode(record.embedding_vector)
            except VectorDecodeError as e:
                raise VectorDecodeError(str(e), record_id=record.id) from e
            if result.score < threshold:
                continue
            hits.append(SearchHit(record=record, score=result.score))

        hits.sort(key=lambda h: h.score, reverse=True)
        return hits[:limit]

    async def search_by_content_text(
        self,
        session: AsyncSession,
        term: str,
        *,
        offset: int = 0,
        limit: int = 100,
    ) -> Page[EmbeddingRecordBase]:
        """Lexical fallback — no vectors involved, no score."""
        return await self._records.search_by_content_text(session, term, offset=offset, limit=limit)

    # ------------------------------------------------------------------
    # Index maintenance
    # ------------------------------------------------------------------

    def entries_for(self, records: Sequence[EmbeddingRecordBase]) -> list[VectorEntry]:
        """Index entries for every record that carries a readable vector."""
        entries: list[VectorEntry] = []
        for record in records:
            if record.embedding_vector is None:
                continue
            try:
                vector = codec.decode(record.embedding_vector)
            except VectorDecodeError:
                logger.warning("Not indexing record %s: unreadable vector", record.id)
                continue
            if vector:
                entries.append(record_to_entry(record, vector))
        return entries

    async def index_records(self, records: Sequence[EmbeddingRecordBase]) -> int:
        """Upsert every record that carries a readable vector. Returns count indexed."""
        return await self.index_entries(self.entries_for(records))

    async def index_entries(self, entries: Sequence[VectorEntry]) -> int:
        if not entries:
            return 0
        result = await self._index.upsert(list(entries))
        return result.upserted_count

    async def remove(self, ids: Sequence[str]) -> int:
        if not ids:
            return 0
        result = await self._index.delete(list(ids))
        return result.deleted_count

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    @staticmethod
    def _build_filter(
        model: str,
        content_type: ContentType | str | Sequence[ContentType | str] | None,
    ) -> FilterExpression:
        model_filter = eq("embedding_model", model)
        if content_type is None:
            return model_filter
        if isinstance(content_type, (str, ContentType)):
            return and_(model_filter, eq("content_type", str(ContentType.parse(content_type))))
        types = [str(ContentType.parse(ct)) for ct in content_type]
        return and_(model_filter, in_("content_type", types))
