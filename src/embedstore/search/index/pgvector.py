"""PgVectorIndex — nearest-neighbour search delegated to PostgreSQL + pgvector.

Vectors already live in the records table as bracketed text, which
pgvector accepts as a literal, so this index queries the table directly:
``upsert`` and ``delete`` have nothing to do.

Requires the ``pgvector`` package::

    pip install embedstore[postgres]
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy import and_, cast, false, func, not_, or_, select, true

from embedstore.dialect import (
    json_has_key,
    json_is_null,
    json_text,
    metadata_equals,
    metadata_value_text,
)
from embedstore.models.embeddings import ContentType
from embedstore.search.filters import Comparison, FilterOp, LogicalOp
from embedstore.search.types import DeleteResult, UpsertResult, VectorSearchResult

try:
    from pgvector.sqlalchemy import Vector

    _HAS_PGVECTOR = True
except ImportError:  # pragma: no cover
    _HAS_PGVECTOR = False

if TYPE_CHECKING:
    from collections.abc import Callable

    from sqlalchemy import ColumnElement, Select
    from sqlalchemy.ext.asyncio import AsyncSession

    from embedstore.models.embeddings import EmbeddingRecordBase
    from embedstore.search.filters import FilterExpression
    from embedstore.search.types import VectorEntry

_COLUMN_FIELDS = ("content_id", "content_type", "embedding_model", "chunk_index", "chunk_total")


class PgVectorIndex:
    """``VectorIndex`` that runs cosine-distance queries in PostgreSQL.

    Score is ``1 - (embedding_vector <=> query)``.  Filter fields that name
    record columns (``content_type``, ``embedding_model``, ...) compile to
    column predicates; any other field is looked up in the metadata JSON.
    """

    def __init__(
        self,
        session_factory: Callable[..., AsyncSession],
        record_model: type[EmbeddingRecordBase],
    ) -> None:
        if not _HAS_PGVECTOR:
            msg = (
                "pgvector is required for PgVectorIndex. "
                "Install it with: pip install embedstore[postgres]"
            )
            raise ImportError(msg)
        self._session_factory = session_factory
        self._record_model = record_model

    # ------------------------------------------------------------------
    # VectorIndex protocol
    # ------------------------------------------------------------------

    async def upsert(self, entries: list[VectorEntry]) -> UpsertResult:
        """Vectors are read from the records table; nothing to write."""
        return UpsertResult(upserted_count=len(entries))

    async def search(
        self,
        vector: list[float],
        *,
        k: int = 10,
        filter: FilterExpression | None = None,  # noqa: A002
        score_threshold: float | None = None,
    ) -> list[VectorSearchResult]:
        if k <= 0:
            return []
        async with self._session_factory() as session:
            return await self.search_in_session(
                session, vector, k=k, filter=filter, score_threshold=score_threshold
            )

    async def search_in_session(
        self,
        session: AsyncSession,
        vector: list[float],
        *,
        k: int = 10,
        filter: FilterExpression | None = None,  # noqa: A002
        score_threshold: float | None = None,
    ) -> list[VectorSearchResult]:
        """Search using *session*, so rows it has flushed but not committed are seen."""
        if k <= 0:
            return []
        query = self.build_query(vector, k=k, filter=filter, score_threshold=score_threshold)
        result = await session.execute(query)
        rows = result.all()
        return [
            VectorSearchResult(
                id=row.id,
                score=float(row.score),
                metadata={
                    "content_id": row.content_id,
                    "content_type": str(row.content_type),
                    "embedding_model": row.embedding_model,
                },
            )
            for row in rows
        ]

    async def delete(self, ids: list[str]) -> DeleteResult:
        """Rows are deleted by the record store; nothing to remove here."""
        return DeleteResult(deleted_count=len(ids))

    async def clear(self) -> None:
        """No-op — the index is the table."""

    async def connect(self) -> None:
        """No-op — sessions are opened per query."""

    async def close(self) -> None:
        """No-op — sessions are closed per query."""

    # ------------------------------------------------------------------
    # Query building
    # ------------------------------------------------------------------

    def build_query(
        self,
        vector: list[float],
        *,
        k: int,
        filter: FilterExpression | None = None,  # noqa: A002
        score_threshold: float | None = None,
    ) -> Select:
        """Build the nearest-neighbour ``SELECT`` for *vector*."""
        model = self._record_model
        stored = cast(model.embedding_vector, Vector(len(vector)))
        distance = stored.cosine_distance(list(vector))
        score = (1 - distance).label("score")

        conditions: list[Any] = [
            model.embedding_vector.is_not(None),  # type: ignore[union-attr]
            func.vector_dims(stored) == len(vector),
        ]
        if filter is not None:
            conditions.append(self.compile_filter(filter))
        if score_threshold is not None:
            conditions.append(1 - distance >= score_threshold)

        return (
            select(
                model.id,
                model.content_id,
                model.content_type,
                model.embedding_model,
                score,
            )
            .where(*conditions)
            .order_by(distance)
            .limit(k)
        )

    def compile_filter(self, expr: FilterExpression) -> ColumnElement[bool]:
        """Compile a ``FilterExpression`` to a SQLAlchemy predicate."""
        if isinstance(expr, Comparison):
            return self._compile_comparison(expr)
        children = [self.compile_filter(child) for child in expr.expressions]
        if expr.op == LogicalOp.AND:
            return and_(true(), *children)
        return or_(false(), *children)

    def _compile_comparison(self, expr: Comparison) -> ColumnElement[bool]:
        if expr.field not in _COLUMN_FIELDS:
            return self._compile_metadata(expr)
        column = getattr(self._record_model, expr.field)
        if expr.op == FilterOp.EXISTS:
            return column.is_not(None) if expr.value else column.is_(None)
        value: Any = expr.value
        if expr.field == "content_type":
            value = (
                [ContentType.parse(v) for v in value]
                if isinstance(value, list)
                else ContentType.parse(value)
            )

        if expr.op == FilterOp.EQ:
            return column == value
        if expr.op == FilterOp.NE:
            return column != value
        if expr.op == FilterOp.IN:
            return column.in_(value)
        return column.not_in(value)

    def _compile_metadata(self, expr: Comparison) -> ColumnElement[bool]:
        metadata = self._record_model.metadata_
        if expr.op == FilterOp.EXISTS:
            predicate = json_has_key(metadata, expr.field, "postgresql")
            return predicate if expr.value else not_(predicate)
        if expr.op in (FilterOp.EQ, FilterOp.NE):
            predicate = metadata_equals(metadata, expr.field, expr.value, "postgresql")
            if expr.op == FilterOp.EQ:
                return predicate
            # An absent key is "not equal" to anything.
            return or_(not_(json_has_key(metadata, expr.field, "postgresql")), not_(predicate))

        values = list(expr.value)
        matches: list[ColumnElement[bool]] = []
        if None in values:
            matches.append(json_is_null(metadata, expr.field, "postgresql"))
        texts = [metadata_value_text(v) for v in values if v is not None]
        if texts:
            matches.append(json_text(metadata, expr.field, "postgresql").in_(texts))
        predicate = or_(false(), *matches)
        if expr.op == FilterOp.IN:
            return predicate
        return or_(not_(json_has_key(metadata, expr.field, "postgresql")), not_(predicate))
