"""EmbeddingRecordService — stateless CRUD and queries over embedding records."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import case, func
from sqlalchemy import delete as sa_delete
from sqlmodel import select

from embedstore import codec
from embedstore.dialect import json_has_key, metadata_equals, text_match
from embedstore.exceptions import RecordNotFoundError, ValidationError, VectorDecodeError
from embedstore.models.embeddings import ContentType
from embedstore.types import ContentTypeStats, Page

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from sqlalchemy import Select
    from sqlalchemy.ext.asyncio import AsyncSession

    from embedstore.models.embeddings import EmbeddingRecordBase

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(UTC)


def as_utc(ts: datetime) -> datetime:
    """Return *ts* as an aware UTC datetime; naive values are taken to be UTC.

    SQLite keeps the wall-clock time and drops the offset, so every value
    written to or compared against ``created_at`` goes through here first.
    """
    if ts.tzinfo is None or ts.utcoffset() is None:
        return ts.replace(tzinfo=UTC)
    return ts.astimezone(UTC)


class EmbeddingRecordService:
    """Stateless helpers for embedding record CRUD and queries.

    Receives the concrete record model at construction so callers can use
    custom SQLModel subclasses, plus the model → dimension registry used to
    validate vectors.  Never creates, commits, or closes sessions; callers
    are responsible for session lifecycle.  Writes are flushed so generated
    values are visible inside the caller's transaction.
    """

    def __init__(
        self,
        record_model: type[EmbeddingRecordBase],
        model_dimensions: Mapping[str, int],
        dialect: str = "sqlite",
    ) -> None:
        self._record_model = record_model
        self._model_dimensions = dict(model_dimensions)
        self.dialect = dialect

    @property
    def record_model(self) -> type[EmbeddingRecordBase]:
        return self._record_model

    @property
    def model_dimensions(self) -> dict[str, int]:
        return dict(self._model_dimensions)

    def expected_dimensions(self, model: str) -> int | None:
        return self._model_dimensions.get(model)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self, record: EmbeddingRecordBase) -> None:
        """Check required fields, chunk bounds, and vector dimensionality.

        Normalizes ``content_type`` to :class:`ContentType` in place.
        Raises :class:`ValidationError` on the first problem found.
        """
        if not record.content_id:
            raise ValidationError("content_id is required")
        if record.content_type is None:
            raise ValidationError("content_type is required")
        record.content_type = ContentType.parse(record.content_type)
        if record.content_text is None:
            raise ValidationError("content_text is required")
        if not record.embedding_model:
            raise ValidationError("embedding_model is required")
        if record.chunk_total is None or record.chunk_total < 1:
            msg = f"chunk_total must be at least 1, got {record.chunk_total}"
            raise ValidationError(msg)
        if record.chunk_index is None or not 0 <= record.chunk_index < record.chunk_total:
            msg = (
                f"chunk_index {record.chunk_index} out of range for "
                f"chunk_total {record.chunk_total}"
            )
            raise ValidationError(msg)
        if record.embedding_vector is not None:
            try:
                vector = codec.decode(record.embedding_vector)
            except VectorDecodeError as e:
                raise ValidationError(str(e)) from e
            codec.validate_dimensions(vector, record.embedding_model, self._model_dimensions)

    # ------------------------------------------------------------------
    # Create / read / delete by id
    # ------------------------------------------------------------------

    async def create(self, session: AsyncSession, record: EmbeddingRecordBase) -> EmbeddingRecordBase:
        """Validate and insert *record*. Returns the persisted record."""
        self.validate(record)
        now = _now()
        record.created_at = now if record.created_at is None else as_utc(record.created_at)
        record.updated_at = now
        session.add(record)
        await session.flush()
        return record

    async def create_many(
        self,
        session: AsyncSession,
        records: Sequence[EmbeddingRecordBase],
    ) -> list[EmbeddingRecordBase]:
        """Validate every record first, then insert them all."""
        for record in records:
            self.validate(record)
        now = _now()
        for record in records:
            record.created_at = now if record.created_at is None else as_utc(record.created_at)
            record.updated_at = now
            session.add(record)
        if records:
            await session.flush()
        return list(records)

    async def get_by_id(self, session: AsyncSession, record_id: str) -> EmbeddingRecordBase | None:
        return await session.get(self._record_model, record_id)

    async def get_many(
        self,
        session: AsyncSession,
        record_ids: Sequence[str],
    ) -> dict[str, EmbeddingRecordBase]:
        """Fetch records by id. Missing ids are absent from the result."""
        if not record_ids:
            return {}
        model = self._record_model
        result = await session.execute(select(model).where(model.id.in_(list(record_ids))))  # type: ignore[union-attr]
        return {r.id: r for r in result.scalars().all()}

    async def delete_by_id(self, session: AsyncSession, record_id: str) -> None:
        """Delete a record. Raises :class:`RecordNotFoundError` if absent."""
        record = await self.get_by_id(session, record_id)
        if record is None:
            raise RecordNotFoundError(record_id)
        await session.delete(record)
        await session.flush()

    # ------------------------------------------------------------------
    # Content identity queries
    # ------------------------------------------------------------------

    def _content_query(self, content_id: str, content_type: ContentType | str | None) -> Select:
        model = self._record_model
        query = select(model).where(model.content_id == content_id)
        if content_type is not None:
            query = query.where(model.content_type == ContentType.parse(content_type))
        return query

    async def find_by_content(
        self,
        session: AsyncSession,
        content_id: str,
        content_type: ContentType | str | None = None,
    ) -> list[EmbeddingRecordBase]:
        """All records for *content_id* (optionally one type), ordered by type then chunk."""
        model = self._record_model
        query = self._content_query(content_id, content_type).order_by(
            model.content_type,  # type: ignore[arg-type]
            model.chunk_index,  # type: ignore[arg-type]
        )
        result = await session.execute(query)
        return list(result.scalars().all())

    async def exists_by_content(
        self,
        session: AsyncSession,
        content_id: str,
        content_type: ContentType | str,
    ) -> bool:
        query = self._content_query(content_id, content_type).limit(1)
        result = await session.execute(query)
        return result.first() is not None

    async def find_multi_chunk(
        self,
        session: AsyncSession,
        content_id: str,
    ) -> list[EmbeddingRecordBase]:
        """Records for *content_id* with ``chunk_total > 1``, ordered by chunk index."""
        model = self._record_model
        query = (
            select(model)
            .where(model.content_id == content_id, model.chunk_total > 1)  # type: ignore[operator]
            .order_by(model.chunk_index)  # type: ignore[arg-type]
        )
        result = await session.execute(query)
        return list(result.scalars().all())

    async def find_first_chunk(
        self,
        session: AsyncSession,
        content_id: str,
        content_type: ContentType | str,
    ) -> list[EmbeddingRecordBase]:
        """Entry-point records (``chunk_index == 0``) for a content identity."""
        model = self._record_model
        query = self._content_query(content_id, content_type).where(model.chunk_index == 0)
        result = await session.execute(query)
        return list(result.scalars().all())

    async def find_created_after(
        self,
        session: AsyncSession,
        since: datetime,
    ) -> list[EmbeddingRecordBase]:
        model = self._record_model
        query = (
            select(model)
            .where(model.created_at > as_utc(since))  # type: ignore[operator]
            .order_by(model.created_at)  # type: ignore[arg-type]
        )
        result = await session.execute(query)
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Paged queries
    # ------------------------------------------------------------------

    async def _page(
        self,
        session: AsyncSession,
        *conditions: Any,
        offset: int,
        limit: int,
    ) -> Page[EmbeddingRecordBase]:
        if limit <= 0:
            msg = f"limit must be positive, got {limit}"
            raise ValidationError(msg)
        if offset < 0:
            msg = f"offset must not be negative, got {offset}"
            raise ValidationError(msg)

        model = self._record_model
        query = (
            select(model)
            .where(*conditions)
            .order_by(model.created_at, model.id)  # type: ignore[arg-type]
            .offset(offset)
            .limit(limit)
        )
        result = await session.execute(query)
        items = list(result.scalars().all())

        count_query = select(func.count()).select_from(model).where(*conditions)
        total = (await session.execute(count_query)).scalar_one()
        return Page(items=items, total=total, offset=offset, limit=limit)

    async def find_by_content_type(
        self,
        session: AsyncSession,
        content_type: ContentType | str,
        *,
        offset: int = 0,
        limit: int = 100,
    ) -> Page[EmbeddingRecordBase]:
        model = self._record_model
        return await self._page(
            session,
            model.content_type == ContentType.parse(content_type),
            offset=offset,
            limit=limit,
        )

    async def find_by_model(
        self,
        session: AsyncSession,
        embedding_model: str,
        *,
        offset: int = 0,
        limit: int = 100,
    ) -> Page[EmbeddingRecordBase]:
        model = self._record_model
        return await self._page(
            session, model.embedding_model == embedding_model, offset=offset, limit=limit
        )

    async def find_by_metadata_key(
        self,
        session: AsyncSession,
        key: str,
        *,
        offset: int = 0,
        limit: int = 100,
    ) -> Page[EmbeddingRecordBase]:
        """Records whose metadata contains *key* (any value, including null)."""
        model = self._record_model
        return await self._page(
            session,
            json_has_key(model.metadata_, key, self.dialect),
            offset=offset,
            limit=limit,
        )

    async def find_by_metadata_value(
        self,
        session: AsyncSession,
        key: str,
        value: Any,
        *,
        offset: int = 0,
        limit: int = 100,
    ) -> Page[EmbeddingRecordBase]:
        """Records whose metadata *key* equals *value*; ``None`` matches JSON null."""
        model = self._record_model
        return await self._page(
            session,
            metadata_equals(model.metadata_, key, value, self.dialect),
            offset=offset,
            limit=limit,
        )

    async def search_by_content_text(
        self,
        session: AsyncSession,
        term: str,
        *,
        offset: int = 0,
        limit: int = 100,
    ) -> Page[EmbeddingRecordBase]:
        """Lexical match against ``content_text``. No similarity score."""
        model = self._record_model
        return await self._page(
            session,
            text_match(model.content_text, term, self.dialect),
            offset=offset,
            limit=limit,
        )

    async def find_needing_reprocessing(
        self,
        session: AsyncSession,
        older_than: datetime,
        embedding_model: str,
        *,
        offset: int = 0,
        limit: int = 100,
    ) -> Page[EmbeddingRecordBase]:
        model = self._record_model
        return await self._page(
            session,
            model.created_at < as_utc(older_than),  # type: ignore[operator]
            model.embedding_model == embedding_model,
            offset=offset,
            limit=limit,
        )

    async def find_without_vector(
        self,
        session: AsyncSession,
        *,
        offset: int = 0,
        limit: int = 100,
    ) -> Page[EmbeddingRecordBase]:
        model = self._record_model
        return await self._page(
            session,
            model.embedding_vector.is_(None),  # type: ignore[union-attr]
            offset=offset,
            limit=limit,
        )

    async def find_with_vector(
        self,
        session: AsyncSession,
        *,
        offset: int = 0,
        limit: int = 100,
    ) -> Page[EmbeddingRecordBase]:
        model = self._record_model
        return await self._page(
            session,
            model.embedding_vector.is_not(None),  # type: ignore[union-attr]
            offset=offset,
            limit=limit,
        )

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    async def update_vector(
        self,
        session: AsyncSession,
        record_id: str,
        vector: Sequence[float],
        embedding_model: str,
    ) -> EmbeddingRecordBase:
        """Replace a record's vector and model. Idempotent for identical inputs.

        Raises :class:`ValidationError` on dimension mismatch and
        :class:`RecordNotFoundError` if *record_id* does not exist; in
        both cases nothing is written.
        """
        codec.validate_dimensions(vector, embedding_model, self._model_dimensions)
        encoded = codec.encode(vector)

        record = await self.get_by_id(session, record_id)
        if record is None:
            raise RecordNotFoundError(record_id)

        record.embedding_vector = encoded
        record.embedding_model = embedding_model
        record.updated_at = _now()
        session.add(record)
        await session.flush()
        return record

    async def replace_content(
        self,
        session: AsyncSession,
        content_id: str,
        content_type: ContentType | str,
        records: Sequence[EmbeddingRecordBase],
    ) -> tuple[list[str], list[EmbeddingRecordBase]]:
        """Delete the chunk set for a content identity and insert *records*.

        Returns ``(deleted_ids, created_records)``.
        """
        for record in records:
            self.validate(record)
            if record.content_id != content_id or record.content_type != ContentType.parse(
                content_type
            ):
                msg = "All records must belong to the content identity being replaced"
                raise ValidationError(msg)
        deleted = await self.delete_by_content(session, content_id, content_type)
        created = await self.create_many(session, records)
        return deleted, created

    async def delete_by_content(
        self,
        session: AsyncSession,
        content_id: str,
        content_type: ContentType | str | None = None,
    ) -> list[str]:
        """Delete every record for *content_id* (optionally one type). Returns deleted ids."""
        model = self._record_model
        id_query = select(model.id).where(model.content_id == content_id)
        if content_type is not None:
            id_query = id_query.where(model.content_type == ContentType.parse(content_type))
        return await self._delete_ids(session, id_query)

    async def delete_older_than(self, session: AsyncSession, timestamp: datetime) -> list[str]:
        """Delete every record created before *timestamp*. Returns deleted ids."""
        model = self._record_model
        cutoff = as_utc(timestamp)
        id_query = select(model.id).where(model.created_at < cutoff)  # type: ignore[operator]
        return await self._delete_ids(session, id_query)

    async def _delete_ids(self, session: AsyncSession, id_query: Select) -> list[str]:
        model = self._record_model
        ids = list((await session.execute(id_query)).scalars().all())
        if not ids:
            return []
        await session.execute(
            sa_delete(model)
            .where(model.id.in_(ids))  # type: ignore[union-attr]
            .execution_options(synchronize_session="fetch")
        )
        await session.flush()
        logger.debug("Deleted %d embedding records", len(ids))
        return ids

    # ------------------------------------------------------------------
    # Aggregates
    # ------------------------------------------------------------------

    async def count_by_content_type(self, session: AsyncSession, content_type: ContentType | str) -> int:
        model = self._record_model
        query = select(func.count()).select_from(model).where(
            model.content_type == ContentType.parse(content_type)
        )
        return (await session.execute(query)).scalar_one()

    async def count_by_model(self, session: AsyncSession, embedding_model: str) -> int:
        model = self._record_model
        query = select(func.count()).select_from(model).where(
            model.embedding_model == embedding_model
        )
        return (await session.execute(query)).scalar_one()

    async def statistics(self, session: AsyncSession) -> list[ContentTypeStats]:
        """Per content type: record count, vector presence, multi-chunk and distinct content counts."""
        model = self._record_model
        query = (
            select(
                model.content_type,
                func.count(),
                func.sum(case((model.embedding_vector.is_not(None), 1), else_=0)),  # type: ignore[union-attr]
                func.sum(case((model.chunk_total > 1, 1), else_=0)),  # type: ignore[operator]
                func.count(model.content_id.distinct()),  # type: ignore[attr-defined]
            )
            .group_by(model.content_type)
            .order_by(model.content_type)
        )
        result = await session.execute(query)
        return [
            ContentTypeStats(
                content_type=ContentType.parse(row[0]),
                total=int(row[1]),
                with_vector=int(row[2] or 0),
                multi_chunk=int(row[3] or 0),
                distinct_content=int(row[4] or 0),
            )
            for row in result.all()
        ]
