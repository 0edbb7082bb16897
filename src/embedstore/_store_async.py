"""EmbeddingStoreAsync — primary async facade over records, chunking, and search."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from contextvars import ContextVar
from typing import TYPE_CHECKING, Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from embedstore import chunking, codec
from embedstore.config import Settings
from embedstore.dialect import get_dialect
from embedstore.exceptions import ContentNotFoundError, EmbedStoreError, ValidationError
from embedstore.maintenance import MaintenanceJobs
from embedstore.models.embeddings import ContentType, EmbeddingRecord
from embedstore.records import EmbeddingRecordService
from embedstore.search._engine import SimilaritySearch, embed_texts
from embedstore.search.index.local import LocalVectorIndex

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncEngine

    from embedstore.models.embeddings import EmbeddingRecordBase
    from embedstore.search.filters import FilterExpression
    from embedstore.search.protocols import EmbeddingProvider, VectorIndex
    from embedstore.search.types import VectorEntry
    from embedstore.types import ContentTypeStats, Page, SearchHit

logger = logging.getLogger(__name__)


class Transaction:
    """One database session plus the index mutations waiting on its commit."""

    __slots__ = ("index_ops", "session")

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.index_ops: list[tuple[str, Any]] = []

    def upsert(self, entries: list[VectorEntry]) -> None:
        if entries:
            self.index_ops.append(("upsert", entries))

    def delete(self, ids: list[str]) -> None:
        if ids:
            self.index_ops.append(("delete", ids))


class EmbeddingStoreAsync:
    """Async facade wiring the record table, the chunker, and similarity search.

    Engine-based::

        engine = create_async_engine("sqlite+aiosqlite:///embeddings.db")
        store = EmbeddingStoreAsync(engine=engine, embedding_provider=provider)
        await store.init_schema()
        await store.embed_content("doc-1", ContentType.DOCUMENTATION, text)
        hits = await store.search_text("how do I deploy?")

    Each call runs in its own session and commits on success.  Inside
    ``async with store.transaction():`` every call shares one session and
    the group commits or rolls back as a unit.  The vector index is only
    touched after a successful commit, so a rollback leaves no trace in it.

    A caller-provided *session_factory* should be built with
    ``expire_on_commit=False`` so returned records stay readable.
    """

    def __init__(
        self,
        *,
        engine: AsyncEngine | None = None,
        session_factory: Callable[..., AsyncSession] | None = None,
        dialect: str | None = None,
        settings: Settings | None = None,
        index: VectorIndex | None = None,
        embedding_provider: EmbeddingProvider | None = None,
        record_model: type[EmbeddingRecordBase] | None = None,
    ) -> None:
        self._settings = settings or Settings()
        self._owns_engine = False

        if engine is not None and session_factory is not None:
            raise ValueError("Provide engine or session_factory, not both")
        if engine is None and session_factory is None:
            if not self._settings.database_url:
                raise ValueError("Provide engine, session_factory, or settings.database_url")
            engine = create_async_engine(self._settings.database_url)
            self._owns_engine = True

        self._engine = engine
        if engine is not None:
            self._session_factory: Callable[..., AsyncSession] = async_sessionmaker(
                engine, class_=AsyncSession, expire_on_commit=False
            )
            self._dialect = dialect or get_dialect(engine)
        else:
            assert session_factory is not None
            self._session_factory = session_factory
            self._dialect = dialect or "sqlite"

        self._record_model = record_model or EmbeddingRecord
        self._records = EmbeddingRecordService(
            self._record_model,
            self._settings.dimensions_registry(),
            dialect=self._dialect,
        )
        self._index: VectorIndex = index or LocalVectorIndex(
            overfetch=self._settings.search_overfetch
        )
        self._search = SimilaritySearch(self._index, self._records)
        self._maintenance = MaintenanceJobs(self._records, self._search)
        self._provider = embedding_provider
        self._txn: ContextVar[Transaction | None] = ContextVar(
            f"embedstore_txn_{id(self)}", default=None
        )
        self._closed = False

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def records(self) -> EmbeddingRecordService:
        return self._records

    @property
    def index(self) -> VectorIndex:
        return self._index

    @property
    def dialect(self) -> str:
        return self._dialect

    @property
    def in_transaction(self) -> bool:
        return self._txn.get() is not None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def init_schema(self) -> None:
        """Create the record table if it does not exist."""
        table = self._record_model.__table__  # type: ignore[attr-defined]
        if self._engine is not None:
            async with self._engine.begin() as conn:
                await conn.run_sync(lambda c: table.create(c, checkfirst=True))
            return
        async with self._session_factory() as session:
            conn = await session.connection()
            await conn.run_sync(lambda c: table.create(c, checkfirst=True))
            await session.commit()

    async def close(self) -> None:
        """Close the vector index and dispose an engine this store created."""
        if self._closed:
            return
        self._closed = True
        await self._index.close()
        if self._owns_engine and self._engine is not None:
            await self._engine.dispose()

    async def __aenter__(self) -> EmbeddingStoreAsync:
        await self._index.connect()
        return self

    async def __aexit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Session management
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[Transaction]:
        """Yield the active transaction, or a per-operation one that commits on exit."""
        active = self._txn.get()
        if active is not None:
            yield active
            return

        txn = await self._begin()
        try:
            yield txn
        except BaseException as e:
            await self._rollback(txn, e)
            raise
        await self._commit(txn)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        """Group operations into one unit of work.

        Nested calls join the outer transaction.
        """
        if self._txn.get() is not None:
            yield
            return

        txn = await self._begin()
        token = self._txn.set(txn)
        try:
            yield
        except BaseException as e:
            self._txn.reset(token)
            await self._rollback(txn, e)
            raise
        self._txn.reset(token)
        await self._commit(txn)

    async def _begin(self) -> Transaction:
        return Transaction(self._session_factory())

    async def _commit(self, txn: Transaction) -> None:
        """Commit, close, then apply buffered index mutations."""
        try:
            await txn.session.commit()
        except Exception as e:
            await self._rollback(txn, e)
            raise
        await self._close_session(txn.session)
        await self._apply_index_ops(txn)

    async def _rollback(self, txn: Transaction, error: BaseException) -> None:
        if not isinstance(error, EmbedStoreError):
            logger.error("Embedding store operation failed; rolling back", exc_info=error)
        txn.index_ops.clear()
        try:
            await txn.session.rollback()
        except Exception:
            logger.warning("Rollback failed", exc_info=True)
        await self._close_session(txn.session)

    @staticmethod
    async def _close_session(session: AsyncSession) -> None:
        try:
            await session.close()
        except Exception:
            logger.warning("Session close failed", exc_info=True)

    async def _apply_index_ops(self, txn: Transaction) -> None:
        for op, payload in txn.index_ops:
            if op == "upsert":
                await self._search.index_entries(payload)
            else:
                await self._search.remove(payload)
        txn.index_ops.clear()

    async def _within(self, txn: Transaction, coro: Awaitable[Any]) -> Any:
        """Await *coro* with *txn* as the active transaction."""
        token = self._txn.set(txn)
        try:
            return await coro
        finally:
            self._txn.reset(token)

    def _model(self, model: str | None) -> str:
        return model or self._settings.default_model

    def _page_size(self, limit: int | None) -> int:
        return self._settings.page_size if limit is None else limit

    # ------------------------------------------------------------------
    # Record CRUD
    # ------------------------------------------------------------------

    async def create(self, record: EmbeddingRecordBase) -> EmbeddingRecordBase:
        """Validate and persist *record*; index its vector after commit."""
        async with self._session() as txn:
            created = await self._records.create(txn.session, record)
            txn.upsert(self._search.entries_for([created]))
            return created

    async def create_many(self, records: Sequence[EmbeddingRecordBase]) -> list[EmbeddingRecordBase]:
        """Persist *records* all-or-nothing."""
        async with self._session() as txn:
            created = await self._records.create_many(txn.session, records)
            txn.upsert(self._search.entries_for(created))
            return created

    async def add(
        self,
        content_id: str,
        content_type: ContentType | str,
        content_text: str,
        *,
        vector: Sequence[float] | None = None,
        model: str | None = None,
        chunk_index: int = 0,
        chunk_total: int = 1,
        metadata: dict[str, Any] | None = None,
    ) -> EmbeddingRecordBase:
        """Build a record from plain values and :meth:`create` it."""
        record = self._record_model(
            content_id=content_id,
            content_type=ContentType.parse(content_type),
            content_text=content_text,
            embedding_vector=codec.encode(vector) if vector is not None else None,
            embedding_model=self._model(model),
            chunk_index=chunk_index,
            chunk_total=chunk_total,
            metadata_=dict(metadata or {}),
        )
        return await self.create(record)

    async def get_by_id(self, record_id: str) -> EmbeddingRecordBase | None:
        async with self._session() as txn:
            return await self._records.get_by_id(txn.session, record_id)

    async def delete_by_id(self, record_id: str) -> None:
        """Delete one record. Raises :class:`RecordNotFoundError` if absent."""
        async with self._session() as txn:
            await self._records.delete_by_id(txn.session, record_id)
            txn.delete([record_id])

    async def update_vector(
        self,
        record_id: str,
        vector: Sequence[float],
        model: str | None = None,
    ) -> EmbeddingRecordBase:
        """Replace a record's vector and model."""
        async with self._session() as txn:
            record = await self._records.update_vector(
                txn.session, record_id, vector, self._model(model)
            )
            txn.upsert(self._search.entries_for([record]))
            return record

    async def delete_by_content(
        self,
        content_id: str,
        content_type: ContentType | str | None = None,
    ) -> int:
        """Delete every record for a content id (optionally one type). Returns the count."""
        async with self._session() as txn:
            ids = await self._records.delete_by_content(txn.session, content_id, content_type)
            txn.delete(ids)
            return len(ids)

    async def delete_older_than(self, timestamp: datetime) -> int:
        """Delete every record created before *timestamp*. Returns the count."""
        async with self._session() as txn:
            ids = await self._records.delete_older_than(txn.session, timestamp)
            txn.delete(ids)
            return len(ids)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def find_by_content(
        self,
        content_id: str,
        content_type: ContentType | str | None = None,
    ) -> list[EmbeddingRecordBase]:
        async with self._session() as txn:
            return await self._records.find_by_content(txn.session, content_id, content_type)

    async def exists_by_content(self, content_id: str, content_type: ContentType | str) -> bool:
        async with self._session() as txn:
            return await self._records.exists_by_content(txn.session, content_id, content_type)

    async def find_multi_chunk(self, content_id: str) -> list[EmbeddingRecordBase]:
        async with self._session() as txn:
            return await self._records.find_multi_chunk(txn.session, content_id)

    async def find_first_chunk(
        self,
        content_id: str,
        content_type: ContentType | str,
    ) -> list[EmbeddingRecordBase]:
        async with self._session() as txn:
            return await self._records.find_first_chunk(txn.session, content_id, content_type)

    async def find_created_after(self, since: datetime) -> list[EmbeddingRecordBase]:
        async with self._session() as txn:
            return await self._records.find_created_after(txn.session, since)

    async def find_by_content_type(
        self,
        content_type: ContentType | str,
        *,
        offset: int = 0,
        limit: int | None = None,
    ) -> Page[EmbeddingRecordBase]:
        async with self._session() as txn:
            return await self._records.find_by_content_type(
                txn.session, content_type, offset=offset, limit=self._page_size(limit)
            )

    async def find_by_model(
        self,
        embedding_model: str,
        *,
        offset: int = 0,
        limit: int | None = None,
    ) -> Page[EmbeddingRecordBase]:
        async with self._session() as txn:
            return await self._records.find_by_model(
                txn.session, embedding_model, offset=offset, limit=self._page_size(limit)
            )

    async def find_by_metadata_key(
        self,
        key: str,
        *,
        offset: int = 0,
        limit: int | None = None,
    ) -> Page[EmbeddingRecordBase]:
        async with self._session() as txn:
            return await self._records.find_by_metadata_key(
                txn.session, key, offset=offset, limit=self._page_size(limit)
            )

    async def find_by_metadata_value(
        self,
        key: str,
        value: Any,
        *,
        offset: int = 0,
        limit: int | None = None,
    ) -> Page[EmbeddingRecordBase]:
        async with self._session() as txn:
            return await self._records.find_by_metadata_value(
                txn.session, key, value, offset=offset, limit=self._page_size(limit)
            )

    async def count_by_content_type(self, content_type: ContentType | str) -> int:
        async with self._session() as txn:
            return await self._records.count_by_content_type(txn.session, content_type)

    async def count_by_model(self, embedding_model: str) -> int:
        async with self._session() as txn:
            return await self._records.count_by_model(txn.session, embedding_model)

    async def statistics(self) -> list[ContentTypeStats]:
        async with self._session() as txn:
            return await self._records.statistics(txn.session)

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    async def search(
        self,
        query_vector: Sequence[float],
        *,
        content_type: ContentType | str | Sequence[ContentType | str] | None = None,
        threshold: float = 0.0,
        limit: int = 10,
        model: str | None = None,
        filter: FilterExpression | None = None,  # noqa: A002
    ) -> list[SearchHit]:
        """Records most similar to *query_vector*, best first.

        *filter* narrows the candidates further, e.g. ``eq("lang", "py")`` on
        a record metadata key.
        """
        async with self._session() as txn:
            return await self._search.search(
                txn.session,
                query_vector,
                model=self._model(model),
                content_type=content_type,
                threshold=threshold,
                limit=limit,
                filter=filter,
            )

    async def search_text(
        self,
        query: str,
        *,
        content_type: ContentType | str | Sequence[ContentType | str] | None = None,
        threshold: float = 0.0,
        limit: int = 10,
        filter: FilterExpression | None = None,  # noqa: A002
    ) -> list[SearchHit]:
        """Embed *query* with the configured provider, then :meth:`search`."""
        provider = self._require_provider(None)
        (vector,) = await embed_texts(provider, [query])
        return await self.search(
            vector,
            content_type=content_type,
            threshold=threshold,
            limit=limit,
            model=provider.model_name,
            filter=filter,
        )

    async def search_by_content_text(
        self,
        term: str,
        *,
        offset: int = 0,
        limit: int | None = None,
    ) -> Page[EmbeddingRecordBase]:
        """Lexical match on ``content_text``; no vectors involved."""
        async with self._session() as txn:
            return await self._search.search_by_content_text(
                txn.session, term, offset=offset, limit=self._page_size(limit)
            )

    # ------------------------------------------------------------------
    # Content
    # ------------------------------------------------------------------

    async def embed_content(
        self,
        content_id: str,
        content_type: ContentType | str,
        text: str,
        *,
        metadata: dict[str, Any] | None = None,
        model: str | None = None,
        max_chunk_chars: int | None = None,
    ) -> list[EmbeddingRecordBase]:
        """Split *text*, embed every chunk, and replace the stored chunk set.

        The provider is called before the write transaction opens; the old
        chunk set is deleted and the new one inserted in a single commit.
        """
        provider = self._require_provider(None)
        content_type = ContentType.parse(content_type)
        model = model or provider.model_name
        if self._records.expected_dimensions(model) is None:
            msg = f"Unknown embedding model {model!r}"
            raise ValidationError(msg)

        chunks = chunking.split_text(
            text,
            max_chunk_chars if max_chunk_chars is not None else self._settings.max_chunk_chars,
        )
        vectors = await embed_texts(provider, [c.text for c in chunks])
        records = [
            self._record_model(
                content_id=content_id,
                content_type=content_type,
                content_text=chunk.text,
                embedding_vector=codec.encode(vector),
                embedding_model=model,
                chunk_index=chunk.index,
                chunk_total=chunk.total,
                metadata_=dict(metadata or {}),
            )
            for chunk, vector in zip(chunks, vectors, strict=True)
        ]

        async with self._session() as txn:
            deleted, created = await self._records.replace_content(
                txn.session, content_id, content_type, records
            )
            txn.delete(deleted)
            txn.upsert(self._search.entries_for(created))
        logger.debug(
            "Embedded %s (%s) as %d chunks, replaced %d",
            content_id,
            content_type,
            len(created),
            len(deleted),
        )
        return created

    async def get_chunks(
        self,
        content_id: str,
        content_type: ContentType | str,
    ) -> list[EmbeddingRecordBase]:
        """The ordered chunk set for a content identity (empty if none).

        Raises :class:`IncompleteChunkSetError` if the stored set is inconsistent.
        """
        records = await self.find_by_content(content_id, content_type)
        return chunking.assemble(records)

    async def get_content(self, content_id: str, content_type: ContentType | str) -> str:
        """Reassemble the original text of a content identity."""
        records = await self.find_by_content(content_id, content_type)
        if not records:
            raise ContentNotFoundError(content_id, str(ContentType.parse(content_type)))
        return chunking.reconstruct(records)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def find_needing_reprocessing(
        self,
        older_than: datetime,
        embedding_model: str,
        *,
        offset: int = 0,
        limit: int | None = None,
    ) -> Page[EmbeddingRecordBase]:
        async with self._session() as txn:
            return await self._maintenance.find_needing_reprocessing(
                txn.session, older_than, embedding_model, offset=offset, limit=self._page_size(limit)
            )

    async def find_without_vector(
        self,
        *,
        offset: int = 0,
        limit: int | None = None,
    ) -> Page[EmbeddingRecordBase]:
        async with self._session() as txn:
            return await self._maintenance.find_without_vector(
                txn.session, offset=offset, limit=self._page_size(limit)
            )

    async def purge_older_than(self, timestamp: datetime) -> int:
        async with self._session() as txn:
            ids = await self._maintenance.purge_older_than(txn.session, timestamp)
            txn.delete(ids)
            return len(ids)

    async def rebuild_index(self, *, batch_size: int = 500) -> int:
        """Repopulate the vector index from committed vectors."""
        session = self._session_factory()
        try:
            return await self._maintenance.rebuild_index(session, batch_size=batch_size)
        finally:
            await self._close_session(session)

    async def reembed(
        self,
        older_than: datetime,
        embedding_model: str,
        *,
        provider: EmbeddingProvider | None = None,
        batch_size: int = 100,
    ) -> int:
        """Re-embed records created before *older_than* under *embedding_model*.

        Vectors are computed outside any write transaction and each batch
        commits separately.  Records end up tagged with the provider's
        model.  Returns the number of records updated.
        """
        provider = self._require_provider(provider)
        if batch_size <= 0:
            msg = f"batch_size must be positive, got {batch_size}"
            raise ValidationError(msg)

        async with self._session() as txn:
            ids = await self._maintenance.collect_reprocessing_ids(
                txn.session, older_than, embedding_model, batch_size=batch_size
            )

        updated = 0
        for start in range(0, len(ids), batch_size):
            async with self._session() as txn:
                by_id = await self._records.get_many(txn.session, ids[start : start + batch_size])
                batch = [(r.id, r.content_text) for r in by_id.values()]
            if not batch:
                continue
            vectors = await embed_texts(provider, [text for _, text in batch])
            async with self._session() as txn:
                records = await self._maintenance.apply_vectors(
                    txn.session, [record_id for record_id, _ in batch], vectors, provider.model_name
                )
                txn.upsert(self._search.entries_for(records))
            updated += len(records)
            logger.debug("Re-embedded %d of %d records", updated, len(ids))
        return updated

    def _require_provider(self, provider: EmbeddingProvider | None) -> EmbeddingProvider:
        provider = provider or self._provider
        if provider is None:
            raise EmbedStoreError("No embedding provider configured")
        return provider
