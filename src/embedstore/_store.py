"""EmbeddingStore — synchronous facade over :class:`EmbeddingStoreAsync`."""

from __future__ import annotations

import asyncio
import threading
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

from embedstore._store_async import EmbeddingStoreAsync

if TYPE_CHECKING:
    from collections.abc import Callable, Coroutine, Iterator, Sequence
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

    from embedstore._store_async import Transaction
    from embedstore.config import Settings
    from embedstore.models.embeddings import ContentType, EmbeddingRecordBase
    from embedstore.search.filters import FilterExpression
    from embedstore.search.protocols import EmbeddingProvider, VectorIndex
    from embedstore.types import ContentTypeStats, Page, SearchHit


class EmbeddingStore:
    """Blocking API backed by a private event loop in a background thread.

    Lets plain sync code, notebooks, or a thread inside an async server use
    the store without managing a loop.  An engine passed in is bound to the
    private loop, so create it without using it elsewhere.

    Usage::

        with EmbeddingStore(settings=Settings(database_url="sqlite+aiosqlite:///e.db")) as store:
            store.init_schema()
            store.embed_content("doc-1", "documentation", text)
            with store.transaction():
                store.delete_by_content("doc-2")
                store.delete_by_content("doc-3")

    Transactions are tracked on the instance, so share one instance across
    threads only outside ``transaction()`` blocks.
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
        self._closed = False
        self._txn: Transaction | None = None

        # Private event loop in a daemon thread
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._loop.run_forever, daemon=True)
        self._thread.start()

        self._async = EmbeddingStoreAsync(
            engine=engine,
            session_factory=session_factory,
            dialect=dialect,
            settings=settings,
            index=index,
            embedding_provider=embedding_provider,
            record_model=record_model,
        )

    def _run(self, coro: Coroutine[Any, Any, Any]) -> Any:
        """Submit *coro* to the private loop and block for the result."""
        if self._txn is not None:
            coro = self._async._within(self._txn, coro)
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        return future.result()

    @property
    def async_store(self) -> EmbeddingStoreAsync:
        return self._async

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def init_schema(self) -> None:
        self._run(self._async.init_schema())

    def close(self) -> None:
        """Close the async store, stop the event loop and join the thread."""
        if self._closed:
            return
        self._closed = True

        try:
            self._run(self._async.close())
        finally:
            self._loop.call_soon_threadsafe(self._loop.stop)
            self._thread.join(timeout=5)

    def __enter__(self) -> EmbeddingStore:
        self._run(self._async.index.connect())
        return self

    def __exit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        self.close()

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Group calls into one unit of work. Nested calls join the outer one."""
        if self._txn is not None:
            yield
            return

        txn = self._run(self._async._begin())
        self._txn = txn
        try:
            yield
        except BaseException as e:
            self._txn = None
            self._run(self._async._rollback(txn, e))
            raise
        self._txn = None
        self._run(self._async._commit(txn))

    # ------------------------------------------------------------------
    # Record CRUD
    # ------------------------------------------------------------------

    def create(self, record: EmbeddingRecordBase) -> EmbeddingRecordBase:
        return self._run(self._async.create(record))

    def create_many(self, records: Sequence[EmbeddingRecordBase]) -> list[EmbeddingRecordBase]:
        return self._run(self._async.create_many(records))

    def add(
        self,
        content_id: str,
        content_type: ContentType | str,
        content_text: str,
        **kwargs: Any,
    ) -> EmbeddingRecordBase:
        """See :meth:`EmbeddingStoreAsync.add`."""
        return self._run(self._async.add(content_id, content_type, content_text, **kwargs))

    def get_by_id(self, record_id: str) -> EmbeddingRecordBase | None:
        return self._run(self._async.get_by_id(record_id))

    def delete_by_id(self, record_id: str) -> None:
        self._run(self._async.delete_by_id(record_id))

    def update_vector(
        self,
        record_id: str,
        vector: Sequence[float],
        model: str | None = None,
    ) -> EmbeddingRecordBase:
        return self._run(self._async.update_vector(record_id, vector, model))

    def delete_by_content(
        self,
        content_id: str,
        content_type: ContentType | str | None = None,
    ) -> int:
        return self._run(self._async.delete_by_content(content_id, content_type))

    def delete_older_than(self, timestamp: datetime) -> int:
        return self._run(self._async.delete_older_than(timestamp))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def find_by_content(
        self,
        content_id: str,
        content_type: ContentType | str | None = None,
    ) -> list[EmbeddingRecordBase]:
        return self._run(self._async.find_by_content(content_id, content_type))

    def exists_by_content(self, content_id: str, content_type: ContentType | str) -> bool:
        return self._run(self._async.exists_by_content(content_id, content_type))

    def find_multi_chunk(self, content_id: str) -> list[EmbeddingRecordBase]:
        return self._run(self._async.find_multi_chunk(content_id))

    def find_first_chunk(
        self,
        content_id: str,
        content_type: ContentType | str,
    ) -> list[EmbeddingRecordBase]:
        return self._run(self._async.find_first_chunk(content_id, content_type))

    def find_created_after(self, since: datetime) -> list[EmbeddingRecordBase]:
        return self._run(self._async.find_created_after(since))

    def find_by_content_type(
        self,
        content_type: ContentType | str,
        *,
        offset: int = 0,
        limit: int | None = None,
    ) -> Page[EmbeddingRecordBase]:
        return self._run(
            self._async.find_by_content_type(content_type, offset=offset, limit=limit)
        )

    def find_by_model(
        self,
        embedding_model: str,
        *,
        offset: int = 0,
        limit: int | None = None,
    ) -> Page[EmbeddingRecordBase]:
        return self._run(self._async.find_by_model(embedding_model, offset=offset, limit=limit))

    def find_by_metadata_key(
        self,
        key: str,
        *,
        offset: int = 0,
        limit: int | None = None,
    ) -> Page[EmbeddingRecordBase]:
        return self._run(self._async.find_by_metadata_key(key, offset=offset, limit=limit))

    def find_by_metadata_value(
        self,
        key: str,
        value: Any,
        *,
        offset: int = 0,
        limit: int | None = None,
    ) -> Page[EmbeddingRecordBase]:
        return self._run(
            self._async.find_by_metadata_value(key, value, offset=offset, limit=limit)
        )

    def count_by_content_type(self, content_type: ContentType | str) -> int:
        return self._run(self._async.count_by_content_type(content_type))

    def count_by_model(self, embedding_model: str) -> int:
        return self._run(self._async.count_by_model(embedding_model))

    def statistics(self) -> list[ContentTypeStats]:
        return self._run(self._async.statistics())

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def search(
        self,
        query_vector: Sequence[float],
        *,
        content_type: ContentType | str | Sequence[ContentType | str] | None = None,
        threshold: float = 0.0,
        limit: int = 10,
        model: str | None = None,
        filter: FilterExpression | None = None,  # noqa: A002
    ) -> list[SearchHit]:
        return self._run(
            self._async.search(
                query_vector,
                content_type=content_type,
                threshold=threshold,
                limit=limit,
                model=model,
                filter=filter,
            )
        )

    def search_text(
        self,
        query: str,
        *,
        content_type: ContentType | str | Sequence[ContentType | str] | None = None,
        threshold: float = 0.0,
        limit: int = 10,
        filter: FilterExpression | None = None,  # noqa: A002
    ) -> list[SearchHit]:
        return self._run(
            self._async.search_text(
                query,
                content_type=content_type,
                threshold=threshold,
                limit=limit,
                filter=filter,
            )
        )

    def search_by_content_text(
        self,
        term: str,
        *,
        offset: int = 0,
        limit: int | None = None,
    ) -> Page[EmbeddingRecordBase]:
        return self._run(self._async.search_by_content_text(term, offset=offset, limit=limit))

    # ------------------------------------------------------------------
    # Content
    # ------------------------------------------------------------------

    def embed_content(
        self,
        content_id: str,
        content_type: ContentType | str,
        text: str,
        *,
        metadata: dict[str, Any] | None = None,
        model: str | None = None,
        max_chunk_chars: int | None = None,
    ) -> list[EmbeddingRecordBase]:
        return self._run(
            self._async.embed_content(
                content_id,
                content_type,
                text,
                metadata=metadata,
                model=model,
                max_chunk_chars=max_chunk_chars,
            )
        )

    def get_chunks(
        self,
        content_id: str,
        content_type: ContentType | str,
    ) -> list[EmbeddingRecordBase]:
        return self._run(self._async.get_chunks(content_id, content_type))

    def get_content(self, content_id: str, content_type: ContentType | str) -> str:
        return self._run(self._async.get_content(content_id, content_type))

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def find_needing_reprocessing(
        self,
        older_than: datetime,
        embedding_model: str,
        *,
        offset: int = 0,
        limit: int | None = None,
    ) -> Page[EmbeddingRecordBase]:
        return self._run(
            self._async.find_needing_reprocessing(
                older_than, embedding_model, offset=offset, limit=limit
            )
        )

    def find_without_vector(
        self,
        *,
        offset: int = 0,
        limit: int | None = None,
    ) -> Page[EmbeddingRecordBase]:
        return self._run(self._async.find_without_vector(offset=offset, limit=limit))

    def purge_older_than(self, timestamp: datetime) -> int:
        return self._run(self._async.purge_older_than(timestamp))

    def rebuild_index(self, *, batch_size: int = 500) -> int:
        return self._run(self._async.rebuild_index(batch_size=batch_size))

    def reembed(
        self,
        older_than: datetime,
        embedding_model: str,
        *,
        provider: EmbeddingProvider | None = None,
        batch_size: int = 100,
    ) -> int:
        return self._run(
            self._async.reembed(
                older_than, embedding_model, provider=provider, batch_size=batch_size
            )
        )
