"""Tests for the synchronous EmbeddingStore facade."""

from __future__ import annotations

from collections.abc import Iterator
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import pytest
from conftest import TEST_MODEL, HashEmbedding, make_record, unit

from embedstore import EmbeddingStore, EmbeddingStoreAsync
from embedstore.exceptions import ContentNotFoundError, RecordNotFoundError
from embedstore.search.filters import eq

if TYPE_CHECKING:
    from pathlib import Path

    from embedstore.config import Settings


@pytest.fixture
def sync_store(tmp_path: Path, settings: Settings) -> Iterator[EmbeddingStore]:
    url = f"sqlite+aiosqlite:///{tmp_path / 'embeddings.db'}"
    s = EmbeddingStore(
        settings=settings.model_copy(update={"database_url": url}),
        embedding_provider=HashEmbedding(),
    )
    s.init_schema()
    yield s
    s.close()


class TestEmbeddingStore:
    def test_async_store(self, sync_store):
        assert isinstance(sync_store.async_store, EmbeddingStoreAsync)

    def test_add_get_delete(self, sync_store):
        record = sync_store.add("a", "comment", "hi", vector=unit(0))
        loaded = sync_store.get_by_id(record.id)
        assert loaded is not None
        assert loaded.embedding_model == TEST_MODEL
        sync_store.delete_by_id(record.id)
        assert sync_store.get_by_id(record.id) is None
        with pytest.raises(RecordNotFoundError):
            sync_store.delete_by_id(record.id)

    def test_embed_and_reconstruct(self, sync_store):
        text = "First sentence here. Second sentence here. Third one closes it."
        created = sync_store.embed_content("doc", "project-documentation", text)
        assert len(created) > 1
        assert sync_store.get_content("doc", "project-documentation") == text
        chunks = sync_store.get_chunks("doc", "project-documentation")
        assert [c.chunk_index for c in chunks] == list(range(len(created)))
        with pytest.raises(ContentNotFoundError):
            sync_store.get_content("doc", "comment")

    def test_search(self, sync_store):
        sync_store.add("a", "comment", "a", vector=unit(0))
        sync_store.add("b", "comment", "b", vector=unit(1))
        hits = sync_store.search(unit(0), threshold=0.5)
        assert [h.content_id for h in hits] == ["a"]
        assert sync_store.search_text("a", limit=2)

    def test_search_filter(self, sync_store):
        sync_store.add("a", "comment", "a", vector=unit(0), metadata={"lang": "py"})
        sync_store.add("b", "comment", "b", vector=unit(0), metadata={"lang": "go"})
        hits = sync_store.search(unit(0), filter=eq("lang", "go"))
        assert [h.content_id for h in hits] == ["b"]
        assert sync_store.search_text("a", filter=eq("lang", "rust")) == []

    def test_transaction_commit(self, sync_store):
        with sync_store.transaction():
            a = sync_store.add("a", "comment", "one", vector=unit(0))
            sync_store.add("b", "comment", "two", vector=unit(1))
            assert not sync_store.async_store.index.has(a.id)
        assert sync_store.count_by_content_type("comment") == 2
        assert sync_store.async_store.index.has(a.id)

    def test_transaction_rollback(self, sync_store):
        with pytest.raises(RuntimeError):
            with sync_store.transaction():
                sync_store.add("a", "comment", "one", vector=unit(0))
                with sync_store.transaction():
                    sync_store.add("b", "comment", "two")
                raise RuntimeError("abort")
        assert sync_store.count_by_content_type("comment") == 0
        assert len(sync_store.async_store.index) == 0

    def test_queries_and_statistics(self, sync_store):
        t0 = datetime(2024, 1, 1, tzinfo=UTC)
        sync_store.create_many(
            [make_record(f"c{i}", created_at=t0 + timedelta(days=i)) for i in range(3)]
        )
        page = sync_store.find_by_content_type("code-snippet", limit=2)
        assert len(page) == 2
        assert page.total == 3
        assert sync_store.count_by_model(TEST_MODEL) == 3
        (stats,) = sync_store.statistics()
        assert stats.total == 3
        assert stats.with_vector == 0
        assert sync_store.delete_older_than(t0 + timedelta(days=1)) == 1
        assert sync_store.find_without_vector().total == 2

    def test_reembed_and_rebuild(self, sync_store):
        t0 = datetime(2024, 1, 1, tzinfo=UTC)
        sync_store.create(make_record("old", model="other-model", created_at=t0))
        assert sync_store.reembed(t0 + timedelta(days=1), "other-model") == 1
        assert sync_store.rebuild_index() == 1

    def test_close_idempotent(self, tmp_path, settings):
        url = f"sqlite+aiosqlite:///{tmp_path / 'x.db'}"
        store = EmbeddingStore(settings=settings.model_copy(update={"database_url": url}))
        store.close()
        store.close()

    def test_context_manager(self, tmp_path, settings):
        url = f"sqlite+aiosqlite:///{tmp_path / 'ctx.db'}"
        with EmbeddingStore(settings=settings.model_copy(update={"database_url": url})) as store:
            store.init_schema()
            store.add("a", "comment", "hi")
            assert store.exists_by_content("a", "comment")
        assert store._closed
