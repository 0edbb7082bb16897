"""Tests for PgVectorIndex query compilation."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.dialects import postgresql

pytest.importorskip("pgvector")

from embedstore.models.embeddings import EmbeddingRecord  # noqa: E402
from embedstore.search.filters import and_, eq, exists, in_, ne, not_in, or_  # noqa: E402
from embedstore.search.index.pgvector import PgVectorIndex  # noqa: E402


def _sql(clause) -> str:
    return str(clause.compile(dialect=postgresql.dialect()))


@pytest.fixture
def index() -> PgVectorIndex:
    return PgVectorIndex(MagicMock(), EmbeddingRecord)


class TestBuildQuery:
    def test_cosine_distance_ordering(self, index):
        sql = _sql(index.build_query([1.0, 0.0, 0.0], k=5))
        assert "<=>" in sql
        assert "vector_dims" in sql
        assert "ORDER BY" in sql
        assert "LIMIT" in sql

    def test_score_threshold(self, index):
        without = _sql(index.build_query([1.0, 0.0], k=3))
        with_threshold = _sql(index.build_query([1.0, 0.0], k=3, score_threshold=0.5))
        assert with_threshold.count("<=>") > without.count("<=>")

    def test_filter_included(self, index):
        sql = _sql(index.build_query([1.0], k=1, filter=eq("embedding_model", "m")))
        assert "embeddings.embedding_model" in sql


class TestCompileFilter:
    def test_column_field(self, index):
        sql = _sql(index.compile_filter(eq("content_type", "code-snippet")))
        assert "embeddings.content_type" in sql

    def test_in_column(self, index):
        sql = _sql(index.compile_filter(in_("content_type", ["comment", "code-snippet"])))
        assert "IN" in sql

    def test_metadata_field(self, index):
        sql = _sql(index.compile_filter(eq("author", "sam")))
        assert "->>" in sql
        assert "embeddings.metadata" in sql

    def test_metadata_exists(self, index):
        sql = _sql(index.compile_filter(exists("author")))
        assert "->" in sql
        assert "IS NOT NULL" in sql

    def test_logical_groups(self, index):
        sql = _sql(
            index.compile_filter(
                or_(and_(eq("embedding_model", "m"), eq("lang", "py")), eq("chunk_index", 0))
            )
        )
        assert " OR " in sql
        assert " AND " in sql

    async def test_upsert_and_delete_are_noops(self, index):
        assert (await index.upsert([])).upserted_count == 0
        assert (await index.delete(["a", "b"])).deleted_count == 2

    def test_metadata_none_matches_json_null(self, index):
        compiled = index.compile_filter(eq("lang", None)).compile(dialect=postgresql.dialect())
        sql = str(compiled)
        assert "->>" not in sql
        assert "CAST" in sql
        assert "None" not in compiled.params.values()
        assert "null" in compiled.params.values()

    def test_metadata_ne_includes_absent_key(self, index):
        sql = _sql(index.compile_filter(ne("lang", "py")))
        assert "IS NULL" in sql
        assert " OR " in sql

    def test_metadata_in_with_none(self, index):
        compiled = index.compile_filter(in_("lang", ["py", None])).compile(
            dialect=postgresql.dialect()
        )
        sql = str(compiled)
        assert "->>" in sql
        assert " OR " in sql
        assert "None" not in compiled.params.values()

    def test_metadata_not_in(self, index):
        sql = _sql(index.compile_filter(not_in("lang", ["py", "rs"])))
        assert "NOT" in sql


class TestSearchInSession:
    @staticmethod
    def _session(*rows):
        result = MagicMock()
        result.all.return_value = list(rows)
        session = MagicMock()
        session.execute = AsyncMock(return_value=result)
        return session

    async def test_uses_given_session(self, index):
        row = SimpleNamespace(
            id="r1", score=0.9, content_id="a", content_type="comment", embedding_model="m"
        )
        session = self._session(row)
        results = await index.search_in_session(session, [1.0, 0.0], k=3)
        session.execute.assert_awaited_once()
        index._session_factory.assert_not_called()
        assert [(r.id, r.score) for r in results] == [("r1", 0.9)]
        assert results[0].metadata["content_id"] == "a"

    async def test_non_positive_k(self, index):
        session = self._session()
        assert await index.search_in_session(session, [1.0], k=0) == []
        session.execute.assert_not_awaited()

    async def test_search_opens_own_session(self):
        session = self._session()
        factory = MagicMock()
        factory.return_value.__aenter__ = AsyncMock(return_value=session)
        factory.return_value.__aexit__ = AsyncMock(return_value=None)
        index = PgVectorIndex(factory, EmbeddingRecord)
        assert await index.search([1.0, 0.0], k=2) == []
        factory.assert_called_once()
        session.execute.assert_awaited_once()
