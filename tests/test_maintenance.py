"""Tests for MaintenanceJobs against a bare session."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone

import pytest
from conftest import OTHER_MODEL, TEST_MODEL, hash_vector, make_record, unit

from embedstore.exceptions import RecordNotFoundError, ValidationError
from embedstore.maintenance import MaintenanceJobs
from embedstore.search._engine import SimilaritySearch
from embedstore.search.index.local import LocalVectorIndex

_T0 = datetime(2024, 1, 1, tzinfo=UTC)


@pytest.fixture
def index() -> LocalVectorIndex:
    return LocalVectorIndex()


@pytest.fixture
def jobs(record_service, index) -> MaintenanceJobs:
    return MaintenanceJobs(record_service, SimilaritySearch(index, record_service))


class TestMaintenanceJobs:
    async def test_rebuild_index_pages(self, jobs, index, record_service, async_session):
        records = [make_record(f"c{i}", vector=hash_vector(str(i))) for i in range(5)]
        await record_service.create_many(async_session, records)
        await record_service.create(async_session, make_record("bare"))
        assert await jobs.rebuild_index(async_session, batch_size=2) == 5
        assert len(index) == 5

    async def test_rebuild_clears_stale_entries(self, jobs, index, record_service, async_session):
        kept = await record_service.create(async_session, make_record("k", vector=unit(0)))
        await jobs.rebuild_index(async_session)
        await record_service.delete_by_id(async_session, kept.id)
        assert await jobs.rebuild_index(async_session) == 0
        assert not index.has(kept.id)

    async def test_rebuild_rejects_bad_batch(self, jobs, async_session):
        with pytest.raises(ValidationError):
            await jobs.rebuild_index(async_session, batch_size=-1)

    async def test_purge_returns_ids(self, jobs, record_service, async_session):
        old = await record_service.create(async_session, make_record("o", created_at=_T0))
        await record_service.create(async_session, make_record("n"))
        ids = await jobs.purge_older_than(async_session, _T0 + timedelta(days=1))
        assert ids == [old.id]

    async def test_purge_with_offset_cutoff(self, jobs, record_service, async_session):
        records = [make_record(f"h{i}", created_at=_T0 + timedelta(hours=i)) for i in range(5)]
        await record_service.create_many(async_session, records)
        cutoff = (_T0 + timedelta(hours=2)).astimezone(timezone(timedelta(hours=5)))
        ids = await jobs.purge_older_than(async_session, cutoff)
        assert sorted(ids) == sorted(r.id for r in records[:2])

    async def test_collect_reprocessing_ids(self, jobs, record_service, async_session):
        stale = [
            make_record(f"s{i}", model=OTHER_MODEL, created_at=_T0 + timedelta(hours=i))
            for i in range(5)
        ]
        await record_service.create_many(async_session, stale)
        await record_service.create(async_session, make_record("t", created_at=_T0))
        ids = await jobs.collect_reprocessing_ids(
            async_session, _T0 + timedelta(days=1), OTHER_MODEL, batch_size=2
        )
        assert sorted(ids) == sorted(r.id for r in stale)

    async def test_apply_vectors(self, jobs, record_service, async_session):
        a = await record_service.create(async_session, make_record("a", model=OTHER_MODEL))
        b = await record_service.create(async_session, make_record("b", model=OTHER_MODEL))
        updated = await jobs.apply_vectors(
            async_session, [a.id, b.id], [unit(0), unit(1)], TEST_MODEL
        )
        assert [r.embedding_model for r in updated] == [TEST_MODEL, TEST_MODEL]
        assert updated[1].vector == unit(1)

    async def test_apply_vectors_missing_record(self, jobs, async_session):
        with pytest.raises(RecordNotFoundError):
            await jobs.apply_vectors(async_session, ["missing"], [unit(0)], TEST_MODEL)

    async def test_find_without_vector(self, jobs, record_service, async_session):
        await record_service.create(async_session, make_record("v", vector=unit(0)))
        await record_service.create(async_session, make_record("n"))
        page = await jobs.find_without_vector(async_session)
        assert [r.content_id for r in page] == ["n"]
