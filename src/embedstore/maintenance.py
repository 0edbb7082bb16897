"""MaintenanceJobs — discovery scans, age-based purges, and index rebuilds."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from embedstore.exceptions import ValidationError

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession

    from embedstore.models.embeddings import EmbeddingRecordBase
    from embedstore.records import EmbeddingRecordService
    from embedstore.search._engine import SimilaritySearch
    from embedstore.types import Page

logger = logging.getLogger(__name__)


class MaintenanceJobs:
    """Batch operations over the record table.

    Like :class:`EmbeddingRecordService`, every method takes the session to
    work in and never commits.  Calling the embedding provider is left to
    the facade so that no transaction is held open across network calls.
    """

    def __init__(self, records: EmbeddingRecordService, search: SimilaritySearch) -> None:
        self._records = records
        self._search = search

    async def find_needing_reprocessing(
        self,
        session: AsyncSession,
        older_than: datetime,
        embedding_model: str,
        *,
        offset: int = 0,
        limit: int = 100,
    ) -> Page[EmbeddingRecordBase]:
        """Records created before *older_than* with *embedding_model*."""
        return await self._records.find_needing_reprocessing(
            session, older_than, embedding_model, offset=offset, limit=limit
        )

    async def find_without_vector(
        self,
        session: AsyncSession,
        *,
        offset: int = 0,
        limit: int = 100,
    ) -> Page[EmbeddingRecordBase]:
        """Records awaiting their first embedding."""
        return await self._records.find_without_vector(session, offset=offset, limit=limit)

    async def purge_older_than(self, session: AsyncSession, timestamp: datetime) -> list[str]:
        """Delete records created before *timestamp*. Returns the deleted ids."""
        ids = await self._records.delete_older_than(session, timestamp)
        logger.debug("Purged %d records created before %s", len(ids), timestamp.isoformat())
        return ids

    async def rebuild_index(self, session: AsyncSession, *, batch_size: int = 500) -> int:
        """Clear the vector index and repopulate it from persisted vectors.

        Records whose stored vector cannot be decoded are skipped with a
        warning. Returns the number of vectors indexed.
        """
        if batch_size <= 0:
            msg = f"batch_size must be positive, got {batch_size}"
            raise ValidationError(msg)

        await self._search.index.clear()
        indexed = 0
        offset = 0
        while True:
            page = await self._records.find_with_vector(session, offset=offset, limit=batch_size)
            indexed += await self._search.index_records(page.items)
            logger.debug("Rebuild: indexed %d of %d records", offset + len(page), page.total)
            if page.next_offset is None:
                break
            offset = page.next_offset
        logger.debug("Rebuilt vector index with %d vectors", indexed)
        return indexed

    async def collect_reprocessing_ids(
        self,
        session: AsyncSession,
        older_than: datetime,
        embedding_model: str,
        *,
        batch_size: int = 100,
    ) -> list[str]:
        """Snapshot the ids matching :meth:`find_needing_reprocessing`.

        Taken up front so that records re-embedded under a different model
        do not shift the paging window mid-run.
        """
        ids: list[str] = []
        offset = 0
        while True:
            page = await self.find_needing_reprocessing(
                session, older_than, embedding_model, offset=offset, limit=batch_size
            )
            ids.extend(r.id for r in page.items)
            if page.next_offset is None:
                return ids
            offset = page.next_offset

    async def apply_vectors(
        self,
        session: AsyncSession,
        record_ids: Sequence[str],
        vectors: Sequence[Sequence[float]],
        embedding_model: str,
    ) -> list[EmbeddingRecordBase]:
        """Write freshly computed *vectors* onto the records via ``update_vector``."""
        updated: list[EmbeddingRecordBase] = []
        for record_id, vector in zip(record_ids, vectors, strict=True):
            updated.append(
                await self._records.update_vector(session, record_id, vector, embedding_model)
            )
        return updated
