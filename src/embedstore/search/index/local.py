"""LocalVectorIndex — in-process usearch HNSW index keyed by embedding record ID."""

from __future__ import annotations

import json
import logging
import math
import threading
from pathlib import Path
from typing import Any

import numpy as np
from usearch.index import Index

from embedstore.search.filters import FilterExpression, evaluate
from embedstore.search.types import DeleteResult, UpsertResult, VectorEntry, VectorSearchResult

logger = logging.getLogger(__name__)

_META_FILE = "index_meta.json"


def _index_file(dimension: int) -> str:
    return f"index-{dimension}.usearch"


class LocalVectorIndex:
    """In-process vector index backed by usearch HNSW graphs.

    Implements the ``VectorIndex`` protocol.  Vectors of different
    dimensionality (one per embedding model family) live in separate
    usearch graphs, created on first use.  Metadata filters are evaluated
    in process after the nearest-neighbour lookup, so filtered searches
    over-fetch and widen the candidate window until *k* matches are found
    or the graph is exhausted.

    Thread-safe via :class:`threading.Lock`.
    """

    def __init__(self, *, metric: str = "cosine", overfetch: int = 3) -> None:
        if overfetch < 1:
            msg = f"overfetch must be at least 1, got {overfetch}"
            raise ValueError(msg)
        self._metric = "cos" if metric == "cosine" else metric
        self._overfetch = overfetch
        self._lock = threading.Lock()

        self._indexes: dict[int, Index] = {}
        self._next_key: int = 0
        # key → {**metadata, "id", "dimension"}
        self._key_to_meta: dict[int, dict[str, Any]] = {}
        # record id → usearch key
        self._id_to_key: dict[str, int] = {}
        # dimension → live entry count
        self._dim_counts: dict[int, int] = {}

    # ------------------------------------------------------------------
    # VectorIndex protocol
    # ------------------------------------------------------------------

    async def upsert(self, entries: list[VectorEntry]) -> UpsertResult:
        """Insert or replace vectors by record ID."""
        count = 0
        for entry in entries:
            if not entry.vector:
                msg = f"Cannot index empty vector for {entry.id}"
                raise ValueError(msg)

            if entry.id in self._id_to_key:
                self._remove_by_id(entry.id)

            dimension = len(entry.vector)
            vector = np.array(entry.vector, dtype=np.float32)
            key = self._next_key
            self._next_key += 1

            with self._lock:
                self._index_for(dimension).add(key, vector)

            self._key_to_meta[key] = {**entry.metadata, "id": entry.id, "dimension": dimension}
            self._id_to_key[entry.id] = key
            self._dim_counts[dimension] = self._dim_counts.get(dimension, 0) + 1
            count += 1

        return UpsertResult(upserted_count=count)

    async def search(
        self,
        vector: list[float],
        *,
        k: int = 10,
        filter: FilterExpression | None = None,  # noqa: A002
        score_threshold: float | None = None,
    ) -> list[VectorSearchResult]:
        """Search for the *k* nearest vectors of the same dimensionality."""
        dimension = len(vector)
        live = self._dim_counts.get(dimension, 0)
        if k <= 0 or live == 0:
            return []

        index = self._indexes[dimension]
        query = np.array(vector, dtype=np.float32)
        fetch = min(k * self._overfetch, live) if filter is not None else min(k, live)

        while True:
            with self._lock:
                matches = index.search(query, fetch)

            results, below_threshold = self._collect(
                matches.keys.tolist(), matches.distances.tolist(), k, filter, score_threshold
            )
            if len(results) >= k or below_threshold or fetch >= live:
                break
            fetch = min(fetch * 2, live)

        results.sort(key=lambda r: r.score, reverse=True)
        return results

    async def delete(self, ids: list[str]) -> DeleteResult:
        """Delete vectors by record ID."""
        count = 0
        for entry_id in ids:
            if self._remove_by_id(entry_id):
                count += 1
        return DeleteResult(deleted_count=count)

    async def clear(self) -> None:
        """Drop every graph and all metadata."""
        with self._lock:
            self._indexes.clear()
        self._key_to_meta.clear()
        self._id_to_key.clear()
        self._dim_counts.clear()

    async def connect(self) -> None:
        """No-op for local index."""

    async def close(self) -> None:
        """No-op for local index."""

    # ------------------------------------------------------------------
    # Local-specific methods
    # ------------------------------------------------------------------

    def has(self, entry_id: str) -> bool:
        """Return whether *entry_id* is present in the index."""
        return entry_id in self._id_to_key

    def dimensions(self) -> list[int]:
        """Dimensionalities that currently hold vectors."""
        return sorted(d for d, n in self._dim_counts.items() if n > 0)

    def __len__(self) -> int:
        """Return the number of indexed entries."""
        return len(self._key_to_meta)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self, directory: str) -> None:
        """Persist the graphs and metadata to *directory*."""
        dir_path = Path(directory)
        dir_path.mkdir(parents=True, exist_ok=True)

        with self._lock:
            for dimension, index in self._indexes.items():
                index.save(str(dir_path / _index_file(dimension)))

        sidecar: dict[str, Any] = {
            "metric": self._metric,
            "next_key": self._next_key,
            "dimensions": sorted(self._indexes),
            "key_to_meta": {str(k): v for k, v in self._key_to_meta.items()},
        }
        with (dir_path / _META_FILE).open("w") as f:
            json.dump(sidecar, f)

    def load(self, directory: str) -> None:
        """Load a previously saved index from *directory*, replacing current state."""
        dir_path = Path(directory)
        with (dir_path / _META_FILE).open() as f:
            sidecar = json.load(f)

        indexes: dict[int, Index] = {}
        for dimension in sidecar.get("dimensions", []):
            index = Index(ndim=dimension, metric=sidecar.get("metric", self._metric), dtype="f32")
            index.load(str(dir_path / _index_file(dimension)))
            indexes[dimension] = index

        with self._lock:
            self._indexes = indexes
        self._next_key = sidecar["next_key"]
        self._key_to_meta = {}
        self._id_to_key = {}
        self._dim_counts = {}
        for k_str, meta in sidecar.get("key_to_meta", {}).items():
            key = int(k_str)
            self._key_to_meta[key] = meta
            self._id_to_key[meta["id"]] = key
            dimension = meta["dimension"]
            self._dim_counts[dimension] = self._dim_counts.get(dimension, 0) + 1
        logger.debug("Loaded %d vectors from %s", len(self._key_to_meta), directory)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _index_for(self, dimension: int) -> Index:
        index = self._indexes.get(dimension)
        if index is None:
            index = Index(ndim=dimension, metric=self._metric, dtype="f32")
            self._indexes[dimension] = index
        return index

    def _collect(
        self,
        keys: list[int],
        distances: list[float],
        k: int,
        filter: FilterExpression | None,  # noqa: A002
        score_threshold: float | None,
    ) -> tuple[list[VectorSearchResult], bool]:
        """Turn raw matches into results. Second value: a match fell below the threshold."""
        results: list[VectorSearchResult] = []
        for match_key, distance in zip(keys, distances, strict=True):
            meta = self._key_to_meta.get(int(match_key))
            if meta is None:
                continue

            score = 1.0 - float(distance)
            if math.isnan(score):
                continue
            # Matches arrive nearest-first, so nothing after this can pass.
            if score_threshold is not None and score < score_threshold:
                return results, True

            user_meta = {mk: mv for mk, mv in meta.items() if mk not in ("id", "dimension")}
            if filter is not None and not evaluate(filter, user_meta):
                continue

            results.append(VectorSearchResult(id=meta["id"], score=score, metadata=user_meta))
            if len(results) >= k:
                break
        return results, False

    def _remove_by_id(self, entry_id: str) -> bool:
        """Remove a single entry by ID. Returns True if found."""
        key = self._id_to_key.pop(entry_id, None)
        if key is None:
            return False
        meta = self._key_to_meta.pop(key, None)
        if meta is not None:
            dimension = meta["dimension"]
            with self._lock:
                self._indexes[dimension].remove(key)
            self._dim_counts[dimension] -= 1
        return True
