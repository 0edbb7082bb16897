"""embedstore: chunked embedding records with similarity search.

Persists text chunks with their embedding vectors, reassembles chunked
content, and answers nearest-neighbour queries, sync or async.
"""

__version__ = "0.1.0"

from embedstore._store import EmbeddingStore
from embedstore._store_async import EmbeddingStoreAsync
from embedstore.chunking import Chunk, assemble, chunk_position, reconstruct, split_text
from embedstore.config import DEFAULT_MODEL_DIMENSIONS, Settings
from embedstore.exceptions import (
    ContentNotFoundError,
    EmbedStoreError,
    IncompleteChunkSetError,
    InvalidQueryError,
    RecordNotFoundError,
    ValidationError,
    VectorDecodeError,
)
from embedstore.maintenance import MaintenanceJobs
from embedstore.models.embeddings import ContentType, EmbeddingRecord, EmbeddingRecordBase
from embedstore.records import EmbeddingRecordService
from embedstore.search._engine import SimilaritySearch
from embedstore.search.filters import FilterExpression, and_, eq, exists, in_, ne, not_in, or_
from embedstore.search.index.local import LocalVectorIndex
from embedstore.search.protocols import EmbeddingProvider, VectorIndex
from embedstore.types import ContentTypeStats, Page, SearchHit

__all__ = [
    "DEFAULT_MODEL_DIMENSIONS",
    "Chunk",
    "ContentNotFoundError",
    "ContentType",
    "ContentTypeStats",
    "EmbedStoreError",
    "EmbeddingProvider",
    "EmbeddingRecord",
    "EmbeddingRecordBase",
    "EmbeddingRecordService",
    "EmbeddingStore",
    "EmbeddingStoreAsync",
    "FilterExpression",
    "IncompleteChunkSetError",
    "InvalidQueryError",
    "LocalVectorIndex",
    "MaintenanceJobs",
    "Page",
    "RecordNotFoundError",
    "SearchHit",
    "SimilaritySearch",
    "Settings",
    "ValidationError",
    "VectorDecodeError",
    "VectorIndex",
    "__version__",
    "and_",
    "assemble",
    "chunk_position",
    "eq",
    "exists",
    "in_",
    "ne",
    "not_in",
    "or_",
    "reconstruct",
    "split_text",
]
