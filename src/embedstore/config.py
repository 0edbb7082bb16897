"""Store settings — environment-driven defaults for models, chunking, and search."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_MODEL = "text-embedding-ada-002"

# Known output dimensions per embedding model.
DEFAULT_MODEL_DIMENSIONS: dict[str, int] = {
    "text-embedding-ada-002": 1536,
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "all-MiniLM-L6-v2": 384,
}


class Settings(BaseSettings):
    """Configuration for :class:`~embedstore.EmbeddingStoreAsync`.

    Every field can be set from the environment with the ``EMBEDSTORE_``
    prefix (e.g. ``EMBEDSTORE_MAX_CHUNK_CHARS=4000``).  ``model_dimensions``
    is read as JSON::

        EMBEDSTORE_MODEL_DIMENSIONS='{"my-model": 384}'

    Entries given there are merged over :data:`DEFAULT_MODEL_DIMENSIONS`.
    """

    model_config = SettingsConfigDict(
        env_prefix="EMBEDSTORE_",
        env_file=".env",
        extra="ignore",
        protected_namespaces=(),
    )

    database_url: str | None = None
    default_model: str = DEFAULT_MODEL
    model_dimensions: dict[str, int] = Field(default_factory=dict)
    max_chunk_chars: int = Field(default=2000, gt=0)
    search_overfetch: int = Field(default=3, ge=1)
    page_size: int = Field(default=100, gt=0)

    def dimensions_registry(self) -> dict[str, int]:
        """Return the effective model → dimension mapping."""
        return {**DEFAULT_MODEL_DIMENSIONS, **self.model_dimensions}
