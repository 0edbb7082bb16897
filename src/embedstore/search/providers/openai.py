"""OpenAIEmbedding — async embedding provider backed by OpenAI's API."""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING, Any

from embedstore.config import DEFAULT_MODEL, DEFAULT_MODEL_DIMENSIONS

try:
    from openai import AsyncOpenAI

    _HAS_OPENAI = True
except ImportError:  # pragma: no cover
    _HAS_OPENAI = False

if TYPE_CHECKING:
    from openai import AsyncOpenAI as AsyncOpenAIType

logger = logging.getLogger(__name__)


class OpenAIEmbedding:
    """Async embedding provider backed by the OpenAI Embeddings API.

    Large batches are split at *batch_size* texts per API call.  The
    vectors it returns are what the store persists for
    ``embedding_model == model_name``.

    Requires the ``openai`` package::

        pip install embedstore[openai]
    """

    def __init__(
        self,
        *,
        model: str = DEFAULT_MODEL,
        dimensions: int | None = None,
        api_key: str | None = None,
        max_retries: int = 2,
        timeout: float = 60.0,
        batch_size: int = 512,
        client: AsyncOpenAIType | None = None,
    ) -> None:
        if client is None:
            if not _HAS_OPENAI:
                msg = (
                    "openai is required for OpenAIEmbedding. "
                    "Install it with: pip install embedstore[openai]"
                )
                raise ImportError(msg)

            resolved_key = api_key or os.environ.get("OPENAI_API_KEY")
            if not resolved_key:
                msg = (
                    "No OpenAI API key provided. Pass api_key= or set the "
                    "OPENAI_API_KEY environment variable."
                )
                raise ValueError(msg)
            client = AsyncOpenAI(api_key=resolved_key, max_retries=max_retries, timeout=timeout)

        if batch_size <= 0:
            msg = f"batch_size must be positive, got {batch_size}"
            raise ValueError(msg)

        self._model = model
        self._dimensions = dimensions
        self._batch_size = batch_size
        self._client = client

    # ------------------------------------------------------------------
    # EmbeddingProvider protocol
    # ------------------------------------------------------------------

    async def embed(self, text: str) -> list[float]:
        """Embed a single text string via the OpenAI API."""
        result = await self._call_api([text])
        return result[0]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed multiple texts, splitting at *batch_size* per API call."""
        if not texts:
            return []

        all_vectors: list[list[float]] = []
        for start in range(0, len(texts), self._batch_size):
            batch = texts[start : start + self._batch_size]
            all_vectors.extend(await self._call_api(batch))
        return all_vectors

    @property
    def dimensions(self) -> int:
        if self._dimensions is not None:
            return self._dimensions
        default = DEFAULT_MODEL_DIMENSIONS.get(self._model)
        if default is not None:
            return default
        msg = f"Unknown default dimensions for model {self._model!r}. Pass dimensions= explicitly."
        raise ValueError(msg)

    @property
    def model_name(self) -> str:
        return self._model

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """Close the underlying httpx client."""
        await self._client.close()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _call_api(self, texts: list[str]) -> list[list[float]]:
        kwargs: dict[str, Any] = {"input": texts, "model": self._model}
        # ada-002 rejects the dimensions parameter
        if self._dimensions is not None and self._model != "text-embedding-ada-002":
            kwargs["dimensions"] = self._dimensions

        logger.debug("Embedding %d texts with %s", len(texts), self._model)
        response = await self._client.embeddings.create(**kwargs)

        # Sort by index so order matches input
        ordered = sorted(response.data, key=lambda e: e.index)
        return [list(item.embedding) for item in ordered]
