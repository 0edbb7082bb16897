"""SentenceTransformerEmbedding — local, offline embedding provider."""

from __future__ import annotations

import asyncio
import threading
from typing import Any

try:
    from sentence_transformers import SentenceTransformer

    _HAS_SENTENCE_TRANSFORMERS = True
except ImportError:  # pragma: no cover
    _HAS_SENTENCE_TRANSFORMERS = False

DEFAULT_LOCAL_MODEL = "all-MiniLM-L6-v2"


class SentenceTransformerEmbedding:
    """Embedding provider backed by ``sentence-transformers``.

    The model loads on first use.  Inference is CPU/GPU bound, so the
    async methods hand it to a worker thread with :func:`asyncio.to_thread`.
    Register the model's width in ``Settings.model_dimensions`` if it is
    not one of the built-in entries.

    Requires the ``sentence-transformers`` package::

        pip install embedstore[local]
    """

    def __init__(
        self,
        model_name: str = DEFAULT_LOCAL_MODEL,
        *,
        device: str | None = None,
        normalize: bool = True,
    ) -> None:
        if not _HAS_SENTENCE_TRANSFORMERS:
            msg = (
                "sentence-transformers is required for SentenceTransformerEmbedding. "
                "Install it with: pip install embedstore[local]"
            )
            raise ImportError(msg)
        self._model_name = model_name
        self._device = device
        self._normalize = normalize
        self._model: SentenceTransformer | None = None
        self._load_lock = threading.Lock()

    def _load_model(self) -> SentenceTransformer:
        with self._load_lock:
            if self._model is None:
                self._model = SentenceTransformer(self._model_name, device=self._device)
            return self._model

    def _encode(self, texts: list[str]) -> list[list[float]]:
        model = self._load_model()
        result: Any = model.encode(texts, normalize_embeddings=self._normalize)
        return [row.tolist() for row in result]

    # ------------------------------------------------------------------
    # EmbeddingProvider protocol
    # ------------------------------------------------------------------

    async def embed(self, text: str) -> list[float]:
        vectors = await asyncio.to_thread(self._encode, [text])
        return vectors[0]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        return await asyncio.to_thread(self._encode, texts)

    @property
    def dimensions(self) -> int:
        dim = self._load_model().get_sentence_embedding_dimension()
        if dim is None:
            msg = f"Model {self._model_name!r} did not report embedding dimensions"
            raise RuntimeError(msg)
        return dim

    @property
    def model_name(self) -> str:
        return self._model_name
