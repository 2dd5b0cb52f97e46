"""Embedding helpers backed by Sentence Transformers."""
from __future__ import annotations

import asyncio
import hashlib
import logging
import random
import time
from functools import lru_cache
from typing import List, Sequence

from treerag.config import DEFAULT_EMBEDDING_DIMENSION, DEFAULT_EMBEDDING_MODEL, get_settings
from treerag.errors import ExternalServiceError
from treerag.providers.base import EmbeddingProvider
from treerag.telemetry import emit_embeddings_event

LOGGER = logging.getLogger(__name__)

FALLBACK_MODEL_NAME = "deterministic-fallback"


class EmbeddingModel(EmbeddingProvider):
    """Wrapper around a SentenceTransformer model with a hash-based fallback."""

    def __init__(
        self,
        model_name_or_path: str = DEFAULT_EMBEDDING_MODEL,
        *,
        dimension: int = DEFAULT_EMBEDDING_DIMENSION,
        load_model: bool = False,
        device: str | None = None,
    ) -> None:
        self._model = None
        self._dimension = dimension
        self._model_name = FALLBACK_MODEL_NAME

        if not load_model:
            LOGGER.info("Heavy models disabled; using deterministic fallback embeddings.")
            return

        try:
            from sentence_transformers import SentenceTransformer  # type: ignore import-not-found
        except ImportError as error:  # pragma: no cover - depends on optional deps
            LOGGER.warning(
                "sentence-transformers is unavailable; using deterministic fallback embeddings (%s).",
                error,
            )
            return

        try:
            self._model = SentenceTransformer(model_name_or_path, device=device)
        except Exception as error:  # pragma: no cover - depends on model files
            LOGGER.warning(
                "Failed to initialize sentence-transformers model '%s': %s. "
                "Using deterministic fallback embeddings instead.",
                model_name_or_path,
                error,
            )
            self._model = None
            return

        self._model_name = model_name_or_path
        self._dimension = int(self._model.get_sentence_embedding_dimension())

    @property
    def dimension(self) -> int:
        return int(self._dimension)

    @property
    def model_name(self) -> str:
        return self._model_name

    async def encode(self, texts: Sequence[str]) -> List[List[float]]:
        if not texts:
            return []
        pending = [text for text in texts if text]
        started = time.perf_counter()
        try:
            if pending:
                computed = await asyncio.to_thread(self.embed_texts, pending)
            else:
                computed = []
        except Exception as error:
            emit_embeddings_event(
                model=self._model_name,
                count=len(pending),
                skipped=len(texts) - len(pending),
                duration_ms=(time.perf_counter() - started) * 1000.0,
                errors=[str(error)],
            )
            raise ExternalServiceError("Embedding generation failed", cause=error) from error

        emit_embeddings_event(
            model=self._model_name,
            count=len(pending),
            skipped=len(texts) - len(pending),
            duration_ms=(time.perf_counter() - started) * 1000.0,
        )
        vectors = iter(computed)
        zero = [0.0] * self._dimension
        return [next(vectors) if text else list(zero) for text in texts]

    def embed_texts(self, texts: Sequence[str]) -> List[List[float]]:
        """Blocking embedding of non-empty texts."""

        if self._model is None:
            return [self._deterministic_embedding(str(text)) for text in texts]
        embeddings = self._model.encode(
            list(texts),
            convert_to_numpy=True,
            show_progress_bar=False,
            normalize_embeddings=False,
        )
        return embeddings.tolist()

    def _deterministic_embedding(self, text: str) -> List[float]:
        seed = int.from_bytes(hashlib.sha256(text.encode("utf-8")).digest(), "big")
        rng = random.Random(seed)
        return [rng.uniform(-1.0, 1.0) for _ in range(self._dimension)]


@lru_cache()
def get_embedding_model() -> EmbeddingModel:
    """Return a cached embedding model instance."""

    settings = get_settings()
    return EmbeddingModel(
        settings.embedding_model,
        dimension=settings.embedding_dimension,
        load_model=settings.install_heavy,
    )


def reset_embedding_model_cache() -> None:
    """Clear the cached embedding model instance (primarily for testing)."""

    get_embedding_model.cache_clear()  # type: ignore[attr-defined]
