"""Chunk store and its pluggable vector index backends."""

from __future__ import annotations

import logging
from functools import lru_cache

from treerag.config import Settings, get_settings
from treerag.embeddings import get_embedding_model
from treerag.errors import InvalidArgumentError
from treerag.providers.base import EmbeddingProvider
from treerag.providers.mock_embedding import MockEmbeddingProvider

from .base import IndexHit, IndexRecord, VectorIndex
from .chunk_store import ChunkStore, collection_name
from .memory_index import InMemoryIndex

LOGGER = logging.getLogger(__name__)


def build_index(backend: str, *, chroma_path: str = "") -> VectorIndex:
    backend = backend.strip().lower()
    if backend == "memory":
        return InMemoryIndex()
    if backend == "chroma":
        from .chroma_index import ChromaIndex

        return ChromaIndex(chroma_path or None)
    raise InvalidArgumentError(f"Unknown vector backend '{backend}'")


def build_embedder(settings: Settings) -> EmbeddingProvider:
    provider = settings.embedding_provider.strip().lower()
    if provider == "mock":
        LOGGER.warning("TREERAG_EMBEDDING_PROVIDER=mock; search ranking is not meaningful.")
        return MockEmbeddingProvider(settings.embedding_dimension)
    if provider == "auto":
        return get_embedding_model()
    raise InvalidArgumentError(f"Unknown embedding provider '{provider}'")


@lru_cache()
def get_chunk_store() -> ChunkStore:
    """Return the process-wide chunk store configured from the environment."""

    settings = get_settings()
    index = build_index(settings.vector_backend, chroma_path=settings.chroma_path)
    LOGGER.info("Using %s vector index", index.name)
    return ChunkStore(index, build_embedder(settings))


def reset_chunk_store_cache() -> None:
    get_chunk_store.cache_clear()  # type: ignore[attr-defined]


__all__ = [
    "ChunkStore",
    "InMemoryIndex",
    "IndexHit",
    "IndexRecord",
    "VectorIndex",
    "build_embedder",
    "build_index",
    "collection_name",
    "get_chunk_store",
    "reset_chunk_store_cache",
]
