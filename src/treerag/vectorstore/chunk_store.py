"""Per-document chunk persistence with text and summary vectors."""
from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, List, Mapping, Optional, Sequence

from treerag.chunks import Chunk, ChunkKind, ScoredChunk, rank_key
from treerag.errors import ExternalServiceError, InvalidArgumentError, require_document_id
from treerag.providers.base import EmbeddingProvider
from treerag.telemetry import emit_vectorstore_event

from .base import IndexRecord, VectorIndex

LOGGER = logging.getLogger(__name__)

TEXT_FIELD = "text"
SUMMARY_FIELD = "summary"
SEARCH_FIELDS = (TEXT_FIELD, SUMMARY_FIELD)
TIE_MARGIN = 8
FILTER_FIELDS = frozenset({"key", "parent_key", "level", "kind", "has_child_node"})

_COLLECTION_NAMESPACE = uuid.UUID("6f1c7a52-3b0e-4b8e-9a61-2d5f0c8e4a17")


def collection_name(doc_id: str) -> str:
    """Stable, backend-safe collection name for a document id."""

    return f"doc-{uuid.uuid5(_COLLECTION_NAMESPACE, doc_id).hex}"


def _normalise_filter(filters: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    where: Dict[str, Any] = {}
    for name, value in (filters or {}).items():
        if name not in FILTER_FIELDS:
            raise InvalidArgumentError(
                f"Unsupported chunk filter field '{name}'",
                details={"allowed": sorted(FILTER_FIELDS)},
            )
        try:
            if name == "kind":
                value = ChunkKind(value).value
            elif name == "level":
                value = int(value)
            elif name == "has_child_node":
                value = bool(value)
            else:
                value = str(value)
        except (TypeError, ValueError) as error:
            raise InvalidArgumentError(f"Invalid value {value!r} for filter '{name}'") from error
        where[name] = value
    return where


class ChunkStore:
    """Persist document chunks in one vector collection per document.

    Every chunk is stored as a text record keyed by the chunk key. Chunks
    with a summary get a second ``{key}#summary`` record carrying the
    summary vector. Both records hold the complete chunk metadata.
    """

    def __init__(self, index: VectorIndex, embedder: EmbeddingProvider) -> None:
        self.index = index
        self.embedder = embedder

    async def embed_query(self, text: str) -> List[float]:
        vectors = await self.embedder.encode([text])
        return vectors[0]

    async def has_document(self, doc_id: str) -> bool:
        return await self.index.has_collection(collection_name(require_document_id(doc_id)))

    async def add_document(self, doc_id: str, chunks: Sequence[Chunk]) -> int:
        """Embed and upsert ``chunks``; returns the number of records written."""

        doc_id = require_document_id(doc_id)
        name = collection_name(doc_id)
        try:
            await self.index.ensure_collection(name, metadata={"document_id": doc_id})
            text_vectors = await self.embedder.encode([chunk.text for chunk in chunks])
            summarized = [chunk for chunk in chunks if chunk.summary.strip()]
            summary_vectors = await self.embedder.encode([chunk.summary for chunk in summarized])

            records: List[IndexRecord] = []
            for chunk, vector in zip(chunks, text_vectors):
                metadata = chunk.to_metadata()
                metadata["document_id"] = doc_id
                records.append(
                    IndexRecord(
                        id=chunk.key,
                        vector=vector,
                        document=chunk.text,
                        metadata={**metadata, "field": TEXT_FIELD},
                    )
                )
            for chunk, vector in zip(summarized, summary_vectors):
                metadata = chunk.to_metadata()
                metadata["document_id"] = doc_id
                records.append(
                    IndexRecord(
                        id=f"{chunk.key}#{SUMMARY_FIELD}",
                        vector=vector,
                        document=chunk.summary,
                        metadata={**metadata, "field": SUMMARY_FIELD},
                    )
                )
            await self.index.upsert(name, records)
        except (ExternalServiceError, InvalidArgumentError) as error:
            emit_vectorstore_event(
                "vectorstore.add.error",
                doc_id=doc_id,
                collection=name,
                count=len(chunks),
                backend=self.index.name,
                error=error,
            )
            raise

        emit_vectorstore_event(
            "vectorstore.add",
            doc_id=doc_id,
            collection=name,
            count=len(records),
            backend=self.index.name,
        )
        return len(records)

    async def remove_document(self, doc_id: str) -> None:
        doc_id = require_document_id(doc_id)
        name = collection_name(doc_id)
        await self.index.delete_collection(name)
        emit_vectorstore_event(
            "vectorstore.remove", doc_id=doc_id, collection=name, count=0, backend=self.index.name
        )

    async def get_by_filter(
        self,
        doc_id: str,
        filters: Optional[Mapping[str, Any]] = None,
        limit: Optional[int] = None,
    ) -> List[Chunk]:
        """Chunks whose fields equal every entry of ``filters``; unordered."""

        doc_id = require_document_id(doc_id)
        where = _normalise_filter(filters)
        where["field"] = TEXT_FIELD
        rows = await self.index.get(collection_name(doc_id), where, limit)
        return [Chunk.from_metadata(row) for row in rows]

    async def get_by_key(self, doc_id: str, key: str) -> Optional[Chunk]:
        if not key:
            return None
        matches = await self.get_by_filter(doc_id, {"key": key}, limit=1)
        return matches[0] if matches else None

    async def search(
        self,
        doc_id: str,
        query: str,
        *,
        field: str = TEXT_FIELD,
        filters: Optional[Mapping[str, Any]] = None,
        top_k: int = 5,
    ) -> List[ScoredChunk]:
        vector = await self.embed_query(query)
        return await self.search_by_vector(doc_id, vector, field=field, filters=filters, top_k=top_k)

    async def search_by_vector(
        self,
        doc_id: str,
        vector: Sequence[float],
        *,
        field: str = TEXT_FIELD,
        filters: Optional[Mapping[str, Any]] = None,
        top_k: int = 5,
    ) -> List[ScoredChunk]:
        """Most similar chunks on ``field``, score descending then index ascending."""

        doc_id = require_document_id(doc_id)
        if field not in SEARCH_FIELDS:
            raise InvalidArgumentError(f"Unknown search field '{field}'")
        if top_k <= 0:
            return []
        where = _normalise_filter(filters)
        where["field"] = field
        name = collection_name(doc_id)
        fetch = top_k + TIE_MARGIN
        while True:
            hits = await self.index.query(name, vector, where, fetch)
            if len(hits) < fetch:
                break
            cutoff = sorted((hit.score for hit in hits), reverse=True)[top_k - 1]
            if min(hit.score for hit in hits) < cutoff:
                break
            # unseen records may still tie with the cut-off score
            fetch *= 2
        scored = [ScoredChunk(chunk=Chunk.from_metadata(hit.metadata), score=hit.score) for hit in hits]
        scored.sort(key=rank_key)
        return scored[:top_k]


__all__ = ["ChunkStore", "FILTER_FIELDS", "SUMMARY_FIELD", "TEXT_FIELD", "collection_name"]
