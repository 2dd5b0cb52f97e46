"""Document service wiring the indexing pipeline, search and tree views together."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Dict, List, Optional

from treerag.chunks import ChunkNode, ScoredChunk
from treerag.config import Settings, get_settings
from treerag.errors import DocumentNotFoundError, require_document_id
from treerag.ingest.cache import InMemorySummaryCache, SummaryCache
from treerag.ingest.pipeline import IndexPipeline, IndexResult
from treerag.ingest.summary import SummaryPipeline
from treerag.llm_provider import get_llm
from treerag.providers.base import LLMProvider
from treerag.search import SearchAlgorithm, SearchBreadth, SearchEngine
from treerag.tree import TreeReconstructor
from treerag.vectorstore import ChunkStore, get_chunk_store

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class SearchOutcome:
    doc_id: str
    algorithm: SearchAlgorithm
    hits: List[ScoredChunk]
    nodes: List[ChunkNode]


class DocumentService:
    """Facade used by the API: one instance per process."""

    def __init__(
        self,
        store: ChunkStore,
        pipeline: IndexPipeline,
        engine: SearchEngine,
        reconstructor: TreeReconstructor,
    ) -> None:
        self.store = store
        self.pipeline = pipeline
        self.engine = engine
        self.reconstructor = reconstructor
        self._cancel_events: Dict[str, asyncio.Event] = {}

    @classmethod
    def build(
        cls,
        store: ChunkStore,
        llm: LLMProvider,
        settings: Settings,
        *,
        cache: InMemorySummaryCache | None = None,
    ) -> "DocumentService":
        if cache is None:
            cache = SummaryCache(settings.summary_cache_path) if settings.summary_cache_path else InMemorySummaryCache()
        summarizer = SummaryPipeline.from_settings(llm, cache, settings)
        reconstructor = TreeReconstructor(store)
        engine = SearchEngine(
            store,
            reconstructor=reconstructor,
            breadth=SearchBreadth.from_settings(settings),
        )
        return cls(store, IndexPipeline(store, summarizer), engine, reconstructor)

    async def index(
        self, doc_id: str, data: bytes, file_name: str, *, language: Optional[str] = None
    ) -> IndexResult:
        doc_id = require_document_id(doc_id)
        cancel_event = asyncio.Event()
        self._cancel_events[doc_id] = cancel_event
        try:
            return await self.pipeline.index_bytes(
                doc_id, data, file_name, language=language, cancel_event=cancel_event
            )
        finally:
            if self._cancel_events.get(doc_id) is cancel_event:
                del self._cancel_events[doc_id]

    def cancel_indexing(self, doc_id: str) -> bool:
        """Signal a running indexing job for ``doc_id``; ``False`` when none is running."""

        event = self._cancel_events.get(require_document_id(doc_id))
        if event is None:
            return False
        event.set()
        return True

    async def remove(self, doc_id: str) -> None:
        await self.pipeline.remove(doc_id)

    async def _require_document(self, doc_id: str) -> str:
        doc_id = require_document_id(doc_id)
        if not await self.store.has_document(doc_id):
            raise DocumentNotFoundError(doc_id)
        return doc_id

    async def search(
        self,
        doc_id: str,
        query: str,
        *,
        algorithm: SearchAlgorithm | str = SearchAlgorithm.DEFAULT,
        top_k: int = 5,
        level: int = 2,
    ) -> SearchOutcome:
        doc_id = await self._require_document(doc_id)
        algorithm = SearchAlgorithm.parse(algorithm)
        hits = await self.engine.find(query, doc_id, algorithm, top_k=top_k, level=level)
        nodes = await self.reconstructor.reconstruct(doc_id, [hit.chunk for hit in hits])
        return SearchOutcome(doc_id=doc_id, algorithm=algorithm, hits=hits, nodes=nodes)

    async def structure(self, doc_id: str) -> List[ChunkNode]:
        return await self.reconstructor.get_structure(await self._require_document(doc_id))

    async def tree(self, doc_id: str) -> List[ChunkNode]:
        return await self.reconstructor.get_doc_tree(await self._require_document(doc_id))

    async def section(self, doc_id: str, title: str) -> Optional[ChunkNode]:
        return await self.reconstructor.get_section(await self._require_document(doc_id), title)


@lru_cache()
def get_document_service() -> DocumentService:
    """FastAPI dependency returning the shared :class:`DocumentService` instance."""

    return DocumentService.build(get_chunk_store(), get_llm(), get_settings())


def reset_document_service_cache() -> None:
    get_document_service.cache_clear()  # type: ignore[attr-defined]


__all__ = [
    "DocumentNotFoundError",
    "DocumentService",
    "SearchOutcome",
    "get_document_service",
    "reset_document_service_cache",
]
