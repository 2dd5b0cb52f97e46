"""High level indexing pipeline: extract, summarize, flatten, store."""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Sequence

from treerag.errors import require_document_id
from treerag.telemetry import emit_ingest_event, traced_duration
from treerag.vectorstore.chunk_store import ChunkStore

from .extractors import DocumentExtractor, get_extractor
from .flatten import to_chunks
from .models import RawNode
from .summary import SummaryPipeline

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class IndexResult:
    doc_id: str
    chunk_count: int
    section_count: int
    llm_calls: int = 0
    cache_hits: int = 0
    cancelled: bool = False
    duration_seconds: float = 0.0


class IndexPipeline:
    """Pipeline turning one document into a stored, summarized chunk tree.

    The document's previous collection is dropped first. If storing fails
    part way, the collection is removed again so no half-indexed document
    remains.
    """

    def __init__(
        self,
        store: ChunkStore,
        summarizer: SummaryPipeline,
        *,
        extractor_factory: Callable[[str], DocumentExtractor] = get_extractor,
    ) -> None:
        self.store = store
        self.summarizer = summarizer
        self._extractor_factory = extractor_factory

    async def index_bytes(
        self,
        doc_id: str,
        data: bytes,
        file_name: str,
        *,
        language: str | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> IndexResult:
        doc_id = require_document_id(doc_id)
        extractor = self._extractor_factory(file_name)
        with traced_duration("ingest.extract", logger=LOGGER, doc_id=doc_id, source=file_name):
            roots = await asyncio.to_thread(extractor.extract, data, name=file_name)
        LOGGER.info("Extracted %s top-level sections from %s", len(roots), file_name)
        return await self.index_tree(
            doc_id, roots, language=language, cancel_event=cancel_event, source=file_name
        )

    async def index_file(
        self,
        doc_id: str,
        path: str | Path,
        *,
        language: str | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> IndexResult:
        path = Path(path)
        data = await asyncio.to_thread(path.read_bytes)
        return await self.index_bytes(
            doc_id, data, path.name, language=language, cancel_event=cancel_event
        )

    async def index_tree(
        self,
        doc_id: str,
        roots: Sequence[RawNode],
        *,
        language: str | None = None,
        cancel_event: asyncio.Event | None = None,
        source: str | None = None,
    ) -> IndexResult:
        doc_id = require_document_id(doc_id)
        started = time.perf_counter()
        roots = list(roots)
        for root in roots:
            root.hoist_preamble()

        summary = await self.summarizer.run(roots, language=language, cancel_event=cancel_event)
        if summary.cancelled:
            LOGGER.info("Indexing of %s cancelled during summarization", doc_id)
            emit_ingest_event("ingest.cancelled", doc_id=doc_id, source=source)
            return IndexResult(
                doc_id=doc_id,
                chunk_count=0,
                section_count=summary.processed,
                llm_calls=summary.llm_calls,
                cache_hits=summary.cache_hits,
                cancelled=True,
                duration_seconds=time.perf_counter() - started,
            )

        chunks = to_chunks(roots, doc_id)
        await self.store.remove_document(doc_id)
        try:
            await self.store.add_document(doc_id, chunks)
        except (Exception, asyncio.CancelledError) as error:
            LOGGER.warning("Storing %s failed; removing partial collection", doc_id)
            await asyncio.shield(self.store.remove_document(doc_id))
            emit_ingest_event("ingest.failed", doc_id=doc_id, source=source, error=error)
            raise

        duration = time.perf_counter() - started
        emit_ingest_event(
            "ingest.complete",
            doc_id=doc_id,
            source=source,
            chunks=len(chunks),
            duration_ms=duration * 1000.0,
        )
        return IndexResult(
            doc_id=doc_id,
            chunk_count=len(chunks),
            section_count=summary.total,
            llm_calls=summary.llm_calls,
            cache_hits=summary.cache_hits,
            duration_seconds=duration,
        )

    async def remove(self, doc_id: str) -> None:
        await self.store.remove_document(doc_id)
        emit_ingest_event("ingest.removed", doc_id=require_document_id(doc_id))


__all__ = ["IndexPipeline", "IndexResult"]
