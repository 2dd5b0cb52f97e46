"""Retrieval algorithms over the chunk store."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from treerag.chunks import ChunkKind, ChunkNode, ScoredChunk, rank_key
from treerag.config import Settings
from treerag.errors import InvalidArgumentError, require_document_id
from treerag.telemetry import emit_search_event
from treerag.tree import TreeReconstructor
from treerag.vectorstore.chunk_store import SUMMARY_FIELD, TEXT_FIELD, ChunkStore

LOGGER = logging.getLogger(__name__)

_CONTENT_UNITS = {"kind": ChunkKind.CONTENT_UNIT}


class SearchAlgorithm(str, Enum):
    DEFAULT = "default"
    TOP_DOWN = "top_down"
    RECURSIVE = "recursive"

    @classmethod
    def parse(cls, value: "SearchAlgorithm | str") -> "SearchAlgorithm":
        if isinstance(value, cls):
            return value
        normalised = str(value).strip().lower().replace("-", "_")
        try:
            return cls(normalised)
        except ValueError as error:
            raise InvalidArgumentError(
                f"Unknown search algorithm '{value}'",
                details={"allowed": [item.value for item in cls]},
            ) from error


@dataclass(slots=True)
class SearchBreadth:
    """How many candidates each step keeps before descending or expanding."""

    root: int = 5
    child: int = 10
    recursive: int = 5

    @classmethod
    def from_settings(cls, settings: Settings) -> "SearchBreadth":
        return cls(
            root=settings.topdown_root_breadth,
            child=settings.topdown_child_breadth,
            recursive=settings.recursive_breadth,
        )


@dataclass(slots=True)
class _Trace:
    queries: int = 0
    seen: Dict[str, ScoredChunk] = field(default_factory=dict)


class SearchEngine:
    """Runs one of the search algorithms, then rebuilds the hits into a tree."""

    def __init__(
        self,
        store: ChunkStore,
        *,
        reconstructor: Optional[TreeReconstructor] = None,
        breadth: Optional[SearchBreadth] = None,
    ) -> None:
        self.store = store
        self.reconstructor = reconstructor or TreeReconstructor(store)
        self.breadth = breadth or SearchBreadth()

    async def search(
        self,
        query: str,
        doc_id: str,
        algorithm: SearchAlgorithm | str = SearchAlgorithm.DEFAULT,
        *,
        top_k: int = 5,
        level: int = 2,
    ) -> List[ChunkNode]:
        hits = await self.find(query, doc_id, algorithm, top_k=top_k, level=level)
        return await self.reconstructor.reconstruct(doc_id, [hit.chunk for hit in hits])

    async def find(
        self,
        query: str,
        doc_id: str,
        algorithm: SearchAlgorithm | str = SearchAlgorithm.DEFAULT,
        *,
        top_k: int = 5,
        level: int = 2,
    ) -> List[ScoredChunk]:
        """Ranked, de-duplicated hits, at most ``top_k`` of them."""

        doc_id = require_document_id(doc_id)
        algorithm = SearchAlgorithm.parse(algorithm)
        if not query or not query.strip():
            raise InvalidArgumentError("query must not be empty")
        if top_k <= 0:
            return []

        started = time.perf_counter()
        trace = _Trace()
        if algorithm is SearchAlgorithm.TOP_DOWN:
            hits = await self._top_down(query, doc_id, top_k, trace)
        elif algorithm is SearchAlgorithm.RECURSIVE:
            hits = await self._recursive(query, doc_id, top_k, max(0, level), trace)
        else:
            hits = await self._default(query, doc_id, top_k, trace)

        emit_search_event(
            doc_id=doc_id,
            algorithm=algorithm.value,
            top_k=top_k,
            hits=len(hits),
            queries=trace.queries,
            duration_ms=(time.perf_counter() - started) * 1000.0,
        )
        return hits

    async def _query(
        self,
        doc_id: str,
        vector: List[float],
        trace: _Trace,
        *,
        field: str,
        filters: Dict[str, object],
        top_k: int,
    ) -> List[ScoredChunk]:
        trace.queries += 1
        return await self.store.search_by_vector(
            doc_id, vector, field=field, filters=filters, top_k=top_k
        )

    async def _default(self, query: str, doc_id: str, top_k: int, trace: _Trace) -> List[ScoredChunk]:
        vector = await self.store.embed_query(query)
        return await self._query(
            doc_id, vector, trace, field=TEXT_FIELD, filters=_CONTENT_UNITS, top_k=top_k
        )

    async def _top_down(self, query: str, doc_id: str, top_k: int, trace: _Trace) -> List[ScoredChunk]:
        vector = await self.store.embed_query(query)
        roots = await self._query(
            doc_id,
            vector,
            trace,
            field=SUMMARY_FIELD,
            filters={"level": 0},
            top_k=self.breadth.root,
        )
        leaves: Dict[str, ScoredChunk] = {}
        for hit in roots:
            await self._descend(doc_id, vector, hit, leaves, trace)
        ranked = sorted(leaves.values(), key=rank_key)
        return ranked[:top_k]

    async def _descend(
        self,
        doc_id: str,
        vector: List[float],
        hit: ScoredChunk,
        leaves: Dict[str, ScoredChunk],
        trace: _Trace,
    ) -> None:
        children: List[ScoredChunk] = []
        if hit.chunk.has_child_node:
            children = await self._query(
                doc_id,
                vector,
                trace,
                field=SUMMARY_FIELD,
                filters={"parent_key": hit.key},
                top_k=self.breadth.child,
            )
        if not children:
            best = leaves.get(hit.key)
            if best is None or hit.score > best.score:
                leaves[hit.key] = hit
            return
        for child in children:
            await self._descend(doc_id, vector, child, leaves, trace)

    async def _recursive(
        self, query: str, doc_id: str, top_k: int, rounds: int, trace: _Trace
    ) -> List[ScoredChunk]:
        breadth = self.breadth.recursive
        vector = await self.store.embed_query(query)
        initial = await self._query(
            doc_id, vector, trace, field=TEXT_FIELD, filters=_CONTENT_UNITS, top_k=breadth
        )
        found: Dict[str, ScoredChunk] = {hit.key: hit for hit in initial}
        expanded: set[str] = set()
        frontier = list(initial)
        for _ in range(rounds):
            discovered: List[ScoredChunk] = []
            issued = 0
            for hit in frontier:
                if issued >= breadth:
                    break
                if hit.key in expanded:
                    continue
                expanded.add(hit.key)
                probe = hit.chunk.summary.strip() or hit.chunk.text.strip()
                if not probe:
                    continue
                probe_vector = await self.store.embed_query(probe)
                issued += 1
                for result in await self._query(
                    doc_id, probe_vector, trace, field=TEXT_FIELD, filters=_CONTENT_UNITS, top_k=breadth
                ):
                    if result.key not in found:
                        found[result.key] = result
                        discovered.append(result)
            if not discovered:
                break
            frontier = discovered
        return list(found.values())[:top_k]


__all__ = ["SearchAlgorithm", "SearchBreadth", "SearchEngine"]
