"""Chroma vector index adapter."""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, TypeVar

import chromadb

from treerag.errors import ExternalServiceError

from .base import IndexHit, IndexRecord, VectorIndex, Where

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_DISTANCE_METRIC = "cosine"


def build_where(where: Where) -> Optional[Dict[str, Any]]:
    """Translate a flat equality mapping into a Chroma ``where`` clause."""

    clauses = [{key: {"$eq": value}} for key, value in where.items()]
    if not clauses:
        return None
    if len(clauses) == 1:
        return clauses[0]
    return {"$and": clauses}


class ChromaIndex(VectorIndex):
    """Adapter around a Chroma client; blocking calls run in worker threads."""

    name = "chroma"

    def __init__(
        self,
        persist_dir: str | Path | None = None,
        *,
        client: Any = None,
        distance_metric: str = DEFAULT_DISTANCE_METRIC,
    ) -> None:
        self.distance_metric = distance_metric
        try:
            if client is not None:
                self._client = client
            elif persist_dir:
                Path(persist_dir).mkdir(parents=True, exist_ok=True)
                self._client = chromadb.PersistentClient(path=str(persist_dir))
            else:
                self._client = chromadb.EphemeralClient()
        except Exception as exc:  # pragma: no cover - depends on chromadb runtime
            raise ExternalServiceError("Failed to initialise Chroma client", cause=exc) from exc
        self._collections: Dict[str, Any] = {}

    async def _call(self, action: str, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except ExternalServiceError:
            raise
        except Exception as exc:
            raise ExternalServiceError(f"Chroma {action} failed", cause=exc) from exc

    def _collection(self, name: str, metadata: Optional[Dict[str, Any]] = None) -> Any:
        collection = self._collections.get(name)
        if collection is None:
            payload = {"hnsw:space": self.distance_metric}
            payload.update(metadata or {})
            collection = self._client.get_or_create_collection(name=name, metadata=payload)
            self._collections[name] = collection
        return collection

    def _list_names(self) -> List[str]:
        # Depending on the chromadb release this yields names or collection objects.
        return [getattr(item, "name", item) for item in self._client.list_collections()]

    async def ensure_collection(self, collection: str, *, metadata: Optional[Dict[str, Any]] = None) -> None:
        await self._call("get_or_create_collection", self._collection, collection, metadata)

    async def has_collection(self, collection: str) -> bool:
        if collection in self._collections:
            return True
        names = await self._call("list_collections", self._list_names)
        return collection in names

    async def delete_collection(self, collection: str) -> None:
        self._collections.pop(collection, None)
        if not await self.has_collection(collection):
            return
        await self._call("delete_collection", self._client.delete_collection, name=collection)

    async def upsert(self, collection: str, records: Sequence[IndexRecord]) -> None:
        if not records:
            return

        def _upsert() -> None:
            self._collection(collection).upsert(
                ids=[record.id for record in records],
                embeddings=[list(map(float, record.vector)) for record in records],
                documents=[record.document for record in records],
                metadatas=[record.metadata for record in records],
            )

        await self._call("upsert", _upsert)

    async def get(self, collection: str, where: Where, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        if not await self.has_collection(collection):
            return []

        def _get() -> List[Dict[str, Any]]:
            result = self._collection(collection).get(
                where=build_where(where),
                limit=limit,
                include=["metadatas"],
            )
            return [dict(metadata or {}) for metadata in result.get("metadatas") or []]

        return await self._call("get", _get)

    async def query(
        self, collection: str, vector: Sequence[float], where: Where, top_k: int
    ) -> List[IndexHit]:
        if top_k <= 0 or not await self.has_collection(collection):
            return []

        def _query() -> List[IndexHit]:
            target = self._collection(collection)
            available = target.count()
            if available == 0:
                return []
            result = target.query(
                query_embeddings=[list(map(float, vector))],
                n_results=min(top_k, available),
                where=build_where(where),
                include=["metadatas", "distances"],
            )
            ids = (result.get("ids") or [[]])[0]
            metadatas = (result.get("metadatas") or [[]])[0]
            distances = (result.get("distances") or [[]])[0]
            hits = [
                IndexHit(
                    id=record_id,
                    metadata=dict(metadata or {}),
                    score=1.0 - float(distance if distance is not None else 1.0),
                )
                for record_id, metadata, distance in zip(ids, metadatas, distances)
            ]
            hits.sort(key=lambda hit: (-hit.score, int(hit.metadata.get("index", 0))))
            return hits

        return await self._call("query", _query)


__all__ = ["ChromaIndex", "build_where"]
