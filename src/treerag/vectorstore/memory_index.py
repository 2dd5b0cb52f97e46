"""Simple in-memory vector index for tests and ephemeral runs."""
from __future__ import annotations

import logging
import math
from typing import Any, Dict, List, Optional, Sequence

from .base import IndexHit, IndexRecord, VectorIndex, Where

LOGGER = logging.getLogger(__name__)


def cosine_similarity(left: Sequence[float], right: Sequence[float]) -> float:
    if len(left) != len(right):
        raise ValueError("Vectors must have the same dimension")
    dot = sum(a * b for a, b in zip(left, right))
    left_norm = math.sqrt(sum(a * a for a in left))
    right_norm = math.sqrt(sum(b * b for b in right))
    if left_norm == 0.0 or right_norm == 0.0:
        return 0.0
    return dot / (left_norm * right_norm)


def _matches(metadata: Dict[str, Any], where: Where) -> bool:
    return all(metadata.get(key) == value for key, value in where.items())


class InMemoryIndex(VectorIndex):
    """A minimal in-memory vector index implementation."""

    name = "memory"

    def __init__(self) -> None:
        self._collections: Dict[str, Dict[str, IndexRecord]] = {}

    async def ensure_collection(self, collection: str, *, metadata: Optional[Dict[str, Any]] = None) -> None:
        self._collections.setdefault(collection, {})

    async def has_collection(self, collection: str) -> bool:
        return collection in self._collections

    async def delete_collection(self, collection: str) -> None:
        self._collections.pop(collection, None)

    async def upsert(self, collection: str, records: Sequence[IndexRecord]) -> None:
        if collection not in self._collections:
            raise KeyError(f"Collection '{collection}' does not exist")
        items = self._collections[collection]
        for record in records:
            items[record.id] = IndexRecord(
                id=record.id,
                vector=[float(value) for value in record.vector],
                document=record.document,
                metadata=dict(record.metadata),
            )

    async def get(self, collection: str, where: Where, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        items = self._collections.get(collection)
        if not items:
            return []
        matched = [dict(item.metadata) for item in items.values() if _matches(item.metadata, where)]
        return matched if limit is None else matched[:limit]

    async def query(
        self, collection: str, vector: Sequence[float], where: Where, top_k: int
    ) -> List[IndexHit]:
        items = self._collections.get(collection)
        if top_k <= 0 or not items:
            return []
        scored = [
            IndexHit(id=item.id, metadata=dict(item.metadata), score=cosine_similarity(vector, item.vector))
            for item in items.values()
            if _matches(item.metadata, where)
        ]
        scored.sort(key=lambda hit: (-hit.score, int(hit.metadata.get("index", 0))))
        return scored[:top_k]
