"""Backend interface for the per-document vector collections."""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

Where = Dict[str, Any]


@dataclass(slots=True)
class IndexRecord:
    """One vector plus the metadata stored alongside it."""

    id: str
    vector: List[float]
    document: str
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class IndexHit:
    id: str
    metadata: Dict[str, Any]
    score: float


class VectorIndex(ABC):
    """Collections of vectors with equality-filtered get and cosine search.

    ``where`` is a flat mapping of metadata field to the exact value it must
    equal; every entry must match.
    """

    name = "abstract"

    @abstractmethod
    async def ensure_collection(self, collection: str, *, metadata: Optional[Dict[str, Any]] = None) -> None:
        """Create ``collection`` when it does not exist yet."""

    @abstractmethod
    async def has_collection(self, collection: str) -> bool:
        """Return whether ``collection`` exists."""

    @abstractmethod
    async def delete_collection(self, collection: str) -> None:
        """Drop ``collection``; a missing collection is not an error."""

    @abstractmethod
    async def upsert(self, collection: str, records: Sequence[IndexRecord]) -> None:
        """Insert or replace records by id."""

    @abstractmethod
    async def get(self, collection: str, where: Where, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Return the metadata of matching records, in no particular order."""

    @abstractmethod
    async def query(
        self, collection: str, vector: Sequence[float], where: Where, top_k: int
    ) -> List[IndexHit]:
        """Return up to ``top_k`` matching records, most similar first."""
