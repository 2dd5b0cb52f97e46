"""Mock embedding provider for tests and offline development."""
from __future__ import annotations

import hashlib
import random
from typing import List, Sequence

from .base import EmbeddingProvider


class MockEmbeddingProvider(EmbeddingProvider):
    """Return deterministic embedding vectors derived from each text."""

    def __init__(self, dimension: int = 8) -> None:
        if dimension <= 0:
            raise ValueError("dimension must be a positive integer")
        self._dimension = dimension
        self.calls = 0

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def model_name(self) -> str:
        return f"mock-embedding-{self._dimension}"

    async def encode(self, texts: Sequence[str]) -> List[List[float]]:
        vectors: List[List[float]] = []
        for text in texts:
            if not text:
                vectors.append([0.0] * self._dimension)
                continue
            self.calls += 1
            seed = hashlib.sha256(text.encode("utf-8")).hexdigest()
            rng = random.Random(seed)
            vectors.append([(rng.random() * 2.0) - 1.0 for _ in range(self._dimension)])
        return vectors
