"""Base provider interfaces for embeddings and language models."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Sequence

__all__ = ["EmbeddingProvider", "LLMProvider"]


class EmbeddingProvider(ABC):
    """Abstract interface for embedding providers.

    Implementations must map empty strings to a zero vector without
    sending them to the underlying model.
    """

    @property
    @abstractmethod
    def dimension(self) -> int:
        """Length of the produced vectors."""

    @property
    def model_name(self) -> str:
        return type(self).__name__

    @abstractmethod
    async def encode(self, texts: Sequence[str]) -> List[List[float]]:
        """Encode the provided texts into embeddings."""


class LLMProvider(ABC):
    """Abstract interface for large language model providers."""

    @property
    def model_name(self) -> str:
        return type(self).__name__

    @abstractmethod
    async def generate(self, prompt: str, max_tokens: int = 256) -> str:
        """Generate text from the given prompt."""
