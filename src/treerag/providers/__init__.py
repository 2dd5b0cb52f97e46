"""Provider interfaces and deterministic mocks."""
from __future__ import annotations

from .base import EmbeddingProvider, LLMProvider
from .mock_embedding import MockEmbeddingProvider
from .mock_llm import MockLLMProvider

__all__ = ["EmbeddingProvider", "LLMProvider", "MockEmbeddingProvider", "MockLLMProvider"]
