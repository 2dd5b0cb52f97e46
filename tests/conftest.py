"""Shared fixtures: keyword embeddings, a counting summarizer and an in-memory store."""
from __future__ import annotations

import asyncio
import hashlib
import re
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

import pytest

from treerag.config import reset_settings_cache
from treerag.embeddings import reset_embedding_model_cache
from treerag.ingest.flatten import to_chunks
from treerag.ingest.models import ContentUnit, RawNode
from treerag.llm_provider import reset_llm_cache
from treerag.providers.base import EmbeddingProvider, LLMProvider
from treerag.services.documents import reset_document_service_cache
from treerag.vectorstore import ChunkStore, InMemoryIndex, reset_chunk_store_cache

CONCEPTS: Dict[str, set[str]] = {
    "fruit": {"fruit", "fruits", "apple", "apples", "orange", "oranges", "banana", "bananas", "orchard"},
    "market": {"market", "markets", "trends", "economy", "stocks", "prices", "trade"},
    "weather": {"weather", "rain", "storm", "storms", "climate", "forecast"},
    "history": {"history", "background", "origins", "past", "founded"},
}
_WORD = re.compile(r"[a-z]+")


class KeywordEmbedder(EmbeddingProvider):
    """Embeds text as counts of concept keywords, plus a small catch-all dimension."""

    def __init__(self) -> None:
        self.calls = 0
        self.texts: List[str] = []

    @property
    def dimension(self) -> int:
        return len(CONCEPTS) + 1

    async def encode(self, texts: Sequence[str]) -> List[List[float]]:
        vectors: List[List[float]] = []
        for text in texts:
            if not text:
                vectors.append([0.0] * self.dimension)
                continue
            self.calls += 1
            self.texts.append(text)
            words = _WORD.findall(text.lower())
            vector = [float(sum(word in vocabulary for word in words)) for vocabulary in CONCEPTS.values()]
            known = set().union(*CONCEPTS.values())
            vector.append(0.1 * sum(word not in known for word in words))
            vectors.append(vector)
        return vectors


class CountingLLM(LLMProvider):
    """Summarizer double recording calls and peak concurrency."""

    def __init__(
        self,
        *,
        delay: float = 0.0,
        fail_when: Optional[str] = None,
        transient_failures: int = 0,
        response: Optional[Callable[[str], str]] = None,
    ) -> None:
        self.delay = delay
        self.fail_when = fail_when
        self.transient_failures = transient_failures
        self.response = response
        self.calls = 0
        self.prompts: List[str] = []
        self.active = 0
        self.max_active = 0
        self.started = asyncio.Event()

    @property
    def model_name(self) -> str:
        return "counting-llm"

    async def generate(self, prompt: str, max_tokens: int = 256) -> str:
        self.calls += 1
        self.prompts.append(prompt)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        self.started.set()
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.fail_when is not None and self.fail_when in prompt:
                raise RuntimeError("summarizer exploded")
            if self.transient_failures > 0:
                self.transient_failures -= 1
                raise RuntimeError("temporary outage")
            if self.response is not None:
                return self.response(prompt)
            digest = hashlib.sha256(prompt.encode("utf-8")).hexdigest()[:10]
            return f"digest {digest}"
        finally:
            self.active -= 1


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    monkeypatch.setenv("TREERAG_VECTOR_BACKEND", "memory")
    monkeypatch.setenv("TREERAG_SUMMARY_CACHE", str(tmp_path / "summary_cache.json"))
    monkeypatch.setenv("TREERAG_AUDIT_LOG", str(tmp_path / "logs" / "audit.log"))
    monkeypatch.delenv("TREERAG_LLM_MODEL", raising=False)
    monkeypatch.delenv("TREERAG_LLM_PROVIDER", raising=False)
    monkeypatch.delenv("TREERAG_INSTALL_HEAVY", raising=False)
    monkeypatch.delenv("TREERAG_EMBEDDING_PROVIDER", raising=False)
    caches = (
        reset_settings_cache,
        reset_embedding_model_cache,
        reset_llm_cache,
        reset_chunk_store_cache,
        reset_document_service_cache,
    )
    for reset in caches:
        reset()
    yield
    for reset in caches:
        reset()


@pytest.fixture
def embedder() -> KeywordEmbedder:
    return KeywordEmbedder()


@pytest.fixture
def store(embedder: KeywordEmbedder) -> ChunkStore:
    return ChunkStore(InMemoryIndex(), embedder)


def section(
    title: str,
    *children: RawNode,
    summary: str = "",
    content: Sequence[str] = (),
) -> RawNode:
    """Build a raw section; children get their levels from the parent."""

    node = RawNode(title=title, summary=summary, content_units=[ContentUnit(text=text) for text in content])
    for child in children:
        node.add_child(child)
        _relevel(child)
    return node


def _relevel(node: RawNode) -> None:
    for child in node.children:
        child.level = node.level + 1
        _relevel(child)


@pytest.fixture
def index_tree(store: ChunkStore):
    """Flatten pre-summarized raw roots and store them; returns the chunks."""

    async def _index(doc_id: str, roots: Sequence[RawNode]):
        chunks = to_chunks(list(roots), doc_id)
        await store.add_document(doc_id, chunks)
        return chunks

    return _index
