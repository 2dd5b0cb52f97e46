"""Persisted chunk records and the transient node tree built at query time."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, List, Optional


class ChunkKind(str, Enum):
    """Whether a chunk is a titled section or an atomic piece of text."""

    STRUCTURAL = "structural"
    CONTENT_UNIT = "content_unit"


@dataclass(slots=True)
class Chunk:
    """One persisted node of a document hierarchy."""

    key: str
    document_id: str
    parent_key: str = ""
    level: int = 0
    index: int = 0
    title: str = ""
    text: str = ""
    summary: str = ""
    has_child_node: bool = False
    kind: ChunkKind = ChunkKind.STRUCTURAL

    @property
    def is_root(self) -> bool:
        return not self.parent_key

    @property
    def is_content_unit(self) -> bool:
        return self.kind is ChunkKind.CONTENT_UNIT

    def to_metadata(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "document_id": self.document_id,
            "parent_key": self.parent_key,
            "level": int(self.level),
            "index": int(self.index),
            "title": self.title,
            "text": self.text,
            "summary": self.summary,
            "has_child_node": bool(self.has_child_node),
            "kind": self.kind.value,
        }

    @classmethod
    def from_metadata(cls, metadata: Dict[str, Any]) -> "Chunk":
        return cls(
            key=str(metadata["key"]),
            document_id=str(metadata.get("document_id", "")),
            parent_key=str(metadata.get("parent_key") or ""),
            level=int(metadata.get("level", 0)),
            index=int(metadata.get("index", 0)),
            title=str(metadata.get("title") or ""),
            text=str(metadata.get("text") or ""),
            summary=str(metadata.get("summary") or ""),
            has_child_node=bool(metadata.get("has_child_node", False)),
            kind=ChunkKind(metadata.get("kind", ChunkKind.STRUCTURAL.value)),
        )


@dataclass(slots=True)
class ScoredChunk:
    """A chunk returned from a similarity search together with its score."""

    chunk: Chunk
    score: float

    @property
    def key(self) -> str:
        return self.chunk.key


def rank_key(hit: ScoredChunk) -> tuple[float, int]:
    """Sort key: score descending, then document order."""

    return (-hit.score, hit.chunk.index)


@dataclass(slots=True, eq=False)
class ChunkNode:
    """In-memory tree node wrapping a chunk; built per request, never persisted."""

    chunk: Chunk
    children: List["ChunkNode"] = field(default_factory=list)
    parent: Optional["ChunkNode"] = field(default=None, repr=False)

    @property
    def key(self) -> str:
        return self.chunk.key

    @property
    def root(self) -> "ChunkNode":
        node = self
        while node.parent is not None:
            node = node.parent
        return node

    def add_child(self, child: "ChunkNode") -> None:
        if any(existing.key == child.key for existing in self.children):
            return
        child.parent = self
        self.children.append(child)

    def sort_children(self) -> None:
        self.children.sort(key=lambda node: node.chunk.index)
        for child in self.children:
            child.sort_children()

    def walk(self) -> Iterator["ChunkNode"]:
        yield self
        for child in self.children:
            yield from child.walk()

    def find(self, key: str) -> Optional["ChunkNode"]:
        for node in self.walk():
            if node.key == key:
                return node
        return None


def order_nodes(nodes: Iterable[ChunkNode]) -> List[ChunkNode]:
    """Return ``nodes`` sorted by index with every subtree sorted as well."""

    ordered = sorted(nodes, key=lambda node: node.chunk.index)
    for node in ordered:
        node.sort_children()
    return ordered


def flatten_nodes(nodes: Iterable[ChunkNode]) -> List[Chunk]:
    """Depth-first list of the chunks contained in ``nodes``."""

    return [node.chunk for root in nodes for node in root.walk()]


def _render(nodes: Iterable[ChunkNode], depth: int, lines: List[str], *, with_content: bool) -> None:
    indent = "  " * depth
    for node in nodes:
        chunk = node.chunk
        if chunk.is_content_unit:
            if with_content and chunk.text.strip():
                for line in chunk.text.strip().splitlines():
                    lines.append(f"{indent}{line}")
            continue
        lines.append(f"{indent}- {chunk.title}")
        if not with_content and chunk.summary.strip():
            summary = " ".join(chunk.summary.split())
            lines.append(f"{indent}  Summary: {summary}")
        _render(node.children, depth + 1, lines, with_content=with_content)


def render_structure(nodes: Iterable[ChunkNode]) -> str:
    """Outline of section titles and their summaries; content units are skipped."""

    lines: List[str] = []
    _render(nodes, 0, lines, with_content=False)
    return "\n".join(lines)


def render_view(nodes: Iterable[ChunkNode]) -> str:
    """Section titles interleaved with the raw content they contain."""

    lines: List[str] = []
    _render(nodes, 0, lines, with_content=True)
    return "\n".join(lines)


__all__ = [
    "Chunk",
    "ChunkKind",
    "ChunkNode",
    "ScoredChunk",
    "flatten_nodes",
    "order_nodes",
    "rank_key",
    "render_structure",
    "render_view",
]
