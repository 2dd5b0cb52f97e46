"""Raw document tree produced by the extractors and annotated by summarization."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator, List


@dataclass(slots=True)
class ContentUnit:
    """Atomic extracted content: a page, a paragraph or a block."""

    text: str
    images: List[bytes] = field(default_factory=list)

    @property
    def is_blank(self) -> bool:
        return not self.text.strip() and not self.images


@dataclass(slots=True)
class RawNode:
    """A section of an extracted document before it is flattened into chunks."""

    title: str
    level: int = 0
    content_units: List[ContentUnit] = field(default_factory=list)
    children: List["RawNode"] = field(default_factory=list)
    summary: str = ""

    @property
    def has_children(self) -> bool:
        return bool(self.children)

    def add_child(self, child: "RawNode") -> "RawNode":
        child.level = self.level + 1
        self.children.append(child)
        return child

    def walk(self) -> Iterator["RawNode"]:
        yield self
        for child in self.children:
            yield from child.walk()

    def count_recursive(self) -> int:
        return sum(1 for _ in self.walk())

    def summary_raw(self) -> str:
        """Text handed to the summarizer for this node.

        A section with children is described by its own title and each
        child's title and summary, so children must be summarized first.
        """
        if self.children:
            parts = [f"{self.title}\nSubsections:"]
            for child in self.children:
                parts.append(f"- {child.title}\n{child.summary}\n")
            return "\n".join(parts)
        return "\n".join(unit.text for unit in self.content_units if unit.text.strip())

    def hoist_preamble(self) -> None:
        """Move content sitting next to child sections into a leading child."""

        for child in self.children:
            child.hoist_preamble()
        if self.children and any(not unit.is_blank for unit in self.content_units):
            preamble = RawNode(
                title=self.title,
                level=self.level + 1,
                content_units=[unit for unit in self.content_units if not unit.is_blank],
            )
            self.children.insert(0, preamble)
        if self.children:
            self.content_units = []


def count_nodes(roots: List[RawNode]) -> int:
    return sum(root.count_recursive() for root in roots)


__all__ = ["ContentUnit", "RawNode", "count_nodes"]
