"""Assemble stored chunks back into ordered node trees."""
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional

from treerag.chunks import Chunk, ChunkKind, ChunkNode, order_nodes
from treerag.errors import InvalidArgumentError
from treerag.vectorstore.chunk_store import ChunkStore

LOGGER = logging.getLogger(__name__)

_STRUCTURAL_ONLY = {"kind": ChunkKind.STRUCTURAL}


class TreeReconstructor:
    """Builds the minimal subtree containing a set of chunks, plus outline views.

    Every call uses its own key to node cache, so two chunks that share an
    ancestor hang off the same node instance.
    """

    def __init__(self, store: ChunkStore) -> None:
        self.store = store

    async def reconstruct(self, doc_id: str, chunks: Iterable[Chunk]) -> List[ChunkNode]:
        """Return the roots of the smallest tree containing every chunk.

        Sections among ``chunks`` also get their direct children attached.
        """
        cache: Dict[str, ChunkNode] = {}
        roots: Dict[str, ChunkNode] = {}
        hits = [cache.setdefault(chunk.key, ChunkNode(chunk)) for chunk in chunks]
        for node in hits:
            if not node.chunk.is_content_unit:
                await self._populate(doc_id, node, cache, recursive=False)
            await self._attach_to_root(doc_id, node, cache, roots)
        return order_nodes(roots.values())

    async def get_structure(self, doc_id: str) -> List[ChunkNode]:
        """Level-0 roots with their section descendants; content units left out."""

        cache: Dict[str, ChunkNode] = {}
        roots = [ChunkNode(chunk) for chunk in await self.store.get_by_filter(doc_id, {"level": 0})]
        for root in roots:
            cache[root.key] = root
            await self._populate(doc_id, root, cache, recursive=True, filters=_STRUCTURAL_ONLY)
        return order_nodes(roots)

    async def get_doc_tree(self, doc_id: str) -> List[ChunkNode]:
        """The whole document: sections and content units."""

        cache: Dict[str, ChunkNode] = {}
        roots = [ChunkNode(chunk) for chunk in await self.store.get_by_filter(doc_id, {"level": 0})]
        for root in roots:
            cache[root.key] = root
            await self._populate(doc_id, root, cache, recursive=True)
        return order_nodes(roots)

    async def get_section(self, doc_id: str, title: str) -> Optional[ChunkNode]:
        """First section in document order whose title contains ``title``.

        The returned node is detached from its ancestors and carries its full
        subtree, content included. ``None`` when nothing matches.
        """
        if not title or not title.strip():
            raise InvalidArgumentError("section title must not be empty")
        for root in await self.get_structure(doc_id):
            for node in root.walk():
                if title in node.chunk.title:
                    section = ChunkNode(node.chunk)
                    await self._populate(doc_id, section, {section.key: section}, recursive=True)
                    section.sort_children()
                    return section
        return None

    async def _populate(
        self,
        doc_id: str,
        node: ChunkNode,
        cache: Dict[str, ChunkNode],
        *,
        recursive: bool,
        filters: Optional[Mapping[str, Any]] = None,
    ) -> None:
        query: Dict[str, Any] = {"parent_key": node.key}
        query.update(filters or {})
        for child in await self.store.get_by_filter(doc_id, query):
            child_node = cache.get(child.key)
            if child_node is None:
                child_node = ChunkNode(child)
                cache[child.key] = child_node
            node.add_child(child_node)
            if recursive and not child.is_content_unit:
                await self._populate(doc_id, child_node, cache, recursive=True, filters=filters)
        node.children.sort(key=lambda item: item.chunk.index)

    async def _attach_to_root(
        self,
        doc_id: str,
        node: ChunkNode,
        cache: Dict[str, ChunkNode],
        roots: Dict[str, ChunkNode],
    ) -> None:
        current = node
        while current.parent is None:
            parent_key = current.chunk.parent_key
            if not parent_key:
                roots[current.key] = current
                return
            parent = cache.get(parent_key)
            if parent is not None:
                parent.add_child(current)
                return
            fetched = await self.store.get_by_key(doc_id, parent_key)
            if fetched is None:
                LOGGER.warning(
                    "Chunk %s references missing parent %s in %s", current.key, parent_key, doc_id
                )
                roots[current.key] = current
                return
            parent = ChunkNode(fetched)
            cache[parent_key] = parent
            parent.add_child(current)
            current = parent


__all__ = ["TreeReconstructor"]
