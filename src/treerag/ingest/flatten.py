"""Flatten a summarized raw tree into chunk records."""
from __future__ import annotations

import logging
import uuid
from typing import Callable, List, Sequence

from treerag.chunks import Chunk, ChunkKind
from treerag.errors import require_document_id

from .models import RawNode

LOGGER = logging.getLogger(__name__)


def _new_key() -> str:
    return uuid.uuid4().hex


def to_chunks(
    roots: Sequence[RawNode],
    doc_id: str,
    *,
    key_factory: Callable[[], str] = _new_key,
) -> List[Chunk]:
    """Return one chunk per node plus one per non-blank content unit of each leaf.

    Levels are assigned by depth and sibling indexes by position, so the
    stored tree is consistent even if an extractor reported odd levels.
    """

    doc_id = require_document_id(doc_id)
    chunks: List[Chunk] = []
    for index, root in enumerate(roots):
        _append_node(root, doc_id, "", 0, index, chunks, key_factory)
    return chunks


def _append_node(
    node: RawNode,
    doc_id: str,
    parent_key: str,
    level: int,
    index: int,
    chunks: List[Chunk],
    key_factory: Callable[[], str],
) -> None:
    chunk = Chunk(
        key=key_factory(),
        document_id=doc_id,
        parent_key=parent_key,
        level=level,
        index=index,
        title=node.title,
        summary=node.summary,
        has_child_node=node.has_children,
        kind=ChunkKind.STRUCTURAL,
    )
    chunks.append(chunk)

    if node.has_children:
        for child_index, child in enumerate(node.children):
            _append_node(child, doc_id, chunk.key, level + 1, child_index, chunks, key_factory)
        return

    unit_index = 0
    for position, unit in enumerate(node.content_units):
        if unit.is_blank:
            LOGGER.warning(
                "Skipping empty content unit %s under section %r", position, node.title
            )
            continue
        chunks.append(
            Chunk(
                key=key_factory(),
                document_id=doc_id,
                parent_key=chunk.key,
                level=level + 1,
                index=unit_index,
                text=unit.text,
                kind=ChunkKind.CONTENT_UNIT,
            )
        )
        unit_index += 1


__all__ = ["to_chunks"]
