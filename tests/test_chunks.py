from __future__ import annotations

from treerag.chunks import (
    Chunk,
    ChunkKind,
    ChunkNode,
    ScoredChunk,
    flatten_nodes,
    order_nodes,
    rank_key,
    render_structure,
    render_view,
)


def _chunk(key: str, *, parent: str = "", level: int = 0, index: int = 0, **extra) -> Chunk:
    return Chunk(key=key, document_id="doc", parent_key=parent, level=level, index=index, **extra)


def test_metadata_round_trip_keeps_every_field() -> None:
    chunk = _chunk(
        "k1",
        parent="p",
        level=2,
        index=3,
        title="Scope",
        summary="short",
        has_child_node=True,
    )

    restored = Chunk.from_metadata(chunk.to_metadata())

    assert restored == chunk
    assert chunk.to_metadata()["kind"] == "structural"


def test_from_metadata_tolerates_missing_optional_fields() -> None:
    restored = Chunk.from_metadata({"key": "k", "kind": "content_unit", "parent_key": None})

    assert restored.parent_key == ""
    assert restored.is_root
    assert restored.is_content_unit
    assert restored.summary == ""


def test_rank_key_orders_by_score_then_index() -> None:
    hits = [
        ScoredChunk(_chunk("b", index=2), 0.5),
        ScoredChunk(_chunk("a", index=1), 0.5),
        ScoredChunk(_chunk("c", index=0), 0.9),
    ]

    assert [hit.key for hit in sorted(hits, key=rank_key)] == ["c", "a", "b"]


def test_add_child_ignores_duplicates_and_sets_parent() -> None:
    parent = ChunkNode(_chunk("p"))
    child = ChunkNode(_chunk("c", parent="p", level=1))

    parent.add_child(child)
    parent.add_child(ChunkNode(_chunk("c", parent="p", level=1)))

    assert parent.children == [child]
    assert child.parent is parent
    assert child.root is parent
    assert parent.find("c") is child
    assert parent.find("missing") is None


def test_order_nodes_sorts_every_level_by_index() -> None:
    first = ChunkNode(_chunk("r0", index=0))
    second = ChunkNode(_chunk("r1", index=1))
    for index in (2, 0, 1):
        second.add_child(ChunkNode(_chunk(f"c{index}", parent="r1", level=1, index=index)))

    ordered = order_nodes([second, first])

    assert [node.key for node in ordered] == ["r0", "r1"]
    assert [node.key for node in ordered[1].children] == ["c0", "c1", "c2"]
    assert [chunk.key for chunk in flatten_nodes(ordered)] == ["r0", "r1", "c0", "c1", "c2"]


def test_render_structure_lists_titles_and_summaries_only() -> None:
    root = ChunkNode(_chunk("r", title="Report", summary="Overall\nfindings"))
    section = ChunkNode(_chunk("s", parent="r", level=1, title="Intro", summary="Opening"))
    unit = ChunkNode(_chunk("u", parent="s", level=2, text="raw text", kind=ChunkKind.CONTENT_UNIT))
    root.add_child(section)
    section.add_child(unit)

    outline = render_structure([root])

    assert outline.splitlines() == [
        "- Report",
        "  Summary: Overall findings",
        "  - Intro",
        "    Summary: Opening",
    ]
    assert "raw text" not in outline


def test_render_view_interleaves_titles_and_content() -> None:
    root = ChunkNode(_chunk("r", title="Report", summary="hidden"))
    root.add_child(ChunkNode(_chunk("u", parent="r", level=1, text="line one\nline two", kind=ChunkKind.CONTENT_UNIT)))

    assert render_view([root]).splitlines() == ["- Report", "  line one", "  line two"]
