from __future__ import annotations

import itertools
import logging

import pytest

from conftest import section
from treerag.chunks import ChunkKind
from treerag.errors import InvalidArgumentError
from treerag.ingest.flatten import to_chunks
from treerag.ingest.models import ContentUnit, RawNode, count_nodes


def _keys():
    counter = itertools.count()
    return lambda: f"k{next(counter)}"


def test_summary_raw_uses_child_titles_and_summaries() -> None:
    parent = section(
        "Guide",
        section("Setup", summary="Install it."),
        section("Usage", summary="Run it."),
    )

    assert parent.summary_raw() == "Guide\nSubsections:\n- Setup\nInstall it.\n\n- Usage\nRun it.\n"


def test_summary_raw_of_leaf_joins_non_blank_units() -> None:
    leaf = section("Notes", content=["first", "  ", "second"])

    assert leaf.summary_raw() == "first\nsecond"


def test_hoist_preamble_moves_mixed_content_into_leading_child() -> None:
    root = section("Manual", section("Chapter"), content=["Intro paragraph"])

    root.hoist_preamble()

    assert [child.title for child in root.children] == ["Manual", "Chapter"]
    assert root.content_units == []
    assert root.children[0].content_units[0].text == "Intro paragraph"
    assert root.children[0].level == 1


def test_hoist_preamble_drops_blank_content_without_creating_child() -> None:
    root = section("Manual", section("Chapter"), content=["   "])

    root.hoist_preamble()

    assert [child.title for child in root.children] == ["Chapter"]
    assert root.content_units == []


def test_to_chunks_assigns_levels_indexes_and_parents() -> None:
    roots = [
        section("A", section("A.1", content=["alpha", "beta"]), section("A.2", content=["gamma"]), summary="sa"),
        section("B", content=["delta"]),
    ]

    chunks = to_chunks(roots, "doc", key_factory=_keys())
    by_title = {chunk.title: chunk for chunk in chunks if chunk.kind is ChunkKind.STRUCTURAL}

    assert len(chunks) == count_nodes(roots) + 4
    assert by_title["A"].level == 0 and by_title["A"].index == 0
    assert by_title["B"].level == 0 and by_title["B"].index == 1
    assert by_title["A"].has_child_node and not by_title["A.1"].has_child_node
    assert by_title["A.2"].parent_key == by_title["A"].key
    assert by_title["A.2"].index == 1
    assert by_title["A"].summary == "sa"

    units = [chunk for chunk in chunks if chunk.parent_key == by_title["A.1"].key]
    assert [unit.text for unit in units] == ["alpha", "beta"]
    assert [unit.index for unit in units] == [0, 1]
    assert all(unit.level == 2 and unit.kind is ChunkKind.CONTENT_UNIT for unit in units)
    assert all(not unit.has_child_node for unit in units)
    assert {chunk.document_id for chunk in chunks} == {"doc"}


def test_to_chunks_skips_blank_units_with_warning(caplog: pytest.LogCaptureFixture) -> None:
    root = RawNode(title="Only", content_units=[ContentUnit(" "), ContentUnit("kept")])

    with caplog.at_level(logging.WARNING, logger="treerag.ingest.flatten"):
        chunks = to_chunks([root], "doc", key_factory=_keys())

    units = [chunk for chunk in chunks if chunk.is_content_unit]
    assert [(unit.text, unit.index) for unit in units] == [("kept", 0)]
    assert "Skipping empty content unit" in caplog.text


def test_to_chunks_keeps_image_only_units() -> None:
    root = RawNode(
        title="Figures",
        content_units=[ContentUnit("", images=[b"\x89PNG"]), ContentUnit("caption text")],
    )

    chunks = to_chunks([root], "doc", key_factory=_keys())

    units = [chunk for chunk in chunks if chunk.is_content_unit]
    assert [(unit.text, unit.index) for unit in units] == [("", 0), ("caption text", 1)]


def test_to_chunks_ignores_content_of_sections_with_children() -> None:
    root = section("Mixed", section("Child", content=["child text"]), content=["parent text"])

    chunks = to_chunks([root], "doc", key_factory=_keys())

    assert [chunk.text for chunk in chunks if chunk.is_content_unit] == ["child text"]


def test_to_chunks_generates_unique_keys_by_default() -> None:
    roots = [section(f"S{number}", content=["x", "y"]) for number in range(5)]

    chunks = to_chunks(roots, "doc")

    assert len({chunk.key for chunk in chunks}) == len(chunks)


def test_to_chunks_requires_document_id() -> None:
    with pytest.raises(InvalidArgumentError):
        to_chunks([section("A")], "  ")
