from __future__ import annotations

import logging

import pytest

from conftest import section
from treerag.chunks import Chunk, ChunkKind, flatten_nodes
from treerag.errors import InvalidArgumentError
from treerag.tree import TreeReconstructor
from treerag.vectorstore import ChunkStore


def _manual():
    return [
        section(
            "1 Introduction",
            section("1.1 Background", content=["history of the project", "founded long ago"], summary="history"),
            section("1.2 Scope", content=["what is covered"], summary="scope"),
            summary="introduction",
        ),
        section(
            "2 Scope Notes",
            section("2.1 Limits", content=["limits apply"], summary="limits"),
            summary="notes",
        ),
    ]


@pytest.mark.anyio
async def test_doc_tree_round_trips_keys_and_order(store: ChunkStore, index_tree) -> None:
    chunks = await index_tree("manual", _manual())

    tree = await TreeReconstructor(store).get_doc_tree("manual")

    assert [chunk.key for chunk in flatten_nodes(tree)] == [chunk.key for chunk in chunks]


@pytest.mark.anyio
async def test_structure_leaves_out_content_units(store: ChunkStore, index_tree) -> None:
    await index_tree("manual", _manual())

    structure = await TreeReconstructor(store).get_structure("manual")

    titles = [chunk.title for chunk in flatten_nodes(structure)]
    assert titles == ["1 Introduction", "1.1 Background", "1.2 Scope", "2 Scope Notes", "2.1 Limits"]
    assert all(chunk.kind is ChunkKind.STRUCTURAL for chunk in flatten_nodes(structure))


@pytest.mark.anyio
async def test_get_section_returns_detached_subtree(store: ChunkStore, index_tree) -> None:
    await index_tree("manual", _manual())

    node = await TreeReconstructor(store).get_section("manual", "Background")

    assert node is not None
    assert node.chunk.title == "1.1 Background"
    assert node.parent is None
    assert [child.chunk.text for child in node.children] == ["history of the project", "founded long ago"]


@pytest.mark.anyio
async def test_get_section_prefers_document_order(store: ChunkStore, index_tree) -> None:
    await index_tree("manual", _manual())
    reconstructor = TreeReconstructor(store)

    scope = await reconstructor.get_section("manual", "Scope")
    notes = await reconstructor.get_section("manual", "Notes")

    assert scope is not None and scope.chunk.title == "1.2 Scope"
    assert notes is not None
    assert [child.chunk.title for child in notes.children] == ["2.1 Limits"]
    assert notes.children[0].children[0].chunk.text == "limits apply"


@pytest.mark.anyio
async def test_get_section_is_case_sensitive_and_may_miss(store: ChunkStore, index_tree) -> None:
    await index_tree("manual", _manual())
    reconstructor = TreeReconstructor(store)

    assert await reconstructor.get_section("manual", "background") is None
    assert await reconstructor.get_section("manual", "Glossary") is None
    with pytest.raises(InvalidArgumentError):
        await reconstructor.get_section("manual", " ")


@pytest.mark.anyio
async def test_reconstruct_builds_minimal_tree(store: ChunkStore, index_tree) -> None:
    chunks = await index_tree("manual", _manual())
    limits_unit = next(chunk for chunk in chunks if chunk.text == "limits apply")
    background_unit = next(chunk for chunk in chunks if chunk.text == "founded long ago")

    roots = await TreeReconstructor(store).reconstruct("manual", [limits_unit, background_unit])

    assert [root.chunk.title for root in roots] == ["1 Introduction", "2 Scope Notes"]
    intro = roots[0]
    assert [child.chunk.title for child in intro.children] == ["1.1 Background"]
    assert [unit.chunk.text for unit in intro.children[0].children] == ["founded long ago"]


@pytest.mark.anyio
async def test_reconstruct_attaches_children_of_section_hits(store: ChunkStore, index_tree) -> None:
    chunks = await index_tree("manual", _manual())
    intro = next(chunk for chunk in chunks if chunk.title == "1 Introduction")
    scope_unit = next(chunk for chunk in chunks if chunk.text == "what is covered")

    roots = await TreeReconstructor(store).reconstruct("manual", [scope_unit, intro])

    assert len(roots) == 1
    assert [child.chunk.title for child in roots[0].children] == ["1.1 Background", "1.2 Scope"]
    scope = roots[0].children[1]
    assert [unit.chunk.text for unit in scope.children] == ["what is covered"]


@pytest.mark.anyio
async def test_reconstruct_keeps_orphans_as_roots(
    store: ChunkStore, caplog: pytest.LogCaptureFixture
) -> None:
    orphan = Chunk(
        key="orphan",
        document_id="broken",
        parent_key="ghost",
        level=1,
        text="lost text",
        kind=ChunkKind.CONTENT_UNIT,
    )
    await store.add_document("broken", [orphan])

    with caplog.at_level(logging.WARNING, logger="treerag.tree"):
        roots = await TreeReconstructor(store).reconstruct("broken", [orphan])

    assert [root.key for root in roots] == ["orphan"]
    assert "missing parent" in caplog.text


@pytest.mark.anyio
async def test_unknown_document_has_empty_views(store: ChunkStore) -> None:
    reconstructor = TreeReconstructor(store)

    assert await reconstructor.get_structure("nothing") == []
    assert await reconstructor.get_doc_tree("nothing") == []
    assert await reconstructor.get_section("nothing", "Intro") is None
