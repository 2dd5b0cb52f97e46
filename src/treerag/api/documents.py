"""API router exposing indexing, search and tree views of documents."""
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from pydantic import BaseModel, Field

from treerag.chunks import ChunkNode, render_structure, render_view
from treerag.errors import (
    DocumentNotFoundError,
    ExternalServiceError,
    InvalidArgumentError,
    NotInitializedError,
    TreeRagError,
)
from treerag.search import SearchAlgorithm
from treerag.services.documents import DocumentService, get_document_service

router = APIRouter(prefix="/documents", tags=["documents"])


class NodeModel(BaseModel):
    """One section or content unit with its ordered children."""

    key: str
    title: str
    level: int
    index: int
    kind: str
    text: str = ""
    summary: str = ""
    children: List["NodeModel"] = Field(default_factory=list)


NodeModel.model_rebuild()


class IndexResponse(BaseModel):
    doc_id: str
    chunks: int
    sections: int
    llm_calls: int
    cache_hits: int
    cancelled: bool
    duration_seconds: float


class SearchRequest(BaseModel):
    """Request body accepted by the search endpoint."""

    query: str = Field(..., min_length=1, description="Text to look for in the document.")
    algorithm: SearchAlgorithm = Field(SearchAlgorithm.DEFAULT, description="Retrieval strategy.")
    top_k: int = Field(5, ge=1, le=50, description="Maximum number of matches.")
    level: int = Field(2, ge=0, le=5, description="Expansion rounds for recursive search.")


class SearchHit(BaseModel):
    key: str
    score: float


class SearchResponse(BaseModel):
    doc_id: str
    algorithm: SearchAlgorithm
    hits: List[SearchHit]
    nodes: List[NodeModel]
    view: str


class TreeResponse(BaseModel):
    doc_id: str
    nodes: List[NodeModel]
    outline: str


class SectionResponse(BaseModel):
    doc_id: str
    node: NodeModel
    view: str


def serialise_node(node: ChunkNode) -> NodeModel:
    chunk = node.chunk
    return NodeModel(
        key=chunk.key,
        title=chunk.title,
        level=chunk.level,
        index=chunk.index,
        kind=chunk.kind.value,
        text=chunk.text,
        summary=chunk.summary,
        children=[serialise_node(child) for child in node.children],
    )


def _to_http_error(exc: TreeRagError) -> HTTPException:
    if isinstance(exc, DocumentNotFoundError):
        return HTTPException(status_code=404, detail=exc.to_dict())
    if isinstance(exc, InvalidArgumentError):
        return HTTPException(status_code=400, detail=exc.to_dict())
    return HTTPException(status_code=503, detail=exc.to_dict())


_HANDLED = (DocumentNotFoundError, InvalidArgumentError, ExternalServiceError, NotInitializedError)


@router.post("/{doc_id}", response_model=IndexResponse)
async def index_document(
    doc_id: str,
    file: UploadFile = File(...),
    language: Optional[str] = Query(None, description="Summary language, e.g. 'en' or 'zh'."),
    service: DocumentService = Depends(get_document_service),
) -> IndexResponse:
    """Index (or re-index) one uploaded document under ``doc_id``."""

    data = await file.read()
    if not data:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")
    try:
        result = await service.index(doc_id, data, file.filename or "upload", language=language)
    except _HANDLED as exc:
        raise _to_http_error(exc) from exc
    return IndexResponse(
        doc_id=result.doc_id,
        chunks=result.chunk_count,
        sections=result.section_count,
        llm_calls=result.llm_calls,
        cache_hits=result.cache_hits,
        cancelled=result.cancelled,
        duration_seconds=result.duration_seconds,
    )


@router.post("/{doc_id}/cancel")
async def cancel_indexing(
    doc_id: str,
    service: DocumentService = Depends(get_document_service),
) -> dict[str, bool]:
    try:
        return {"cancelled": service.cancel_indexing(doc_id)}
    except _HANDLED as exc:
        raise _to_http_error(exc) from exc


@router.delete("/{doc_id}", status_code=204)
async def remove_document(
    doc_id: str,
    service: DocumentService = Depends(get_document_service),
) -> None:
    try:
        await service.remove(doc_id)
    except _HANDLED as exc:
        raise _to_http_error(exc) from exc


@router.post("/{doc_id}/search", response_model=SearchResponse)
async def search_document(
    doc_id: str,
    request: SearchRequest,
    service: DocumentService = Depends(get_document_service),
) -> SearchResponse:
    """Search one document and return the matches inside their section tree."""

    if not request.query.strip():
        raise HTTPException(status_code=422, detail="Query must not be empty")
    try:
        outcome = await service.search(
            doc_id,
            request.query,
            algorithm=request.algorithm,
            top_k=request.top_k,
            level=request.level,
        )
    except _HANDLED as exc:
        raise _to_http_error(exc) from exc
    return SearchResponse(
        doc_id=outcome.doc_id,
        algorithm=outcome.algorithm,
        hits=[SearchHit(key=hit.key, score=hit.score) for hit in outcome.hits],
        nodes=[serialise_node(node) for node in outcome.nodes],
        view=render_view(outcome.nodes),
    )


@router.get("/{doc_id}/structure", response_model=TreeResponse)
async def document_structure(
    doc_id: str,
    service: DocumentService = Depends(get_document_service),
) -> TreeResponse:
    try:
        nodes = await service.structure(doc_id)
    except _HANDLED as exc:
        raise _to_http_error(exc) from exc
    return TreeResponse(
        doc_id=doc_id,
        nodes=[serialise_node(node) for node in nodes],
        outline=render_structure(nodes),
    )


@router.get("/{doc_id}/tree", response_model=TreeResponse)
async def document_tree(
    doc_id: str,
    service: DocumentService = Depends(get_document_service),
) -> TreeResponse:
    try:
        nodes = await service.tree(doc_id)
    except _HANDLED as exc:
        raise _to_http_error(exc) from exc
    return TreeResponse(
        doc_id=doc_id,
        nodes=[serialise_node(node) for node in nodes],
        outline=render_structure(nodes),
    )


@router.get("/{doc_id}/sections", response_model=SectionResponse)
async def document_section(
    doc_id: str,
    title: str = Query(..., min_length=1, description="Substring of the section title."),
    service: DocumentService = Depends(get_document_service),
) -> SectionResponse:
    try:
        node = await service.section(doc_id, title)
    except _HANDLED as exc:
        raise _to_http_error(exc) from exc
    if node is None:
        raise HTTPException(status_code=404, detail=f"No section matching '{title}'")
    return SectionResponse(doc_id=doc_id, node=serialise_node(node), view=render_view([node]))
