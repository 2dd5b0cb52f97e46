import logging
from typing import Any, Callable, TypeVar

from fastapi import FastAPI, HTTPException
from fastapi.responses import PlainTextResponse

from treerag import __version__
from treerag.api.documents import router as documents_router
from treerag.errors import ExternalServiceError
from treerag.logging_config import configure_logging
from treerag.telemetry import log_event
from treerag.vectorstore import get_chunk_store

configure_logging()

LOGGER = logging.getLogger(__name__)

app = FastAPI(title="TreeRAG API", version=__version__)
app.include_router(documents_router)

T = TypeVar("T")


def _resolve_dependency(factory: Callable[[], T]) -> T:
    """Resolve a dependency while respecting FastAPI overrides."""

    override: Any | None = app.dependency_overrides.get(factory)
    resolved: Any = override if override is not None else factory
    return resolved() if callable(resolved) else resolved


@app.on_event("startup")
async def _log_startup() -> None:
    log_event(LOGGER, "app.startup", details={"version": __version__})


@app.get("/", response_class=PlainTextResponse)
def read_root() -> str:
    """Liveness endpoint for the service."""
    return "ok"


@app.get("/readyz", response_class=PlainTextResponse)
async def readiness_probe() -> str:
    """Readiness probe: the vector index must answer a collection lookup."""

    try:
        store = _resolve_dependency(get_chunk_store)
        await store.index.has_collection("readyz")
    except ExternalServiceError as exc:
        raise HTTPException(status_code=503, detail=f"vector_store_unavailable: {exc}") from exc
    return "ok"
