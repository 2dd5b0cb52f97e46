"""Structured lifecycle events for indexing, summarization and search."""

from __future__ import annotations

import logging
import time
import traceback
from contextlib import contextmanager
from typing import Any, Iterator, Optional

LOGGER = logging.getLogger("treerag.telemetry")


def _format_exception(error: BaseException) -> str:
    return "".join(traceback.format_exception(error.__class__, error, error.__traceback__))


def log_event(
    logger: Optional[logging.Logger],
    step: str,
    *,
    level: str = "info",
    doc_id: str | None = None,
    duration_ms: float | None = None,
    exc: BaseException | str | None = None,
    details: dict[str, Any] | None = None,
    **payload: Any,
) -> None:
    """Emit a structured log event with the agreed-upon schema."""

    logger = logger or LOGGER
    event: dict[str, Any] = {"step": step, "module": logger.name}
    if doc_id:
        event["doc_id"] = doc_id
    if duration_ms is not None:
        event["duration_ms"] = round(duration_ms, 3)
    if details is not None:
        event["details"] = details
    event.update(payload)

    exc_info = None
    if exc is not None:
        if isinstance(exc, BaseException):
            event["exc"] = _format_exception(exc)
            exc_info = (exc.__class__, exc, exc.__traceback__)
        else:
            event["exc"] = str(exc)

    log_method = getattr(logger, level.lower(), logger.info)
    log_method(event, exc_info=exc_info)


def emit_embeddings_event(
    *, model: str, count: int, skipped: int, duration_ms: float, errors: list[str] | None = None
) -> None:
    details = {
        "model": model,
        "count": count,
        "skipped_empty": skipped,
        "errors": errors or [],
        "per_item_ms": round(duration_ms / count, 3) if count else None,
    }
    level = "error" if errors else "debug"
    log_event(LOGGER, "embeddings.compute", level=level, duration_ms=duration_ms, details=details)


def emit_vectorstore_event(
    step: str,
    *,
    doc_id: str,
    collection: str,
    count: int,
    backend: str,
    error: BaseException | None = None,
) -> None:
    details = {"collection": collection, "count": count, "backend": backend}
    level = "error" if error else "info"
    log_event(LOGGER, step, level=level, doc_id=doc_id, details=details, exc=error)


def emit_search_event(
    *,
    doc_id: str,
    algorithm: str,
    top_k: int,
    hits: int,
    queries: int,
    duration_ms: float,
) -> None:
    details = {"algorithm": algorithm, "top_k": top_k, "hits": hits, "queries": queries}
    log_event(LOGGER, "search.complete", doc_id=doc_id, duration_ms=duration_ms, details=details)


def emit_summary_event(
    step: str,
    *,
    processed: int,
    total: int,
    llm_calls: int,
    cache_hits: int,
    duration_ms: float | None = None,
    error: BaseException | None = None,
) -> None:
    details = {
        "processed": processed,
        "total": total,
        "llm_calls": llm_calls,
        "cache_hits": cache_hits,
    }
    level = "error" if error else "info"
    log_event(LOGGER, step, level=level, duration_ms=duration_ms, details=details, exc=error)


def emit_ingest_event(
    step: str,
    *,
    doc_id: str,
    source: str | None = None,
    chunks: int | None = None,
    duration_ms: float | None = None,
    error: BaseException | None = None,
) -> None:
    details: dict[str, Any] = {"source": source, "chunks": chunks}
    level = "error" if error else "info"
    log_event(
        logging.getLogger("treerag.audit"),
        step,
        level=level,
        doc_id=doc_id,
        duration_ms=duration_ms,
        details=details,
        exc=error,
    )


def emit_exception(*, module: str, error: BaseException, doc_id: str | None = None) -> None:
    log_event(
        LOGGER,
        "exception",
        level="error",
        doc_id=doc_id,
        details={"module": module},
        exc=error,
    )


@contextmanager
def traced_duration(step: str, *, logger: Optional[logging.Logger] = None, **fields: Any) -> Iterator[None]:
    start = time.perf_counter()
    log_event(logger or LOGGER, f"{step}.start", level="debug", details=fields)
    try:
        yield
    except Exception as error:
        log_event(logger or LOGGER, f"{step}.error", level="error", details=fields, exc=error)
        raise
    finally:
        log_event(
            logger or LOGGER,
            f"{step}.complete",
            level="debug",
            duration_ms=(time.perf_counter() - start) * 1000.0,
            details=fields,
        )


__all__ = [
    "emit_embeddings_event",
    "emit_exception",
    "emit_ingest_event",
    "emit_search_event",
    "emit_summary_event",
    "emit_vectorstore_event",
    "log_event",
    "traced_duration",
]
