"""Exception hierarchy shared by the store, the pipelines and the API."""
from __future__ import annotations

from typing import Any, Dict, Optional


class TreeRagError(Exception):
    """Base class for every error raised by ``treerag``."""

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = dict(details or {})

    def to_dict(self) -> Dict[str, Any]:
        return {"error": type(self).__name__, "message": self.message, "details": self.details}


class InvalidArgumentError(TreeRagError, ValueError):
    """Raised for empty document ids, malformed filters and unsupported inputs."""


class NotInitializedError(TreeRagError, RuntimeError):
    """Raised when a collaborator is used before it has been configured."""


class DocumentNotFoundError(TreeRagError, LookupError):
    """Raised when an operation needs a document that has not been indexed."""

    def __init__(self, doc_id: str) -> None:
        super().__init__(f"Document '{doc_id}' is not indexed", details={"doc_id": doc_id})
        self.doc_id = doc_id


class ExternalServiceError(TreeRagError, RuntimeError):
    """Raised when an embedding, LLM or vector index call fails."""

    def __init__(
        self,
        message: str,
        *,
        cause: BaseException | None = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, details=details)
        self.__cause__ = cause


def require_document_id(doc_id: str | None) -> str:
    """Return ``doc_id`` stripped, raising when it is blank."""

    if doc_id is None or not str(doc_id).strip():
        raise InvalidArgumentError("document id must not be empty")
    return str(doc_id).strip()


__all__ = [
    "DocumentNotFoundError",
    "ExternalServiceError",
    "InvalidArgumentError",
    "NotInitializedError",
    "TreeRagError",
    "require_document_id",
]
