"""Environment driven runtime settings."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from functools import lru_cache

LOGGER = logging.getLogger(__name__)

DEFAULT_EMBEDDING_MODEL = "sentence-transformers/all-MiniLM-L6-v2"
DEFAULT_EMBEDDING_DIMENSION = 384
SUMMARY_TRIGGER = 3072
SUMMARY_SIZE = 1024
DEFAULT_PARALLELISM = 5


def _env_str(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip()


def _int_from_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        LOGGER.warning("Invalid integer for %s=%r; using %s", name, value, default)
        return default


def _float_from_env(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError:
        LOGGER.warning("Invalid float for %s=%r; using %s", name, value, default)
        return default


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(slots=True)
class Settings:
    """Runtime configuration for the store, the pipelines and the search engine."""

    vector_backend: str = "memory"
    chroma_path: str = "chroma_db"
    embedding_model: str = DEFAULT_EMBEDDING_MODEL
    embedding_dimension: int = DEFAULT_EMBEDDING_DIMENSION
    embedding_provider: str = "auto"
    install_heavy: bool = False
    llm_provider: str = "auto"
    llm_model: str = ""
    endpoint_id: str = "local"
    summary_trigger: int = SUMMARY_TRIGGER
    summary_size: int = SUMMARY_SIZE
    summary_parallelism: int = DEFAULT_PARALLELISM
    summary_retries: int = 0
    summary_backoff: float = 0.5
    summary_cache_path: str = "summary_cache.json"
    topdown_root_breadth: int = 5
    topdown_child_breadth: int = 10
    recursive_breadth: int = 5
    language: str = "en"
    log_level: str = "INFO"
    audit_log_path: str = "logs/audit.log"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            vector_backend=_env_str("TREERAG_VECTOR_BACKEND", "memory").lower(),
            chroma_path=_env_str("TREERAG_CHROMA_PATH", "chroma_db"),
            embedding_model=_env_str("TREERAG_EMBEDDING_MODEL", DEFAULT_EMBEDDING_MODEL),
            embedding_dimension=_int_from_env("TREERAG_EMBEDDING_DIM", DEFAULT_EMBEDDING_DIMENSION),
            embedding_provider=_env_str("TREERAG_EMBEDDING_PROVIDER", "auto").lower(),
            install_heavy=_env_flag("TREERAG_INSTALL_HEAVY"),
            llm_provider=_env_str("TREERAG_LLM_PROVIDER", "auto").lower(),
            llm_model=_env_str("TREERAG_LLM_MODEL", ""),
            endpoint_id=_env_str("TREERAG_ENDPOINT_ID", "local"),
            summary_trigger=_int_from_env("TREERAG_SUMMARY_TRIGGER", SUMMARY_TRIGGER),
            summary_size=_int_from_env("TREERAG_SUMMARY_SIZE", SUMMARY_SIZE),
            summary_parallelism=_int_from_env("TREERAG_SUMMARY_PARALLELISM", DEFAULT_PARALLELISM),
            summary_retries=max(0, _int_from_env("TREERAG_SUMMARY_RETRIES", 0)),
            summary_backoff=max(0.0, _float_from_env("TREERAG_SUMMARY_BACKOFF", 0.5)),
            summary_cache_path=_env_str("TREERAG_SUMMARY_CACHE", "summary_cache.json"),
            topdown_root_breadth=max(1, _int_from_env("TREERAG_TOPDOWN_ROOT_BREADTH", 5)),
            topdown_child_breadth=max(1, _int_from_env("TREERAG_TOPDOWN_CHILD_BREADTH", 10)),
            recursive_breadth=max(1, _int_from_env("TREERAG_RECURSIVE_BREADTH", 5)),
            language=_env_str("TREERAG_LANGUAGE", "en").lower() or "en",
            log_level=_env_str("TREERAG_LOG_LEVEL", "INFO").upper() or "INFO",
            audit_log_path=_env_str("TREERAG_AUDIT_LOG", "logs/audit.log"),
        )

    @property
    def effective_parallelism(self) -> int:
        if self.summary_parallelism <= 0:
            return DEFAULT_PARALLELISM
        return self.summary_parallelism


@lru_cache()
def get_settings() -> Settings:
    """Return process-wide settings read from the environment."""

    return Settings.from_env()


def reset_settings_cache() -> None:
    """Forget cached settings so the next call re-reads the environment."""

    get_settings.cache_clear()  # type: ignore[attr-defined]
