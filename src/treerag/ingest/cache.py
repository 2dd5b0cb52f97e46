"""Persistent raw-text to summary cache scoped to one summarizer configuration."""
from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Dict, Optional

LOGGER = logging.getLogger(__name__)


class InMemorySummaryCache:
    """Summary cache kept only for the lifetime of the process."""

    def __init__(self) -> None:
        self._prompts: Dict[str, str] = {}
        self._scope: tuple[str, str, int] | None = None
        self._dirty = False

    @property
    def scope(self) -> tuple[str, str, int] | None:
        return self._scope

    def load(self, endpoint_id: str, model_id: str, output_size: int) -> None:
        scope = (endpoint_id, model_id, int(output_size))
        if self._scope is not None and self._scope != scope:
            LOGGER.info("Summary cache scope changed from %s to %s; clearing", self._scope, scope)
            self._prompts.clear()
        self._scope = scope

    def get(self, raw: str) -> Optional[str]:
        return self._prompts.get(raw)

    def add(self, raw: str, summary: str) -> None:
        if not summary or not summary.strip():
            return
        if self._prompts.get(raw) == summary:
            return
        self._prompts[raw] = summary
        self._dirty = True

    def save(self) -> None:
        self._dirty = False

    def __len__(self) -> int:
        return len(self._prompts)

    def __contains__(self, raw: object) -> bool:
        return raw in self._prompts


class SummaryCache(InMemorySummaryCache):
    """JSON file backed cache, discarded wholesale when its scope differs."""

    def __init__(self, path: str | Path) -> None:
        super().__init__()
        self.path = Path(path)

    def load(self, endpoint_id: str, model_id: str, output_size: int) -> None:
        """Read the file for this scope, keeping unsaved entries from runs still in flight."""

        scope = (endpoint_id, model_id, int(output_size))
        if scope != self._scope:
            self._prompts = {}
            self._dirty = False
        self._scope = scope
        stored = self._read()
        self._prompts = {**stored, **self._prompts}
        if stored:
            LOGGER.info("Loaded %s cached summaries from %s", len(stored), self.path)

    def _read(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as error:
            LOGGER.warning("Ignoring unreadable summary cache %s: %s", self.path, error)
            return {}
        if not isinstance(payload, dict):
            LOGGER.warning("Ignoring malformed summary cache %s", self.path)
            return {}

        stored_scope = (
            payload.get("endpoint_id"),
            payload.get("model_id"),
            payload.get("output_size"),
        )
        if stored_scope != self._scope:
            LOGGER.info(
                "Summary cache %s was built for %s, not %s; ignoring its entries",
                self.path,
                stored_scope,
                self._scope,
            )
            return {}
        prompts = payload.get("prompts") or {}
        return {
            str(raw): str(summary)
            for raw, summary in prompts.items()
            if isinstance(summary, str) and summary.strip()
        }

    def save(self) -> None:
        if not self._dirty or self._scope is None:
            return
        endpoint_id, model_id, output_size = self._scope
        payload = {
            "endpoint_id": endpoint_id,
            "model_id": model_id,
            "output_size": output_size,
            "prompts": self._prompts,
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=".summary-cache-", dir=self.path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(payload, handle, ensure_ascii=False)
            os.replace(tmp_name, self.path)
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        self._dirty = False
        LOGGER.debug("Saved %s summaries to %s", len(self._prompts), self.path)


__all__ = ["InMemorySummaryCache", "SummaryCache"]
