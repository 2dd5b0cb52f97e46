from __future__ import annotations

import json
from pathlib import Path

from treerag.ingest.cache import InMemorySummaryCache, SummaryCache


def test_in_memory_cache_ignores_blank_summaries() -> None:
    cache = InMemorySummaryCache()
    cache.load("local", "model", 128)

    cache.add("raw", "")
    cache.add("other", "   ")
    cache.add("text", "summary")

    assert len(cache) == 1
    assert cache.get("text") == "summary"
    assert "raw" not in cache


def test_in_memory_cache_clears_when_scope_changes() -> None:
    cache = InMemorySummaryCache()
    cache.load("local", "model", 128)
    cache.add("text", "summary")

    cache.load("local", "model", 128)
    assert cache.get("text") == "summary"

    cache.load("local", "model", 256)
    assert cache.get("text") is None
    assert cache.scope == ("local", "model", 256)


def test_file_cache_persists_and_reloads(tmp_path: Path) -> None:
    path = tmp_path / "cache" / "summaries.json"
    cache = SummaryCache(path)
    cache.load("local", "model", 128)
    cache.add("raw text", "the summary")
    cache.save()

    payload = json.loads(path.read_text(encoding="utf-8"))
    assert payload["endpoint_id"] == "local"
    assert payload["model_id"] == "model"
    assert payload["output_size"] == 128
    assert payload["prompts"] == {"raw text": "the summary"}

    reloaded = SummaryCache(path)
    reloaded.load("local", "model", 128)
    assert reloaded.get("raw text") == "the summary"


def test_file_cache_discards_entries_from_another_scope(tmp_path: Path) -> None:
    path = tmp_path / "summaries.json"
    cache = SummaryCache(path)
    cache.load("local", "model-a", 128)
    cache.add("raw text", "the summary")
    cache.save()

    other = SummaryCache(path)
    other.load("local", "model-b", 128)

    assert len(other) == 0


def test_file_cache_starts_empty_on_corrupt_file(tmp_path: Path) -> None:
    path = tmp_path / "summaries.json"
    path.write_text("{not json", encoding="utf-8")

    cache = SummaryCache(path)
    cache.load("local", "model", 128)

    assert len(cache) == 0


def test_file_cache_skips_write_when_unchanged(tmp_path: Path) -> None:
    path = tmp_path / "summaries.json"
    cache = SummaryCache(path)
    cache.load("local", "model", 128)

    cache.save()

    assert not path.exists()
