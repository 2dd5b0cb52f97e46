"""Document ingestion: extraction, summarization and flattening into chunks."""
from __future__ import annotations

from .cache import InMemorySummaryCache, SummaryCache
from .extractors import DocumentExtractor, DocxExtractor, MarkdownExtractor, PdfExtractor, get_extractor
from .flatten import to_chunks
from .models import ContentUnit, RawNode
from .pipeline import IndexPipeline, IndexResult
from .summary import SummaryPipeline, SummaryProgress, SummaryRunResult

__all__ = [
    "ContentUnit",
    "DocumentExtractor",
    "DocxExtractor",
    "InMemorySummaryCache",
    "IndexPipeline",
    "IndexResult",
    "MarkdownExtractor",
    "PdfExtractor",
    "RawNode",
    "SummaryCache",
    "SummaryPipeline",
    "SummaryProgress",
    "SummaryRunResult",
    "get_extractor",
    "to_chunks",
]
