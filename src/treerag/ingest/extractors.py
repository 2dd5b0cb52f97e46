"""Structure extractors turning source documents into raw section trees."""
from __future__ import annotations

import io
import logging
import re
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Type

from PyPDF2 import PdfReader
from docx import Document as DocxDocument
from docx.table import Table

from treerag.errors import InvalidArgumentError

from .models import ContentUnit, RawNode

LOGGER = logging.getLogger(__name__)

_ATX_HEADING = re.compile(r"^(#{1,6})\s+(?P<title>.+?)\s*#*\s*$")
_FENCE = re.compile(r"^\s*(```|~~~)")
_NUMBERED_HEADING = re.compile(r"^\s*(?P<number>\d+(?:[.\-]\d+)*)[.)]?\s+(?P<title>\S.*)$")
_DOCX_HEADING_STYLE = re.compile(r"^Heading\s*(?P<level>\d+)$", re.IGNORECASE)
_PREAMBLE_DEPTH = 1_000_000


class DocumentExtractor:
    """Base class: ``extract`` returns the top-level sections of a document."""

    suffixes: Tuple[str, ...] = ()

    def extract(self, data: bytes, *, name: str) -> List[RawNode]:
        raise NotImplementedError


class _HeadingStack:
    """Nest sections by heading depth; a heading closes every deeper open section."""

    def __init__(self) -> None:
        self.roots: List[RawNode] = []
        self._open: List[Tuple[int, RawNode]] = []

    @property
    def current(self) -> Optional[RawNode]:
        return self._open[-1][1] if self._open else None

    def push(self, depth: int, title: str) -> RawNode:
        while self._open and self._open[-1][0] >= depth:
            self._open.pop()
        node = RawNode(title=title)
        if self._open:
            self._open[-1][1].add_child(node)
        else:
            self.roots.append(node)
        self._open.append((depth, node))
        return node

    def add_content(self, text: str, fallback_title: str) -> None:
        if not text.strip():
            return
        node = self.current
        if node is None:
            node = self.push(_PREAMBLE_DEPTH, fallback_title)
        node.content_units.append(ContentUnit(text=text.strip()))


class MarkdownExtractor(DocumentExtractor):
    """ATX headings drive the tree; blank-line separated paragraphs become content units."""

    suffixes = (".md", ".markdown")

    def extract(self, data: bytes, *, name: str) -> List[RawNode]:
        text = data.decode("utf-8", errors="replace")
        stack = _HeadingStack()
        fallback_title = Path(name).stem or name
        paragraph: List[str] = []
        in_fence = False

        def flush() -> None:
            if paragraph:
                stack.add_content("\n".join(paragraph), fallback_title)
                paragraph.clear()

        for line in text.splitlines():
            if _FENCE.match(line):
                in_fence = not in_fence
                paragraph.append(line)
                continue
            if in_fence:
                paragraph.append(line)
                continue
            heading = _ATX_HEADING.match(line)
            if heading:
                flush()
                stack.push(len(heading.group(1)), heading.group("title").strip())
                continue
            if not line.strip():
                flush()
                continue
            paragraph.append(line)
        flush()
        return stack.roots


class DocxExtractor(DocumentExtractor):
    """Word documents: ``Title`` and ``Heading N`` paragraph styles open sections."""

    suffixes = (".docx",)

    def extract(self, data: bytes, *, name: str) -> List[RawNode]:
        try:
            document = DocxDocument(io.BytesIO(data))
        except Exception as error:
            raise InvalidArgumentError(f"Could not parse Word document '{name}'") from error

        stack = _HeadingStack()
        fallback_title = Path(name).stem or name
        for block in document.iter_inner_content():
            if isinstance(block, Table):
                rows = ["\t".join(cell.text.strip() for cell in row.cells) for row in block.rows]
                stack.add_content("\n".join(row for row in rows if row.strip()), fallback_title)
                continue
            text = block.text.strip()
            if not text:
                continue
            depth = self._heading_depth(block.style.name if block.style is not None else "")
            if depth is not None:
                stack.push(depth, text)
            else:
                stack.add_content(text, fallback_title)
        return stack.roots

    @staticmethod
    def _heading_depth(style_name: str) -> Optional[int]:
        if style_name.strip().lower() == "title":
            return 0
        match = _DOCX_HEADING_STYLE.match(style_name.strip())
        if match:
            return int(match.group("level"))
        return None


class PdfExtractor(DocumentExtractor):
    """PDF documents: the outline drives the tree and each page is a content unit.

    Without an outline, numbered heading lines ("1.2 Scope") are used; without
    those the whole document becomes one section.
    """

    suffixes = (".pdf",)

    def extract(self, data: bytes, *, name: str) -> List[RawNode]:
        try:
            reader = PdfReader(io.BytesIO(data))
        except Exception as error:
            raise InvalidArgumentError(f"Could not parse PDF document '{name}'") from error

        pages = [self._page_text(page, number) for number, page in enumerate(reader.pages, start=1)]
        title = Path(name).stem or name
        entries = self._outline_entries(reader)
        if entries:
            return self._from_outline(entries, pages)
        numbered = self._from_numbered_headings(pages, title)
        if numbered:
            return numbered
        LOGGER.info("PDF %s has no outline or numbered headings; using a single section", name)
        return [RawNode(title=title, content_units=[ContentUnit(text=text) for text in pages])]

    @staticmethod
    def _page_text(page, number: int) -> str:
        try:
            return page.extract_text() or ""
        except Exception as error:  # pragma: no cover - depends on PDF internals
            LOGGER.warning("Failed to extract text from PDF page %s: %s", number, error)
            return ""

    def _outline_entries(self, reader: PdfReader) -> List[Tuple[int, str, int]]:
        entries: List[Tuple[int, str, int]] = []

        def visit(items, depth: int) -> None:
            for item in items:
                if isinstance(item, list):
                    visit(item, depth + 1)
                    continue
                try:
                    page_index = reader.get_destination_page_number(item)
                except Exception as error:  # pragma: no cover - malformed outlines
                    LOGGER.warning("Skipping outline entry %r: %s", getattr(item, "title", item), error)
                    continue
                title = str(getattr(item, "title", "") or "").strip()
                entries.append((depth, title, page_index))

        try:
            visit(reader.outline, 0)
        except Exception as error:  # pragma: no cover - malformed outlines
            LOGGER.warning("Ignoring unreadable PDF outline: %s", error)
            return []
        return entries

    @staticmethod
    def _from_outline(entries: List[Tuple[int, str, int]], pages: List[str]) -> List[RawNode]:
        stack = _HeadingStack()
        for position, (depth, title, start) in enumerate(entries):
            node = stack.push(depth, title)
            end = len(pages)
            if position + 1 < len(entries):
                next_depth, _, next_start = entries[position + 1]
                end = next_start if next_depth > depth else max(start + 1, next_start)
            node.content_units.extend(ContentUnit(text=text) for text in pages[start:end])
        return stack.roots

    @staticmethod
    def _from_numbered_headings(pages: List[str], fallback_title: str) -> List[RawNode]:
        stack = _HeadingStack()
        found = False
        buffer: List[str] = []

        def flush() -> None:
            if buffer:
                stack.add_content("\n".join(buffer), fallback_title)
                buffer.clear()

        for text in pages:
            for line in text.splitlines():
                match = _NUMBERED_HEADING.match(line)
                if match and len(line.strip()) <= 120:
                    flush()
                    depth = len(re.split(r"[.\-]", match.group("number")))
                    stack.push(depth, line.strip())
                    found = True
                else:
                    buffer.append(line)
            flush()
        return stack.roots if found else []


_EXTRACTORS: Dict[str, Type[DocumentExtractor]] = {
    suffix: extractor
    for extractor in (MarkdownExtractor, DocxExtractor, PdfExtractor)
    for suffix in extractor.suffixes
}


def get_extractor(name: str | Path) -> DocumentExtractor:
    """Return the extractor for a file name based on its suffix."""

    suffix = Path(name).suffix.lower()
    extractor = _EXTRACTORS.get(suffix)
    if extractor is None:
        raise InvalidArgumentError(
            f"Unsupported document type '{suffix or name}'",
            details={"supported": sorted(_EXTRACTORS)},
        )
    return extractor()


__all__ = [
    "DocumentExtractor",
    "DocxExtractor",
    "MarkdownExtractor",
    "PdfExtractor",
    "get_extractor",
]
