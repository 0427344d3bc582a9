"""
parsers.py — MIME-keyed document parsers.

The import pipeline treats parsing as best effort: a missing parser or a
parse error falls back to a stub body, so parsers are free to raise.
"""

from __future__ import annotations

import asyncio
import io
import logging
from typing import Iterable, Optional

import docx
import fitz  # PyMuPDF

from archive_taxonomy.models import ParsedContent

logger = logging.getLogger(__name__)

DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
XLSX_MIME = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
PDF_MIME = "application/pdf"


class Parser:
    """Base class: subclasses declare their MIME types and implement parse()."""

    supported_mime_types: tuple[str, ...] = ()

    async def parse(self, data: bytes, name: str, mime: str) -> ParsedContent:
        raise NotImplementedError


class PdfParser(Parser):
    supported_mime_types = (PDF_MIME,)

    async def parse(self, data: bytes, name: str, mime: str) -> ParsedContent:
        return await asyncio.to_thread(self._parse_sync, data)

    @staticmethod
    def _parse_sync(data: bytes) -> ParsedContent:
        with fitz.open(stream=data, filetype="pdf") as doc:
            pages = [doc.load_page(i).get_text("text") for i in range(len(doc))]
            page_count = len(doc)
        text = "\n".join(p.strip() for p in pages if p and p.strip())
        return ParsedContent(content=text, metadata={"pages": page_count})


class DocxParser(Parser):
    supported_mime_types = (DOCX_MIME,)

    async def parse(self, data: bytes, name: str, mime: str) -> ParsedContent:
        return await asyncio.to_thread(self._parse_sync, data)

    @staticmethod
    def _parse_sync(data: bytes) -> ParsedContent:
        document = docx.Document(io.BytesIO(data))
        paragraphs = [p.text for p in document.paragraphs if p.text and p.text.strip()]
        return ParsedContent(content="\n".join(paragraphs),
                             metadata={"paragraphs": len(paragraphs)})


class ParserRegistry:
    """First registered parser claiming a MIME type wins."""

    def __init__(self, parsers: Optional[Iterable[Parser]] = None):
        self._parsers: list[Parser] = list(parsers or [])

    def register(self, parser: Parser) -> None:
        self._parsers.append(parser)

    def get_parser(self, mime: str) -> Optional[Parser]:
        for parser in self._parsers:
            if mime in parser.supported_mime_types:
                return parser
        return None


def default_registry() -> ParserRegistry:
    return ParserRegistry([DocxParser(), PdfParser()])
