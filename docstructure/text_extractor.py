"""
Text Extractor
==============
Builds an ExtractedDocument from plain text.
Blocks are separated by blank lines; form feeds mark page breaks.
"""

from __future__ import annotations

import logging
import re
import time
from pathlib import Path
from typing import Optional

from .models import DocumentElement, ElementType, ExtractedDocument
from .patterns import PatternClassifier

logger = logging.getLogger(__name__)

BLOCK_SEPARATOR = re.compile(r"\n\s*\n")
PAGE_BREAK = "\f"


class TextExtractor:
    """
    Splits plain text into typed elements.

    A block whose first line is a header is emitted as a header element
    followed by an element for the remaining lines.
    """

    def __init__(self, classifier: Optional[PatternClassifier] = None):
        self.classifier = classifier or PatternClassifier()

    def extract(self, path: str, encoding: str = "utf-8") -> ExtractedDocument:
        """
        Read and split a text file.

        Raises:
            FileNotFoundError: If the file doesn't exist.
        """
        file_path = Path(path)
        if not file_path.exists():
            raise FileNotFoundError(f"Text file not found: {path}")

        text = file_path.read_text(encoding=encoding, errors="replace")
        document = self.extract_text(text, original_path=str(file_path))
        document.metadata["file_size_bytes"] = file_path.stat().st_size
        return document

    def extract_text(self, text: str, original_path: str = "") -> ExtractedDocument:
        """Split text into an ExtractedDocument."""
        start_time = time.monotonic()
        elements: list[DocumentElement] = []

        text = text.replace("\r\n", "\n").replace("\r", "\n")
        pages = text.split(PAGE_BREAK)

        for page_number, page in enumerate(pages, start=1):
            for block in BLOCK_SEPARATOR.split(page):
                block = block.strip("\n")
                if block.strip():
                    elements.extend(self._block_elements(block, page_number))

        document = ExtractedDocument(
            original_path=original_path,
            mime_type="text/plain",
            elements=elements,
            total_pages=len(pages),
            extraction_time=round(time.monotonic() - start_time, 4),
            metadata={
                "characters": len(text),
                "blocks": len(elements),
            },
        )
        logger.info(
            f"Extracted {len(elements)} elements from "
            f"{original_path or 'text'} ({len(pages)} pages)"
        )
        return document

    def _block_elements(self, block: str, page_number: int) -> list[DocumentElement]:
        lines = block.split("\n")
        first = lines[0].strip()
        rest = "\n".join(lines[1:]).strip()

        whole = self.classifier.classify(block)
        if whole.kind == ElementType.LIST:
            return [self._element(block, whole, page_number)]

        head = self.classifier.classify(first)
        if head.is_header:
            elements = [DocumentElement.header(
                first,
                level=head.level,
                page_number=page_number,
                metadata={"rule": head.rule},
            )]
            if rest:
                # Consecutive header lines each become a header
                elements.extend(self._block_elements(rest, page_number))
            return elements

        return [self._element(block.strip(), whole, page_number)]

    def _element(self, text, classification, page_number: int) -> DocumentElement:
        if classification.kind == ElementType.LIST:
            items, list_type = self.classifier.list_items(text)
            return DocumentElement.list_of(
                items,
                list_type=list_type or classification.list_type or "bullet",
                content=text,
                page_number=page_number,
            )
        if classification.kind == ElementType.TABLE:
            return DocumentElement.table(text, page_number=page_number)
        if classification.kind == ElementType.PARAGRAPH:
            return DocumentElement.paragraph(text, page_number=page_number)
        return DocumentElement.text(text, page_number=page_number)
