"""
Validation
==========
Input checks before analysis and a structural report after it.

Input validation raises InputValidationError for caller-correctable
problems: empty documents, oversized batches, unsafe anchor ids, script
payloads. The structure report never raises; it lists what it found:
    - Duplicate anchors
    - Sections without anchors
    - Overlapping or non-monotonic section positions
    - Confidence values outside [0, 1]
    - Section count by level
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from typing import Sequence

from .errors import InputValidationError
from .models import ExtractedDocument, StructureAnalysisResult, StructureReport

logger = logging.getLogger(__name__)

MAX_ELEMENTS = 10_000
MAX_DOCUMENT_CHARS = 50 * 1024 * 1024
MAX_ANCHOR_ID_LENGTH = 255
MAX_SEARCH_TEXT_LENGTH = 1_000_000
MAX_BATCH_SIZE = 100

ANCHOR_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")

SUSPICIOUS_PATTERNS = [
    re.compile(r"<script[^>]*>.*?</script>", re.IGNORECASE | re.DOTALL),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"data:text/html", re.IGNORECASE),
    re.compile(r"vbscript:", re.IGNORECASE),
    re.compile(r"<iframe[^>]*>", re.IGNORECASE),
    re.compile(r"<object[^>]*>", re.IGNORECASE),
    re.compile(r"<embed[^>]*>", re.IGNORECASE),
]


# ─── Input Validation ─────────────────────────────────────────────────────────


def contains_suspicious_content(text: str) -> bool:
    return any(pattern.search(text) for pattern in SUSPICIOUS_PATTERNS)


def validate_document(
    document: ExtractedDocument,
    max_elements: int = MAX_ELEMENTS,
    max_chars: int = MAX_DOCUMENT_CHARS,
    reject_suspicious: bool = True,
):
    """Raise InputValidationError if the document cannot be analyzed."""
    if not isinstance(document, ExtractedDocument):
        raise InputValidationError(
            f"Expected ExtractedDocument, got {type(document).__name__}"
        )

    if not document.elements:
        raise InputValidationError("Document must contain at least one element")

    if len(document.elements) > max_elements:
        raise InputValidationError(
            f"Document contains too many elements: "
            f"{len(document.elements)} (max: {max_elements})"
        )

    text = document.plain_text
    if len(text) > max_chars:
        raise InputValidationError(
            f"Document content too large: {len(text)} characters "
            f"(max: {max_chars})"
        )

    if reject_suspicious and contains_suspicious_content(text):
        raise InputValidationError("Document contains suspicious content")


def validate_batch(documents: Sequence, max_batch_size: int = MAX_BATCH_SIZE):
    """Raise InputValidationError for empty, oversized or mistyped batches."""
    if not documents:
        raise InputValidationError("Document batch cannot be empty")

    if len(documents) > max_batch_size:
        raise InputValidationError(
            f"Batch too large: {len(documents)} documents (max: {max_batch_size})"
        )

    for index, document in enumerate(documents):
        if not isinstance(document, ExtractedDocument):
            raise InputValidationError(
                f"Invalid document at index {index}: "
                f"expected ExtractedDocument, got {type(document).__name__}"
            )


def validate_anchor_id(anchor_id: str):
    if not anchor_id or not anchor_id.strip():
        raise InputValidationError("Anchor ID cannot be empty")

    if len(anchor_id) > MAX_ANCHOR_ID_LENGTH:
        raise InputValidationError(
            f"Anchor ID too long: {len(anchor_id)} characters "
            f"(max: {MAX_ANCHOR_ID_LENGTH})"
        )

    if not ANCHOR_ID_PATTERN.match(anchor_id):
        raise InputValidationError(
            "Anchor ID can only contain letters, numbers, underscores and hyphens"
        )


def validate_search_text(text: str):
    if len(text) > MAX_SEARCH_TEXT_LENGTH:
        raise InputValidationError(
            f"Text too large for search: {len(text)} characters "
            f"(max: {MAX_SEARCH_TEXT_LENGTH})"
        )


def validate_confidence(confidence: float):
    if not 0.0 <= confidence <= 1.0:
        raise InputValidationError(
            f"Confidence must be between 0.0 and 1.0, got: {confidence}"
        )


# ─── Structure Report ─────────────────────────────────────────────────────────


class StructureValidator:
    """
    Checks an analysis result for anchor and position consistency.
    """

    def validate(self, result: StructureAnalysisResult) -> StructureReport:
        """
        Run all structural checks on an analysis result.

        Args:
            result: Result produced by StructureAnalyzer.analyze().

        Returns:
            StructureReport listing every detected issue.
        """
        report = StructureReport()
        sections = result.all_sections()

        if not sections:
            logger.warning(f"No sections to validate in {result.document_id}")
            return report

        report.total_sections = len(sections)

        # Anchors
        anchor_counts = Counter(s.anchor for s in sections if s.anchor)
        report.duplicate_anchors = sorted(
            anchor for anchor, count in anchor_counts.items() if count > 1
        )
        report.missing_anchors = [s.id for s in sections if not s.anchor]

        # Positions, in document order
        ordered = sorted(sections, key=lambda s: (s.start_position, s.end_position))
        for previous, current in zip(ordered, ordered[1:]):
            if current.start_position < previous.end_position:
                report.overlapping_sections.append(f"{previous.id}/{current.id}")

        # Confidence and levels
        level_counts: dict[str, int] = {}
        for section in sections:
            if not 0.0 <= section.confidence <= 1.0:
                report.out_of_range_confidence.append(section.id)
            key = str(section.level)
            level_counts[key] = level_counts.get(key, 0) + 1
        report.level_breakdown = level_counts

        # Log summary
        logger.debug("=" * 60)
        logger.debug(f"STRUCTURE REPORT: {result.document_id}")
        logger.debug("=" * 60)
        logger.debug(f"Total Sections: {report.total_sections}")
        logger.debug(f"Duplicate Anchors: {len(report.duplicate_anchors)}")
        logger.debug(f"Sections Without Anchors: {len(report.missing_anchors)}")
        logger.debug(f"Overlapping Sections: {len(report.overlapping_sections)}")
        logger.debug(
            f"Confidence Out Of Range: {len(report.out_of_range_confidence)}"
        )
        if report.level_breakdown:
            logger.debug("Level Breakdown:")
            for level, count in sorted(report.level_breakdown.items()):
                logger.debug(f"  • level {level}: {count}")
        logger.debug("=" * 60)

        if not report.is_consistent:
            logger.warning(
                f"Structure of {result.document_id} is inconsistent: "
                f"{'; '.join(report.issues())}"
            )

        return report
