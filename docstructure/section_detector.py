"""
Section Detector
================
Single-pass state machine that turns an ordered element sequence into a
flat list of candidate sections.

Header elements, and single-line text that the pattern classifier accepts
as a header, start a section. Every following element belongs to it until
the next header.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .errors import AnalysisBudgetExceeded
from .models import DocumentElement, DocumentSection, ElementType, ExtractedDocument
from .patterns import Classification, PatternClassifier

logger = logging.getLogger(__name__)

FALLBACK_SECTION_ID = "main"
FALLBACK_SECTION_TITLE = "Document"
PREAMBLE_SECTION_ID = "preamble"
PREAMBLE_SECTION_TITLE = "Preamble"
WEAK_CONFIDENCE = 0.5

DEFAULT_HEADER_LEVEL = 3


class DetectorState(Enum):
    """Where the detector is in the element stream."""
    PREAMBLE = "PREAMBLE"
    SECTION_BODY = "SECTION_BODY"


@dataclass
class AnalysisBudget:
    """
    Soft wall-clock limit, checked every check_interval elements.
    The check is periodic, never pre-emptive.
    """
    max_seconds: float
    check_interval: int = 50
    started_at: float = field(default_factory=time.monotonic)

    def elapsed(self) -> float:
        return time.monotonic() - self.started_at

    def exceeded(self) -> bool:
        return self.elapsed() >= self.max_seconds

    def due(self, processed: int) -> bool:
        return processed > 0 and processed % max(self.check_interval, 1) == 0


@dataclass
class _OpenSection:
    """Section being accumulated."""
    number: int
    header: DocumentElement
    title: str
    level: int
    start: int
    confidence: float
    rule: Optional[str]
    body: list[DocumentElement] = field(default_factory=list)


class SectionDetector:
    """
    Detects candidate sections in document order.

    Section ids are section_1..section_n in order of appearance, so
    repeated runs over the same document yield the same ids.
    """

    def __init__(self, classifier: Optional[PatternClassifier] = None):
        self.classifier = classifier or PatternClassifier()
        self.reset()

    def reset(self):
        """Reset the detector for a fresh run."""
        self.state = DetectorState.PREAMBLE
        self.current: Optional[_OpenSection] = None
        self.sections: list[DocumentSection] = []
        self.preamble: list[tuple[int, DocumentElement]] = []
        self.used_fallback = False

    def detect_sections(
        self,
        document: ExtractedDocument,
        budget: Optional[AnalysisBudget] = None,
    ) -> list[DocumentSection]:
        """
        Build the flat section list for a document.

        Raises:
            AnalysisBudgetExceeded: When the budget runs out. The exception
                carries the sections built from the elements processed so far.
        """
        self.reset()
        elements = document.elements

        for index, element in enumerate(elements):
            if budget is not None and budget.due(index) and budget.exceeded():
                logger.warning(
                    f"Analysis budget of {budget.max_seconds}s exceeded after "
                    f"{index}/{len(elements)} elements"
                )
                partial = self._finalize(index)
                raise AnalysisBudgetExceeded(
                    f"Analysis time limit of {budget.max_seconds}s exceeded",
                    sections=partial,
                    processed_elements=index,
                )
            self._process_element(index, element)

        return self._finalize(len(elements))

    # ─── Element Processing ───────────────────────────────────────────────

    def _process_element(self, index: int, element: DocumentElement):
        classification = self._classify(element)

        if classification.is_header:
            self._start_section(index, element, classification)
            return

        if self.state == DetectorState.PREAMBLE:
            self.preamble.append((index, element))
        else:
            self.current.body.append(element)

    def _classify(self, element: DocumentElement) -> Classification:
        """Header decision for one element. Lists and tables never start a section."""
        if element.type in (ElementType.LIST, ElementType.TABLE):
            return Classification(element.type)

        if element.type == ElementType.HEADER:
            found = self.classifier.classify(
                element.content, element.font_info, declared_header=True
            )
            if found.is_header:
                level = element.level or found.level or DEFAULT_HEADER_LEVEL
                return Classification(
                    ElementType.HEADER, found.rule, level, found.confidence,
                    style_matched=found.style_matched,
                )
            # Declared by the extractor but too long for any header rule
            return Classification(
                ElementType.HEADER,
                "declared",
                element.level or DEFAULT_HEADER_LEVEL,
                self.classifier.header_confidence(
                    element.content.strip(),
                    pattern_matched=False,
                    font_info=element.font_info,
                    declared=True,
                ),
            )

        return self.classifier.classify(element.content, element.font_info)

    def _start_section(
        self,
        index: int,
        element: DocumentElement,
        classification: Classification,
    ):
        """Close the open section and start a new one."""
        if self.current is not None:
            self._close_section(index)

        title = element.content.strip()
        if classification.rule == "markdown":
            title = title.lstrip("#").strip()

        number = len(self.sections) + 1
        self.current = _OpenSection(
            number=number,
            header=element,
            title=title,
            level=classification.level or DEFAULT_HEADER_LEVEL,
            start=index,
            confidence=round(classification.confidence * element.confidence, 3),
            rule=classification.rule,
        )
        self.state = DetectorState.SECTION_BODY

        logger.debug(
            f"Detected section {number} '{title[:40]}' "
            f"(level {self.current.level}, rule {classification.rule})"
        )

    def _close_section(self, end: int):
        """Store the open section, covering elements [start, end)."""
        current = self.current
        self.sections.append(DocumentSection(
            id=f"section_{current.number}",
            title=current.title,
            content=_join(current.body),
            level=current.level,
            start_position=current.start,
            end_position=max(end, current.start + 1),
            elements=[current.header, *current.body],
            confidence=current.confidence,
            metadata={
                "rule": current.rule,
                "page_number": current.header.page_number,
                "element_count": len(current.body) + 1,
            },
        ))
        self.current = None

    def _finalize(self, processed: int) -> list[DocumentSection]:
        """Close pending state and apply preamble / fallback handling."""
        if self.current is not None:
            self._close_section(processed)

        if not self.sections:
            self.used_fallback = True
            body = [element for _, element in self.preamble]
            logger.info("No headers detected, using single fallback section")
            return [DocumentSection(
                id=FALLBACK_SECTION_ID,
                title=FALLBACK_SECTION_TITLE,
                content=_join(body),
                level=0,
                start_position=0,
                end_position=processed,
                elements=body,
                confidence=WEAK_CONFIDENCE,
                metadata={"fallback": True, "element_count": len(body)},
            )]

        if self.preamble:
            body = [element for _, element in self.preamble]
            self.sections.insert(0, DocumentSection(
                id=PREAMBLE_SECTION_ID,
                title=PREAMBLE_SECTION_TITLE,
                content=_join(body),
                # Never nests the sections that follow it
                level=min(s.level for s in self.sections),
                start_position=self.preamble[0][0],
                end_position=self.sections[0].start_position,
                elements=body,
                confidence=WEAK_CONFIDENCE,
                metadata={"preamble": True, "element_count": len(body)},
            ))

        return self.sections


def _join(elements: list[DocumentElement]) -> str:
    return "\n\n".join(e.plain_text.strip() for e in elements if e.plain_text.strip())
