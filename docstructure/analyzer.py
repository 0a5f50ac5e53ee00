"""
Structure Analyzer
==================
Main orchestrator that combines section detection, confidence filtering,
hierarchy construction and anchoring into one analysis pipeline.

Usage:
    analyzer = StructureAnalyzer(config)
    result = analyzer.analyze(document)
    # result is a StructureAnalysisResult; analyze() never raises

Architecture:
    ExtractedDocument → InputValidation → SectionDetector → flat sections →
    confidence filter → HierarchyBuilder → AnchorAllocator → statistics →
    StructureValidator → StructureAnalysisResult
"""

from __future__ import annotations

import hashlib
import logging
import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from . import __version__
from .anchors import AnchorAllocator, AnchorConfig
from .errors import AnalysisBudgetExceeded, InputValidationError
from .hierarchy import HierarchyBuilder, max_depth
from .models import DocumentSection, ExtractedDocument, StructureAnalysisResult
from .patterns import PatternClassifier
from .section_detector import AnalysisBudget, SectionDetector
from .validator import (
    MAX_BATCH_SIZE,
    MAX_DOCUMENT_CHARS,
    MAX_ELEMENTS,
    StructureValidator,
    validate_batch,
    validate_document,
)

logger = logging.getLogger(__name__)

LOG_FORMAT = "[%(asctime)s] %(levelname)-8s %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

MIN_ANALYZABLE_CHARS = 100

UNKNOWN_DOCUMENT_ID = "doc_unknown"


@dataclass
class AnalyzerConfig:
    """Configuration for the structure analyzer."""

    # Detection
    min_confidence_threshold: float = 0.3
    low_confidence_threshold: float = 0.7
    low_average_confidence: float = 0.6
    min_paragraph_length: int = 50

    # Budget
    max_analysis_time_seconds: float = 120.0
    check_interval: int = 50
    budget_warning_ratio: float = 0.8

    # Input limits
    max_elements: int = MAX_ELEMENTS
    max_document_chars: int = MAX_DOCUMENT_CHARS
    max_batch_size: int = MAX_BATCH_SIZE
    reject_suspicious_content: bool = True

    # Anchors
    anchors: AnchorConfig = field(default_factory=AnchorConfig)

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None

    @classmethod
    def from_env(cls, **overrides) -> AnalyzerConfig:
        """Build a config from STRUCTURE_* environment variables."""
        env = os.environ
        values = {}
        if "STRUCTURE_MIN_CONFIDENCE" in env:
            values["min_confidence_threshold"] = float(env["STRUCTURE_MIN_CONFIDENCE"])
        if "STRUCTURE_MAX_ANALYSIS_TIME" in env:
            values["max_analysis_time_seconds"] = float(
                env["STRUCTURE_MAX_ANALYSIS_TIME"]
            )
        if "STRUCTURE_MAX_ELEMENTS" in env:
            values["max_elements"] = int(env["STRUCTURE_MAX_ELEMENTS"])
        if "STRUCTURE_CHECK_INTERVAL" in env:
            values["check_interval"] = int(env["STRUCTURE_CHECK_INTERVAL"])
        if "STRUCTURE_LOG_LEVEL" in env:
            values["log_level"] = env["STRUCTURE_LOG_LEVEL"]
        if "STRUCTURE_LOG_FILE" in env:
            values["log_file"] = env["STRUCTURE_LOG_FILE"]
        values.update(overrides)
        return cls(**values)


def setup_logging(level: str = "INFO", log_file: Optional[str] = None):
    """Configure the package logger with console and optional file output."""
    log_level = getattr(logging, level.upper(), logging.INFO)

    package_logger = logging.getLogger("docstructure")
    package_logger.setLevel(log_level)

    # Console handler
    if not any(
        type(h) is logging.StreamHandler for h in package_logger.handlers
    ):
        console = logging.StreamHandler()
        console.setLevel(log_level)
        console.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
        package_logger.addHandler(console)

    # File handler
    if log_file and not any(
        isinstance(h, logging.FileHandler)
        and h.baseFilename == str(Path(log_file).resolve())
        for h in package_logger.handlers
    ):
        log_dir = Path(log_file).parent
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(log_level)
        file_handler.setFormatter(
            logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
        )
        package_logger.addHandler(file_handler)


class StructureAnalyzer:
    """
    Document structure analysis engine.

    Orchestrates the full pipeline:
        1. Input validation
        2. Section detection (budget-aware)
        3. Confidence filtering
        4. Hierarchy construction
        5. Anchor assignment
        6. Statistics, warnings and structural self-check

    Holds only read-only configuration. Each analyze() call creates its own
    AnchorAllocator, so one analyzer can serve parallel threads.
    """

    def __init__(
        self,
        config: Optional[AnalyzerConfig] = None,
        detector_factory=None,
    ):
        self.config = config or AnalyzerConfig()
        self.classifier = PatternClassifier(
            min_paragraph_length=self.config.min_paragraph_length
        )
        self.detector_factory = detector_factory or (
            lambda: SectionDetector(self.classifier)
        )
        self.hierarchy = HierarchyBuilder()
        self.structure_validator = StructureValidator()
        setup_logging(self.config.log_level, self.config.log_file)

    def analyze(self, document: ExtractedDocument) -> StructureAnalysisResult:
        """
        Analyze a document into an anchored section tree.

        Args:
            document: Extracted document, elements in reading order.

        Returns:
            StructureAnalysisResult. Invalid input and internal faults give
            a degraded result with warnings instead of an exception.
        """
        start_time = time.monotonic()
        document_id = UNKNOWN_DOCUMENT_ID

        try:
            # ── Step 1: Validate input ────────────────────────────────
            try:
                validate_document(
                    document,
                    max_elements=self.config.max_elements,
                    max_chars=self.config.max_document_chars,
                    reject_suspicious=self.config.reject_suspicious_content,
                )
            except InputValidationError as e:
                if isinstance(document, ExtractedDocument):
                    document_id = self.generate_document_id(document)
                logger.error(f"Document validation failed for {document_id}: {e}")
                return StructureAnalysisResult(
                    document_id=document_id,
                    metadata={"validation_error": str(e)},
                    warnings=[f"Document validation failed: {e}"],
                )

            document_id = self.generate_document_id(document)
            logger.info(
                f"Starting structure analysis of "
                f"{document.original_path or document_id} "
                f"({len(document.elements)} elements)"
            )
            return self._run(document, document_id, start_time)
        except Exception as e:
            elapsed = time.monotonic() - start_time
            logger.exception(f"Structure analysis failed for {document_id}")
            return StructureAnalysisResult(
                document_id=document_id,
                analysis_time=round(elapsed, 4),
                metadata={"error": str(e), "error_type": type(e).__name__},
                warnings=[f"Analysis failed: {e}"],
            )

    def analyze_batch(
        self, documents: list[ExtractedDocument]
    ) -> list[StructureAnalysisResult]:
        """
        Analyze documents one by one. A failing document never aborts
        the batch.

        Raises:
            InputValidationError: If the batch is empty, too large or holds
                something other than ExtractedDocument.
        """
        validate_batch(documents, self.config.max_batch_size)
        logger.info(f"Starting batch analysis of {len(documents)} documents")

        results = []
        for index, document in enumerate(documents):
            try:
                results.append(self.analyze(document))
            except Exception as e:
                logger.error(f"Batch analysis failed for document {index}: {e}")
                results.append(StructureAnalysisResult(
                    document_id=f"doc_batch_{index}",
                    metadata={"batch_error": str(e)},
                    warnings=[f"Batch processing failed: {e}"],
                ))

        succeeded = sum(1 for r in results if r.is_successful())
        logger.info(f"Batch complete: {succeeded}/{len(results)} documents analyzed")
        return results

    def can_analyze(self, document: ExtractedDocument) -> bool:
        """Quick check: elements present and enough text to structure."""
        if not document.elements:
            return False

        if len(document.plain_text.strip()) < MIN_ANALYZABLE_CHARS:
            return False

        if document.has_errors():
            logger.warning(
                f"Document has extraction errors, analysis may be inaccurate: "
                f"{document.errors}"
            )
        return True

    def generate_document_id(self, document: ExtractedDocument) -> str:
        """Deterministic id from the source path and text."""
        digest = hashlib.sha256()
        digest.update(document.original_path.encode("utf-8"))
        digest.update(document.plain_text.encode("utf-8"))
        return f"doc_{digest.hexdigest()[:16]}"

    # ─── Pipeline ─────────────────────────────────────────────────────────

    def _run(
        self,
        document: ExtractedDocument,
        document_id: str,
        start_time: float,
    ) -> StructureAnalysisResult:
        warnings: list[str] = []
        budget = AnalysisBudget(
            max_seconds=self.config.max_analysis_time_seconds,
            check_interval=self.config.check_interval,
            started_at=start_time,
        )

        # ── Step 2: Fresh allocator for this run ──────────────────────
        allocator = AnchorAllocator(self.config.anchors)

        # ── Step 3: Detect sections ───────────────────────────────────
        logger.info("Phase 1: Section detection")
        detector = self.detector_factory()
        budget_hit = False
        try:
            sections = detector.detect_sections(document, budget=budget)
        except AnalysisBudgetExceeded as e:
            budget_hit = True
            sections = e.sections
            warnings.append(
                f"Analysis time limit exceeded after {e.processed_elements} of "
                f"{len(document.elements)} elements; returning partial structure"
            )

        if getattr(detector, "used_fallback", False):
            warnings.append("No headers detected, fallback section used")

        # ── Step 4: Confidence filter ─────────────────────────────────
        logger.info("Phase 2: Confidence filtering")
        filtered = self.filter_by_confidence(sections)
        dropped = len(sections) - len(filtered)
        if dropped:
            warnings.append(
                f"{dropped} sections below confidence threshold "
                f"{self.config.min_confidence_threshold} were discarded"
            )

        # ── Step 5: Hierarchy ─────────────────────────────────────────
        logger.info("Phase 3: Hierarchy construction")
        tree = self.hierarchy.build(filtered)

        # ── Step 6: Anchors ───────────────────────────────────────────
        logger.info("Phase 4: Anchor assignment")
        tree = [self._assign_anchors(section, allocator) for section in tree]

        # ── Step 7: Statistics and warnings ───────────────────────────
        elapsed = time.monotonic() - start_time
        result = StructureAnalysisResult(
            document_id=document_id,
            sections=tree,
            analysis_time=round(elapsed, 4),
        )
        all_sections = result.all_sections()
        result.average_confidence = self.average_confidence(all_sections)
        result.statistics = self.calculate_statistics(tree, document)
        result.metadata = {
            "analyzer_version": __version__,
            "original_path": document.original_path,
            "mime_type": document.mime_type,
            "total_pages": document.total_pages,
            "elements_count": len(document.elements),
            "detected_sections": len(sections),
            "filtered_sections": len(filtered),
            "budget_exceeded": budget_hit,
            "anchors_issued": len(allocator.used_anchors),
        }
        warnings.extend(self._quality_warnings(result, elapsed))

        # ── Step 8: Structural self-check ─────────────────────────────
        report = self.structure_validator.validate(result)
        result.metadata["validation"] = report.model_dump()
        warnings.extend(report.issues())

        result.warnings = warnings

        logger.info(
            f"Analysis complete in {elapsed:.2f}s: "
            f"{result.total_sections_count} sections, "
            f"average confidence {result.average_confidence}"
        )
        return result

    def filter_by_confidence(
        self, sections: list[DocumentSection]
    ) -> list[DocumentSection]:
        """
        Keep sections at or above the threshold. If none qualify, keep the
        single highest-confidence section.
        """
        threshold = self.config.min_confidence_threshold
        kept = [s for s in sections if s.confidence >= threshold]
        if kept or not sections:
            return kept

        best = max(sections, key=lambda s: s.confidence)
        logger.warning(
            f"All {len(sections)} sections below threshold {threshold}; "
            f"keeping best section {best.id} ({best.confidence})"
        )
        return [best]

    def _assign_anchors(
        self, section: DocumentSection, allocator: AnchorAllocator
    ) -> DocumentSection:
        """Anchor a section, then its subsections, depth-first."""
        anchor = allocator.generate(section.id, section.title)
        return section.model_copy(update={
            "anchor": anchor,
            "anchor_id": allocator.extract_anchor_id(anchor),
            "subsections": [
                self._assign_anchors(sub, allocator) for sub in section.subsections
            ],
        })

    @staticmethod
    def average_confidence(sections: list[DocumentSection]) -> float:
        if not sections:
            return 0.0
        return round(sum(s.confidence for s in sections) / len(sections), 3)

    @staticmethod
    def calculate_statistics(
        tree: list[DocumentSection], document: ExtractedDocument
    ) -> dict:
        sections = []
        for root in tree:
            sections.append(root)
            sections.extend(root.all_subsections())

        if not sections:
            return {
                "total_sections": 0,
                "sections_by_level": {},
                "average_section_length": 0,
                "total_content_length": 0,
                "coverage_percentage": 0.0,
                "max_depth": 0,
            }

        by_level: dict[str, int] = {}
        total_length = 0
        for section in sections:
            key = str(section.level)
            by_level[key] = by_level.get(key, 0) + 1
            total_length += len(section.content)

        document_length = len(document.plain_text)
        coverage = total_length / document_length * 100 if document_length else 0.0

        return {
            "total_sections": len(sections),
            "sections_by_level": by_level,
            "average_section_length": total_length // len(sections),
            "total_content_length": total_length,
            "coverage_percentage": round(min(coverage, 100.0), 2),
            "max_depth": max_depth(tree),
            "max_level": max(s.level for s in sections),
        }

    def _quality_warnings(
        self, result: StructureAnalysisResult, elapsed: float
    ) -> list[str]:
        warnings = []
        sections = result.all_sections()

        if not sections:
            warnings.append("No sections detected in document")
            return warnings

        low = [
            s for s in sections
            if s.confidence < self.config.low_confidence_threshold
        ]
        if low:
            warnings.append(f"{len(low)} sections have low confidence scores")

        if result.average_confidence < self.config.low_average_confidence:
            warnings.append(
                f"Overall structure detection confidence is low "
                f"({result.average_confidence})"
            )

        limit = self.config.max_analysis_time_seconds
        if elapsed > limit * self.config.budget_warning_ratio:
            warnings.append(
                f"Analysis time {elapsed:.2f}s is close to the {limit}s limit"
            )
        return warnings
