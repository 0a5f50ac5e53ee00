"""
Data Models
===========
Pydantic models for document structure analysis and parsed LLM responses.
All models are serializable to JSON for prompt builders and result storage.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, Field, computed_field, model_validator


# ─── Enums ────────────────────────────────────────────────────────────────────


class ElementType(str, Enum):
    """Type of element produced by a document extractor."""
    HEADER = "header"
    PARAGRAPH = "paragraph"
    LIST = "list"
    TABLE = "table"
    TEXT = "text"


class ParseOutcome(str, Enum):
    """How a parsed response was obtained."""
    VALID_PRIMARY = "valid_primary"
    VALID_FALLBACK = "valid_fallback"
    INVALID = "invalid"


# Response types understood by the parser and metadata extractors
TRANSLATION = "translation"
CONTRADICTION = "contradiction"
AMBIGUITY = "ambiguity"
GENERAL = "general"

SCHEMA_TYPES = (TRANSLATION, CONTRADICTION, AMBIGUITY, GENERAL)
ANCHOR_BEARING_TYPES = frozenset({TRANSLATION, CONTRADICTION, AMBIGUITY})


# ─── JSON Values ──────────────────────────────────────────────────────────────

JsonValue = Union[dict, list, str, int, float, bool, None]


def json_type(value: Any) -> str:
    """
    Tag a decoded JSON value with its JSON schema type name.

    bool is tested before the numeric types because it subclasses int.
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"
    raise TypeError(f"Not a JSON value: {type(value).__name__}")


# ─── Document Models ──────────────────────────────────────────────────────────


class FontInfo(BaseModel):
    """Font metadata for a text element."""
    name: Optional[str] = None
    size: Optional[float] = None
    flags: Optional[int] = None
    is_bold: bool = False
    is_italic: bool = False


class DocumentElement(BaseModel):
    """
    A single element produced by an extractor.
    Headers carry a level, lists carry items and a list type.
    """
    type: ElementType
    content: str = ""
    level: Optional[int] = Field(default=None, ge=1, le=10)
    items: list[str] = Field(default_factory=list)
    list_type: Optional[str] = None
    font_info: Optional[FontInfo] = None
    page_number: Optional[int] = Field(default=None, ge=1)
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def plain_text(self) -> str:
        if self.type == ElementType.LIST and not self.content:
            return "\n".join(f"- {item}" for item in self.items)
        return self.content

    @classmethod
    def header(cls, content: str, level: int = 1, **kwargs) -> DocumentElement:
        return cls(type=ElementType.HEADER, content=content, level=level, **kwargs)

    @classmethod
    def paragraph(cls, content: str, **kwargs) -> DocumentElement:
        return cls(type=ElementType.PARAGRAPH, content=content, **kwargs)

    @classmethod
    def text(cls, content: str, **kwargs) -> DocumentElement:
        return cls(type=ElementType.TEXT, content=content, **kwargs)

    @classmethod
    def table(cls, content: str, **kwargs) -> DocumentElement:
        return cls(type=ElementType.TABLE, content=content, **kwargs)

    @classmethod
    def list_of(
        cls, items: list[str], list_type: str = "bullet", **kwargs
    ) -> DocumentElement:
        return cls(type=ElementType.LIST, items=items, list_type=list_type, **kwargs)


class ExtractedDocument(BaseModel):
    """
    Read-only input to the structure analyzer.
    Elements are kept in reading order.
    """
    original_path: str = ""
    mime_type: str = "text/plain"
    elements: list[DocumentElement] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    total_pages: int = Field(default=0, ge=0)
    extraction_time: float = Field(default=0.0, ge=0.0)
    errors: list[str] = Field(default_factory=list)

    @property
    def plain_text(self) -> str:
        return "\n\n".join(e.plain_text for e in self.elements if e.plain_text)

    def headers(self) -> list[DocumentElement]:
        return self.elements_by_type(ElementType.HEADER)

    def elements_by_type(self, element_type: ElementType) -> list[DocumentElement]:
        return [e for e in self.elements if e.type == element_type]

    def has_errors(self) -> bool:
        return bool(self.errors)


# ─── Section Models ───────────────────────────────────────────────────────────


class DocumentSection(BaseModel):
    """
    A titled span of a document.

    Positions are element indices into the source document: the section
    covers elements[start_position:end_position].
    """
    id: str
    title: str
    content: str = ""
    level: int = Field(ge=0, le=10)
    start_position: int = Field(ge=0)
    end_position: int = Field(ge=0)
    anchor: str = Field(default="", description="Wrapped marker embedded in text")
    anchor_id: str = Field(default="", description="Marker id without wrapping")
    elements: list[DocumentElement] = Field(default_factory=list)
    subsections: list[DocumentSection] = Field(default_factory=list)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_positions(self) -> DocumentSection:
        if self.end_position < self.start_position:
            raise ValueError(
                f"Section {self.id}: end_position {self.end_position} "
                f"precedes start_position {self.start_position}"
            )
        return self

    @property
    def total_length(self) -> int:
        """Content length including all nested subsections."""
        return len(self.content) + sum(s.total_length for s in self.subsections)

    def has_subsections(self) -> bool:
        return bool(self.subsections)

    def all_subsections(self) -> list[DocumentSection]:
        """All descendants, depth-first."""
        result = []
        for sub in self.subsections:
            result.append(sub)
            result.extend(sub.all_subsections())
        return result

    def plain_text(self) -> str:
        return f"{self.title}\n{self.content}".strip()


DocumentSection.model_rebuild()


class StructureAnalysisResult(BaseModel):
    """
    Complete output of one analyze() call.
    Sections hold the root level of the tree.
    """
    document_id: str
    sections: list[DocumentSection] = Field(default_factory=list)
    analysis_time: float = 0.0
    average_confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    statistics: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)
    warnings: list[str] = Field(default_factory=list)

    @computed_field
    @property
    def sections_count(self) -> int:
        return len(self.sections)

    @computed_field
    @property
    def total_sections_count(self) -> int:
        return len(self.all_sections())

    def is_successful(self) -> bool:
        return bool(self.sections) and "error" not in self.metadata

    def all_sections(self) -> list[DocumentSection]:
        """Every section in the tree, depth-first in document order."""
        result = []
        for section in self.sections:
            result.append(section)
            result.extend(section.all_subsections())
        return result

    def sections_by_level(self, level: int) -> list[DocumentSection]:
        return [s for s in self.all_sections() if s.level == level]

    def find_section_by_id(self, section_id: str) -> Optional[DocumentSection]:
        for section in self.all_sections():
            if section.id == section_id:
                return section
        return None

    def all_anchors(self) -> list[str]:
        return [s.anchor for s in self.all_sections() if s.anchor]

    def anchor_ids(self) -> list[str]:
        return [s.anchor_id for s in self.all_sections() if s.anchor_id]

    def anchored_text(self) -> str:
        """
        Document text with each section preceded by its anchor marker.
        This is the text handed to the LLM prompt builder.
        """
        parts = []
        for section in self.all_sections():
            body = section.plain_text()
            parts.append(f"{section.anchor}\n{body}" if section.anchor else body)
        return "\n\n".join(parts)


# ─── LLM Response Models ──────────────────────────────────────────────────────


class AnchorCheck(BaseModel):
    """Cross-validation result for one anchor."""
    anchor: str
    is_valid: bool
    found_in_response: bool
    error: Optional[str] = None


class LlmParsingRequest(BaseModel):
    """
    Input to the response parser.

    expected_schema is either a schema name resolved through the schema
    store or an inline schema object.
    """
    raw_response: str
    expected_schema: Optional[Union[str, dict[str, Any]]] = None
    schema_type: Optional[str] = None
    original_anchors: list[str] = Field(default_factory=list)
    validation_rules: list[str] = Field(default_factory=list)
    strict_validation: bool = True

    @classmethod
    def for_translation(
        cls,
        raw_response: str,
        original_anchors: list[str],
        schema: Optional[Union[str, dict]] = "translation_response",
    ) -> LlmParsingRequest:
        return cls(
            raw_response=raw_response,
            expected_schema=schema,
            schema_type=TRANSLATION,
            original_anchors=original_anchors,
            validation_rules=["anchors_required"],
            strict_validation=True,
        )

    @classmethod
    def for_analysis(
        cls,
        raw_response: str,
        analysis_type: str,
        schema: Optional[Union[str, dict]] = None,
        original_anchors: Optional[list[str]] = None,
    ) -> LlmParsingRequest:
        return cls(
            raw_response=raw_response,
            expected_schema=schema,
            schema_type=analysis_type,
            original_anchors=original_anchors or [],
            validation_rules=["confidence_required"],
            strict_validation=True,
        )

    @classmethod
    def for_general(
        cls,
        raw_response: str,
        schema: Optional[Union[str, dict]] = None,
    ) -> LlmParsingRequest:
        return cls(
            raw_response=raw_response,
            expected_schema=schema,
            schema_type=GENERAL,
            strict_validation=False,
        )


class ParsedResponse(BaseModel):
    """
    Output of the response parser.
    Always produced, including for unparseable input.
    """
    is_valid: bool = False
    parsed_data: Any = None
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    schema_type: Optional[str] = None
    anchor_validation: list[AnchorCheck] = Field(default_factory=list)
    raw_response: str = ""
    outcome: ParseOutcome = ParseOutcome.INVALID

    @computed_field
    @property
    def valid_anchor_count(self) -> int:
        return sum(1 for check in self.anchor_validation if check.is_valid)

    @computed_field
    @property
    def invalid_anchor_count(self) -> int:
        return sum(1 for check in self.anchor_validation if not check.is_valid)

    def is_successful(self) -> bool:
        return self.is_valid and not self.errors

    def has_warnings(self) -> bool:
        return bool(self.warnings)

    def has_partial_results(self) -> bool:
        return self.is_valid and bool(self.warnings)

    def anchor_errors(self) -> list[AnchorCheck]:
        return [check for check in self.anchor_validation if not check.is_valid]

    def get_data_by_path(self, path: str, default: Any = None) -> Any:
        """Look up a dotted path such as "sections.0.anchor"."""
        current = self.parsed_data
        for key in path.split("."):
            if isinstance(current, dict) and key in current:
                current = current[key]
            elif isinstance(current, list) and key.isdigit() and int(key) < len(current):
                current = current[int(key)]
            else:
                return default
        return current

    def anchor_content_map(self) -> dict[str, str]:
        """
        Map anchor ids to replacement content.

        Reads sections[].content first and falls back to
        section_translations[].translated_content.
        """
        data = self.parsed_data if isinstance(self.parsed_data, dict) else {}
        for key, content_key in (
            ("sections", "content"),
            ("section_translations", "translated_content"),
        ):
            entries = data.get(key)
            if not isinstance(entries, list):
                continue
            mapping = {
                str(entry["anchor"]): str(entry[content_key])
                for entry in entries
                if isinstance(entry, dict)
                and "anchor" in entry
                and content_key in entry
            }
            if mapping:
                return mapping
        return {}

    def content_for_anchor(self, anchor: str) -> Optional[str]:
        return self.anchor_content_map().get(anchor)


class SchemaValidationResult(BaseModel):
    """Outcome of validating data against a schema."""
    valid: bool = True
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class StructureReport(BaseModel):
    """Structural self-check of an analysis result."""
    total_sections: int = 0
    duplicate_anchors: list[str] = Field(default_factory=list)
    missing_anchors: list[str] = Field(default_factory=list)
    overlapping_sections: list[str] = Field(default_factory=list)
    out_of_range_confidence: list[str] = Field(default_factory=list)
    level_breakdown: dict[str, int] = Field(default_factory=dict)
    checked_at: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    @computed_field
    @property
    def is_consistent(self) -> bool:
        return not (
            self.duplicate_anchors
            or self.missing_anchors
            or self.overlapping_sections
            or self.out_of_range_confidence
        )

    def issues(self) -> list[str]:
        messages = []
        if self.duplicate_anchors:
            messages.append(f"Duplicate anchors: {', '.join(self.duplicate_anchors)}")
        if self.missing_anchors:
            messages.append(f"Sections without anchors: {', '.join(self.missing_anchors)}")
        if self.overlapping_sections:
            messages.append(
                f"Overlapping section positions: {', '.join(self.overlapping_sections)}"
            )
        if self.out_of_range_confidence:
            messages.append(
                f"Confidence out of range: {', '.join(self.out_of_range_confidence)}"
            )
        return messages
