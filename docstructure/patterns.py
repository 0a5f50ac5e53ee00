"""
Pattern Classifier
==================
Ordered rule table that decides whether a unit of text is a header, a list,
a table, a paragraph or plain text.

Rules are tried in precedence order and the first match wins. New
section-boundary heuristics are added as rules, not as branches.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Optional

from .models import ElementType, FontInfo

logger = logging.getLogger(__name__)

# ─── Header Patterns ──────────────────────────────────────────────────────────

# "# Title" .. "###### Title"
MARKDOWN_HEADER = re.compile(r"^(#{1,6})\s+\S")

# "Chapter 3", "ГЛАВА IV"
CHAPTER_HEADER = re.compile(
    r"^(?:chapter|глава)\s+(?:\d+|[IVXLC]+)\b", re.IGNORECASE
)

# "Part 2", "Часть II"
PART_HEADER = re.compile(
    r"^(?:part|часть)\s+(?:\d+|[IVXLC]+)\b", re.IGNORECASE
)

# "Section 4.1", "Раздел 2", "Статья 7", "§ 12"
SECTION_HEADER = re.compile(
    r"^(?:section|article|раздел|статья|§)\s*(?:\d+(?:\.\d+)*|[IVXLC]+)\b",
    re.IGNORECASE,
)

# "1. PREDMET UGOVORA", "2.3 ОПЛАТА"
NUMBERED_CAPS_HEADER = re.compile(
    r"^(\d+(?:\.\d+)*)\.?\s+(?=[^a-zа-яё]*[A-ZА-ЯЁ])[^a-zа-яё]+$"
)

# "1. Payment terms", short and without terminal punctuation
NUMBERED_TITLE_HEADER = re.compile(
    r"^(\d+(?:\.\d+)*)\.?\s+[A-ZА-ЯЁ](?:.*[^.;,:\s])?$"
)

# "GENERAL PROVISIONS", at least three capital letters and no lowercase.
# List markers and column separators belong to other rules.
ALL_CAPS_HEADER = re.compile(
    r"^(?![-*•▪◦])(?!.*[|\t])(?=(?:[^A-ZА-ЯЁ]*[A-ZА-ЯЁ]){3})[^a-zа-яё]+$"
)

# ─── List / Table Patterns ────────────────────────────────────────────────────

BULLET_ITEM = re.compile(r"^\s*[-*•▪◦]\s+")
NUMBERED_ITEM = re.compile(r"^\s*\d+[.)]\s+")
LETTERED_ITEM = re.compile(r"^\s*\(?[a-zа-я]\)\s+")
ROMAN_ITEM = re.compile(r"^\s*[ivx]+\.\s+")

# Runs of column separators
TABLE_SEPARATOR = re.compile(r"\|+|\t+")

DEFAULT_MIN_PARAGRAPH_LENGTH = 50
DEFAULT_MAX_HEADER_LENGTH = 100


@dataclass(frozen=True)
class PatternRule:
    """One named classification rule."""
    name: str
    kind: ElementType
    pattern: re.Pattern
    precedence: int
    level: Optional[int] = None
    list_type: Optional[str] = None
    max_length: Optional[int] = None
    min_matches: int = 1
    # Header rule that yields to a list rule unless font or extractor
    # evidence backs it
    needs_evidence: bool = False

    def matches(self, text: str) -> Optional[re.Match]:
        if self.max_length is not None and len(text) > self.max_length:
            return None
        if self.min_matches > 1:
            found = list(self.pattern.finditer(text))
            return found[0] if len(found) >= self.min_matches else None
        return self.pattern.match(text)


@dataclass(frozen=True)
class Classification:
    """Result of classifying one unit of text."""
    kind: ElementType
    rule: Optional[str] = None
    level: Optional[int] = None
    confidence: float = 0.0
    list_type: Optional[str] = None
    style_matched: bool = False

    @property
    def is_header(self) -> bool:
        return self.kind == ElementType.HEADER


DEFAULT_RULES: tuple[PatternRule, ...] = (
    PatternRule("markdown", ElementType.HEADER, MARKDOWN_HEADER, 10),
    PatternRule("chapter", ElementType.HEADER, CHAPTER_HEADER, 20, level=1),
    PatternRule("part", ElementType.HEADER, PART_HEADER, 25, level=1),
    PatternRule("section", ElementType.HEADER, SECTION_HEADER, 30, level=2),
    PatternRule("numbered_caps", ElementType.HEADER, NUMBERED_CAPS_HEADER, 40),
    PatternRule(
        "numbered_title", ElementType.HEADER, NUMBERED_TITLE_HEADER, 50,
        max_length=80, needs_evidence=True,
    ),
    PatternRule("all_caps", ElementType.HEADER, ALL_CAPS_HEADER, 60, level=1),
    PatternRule("bullet", ElementType.LIST, BULLET_ITEM, 110, list_type="bullet"),
    PatternRule(
        "numbered", ElementType.LIST, NUMBERED_ITEM, 120, list_type="numbered"
    ),
    PatternRule(
        "lettered", ElementType.LIST, LETTERED_ITEM, 130, list_type="lettered"
    ),
    PatternRule("roman", ElementType.LIST, ROMAN_ITEM, 140, list_type="roman"),
    PatternRule(
        "table", ElementType.TABLE, TABLE_SEPARATOR, 200, min_matches=2
    ),
)


class PatternClassifier:
    """
    Classifies text units against an ordered rule table.

    Order per unit:
        style header → pattern header → list → table →
        multi-line list → paragraph by length → text
    """

    def __init__(
        self,
        rules: Optional[list[PatternRule]] = None,
        min_paragraph_length: int = DEFAULT_MIN_PARAGRAPH_LENGTH,
        max_header_length: int = DEFAULT_MAX_HEADER_LENGTH,
    ):
        self.rules = sorted(rules or DEFAULT_RULES, key=lambda r: r.precedence)
        self.min_paragraph_length = min_paragraph_length
        self.max_header_length = max_header_length

    def add_rule(self, rule: PatternRule):
        """Insert a rule, keeping precedence order."""
        self.rules = sorted([*self.rules, rule], key=lambda r: r.precedence)

    def rules_of(self, kind: ElementType) -> list[PatternRule]:
        return [r for r in self.rules if r.kind == kind]

    def classify(
        self,
        text: str,
        font_info: Optional[FontInfo] = None,
        declared_header: bool = False,
    ) -> Classification:
        """Classify a unit of text. Never matches more than one rule."""
        stripped = text.strip()
        if not stripped:
            return Classification(ElementType.TEXT)

        single_line = "\n" not in stripped

        # ── Headers: style check, then patterns ──────────────────────
        if single_line and len(stripped) <= self.max_header_length:
            rule, match = self._match(ElementType.HEADER, stripped)
            style_level = self._style_level(stripped, font_info)

            if (
                rule is not None
                and rule.needs_evidence
                and style_level is None
                and not declared_header
                and self._match(ElementType.LIST, stripped)[0] is not None
            ):
                # "1. Apples" on its own is a list item
                rule, match = None, None

            if style_level is not None or rule is not None:
                level = (
                    self._header_level(rule, match)
                    if rule is not None
                    else style_level
                )
                return Classification(
                    kind=ElementType.HEADER,
                    rule=rule.name if rule else "style",
                    level=level,
                    confidence=self.header_confidence(
                        stripped,
                        pattern_matched=rule is not None,
                        font_info=font_info,
                        declared=declared_header,
                    ),
                    style_matched=style_level is not None,
                )

        # ── Single-line list item ────────────────────────────────────
        if single_line:
            rule, _ = self._match(ElementType.LIST, stripped)
            if rule is not None:
                return Classification(
                    ElementType.LIST, rule.name, confidence=0.9,
                    list_type=rule.list_type,
                )

        # ── Table ────────────────────────────────────────────────────
        rule, _ = self._match(ElementType.TABLE, stripped)
        if rule is not None:
            rows = [
                line for line in stripped.splitlines()
                if TABLE_SEPARATOR.search(line)
            ]
            return Classification(
                ElementType.TABLE, rule.name,
                confidence=0.8 if len(rows) >= 2 else 0.6,
            )

        # ── Multi-line list ──────────────────────────────────────────
        if not single_line:
            listed = self._multiline_list(stripped)
            if listed is not None:
                return listed

        # ── Paragraph / text ─────────────────────────────────────────
        if not single_line or len(stripped) >= self.min_paragraph_length:
            return Classification(ElementType.PARAGRAPH, "length", confidence=0.8)

        return Classification(ElementType.TEXT, confidence=0.6)

    def is_header(self, text: str, font_info: Optional[FontInfo] = None) -> bool:
        return self.classify(text, font_info).is_header

    def header_confidence(
        self,
        text: str,
        pattern_matched: bool,
        font_info: Optional[FontInfo] = None,
        declared: bool = False,
    ) -> float:
        """
        Score how certain we are that a line starts a section.

        Base 0.5, +0.3 pattern, +0.2 large font, +0.1 bold,
        +0.1 declared by the extractor, +0.1 short line. Capped at 1.0.
        """
        score = 0.5
        if pattern_matched:
            score += 0.3
        if font_info is not None:
            if font_info.size is not None and font_info.size >= 16:
                score += 0.2
            if font_info.is_bold:
                score += 0.1
        if declared:
            score += 0.1
        if len(text) < self.max_header_length:
            score += 0.1
        return round(min(score, 1.0), 3)

    def list_items(self, text: str) -> tuple[list[str], Optional[str]]:
        """Split a list block into marker-free items and its list type."""
        items: list[str] = []
        list_type = None
        for line in text.splitlines():
            line = line.strip()
            if not line:
                continue
            rule, match = self._match(ElementType.LIST, line)
            if rule is not None:
                list_type = list_type or rule.list_type
                items.append(line[match.end():].strip())
            elif items:
                # Continuation of the previous item
                items[-1] = f"{items[-1]} {line}"
            else:
                items.append(line)
        return items, list_type

    # ─── Internals ────────────────────────────────────────────────────────

    def _match(
        self, kind: ElementType, text: str
    ) -> tuple[Optional[PatternRule], Optional[re.Match]]:
        for rule in self.rules:
            if rule.kind != kind:
                continue
            match = rule.matches(text)
            if match is not None:
                return rule, match
        return None, None

    def _header_level(self, rule: PatternRule, match: re.Match) -> int:
        if rule.level is not None:
            return rule.level
        if rule.name == "markdown":
            return len(match.group(1))
        if match.groups() and match.group(1):
            # "2.3.1" → depth 3
            return min(match.group(1).count(".") + 1, 6)
        return 3

    def _style_level(
        self, text: str, font_info: Optional[FontInfo]
    ) -> Optional[int]:
        if font_info is None or text.endswith((".", ";", ",")):
            return None
        if font_info.size is not None:
            if font_info.size >= 20:
                return 1
            if font_info.size >= 16:
                return 2
            if font_info.size >= 14:
                return 3
        if font_info.is_bold:
            return 2
        return None

    def _is_strong_header(self, line: str) -> bool:
        """Header on its pattern alone, e.g. "2. OPLATA"."""
        if len(line) > self.max_header_length:
            return False
        rule, _ = self._match(ElementType.HEADER, line)
        return rule is not None and not rule.needs_evidence

    def _multiline_list(self, text: str) -> Optional[Classification]:
        lines = [line.strip() for line in text.splitlines() if line.strip()]
        marked = []
        for line in lines:
            if self._is_strong_header(line):
                continue
            rule, _ = self._match(ElementType.LIST, line)
            if rule is not None:
                marked.append(rule)

        if len(marked) < 2 or len(marked) <= len(lines) / 2:
            return None

        ratio = len(marked) / len(lines)
        return Classification(
            ElementType.LIST,
            marked[0].name,
            confidence=round(0.5 + 0.4 * ratio, 3),
            list_type=marked[0].list_type,
        )
