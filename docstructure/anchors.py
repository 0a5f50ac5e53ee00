"""
Anchor Allocator
================
Generates unique section markers and substitutes content back into text.

Markers are literal substrings of the form
    <!-- SECTION_ANCHOR_{anchor_id} -->
and must stay byte-exact, since replacement is substring based.

One allocator holds the used-set of a single analysis run. Create a new
instance (or call reset()) for every independent run.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Optional

from .errors import InputValidationError
from .validator import validate_anchor_id, validate_search_text

logger = logging.getLogger(__name__)

DEFAULT_PREFIX = "<!-- SECTION_ANCHOR_"
DEFAULT_SUFFIX = " -->"

TAG_PATTERN = re.compile(r"<[^>]*>")
WHITESPACE_PATTERN = re.compile(r"\s+")
UNSAFE_CHARS_PATTERN = re.compile(r"[^A-Za-z0-9_\- ]")
SEPARATOR_RUN_PATTERN = re.compile(r"[\s\-_]+")

TRANSLITERATION = {
    "а": "a", "б": "b", "в": "v", "г": "g", "д": "d",
    "е": "e", "ё": "yo", "ж": "zh", "з": "z", "и": "i",
    "й": "y", "к": "k", "л": "l", "м": "m", "н": "n",
    "о": "o", "п": "p", "р": "r", "с": "s", "т": "t",
    "у": "u", "ф": "f", "х": "kh", "ц": "ts", "ч": "ch",
    "ш": "sh", "щ": "sch", "ъ": "", "ы": "y", "ь": "",
    "э": "e", "ю": "yu", "я": "ya",
    "А": "A", "Б": "B", "В": "V", "Г": "G", "Д": "D",
    "Е": "E", "Ё": "Yo", "Ж": "Zh", "З": "Z", "И": "I",
    "Й": "Y", "К": "K", "Л": "L", "М": "M", "Н": "N",
    "О": "O", "П": "P", "Р": "R", "С": "S", "Т": "T",
    "У": "U", "Ф": "F", "Х": "Kh", "Ц": "Ts", "Ч": "Ch",
    "Ш": "Sh", "Щ": "Sch", "Ъ": "", "Ы": "Y", "Ь": "",
    "Э": "E", "Ю": "Yu", "Я": "Ya",
}
_TRANSLITERATION_TABLE = str.maketrans(TRANSLITERATION)


@dataclass
class AnchorConfig:
    """Marker format and title normalization settings."""
    prefix: str = DEFAULT_PREFIX
    suffix: str = DEFAULT_SUFFIX
    max_title_length: int = 50
    transliteration: bool = True
    normalize_case: bool = True


def unwrap_anchor(
    anchor: str,
    prefix: str = DEFAULT_PREFIX,
    suffix: str = DEFAULT_SUFFIX,
) -> str:
    """Return the inner id of a wrapped marker, or the value unchanged."""
    anchor = anchor.strip()
    if anchor.startswith(prefix) and anchor.endswith(suffix):
        return anchor[len(prefix):len(anchor) - len(suffix)]
    return anchor


class AnchorAllocator:
    """
    Issues collision-free anchors for one analysis run.
    Not shared between runs or threads.
    """

    def __init__(self, config: Optional[AnchorConfig] = None):
        self.config = config or AnchorConfig()
        self._used: list[str] = []
        self._used_set: set[str] = set()
        self._marker_pattern = re.compile(
            re.escape(self.config.prefix) + r"(.*?)" + re.escape(self.config.suffix)
        )

    @property
    def used_anchors(self) -> list[str]:
        """Anchor ids issued so far, in issue order."""
        return list(self._used)

    def reset(self):
        """Forget every issued anchor."""
        self._used = []
        self._used_set = set()

    # ─── Generation ───────────────────────────────────────────────────────

    def generate(self, section_id: str, title: str) -> str:
        """
        Issue a wrapped marker for a section.

        Raises:
            InputValidationError: If section_id is not a safe identifier.
        """
        validate_anchor_id(section_id)

        base = f"{section_id}_{self.normalize_title(title)}"
        anchor_id = base
        counter = 1
        while anchor_id in self._used_set:
            anchor_id = f"{base}_{counter}"
            counter += 1

        self._used.append(anchor_id)
        self._used_set.add(anchor_id)
        return self.wrap(anchor_id)

    def generate_batch(self, sections: dict[str, str]) -> dict[str, str]:
        """Issue markers for a {section_id: title} mapping, in order."""
        return {
            section_id: self.generate(section_id, title)
            for section_id, title in sections.items()
        }

    def normalize_title(self, title: str) -> str:
        title = TAG_PATTERN.sub("", title)
        title = title[: self.config.max_title_length]

        if self.config.transliteration:
            title = title.translate(_TRANSLITERATION_TABLE)

        title = WHITESPACE_PATTERN.sub(" ", title)
        title = UNSAFE_CHARS_PATTERN.sub("", title)
        title = SEPARATOR_RUN_PATTERN.sub("_", title).strip("_")

        if self.config.normalize_case:
            title = title.lower()

        return title or "section"

    # ─── Marker Helpers ───────────────────────────────────────────────────

    def wrap(self, anchor_id: str) -> str:
        return f"{self.config.prefix}{anchor_id}{self.config.suffix}"

    def is_valid_anchor(self, anchor: str) -> bool:
        return (
            anchor.startswith(self.config.prefix)
            and anchor.endswith(self.config.suffix)
            and len(anchor) > len(self.config.prefix) + len(self.config.suffix)
        )

    def extract_anchor_id(self, anchor: str) -> Optional[str]:
        if not self.is_valid_anchor(anchor):
            return None
        return unwrap_anchor(anchor, self.config.prefix, self.config.suffix)

    def find_anchors_in_text(self, text: str) -> list[str]:
        """All wrapped markers in text, in order of appearance."""
        validate_search_text(text)
        return [m.group(0) for m in self._marker_pattern.finditer(text)]

    def find_marker(self, text: str, anchor_id: str) -> Optional[str]:
        """
        Locate the wrapped marker for an anchor id.

        Resolution order: exact inner id, then the first marker whose
        inner id extends anchor_id (a bare section id such as "section_3"
        finds "section_3_payment_terms").
        """
        anchor_id = unwrap_anchor(anchor_id, self.config.prefix, self.config.suffix)
        validate_anchor_id(anchor_id)
        validate_search_text(text)

        exact = self.wrap(anchor_id)
        if exact in text:
            return exact

        for match in self._marker_pattern.finditer(text):
            if match.group(1).startswith(f"{anchor_id}_"):
                return match.group(0)
        return None

    # ─── Substitution ─────────────────────────────────────────────────────

    def replace_anchor(self, text: str, anchor_id: str, content: str) -> str:
        """
        Replace the marker for anchor_id with content, verbatim.
        Returns text unchanged if no marker is found.
        """
        marker = self.find_marker(text, anchor_id)
        if marker is None:
            logger.debug(f"Anchor not found, nothing replaced: {anchor_id}")
            return text
        return text.replace(marker, content)

    def insert_after_anchor(self, text: str, anchor_id: str, insertion: str) -> str:
        marker = self.find_marker(text, anchor_id)
        if marker is None:
            logger.debug(f"Anchor not found, nothing inserted: {anchor_id}")
            return text
        return text.replace(marker, f"{marker}\n{insertion}")

    def remove_anchor(self, text: str, anchor_id: str) -> str:
        return self.replace_anchor(text, anchor_id, "")

    def remove_all_anchors(self, text: str) -> str:
        validate_search_text(text)
        return self._marker_pattern.sub("", text)


def substitute_anchors(
    text: str,
    content_map: dict[str, str],
    allocator: Optional[AnchorAllocator] = None,
) -> str:
    """
    Put LLM-produced content back into anchored text.

    Args:
        text: Anchored document text.
        content_map: {anchor_id: content}, e.g. ParsedResponse.anchor_content_map().
        allocator: Supplies the marker format. Defaults to the standard format.

    Returns:
        Text with every matched marker replaced. Unmatched anchors are logged.
    """
    allocator = allocator or AnchorAllocator()
    replaced = 0
    for anchor_id, content in content_map.items():
        try:
            updated = allocator.replace_anchor(text, anchor_id, content)
        except InputValidationError as e:
            logger.warning(f"Skipping anchor {anchor_id!r}: {e}")
            continue
        if updated != text:
            replaced += 1
        text = updated

    if replaced < len(content_map):
        logger.warning(
            f"Substituted {replaced}/{len(content_map)} anchors; "
            f"{len(content_map) - replaced} had no marker in the text"
        )
    return text
