"""
Response Parser
===============
Staged pipeline that turns a raw LLM reply into a ParsedResponse.

Pipeline:
    raw text → strip fences / prose → decode (repair once) → normalize →
    schema validation → anchor cross-validation → rule checks →
    metadata extraction → ParsedResponse

parse() and parse_with_fallback() never raise. Unrepairable JSON and
internal faults become invalid responses carrying the diagnostic.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Any, Optional

from .anchors import DEFAULT_PREFIX, DEFAULT_SUFFIX, unwrap_anchor
from .errors import ResponseParsingError, SchemaError
from .json_repair import decode_object
from .metadata import detect_schema_type, extract_metadata
from .models import (
    AMBIGUITY,
    ANCHOR_BEARING_TYPES,
    CONTRADICTION,
    TRANSLATION,
    AnchorCheck,
    LlmParsingRequest,
    ParsedResponse,
    ParseOutcome,
)
from .schema_store import SchemaStore

logger = logging.getLogger(__name__)

FALLBACK_WARNING = "fallback parsing used"

WHITESPACE_RUN = re.compile(r"\s+")
NUMERIC_STRING = re.compile(r"^[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?$")

# Keys whose string values are identifiers, never numbers
NON_NUMERIC_KEYS = frozenset({"anchor"})

RULE_ANCHORS_REQUIRED = "anchors_required"
RULE_CONFIDENCE_REQUIRED = "confidence_required"


class ResponseParser:
    """
    Parses LLM replies against optional schemas and expected anchors.
    Holds no per-call state; safe to share between threads.
    """

    def __init__(
        self,
        schema_store: Optional[SchemaStore] = None,
        anchor_prefix: str = DEFAULT_PREFIX,
        anchor_suffix: str = DEFAULT_SUFFIX,
    ):
        self.schema_store = schema_store or SchemaStore()
        self.anchor_prefix = anchor_prefix
        self.anchor_suffix = anchor_suffix

    def parse(self, request: LlmParsingRequest) -> ParsedResponse:
        """
        Parse one reply.

        Returns:
            ParsedResponse. is_valid is False for unparseable replies and,
            under strict validation, for any error.
        """
        try:
            return self._parse(request)
        except Exception as e:
            logger.exception(
                f"Unexpected error while parsing {request.schema_type or 'unknown'} response"
            )
            return self._failure(request, [f"Unexpected parsing error: {e}"], [])

    def parse_with_fallback(self, request: LlmParsingRequest) -> ParsedResponse:
        """
        Parse strictly, then once more without schema or rules if the
        strict pass was not successful.

        The outcome field tells which pass produced the result.
        """
        primary = self.parse(request)
        if primary.is_successful():
            primary.outcome = ParseOutcome.VALID_PRIMARY
            return primary

        logger.info(
            f"Primary parsing failed with {len(primary.errors)} errors, "
            f"attempting fallback parsing"
        )

        relaxed = request.model_copy(update={
            "expected_schema": None,
            "validation_rules": [],
            "strict_validation": False,
        })
        fallback = self.parse(relaxed)

        fallback.warnings = [*primary.warnings, *fallback.warnings, FALLBACK_WARNING]
        fallback.metadata = {
            **fallback.metadata,
            "fallback_used": True,
            "primary_errors": primary.errors,
        }
        fallback.outcome = (
            ParseOutcome.VALID_FALLBACK if fallback.is_valid else ParseOutcome.INVALID
        )
        return fallback

    # ─── Pipeline ─────────────────────────────────────────────────────────

    def _parse(self, request: LlmParsingRequest) -> ParsedResponse:
        errors: list[str] = []
        warnings: list[str] = []

        # ── Stage 1-2: Extract and decode ─────────────────────────────
        try:
            data, repaired = decode_object(request.raw_response)
        except ResponseParsingError as e:
            logger.warning(
                f"JSON parsing failed for {request.schema_type or 'unknown'} "
                f"response ({len(request.raw_response)} chars): {e}"
            )
            return self._failure(request, [str(e)], warnings)

        if repaired:
            warnings.append("JSON was repaired before parsing")

        # ── Stage 3: Normalize ────────────────────────────────────────
        schema, schema_errors = self._resolve_schema(request.expected_schema)
        errors.extend(schema_errors)
        data = normalize(data, schema=schema)
        schema_type = request.schema_type or detect_schema_type(data)

        # ── Stage 4: Schema ───────────────────────────────────────────
        if schema is not None:
            result = self.schema_store.validate_data_against_schema(data, schema)
            errors.extend(result.errors)
            warnings.extend(result.warnings)

        # ── Stage 5: Anchors ──────────────────────────────────────────
        response_anchors = self.extract_anchors(data, schema_type)
        anchor_checks: list[AnchorCheck] = []
        if request.original_anchors and schema_type in ANCHOR_BEARING_TYPES:
            anchor_checks = self.cross_validate_anchors(
                request.original_anchors, response_anchors
            )

        # ── Stage 6: Rules ────────────────────────────────────────────
        rule_errors, rule_warnings = self._apply_rules(data, request.validation_rules)
        errors.extend(rule_errors)
        warnings.extend(rule_warnings)

        # ── Stage 7: Metadata ─────────────────────────────────────────
        metadata = {
            "response_length": len(request.raw_response),
            "parsed_fields_count": len(data),
            "schema_type": schema_type,
            "has_anchors": bool(find_anchor_values(data)),
            "anchor_count": len(response_anchors),
            "parsing_timestamp": datetime.now(timezone.utc).isoformat(),
            "json_repaired": repaired,
        }
        metadata.update(extract_metadata(data, schema_type))

        # ── Stage 8: Assemble ─────────────────────────────────────────
        is_valid = not errors or (not request.strict_validation and bool(data))
        response = ParsedResponse(
            is_valid=is_valid,
            parsed_data=data,
            errors=errors,
            warnings=warnings,
            metadata=metadata,
            schema_type=schema_type,
            anchor_validation=anchor_checks,
            raw_response=request.raw_response,
            outcome=ParseOutcome.VALID_PRIMARY if is_valid else ParseOutcome.INVALID,
        )

        logger.debug(
            f"Parsed {schema_type} response: valid={is_valid}, "
            f"{len(errors)} errors, {len(warnings)} warnings, "
            f"anchors {response.valid_anchor_count} ok / "
            f"{response.invalid_anchor_count} bad"
        )
        return response

    def _resolve_schema(self, expected_schema) -> tuple[Optional[dict], list[str]]:
        if expected_schema is None:
            return None, []
        if not isinstance(expected_schema, str):
            return expected_schema, []
        try:
            return self.schema_store.get_schema(expected_schema), []
        except SchemaError as e:
            logger.error(f"Cannot validate against schema {expected_schema}: {e}")
            return None, [str(e)]

    # ─── Anchors ──────────────────────────────────────────────────────────

    def extract_anchors(self, data: Any, schema_type: Optional[str]) -> list[str]:
        """
        Anchor ids referenced by a response, unwrapped, in order, unique.

        sections[].anchor wins when present. Otherwise the locations for
        the schema type are read, and for other types every "anchor" key.
        """
        if not isinstance(data, dict):
            return []

        sections = data.get("sections")
        if isinstance(sections, list):
            raw = [s.get("anchor") for s in sections if isinstance(s, dict)]
        elif schema_type == TRANSLATION:
            raw = [
                s.get("anchor")
                for s in _dict_list(data.get("section_translations"))
            ]
        elif schema_type == CONTRADICTION:
            raw = _location_anchors(data.get("contradictions_found"))
        elif schema_type == AMBIGUITY:
            raw = [a.get("anchor") for a in _dict_list(data.get("ambiguities_found"))]
            raw.extend(_location_anchors(data.get("ambiguities_found")))
        else:
            raw = find_anchor_values(data)

        anchors: list[str] = []
        for value in raw:
            if isinstance(value, str) and value.strip():
                anchor = self.unwrap(value)
                if anchor not in anchors:
                    anchors.append(anchor)
        return anchors

    def cross_validate_anchors(
        self, original_anchors: list[str], response_anchors: list[str]
    ) -> list[AnchorCheck]:
        """
        Compare expected anchors with the ones a response references.
        Missing and unexpected anchors both count as invalid.
        """
        expected = []
        for anchor in original_anchors:
            anchor = self.unwrap(anchor)
            if anchor not in expected:
                expected.append(anchor)

        found = set(response_anchors)
        checks = [
            AnchorCheck(
                anchor=anchor,
                is_valid=anchor in found,
                found_in_response=anchor in found,
                error=None if anchor in found else "Anchor not found in response",
            )
            for anchor in expected
        ]

        expected_set = set(expected)
        checks.extend(
            AnchorCheck(
                anchor=anchor,
                is_valid=False,
                found_in_response=True,
                error="Unexpected anchor in response",
            )
            for anchor in response_anchors
            if anchor not in expected_set
        )
        return checks

    def unwrap(self, anchor: str) -> str:
        return unwrap_anchor(anchor, self.anchor_prefix, self.anchor_suffix)

    # ─── Rules ────────────────────────────────────────────────────────────

    @staticmethod
    def _apply_rules(data: dict, rules: list[str]) -> tuple[list[str], list[str]]:
        errors: list[str] = []
        warnings: list[str] = []

        for rule in rules:
            if rule == RULE_ANCHORS_REQUIRED:
                if not find_anchor_values(data):
                    errors.append("Response must contain anchor references")
            elif rule == RULE_CONFIDENCE_REQUIRED:
                summary = data.get("analysis_summary")
                if "confidence" not in data and not (
                    isinstance(summary, dict) and "confidence" in summary
                ):
                    warnings.append("Confidence score not found in response")
            else:
                warnings.append(f"Unknown validation rule ignored: {rule}")

        return errors, warnings

    @staticmethod
    def _failure(
        request: LlmParsingRequest, errors: list[str], warnings: list[str]
    ) -> ParsedResponse:
        return ParsedResponse(
            is_valid=False,
            parsed_data={},
            errors=errors,
            warnings=warnings,
            schema_type=request.schema_type,
            raw_response=request.raw_response,
            outcome=ParseOutcome.INVALID,
            metadata={
                "response_length": len(request.raw_response),
                "parsing_failed": True,
                "parsing_timestamp": datetime.now(timezone.utc).isoformat(),
            },
        )


# ─── Normalization ────────────────────────────────────────────────────────────


def normalize(value: Any, key: Optional[str] = None, schema: Any = None) -> Any:
    """
    Trim and collapse whitespace in every string; turn numeric-looking
    strings into int or float. Anchor values and values whose schema
    allows "string" stay strings.
    """
    if isinstance(value, dict):
        return {
            k: normalize(v, k, _subschema(schema, "properties", k))
            for k, v in value.items()
        }
    if isinstance(value, list):
        return [
            normalize(item, key, _subschema(schema, "items")) for item in value
        ]
    if isinstance(value, str):
        text = WHITESPACE_RUN.sub(" ", value.strip())
        if (
            key not in NON_NUMERIC_KEYS
            and not _allows_string(schema)
            and NUMERIC_STRING.match(text)
        ):
            if any(c in text for c in ".eE"):
                return float(text)
            return int(text)
        return text
    return value


def find_anchor_values(data: Any) -> list[str]:
    """Every string stored under an "anchor" key, at any depth."""
    found: list[str] = []
    if isinstance(data, dict):
        for key, value in data.items():
            if key == "anchor" and isinstance(value, str):
                found.append(value)
            else:
                found.extend(find_anchor_values(value))
    elif isinstance(data, list):
        for item in data:
            found.extend(find_anchor_values(item))
    return found


def _subschema(schema: Any, keyword: str, key: Optional[str] = None) -> Optional[dict]:
    if not isinstance(schema, dict):
        return None
    found = schema.get(keyword)
    if key is not None:
        found = found.get(key) if isinstance(found, dict) else None
    return found if isinstance(found, dict) else None


def _allows_string(schema: Optional[dict]) -> bool:
    if schema is None:
        return False
    expected = schema.get("type")
    return "string" in (expected if isinstance(expected, list) else [expected])


def _dict_list(value: Any) -> list[dict]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


def _location_anchors(entries: Any) -> list[Any]:
    return [
        location.get("anchor")
        for entry in _dict_list(entries)
        for location in _dict_list(entry.get("locations"))
    ]
