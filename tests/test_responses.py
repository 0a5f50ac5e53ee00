"""
Test Suite for LLM Response Handling
====================================
Unit and integration tests for JSON recovery, the schema store, the
response parser and the metadata extractors.
"""

from __future__ import annotations

import json
import random

import pytest

from docstructure.analyzer import AnalyzerConfig, StructureAnalyzer
from docstructure.anchors import substitute_anchors
from docstructure.errors import InvalidSchema, ResponseParsingError, SchemaNotFound
from docstructure.json_repair import decode_object, repair_json, strip_wrapping
from docstructure.metadata import (
    detect_schema_type,
    extract_ambiguity,
    extract_contradiction,
    extract_general,
    extract_metadata,
    extract_translation,
    find_confidence,
)
from docstructure.models import LlmParsingRequest, ParseOutcome, json_type
from docstructure.response_parser import FALLBACK_WARNING, ResponseParser, normalize
from docstructure.schema_store import SchemaStore
from docstructure.text_extractor import TextExtractor


TEST_SCHEMA = {
    "type": "object",
    "required": ["name", "count"],
    "properties": {
        "name": {"type": "string", "minLength": 2},
        "count": {"type": "integer", "minimum": 0},
        "tags": {"type": "array", "maxItems": 2, "items": {"type": "string"}},
        "level": {"type": "string", "enum": ["low", "high"]},
        "nested": {
            "type": "object",
            "required": ["id"],
            "properties": {"id": {"type": "string"}},
        },
    },
}


def _translation(*anchors: str) -> str:
    return json.dumps({
        "section_translations": [
            {"anchor": anchor, "translated_content": f"Plain text for {anchor}"}
            for anchor in anchors
        ],
    })


# ═══════════════════════════════════════════════════════════════════════════════
# JSON RECOVERY TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestJsonRecovery:
    """Test fence stripping and structural repair."""

    def test_strip_fences_and_prose(self):
        raw = 'Here you go:\n```json\n{"a": 1}\n```\nThanks'
        assert strip_wrapping(raw) == '{"a": 1}'

    def test_strip_prose_without_fence(self):
        assert strip_wrapping('Result: {"a": {"b": 2}} done') == '{"a": {"b": 2}}'

    def test_unterminated_fence(self):
        assert strip_wrapping('```json\n{"a": 1}') == '{"a": 1}'

    def test_truncated_object(self):
        data, repaired = decode_object('{"a":1,"b":2')
        assert data == {"a": 1, "b": 2}
        assert repaired

    def test_truncated_string_inside_array(self):
        data, _ = decode_object('{"a": [1, 2, {"b": "tru')
        assert data == {"a": [1, 2, {"b": "tru"}]}

    def test_dangling_key_dropped(self):
        assert json.loads(repair_json('{"a": 1, "b"')) == {"a": 1}
        assert json.loads(repair_json('{"a": 1, "b":')) == {"a": 1}

    def test_trailing_commas_dropped(self):
        data, repaired = decode_object('{"a": [1, 2,], }')
        assert data == {"a": [1, 2]}
        assert repaired

    def test_valid_json_not_marked_repaired(self):
        data, repaired = decode_object('{"a": "x, y"}')
        assert data == {"a": "x, y"}
        assert not repaired

    def test_unrepairable(self):
        with pytest.raises(ResponseParsingError, match="Invalid JSON"):
            decode_object("not json at all")

    def test_root_must_be_object(self):
        with pytest.raises(ResponseParsingError, match="root must be an object"):
            decode_object("[1, 2]")

    def test_empty(self):
        with pytest.raises(ResponseParsingError):
            decode_object("   ")


# ═══════════════════════════════════════════════════════════════════════════════
# SCHEMA STORE TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestSchemaStore:
    """Test schema loading and lenient validation."""

    def test_packaged_schemas(self):
        store = SchemaStore()
        assert store.available_schemas() == [
            "ambiguity_response",
            "contradiction_response",
            "general_response",
            "translation_response",
        ]
        schema = store.get_schema("translation_response")
        assert schema["required"] == ["section_translations"]
        assert store.get_schema("translation_response") is schema

    def test_schema_not_found(self):
        store = SchemaStore()
        with pytest.raises(SchemaNotFound, match="Schema not found: missing"):
            store.get_schema("missing")
        with pytest.raises(SchemaNotFound):
            store.get_schema("../translation_response")
        assert not store.has_schema("missing")

    def test_invalid_schema_files(self, tmp_path):
        (tmp_path / "broken.json").write_text("{not json", encoding="utf-8")
        (tmp_path / "bad_type.json").write_text('{"type": 5}', encoding="utf-8")
        (tmp_path / "listed.json").write_text("[]", encoding="utf-8")
        store = SchemaStore(tmp_path)

        for name in ("broken", "bad_type", "listed"):
            with pytest.raises(InvalidSchema, match=f"Invalid JSON schema: {name}"):
                store.get_schema(name)

    def test_register_schema(self):
        store = SchemaStore()
        store.register_schema("custom", TEST_SCHEMA)
        assert store.has_schema("custom")
        assert "custom" in store.available_schemas()

        with pytest.raises(InvalidSchema):
            store.register_schema("broken", {"type": 5})

    def test_schema_info_and_type_lookup(self):
        store = SchemaStore()
        info = store.schema_info("general_response")
        assert info["required_fields"] == ["result"]
        assert "recommendations" in info["properties"]
        assert store.schema_for_type("contradiction")["title"] == (
            "Contradiction Analysis Response"
        )
        assert store.schema_for_type("unknown") is None

    def test_required_and_length(self):
        result = SchemaStore().validate_data_against_schema({"name": "x"}, TEST_SCHEMA)
        assert not result.valid
        assert "Missing required field: count" in result.errors
        assert "Field 'name' must be at least 2 characters long" in result.errors

    def test_type_mismatch(self):
        store = SchemaStore()
        result = store.validate_data_against_schema(
            {"name": "ok", "count": "three"}, TEST_SCHEMA
        )
        assert result.errors == ["Field 'count' expected type 'integer', got 'string'"]

        result = store.validate_data_against_schema(
            {"name": "ok", "count": True}, TEST_SCHEMA
        )
        assert result.errors == ["Field 'count' expected type 'integer', got 'boolean'"]

    def test_any_number_satisfies_integer(self):
        result = SchemaStore().validate_data_against_schema(
            {"name": "ok", "count": 1.5}, TEST_SCHEMA
        )
        assert result.valid

    def test_unknown_field_is_warning(self):
        result = SchemaStore().validate_data_against_schema(
            {"name": "ok", "count": 1, "extra": 1}, TEST_SCHEMA
        )
        assert result.valid
        assert result.warnings == ["Unexpected field: extra"]

    def test_range_enum_and_arrays(self):
        result = SchemaStore().validate_data_against_schema(
            {
                "name": "ok",
                "count": -1,
                "level": "mid",
                "tags": ["a", "b", 3],
            },
            TEST_SCHEMA,
        )
        assert result.errors == [
            "Field 'count' must be at least 0",
            "Field 'level' must be one of: low, high",
            "Field 'tags' must have no more than 2 items",
            "Field 'tags[2]' expected type 'string', got 'number'",
        ]

    def test_nested_errors_prefixed(self):
        result = SchemaStore().validate_data_against_schema(
            {"name": "ok", "count": 1, "nested": {}}, TEST_SCHEMA
        )
        assert result.errors == ["In field 'nested': Missing required field: id"]

    def test_root_type(self):
        result = SchemaStore().validate_data_against_schema([], TEST_SCHEMA)
        assert result.errors == ["Root element expected type 'object', got 'array'"]

    def test_validate_response_string(self):
        store = SchemaStore()
        assert store.validate_response('{"name": "ok", "count": 2}', TEST_SCHEMA).valid
        invalid = store.validate_response("{oops", TEST_SCHEMA)
        assert invalid.errors[0].startswith("Invalid JSON")

    def test_boolean_subschemas(self):
        schema = {
            "type": "object",
            "properties": {
                "free": True,
                "banned": False,
                "items": {"type": "array", "items": True},
            },
        }
        result = SchemaStore().validate_data_against_schema(
            {"free": {"any": 1}, "banned": 2, "items": [1, "x", None]}, schema
        )
        assert result.errors == ["Field 'banned' is not allowed"]

    def test_boolean_subschema_in_parser(self):
        schema = {"type": "object", "properties": {"a": True}}
        parsed = ResponseParser().parse(LlmParsingRequest(
            raw_response='{"a": [1, 2]}', expected_schema=schema
        ))
        assert parsed.is_successful()
        assert parsed.errors == []

    @pytest.mark.parametrize("seed", [1, 2, 3])
    def test_samples_respect_bounds(self, seed):
        store = SchemaStore()
        schema = {
            "type": "object",
            "required": ["big", "price", "code", "empty", "negative"],
            "properties": {
                "big": {"type": "integer", "minimum": 500},
                "price": {"type": "number", "minimum": 1000.5},
                "code": {"type": "string", "minLength": 2, "maxLength": 3},
                "empty": {"type": "array", "maxItems": 0},
                "negative": {"type": "integer", "maximum": -5},
            },
        }
        store.register_schema("bounded", schema)

        sample = store.generate_sample_response("bounded", random.Random(seed))

        assert store.validate_data_against_schema(sample, schema).errors == []
        assert sample["big"] >= 500
        assert 2 <= len(sample["code"]) <= 3
        assert sample["empty"] == []
        assert sample["negative"] <= -5

    @pytest.mark.parametrize("name", [
        "translation_response",
        "contradiction_response",
        "ambiguity_response",
        "general_response",
    ])
    def test_samples_satisfy_their_schema(self, name):
        store = SchemaStore()
        sample = store.generate_sample_response(name, random.Random(7))
        result = store.validate_data_against_schema(sample, store.get_schema(name))
        assert result.errors == []
        assert set(store.get_schema(name)["required"]) <= set(sample)

    def test_json_type(self):
        assert json_type(True) == "boolean"
        assert json_type(3) == "number"
        assert json_type(None) == "null"
        with pytest.raises(TypeError):
            json_type(object())


# ═══════════════════════════════════════════════════════════════════════════════
# RESPONSE PARSER TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestResponseParser:
    """Test the staged parsing pipeline."""

    def test_fenced_and_bare_parse_identically(self):
        raw = _translation("section_1_scope")
        parser = ResponseParser()

        bare = parser.parse(LlmParsingRequest.for_translation(raw, ["section_1_scope"]))
        fenced = parser.parse(LlmParsingRequest.for_translation(
            f"Sure, here it is:\n```json\n{raw}\n```", ["section_1_scope"]
        ))

        assert bare.is_valid and fenced.is_valid
        assert bare.parsed_data == fenced.parsed_data
        assert bare.outcome == ParseOutcome.VALID_PRIMARY

    def test_anchor_cross_validation(self):
        request = LlmParsingRequest.for_translation(_translation("A", "C"), ["A", "B"])
        parsed = ResponseParser().parse(request)

        assert parsed.is_valid
        assert parsed.valid_anchor_count == 1
        assert parsed.invalid_anchor_count == 2
        problems = {check.anchor: check.error for check in parsed.anchor_errors()}
        assert problems == {
            "B": "Anchor not found in response",
            "C": "Unexpected anchor in response",
        }

    def test_wrapped_anchors_unwrapped(self):
        wrapped = "<!-- SECTION_ANCHOR_section_1_intro -->"
        request = LlmParsingRequest.for_translation(
            _translation(wrapped), ["section_1_intro"]
        )
        parsed = ResponseParser().parse(request)
        assert parsed.invalid_anchor_count == 0
        assert parsed.valid_anchor_count == 1

    def test_repair_warning(self):
        raw = _translation("A")[:-2]
        parsed = ResponseParser().parse(LlmParsingRequest.for_translation(raw, ["A"]))

        assert parsed.is_valid
        assert "JSON was repaired before parsing" in parsed.warnings
        assert parsed.metadata["json_repaired"]

    def test_unparseable_response(self):
        parsed = ResponseParser().parse(
            LlmParsingRequest.for_translation("I cannot help with that.", ["A"])
        )
        assert not parsed.is_valid
        assert parsed.errors[0].startswith("Invalid JSON")
        assert parsed.metadata["parsing_failed"]
        assert parsed.outcome == ParseOutcome.INVALID

    def test_lenient_keeps_data_with_errors(self):
        parsed = ResponseParser().parse(
            LlmParsingRequest.for_general('{"summary": "x"}', schema="general_response")
        )
        assert parsed.is_valid
        assert not parsed.is_successful()
        assert "Missing required field: result" in parsed.errors
        assert "Unexpected field: summary" in parsed.warnings

    def test_unknown_schema_name(self):
        parsed = ResponseParser().parse(LlmParsingRequest(
            raw_response='{"a": 1}', expected_schema="nope"
        ))
        assert not parsed.is_valid
        assert parsed.errors == ["Schema not found: nope"]

    def test_inline_schema(self):
        parsed = ResponseParser().parse(LlmParsingRequest(
            raw_response='{"name": "ok"}', expected_schema=TEST_SCHEMA
        ))
        assert parsed.errors == ["Missing required field: count"]

    def test_anchors_required_rule(self):
        parsed = ResponseParser().parse(
            LlmParsingRequest.for_translation('{"section_translations": []}', ["A"])
        )
        assert not parsed.is_valid
        assert "Response must contain anchor references" in parsed.errors

    def test_confidence_rule_and_unknown_rule(self):
        request = LlmParsingRequest.for_analysis(
            '{"contradictions_found": []}', "contradiction"
        )
        request.validation_rules.append("no_such_rule")
        parsed = ResponseParser().parse(request)

        assert parsed.is_valid
        assert "Confidence score not found in response" in parsed.warnings
        assert "Unknown validation rule ignored: no_such_rule" in parsed.warnings

    def test_confidence_in_summary_satisfies_rule(self):
        parsed = ResponseParser().parse(LlmParsingRequest.for_analysis(
            '{"contradictions_found": [], "analysis_summary": {"confidence": 0.9}}',
            "contradiction",
        ))
        assert parsed.warnings == []

    def test_normalization(self):
        parsed = ResponseParser().parse(LlmParsingRequest(
            raw_response=(
                '{"result": {"summary": "  lots   of\\n space  "},'
                ' "score": "0.75", "count": "12", "anchor": "007"}'
            ),
            strict_validation=False,
        ))
        assert parsed.parsed_data == {
            "result": {"summary": "lots of space"},
            "score": 0.75,
            "count": 12,
            "anchor": "007",
        }

    def test_normalize_helper(self):
        assert normalize(["1e3", " -2 ", "x  y"]) == [1000.0, -2, "x y"]

    def test_numeric_text_kept_for_string_fields(self):
        raw = json.dumps({
            "section_translations": [
                {"anchor": "section_1_x", "translated_content": "1000"},
            ],
            "translation_quality": {"readability_level": "8"},
            "metadata": {"complexity_reduction": "30", "original_length": "120"},
        })
        parsed = ResponseParser().parse(
            LlmParsingRequest.for_translation(raw, ["section_1_x"])
        )

        assert parsed.is_successful(), parsed.errors
        data = parsed.parsed_data
        assert data["section_translations"][0]["translated_content"] == "1000"
        assert data["translation_quality"]["readability_level"] == "8"
        assert data["metadata"]["complexity_reduction"] == "30"
        assert data["metadata"]["original_length"] == 120

    def test_normalize_with_schema(self):
        schema = {
            "type": "object",
            "properties": {
                "code": {"type": "string"},
                "either": {"type": ["string", "number"]},
                "count": {"type": "integer"},
                "codes": {"type": "array", "items": {"type": "string"}},
            },
        }
        data = {"code": "07", "either": "3", "count": "4", "codes": ["1", "2"], "x": "5"}
        assert normalize(data, schema=schema) == {
            "code": "07",
            "either": "3",
            "count": 4,
            "codes": ["1", "2"],
            "x": 5,
        }

    def test_anchor_extraction_per_type(self):
        parser = ResponseParser()
        contradiction = {
            "contradictions_found": [
                {"locations": [{"anchor": "a1"}, {"anchor": "a2"}]},
                {"locations": [{"anchor": "a1"}]},
            ],
        }
        ambiguity = {
            "ambiguities_found": [
                {"anchor": "b1", "locations": [{"anchor": "b2"}]},
            ],
        }
        general = {"result": {"details": [{"anchor": "c1"}, {"deep": {"anchor": "c2"}}]}}

        assert parser.extract_anchors(contradiction, "contradiction") == ["a1", "a2"]
        assert parser.extract_anchors(ambiguity, "ambiguity") == ["b1", "b2"]
        assert parser.extract_anchors(general, "general") == ["c1", "c2"]
        assert parser.extract_anchors(
            {"sections": [{"anchor": "s1"}], "section_translations": [{"anchor": "t1"}]},
            "translation",
        ) == ["s1"]

    def test_general_type_skips_cross_validation(self):
        parsed = ResponseParser().parse(LlmParsingRequest(
            raw_response='{"result": {"summary": "ok"}, "anchor": "z"}',
            schema_type="general",
            original_anchors=["x"],
        ))
        assert parsed.anchor_validation == []
        assert parsed.metadata["has_anchors"]

    def test_fallback_after_schema_failure(self):
        request = LlmParsingRequest(
            raw_response='{"foo": 1}', expected_schema="general_response"
        )
        parsed = ResponseParser().parse_with_fallback(request)

        assert parsed.is_valid
        assert parsed.outcome == ParseOutcome.VALID_FALLBACK
        assert FALLBACK_WARNING in parsed.warnings
        assert parsed.metadata["fallback_used"]
        assert parsed.metadata["primary_errors"] == ["Missing required field: result"]

    def test_fallback_not_used_when_primary_succeeds(self):
        parsed = ResponseParser().parse_with_fallback(
            LlmParsingRequest.for_translation(_translation("A"), ["A"])
        )
        assert parsed.outcome == ParseOutcome.VALID_PRIMARY
        assert FALLBACK_WARNING not in parsed.warnings

    def test_fallback_on_garbage_is_invalid(self):
        parsed = ResponseParser().parse_with_fallback(
            LlmParsingRequest.for_translation("no json here", ["A"])
        )
        assert parsed.outcome == ParseOutcome.INVALID
        assert not parsed.is_valid

    def test_internal_error_never_raises(self):
        class BrokenStore(SchemaStore):
            def validate_data_against_schema(self, data, schema):
                raise RuntimeError("store exploded")

        parser = ResponseParser(schema_store=BrokenStore())
        parsed = parser.parse(LlmParsingRequest(
            raw_response='{"a": 1}', expected_schema={"type": "object"}
        ))
        assert not parsed.is_valid
        assert parsed.errors == ["Unexpected parsing error: store exploded"]

    def test_data_access_helpers(self):
        parsed = ResponseParser().parse(
            LlmParsingRequest.for_translation(_translation("A", "B"), ["A", "B"])
        )
        assert parsed.get_data_by_path("section_translations.1.anchor") == "B"
        assert parsed.get_data_by_path("section_translations.9.anchor", "none") == "none"
        assert parsed.content_for_anchor("A") == "Plain text for A"

    def test_round_trip_with_analysis(self):
        text = "1. PREDMET\nPredmet ugovora.\n\n2. OPLATA\nRok je 30 dana."
        document = TextExtractor().extract_text(text)
        result = StructureAnalyzer(AnalyzerConfig(log_level="WARNING")).analyze(document)
        anchor_ids = result.anchor_ids()

        parsed = ResponseParser().parse(
            LlmParsingRequest.for_translation(_translation(*anchor_ids), anchor_ids)
        )
        assert parsed.invalid_anchor_count == 0

        translated = substitute_anchors(result.anchored_text(), parsed.anchor_content_map())
        for anchor_id in anchor_ids:
            assert f"Plain text for {anchor_id}" in translated
        assert "SECTION_ANCHOR" not in translated


# ═══════════════════════════════════════════════════════════════════════════════
# METADATA EXTRACTOR TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestMetadataExtractors:
    """Test per-type metric formulas."""

    def test_translation_metrics(self):
        data = {
            "section_translations": [
                {"anchor": "a", "translated_content": "abcd", "summary": "s"},
                {"anchor": "b", "translated_content": "ab"},
            ],
            "translation_quality": {"clarity_score": 0.8, "completeness_score": 0.9},
            "metadata": {"original_length": 200, "simplified_length": 150},
            "key_concepts": [{"concept": "x", "importance": "high"}, {"concept": "y"}],
            "legal_terms_preserved": [{"term": "lien", "explanation": "claim"}],
            "warnings": ["check dates"],
        }
        metadata = extract_translation(data)

        assert metadata["overall_score"] == 0.85
        assert metadata["complexity_metrics"]["compression_ratio"] == 0.75
        assert metadata["sections_count"] == {
            "total": 2,
            "with_summary": 1,
            "average_content_length": 3,
        }
        assert metadata["key_concepts"]["importance_distribution"] == {
            "high": 1,
            "medium": 1,
            "low": 0,
        }
        assert metadata["terms_preserved"]["with_explanation"] == 1
        assert metadata["warnings_count"] == 1
        assert metadata["has_metadata"]

    def test_contradiction_metrics(self):
        data = {
            "contradictions_found": [
                {"type": "legal", "severity": "high"},
                {"type": "legal", "severity": "high"},
                {"type": "temporal", "severity": "low"},
            ],
            "analysis_summary": {"overall_consistency_score": 0.4, "total_contradictions": 3},
            "risk_level": "medium",
            "confidence": 0.7,
        }
        metadata = extract_contradiction(data)
        metrics = metadata["contradiction_metrics"]

        assert metrics["type_distribution"] == {"legal": 2, "temporal": 1}
        assert metrics["severity_distribution"] == {"high": 2, "low": 1}
        assert metrics["consistency_score"] == 0.4
        assert metadata["risk_metrics"]["risk_distribution"] == {
            "critical": 0,
            "high": 2,
            "medium": 1,
            "low": 1,
        }
        assert metadata["risk_metrics"]["overall_risk"] == "medium"
        assert metadata["confidence"] == 0.7

    def test_ambiguity_metrics(self):
        metadata = extract_ambiguity({
            "ambiguities_found": [{"type": "lexical", "risk_level": "high"}],
            "clarity_assessment": {"overall_clarity_score": 0.6},
        })
        metrics = metadata["ambiguity_metrics"]
        assert metrics["total"] == 1
        assert metrics["risk_distribution"] == {"high": 1}
        assert metrics["clarity_score"] == 0.6

    def test_general_metrics(self):
        metadata = extract_general({
            "result": {"summary": "ok", "key_findings": ["a", "b"]},
            "recommendations": [{"text": "x", "priority": "high"}, {"text": "y"}],
        })
        assert metadata["general_metrics"] == {
            "has_summary": True,
            "has_details": False,
            "key_findings_count": 2,
            "recommendations_count": 2,
            "priority_distribution": {"high": 1, "unknown": 1},
        }

    def test_nested_confidence(self):
        assert find_confidence({"methodology": {"confidence_level": "0.65"}}) == 0.65
        assert find_confidence({"confidence": True}) is None

    def test_dispatch(self):
        assert detect_schema_type({"section_translations": []}) == "translation"
        assert detect_schema_type({"ambiguities_found": []}) == "ambiguity"
        assert detect_schema_type({"analysis_type": "contradiction"}) == "contradiction"
        assert detect_schema_type({"x": 1}) == "general"
        assert extract_metadata([1, 2]) == {}
        assert "contradiction_metrics" in extract_metadata({"contradictions_found": []})


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
