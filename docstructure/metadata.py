"""
Metadata Extractors
===================
Pure functions computing quality metrics for a parsed LLM response.
One extractor per response type, dispatched through EXTRACTORS.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from .models import AMBIGUITY, CONTRADICTION, GENERAL, TRANSLATION

logger = logging.getLogger(__name__)

RISK_LEVELS = ("critical", "high", "medium", "low")
IMPORTANCE_LEVELS = ("high", "medium", "low")

CONFIDENCE_PATHS = (
    "confidence",
    "analysis_confidence",
    "overall_confidence",
    "methodology.confidence_level",
    "quality_indicators.analysis_confidence",
)


# ─── Helpers ──────────────────────────────────────────────────────────────────


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def _nested(data: Any, path: str) -> Any:
    current = data
    for key in path.split("."):
        if not isinstance(current, dict) or key not in current:
            return None
        current = current[key]
    return current


def _dicts(value: Any) -> list[dict]:
    """Dict entries of a list, ignoring anything else."""
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


def _distribution(entries: list[dict], key: str) -> dict[str, int]:
    counts: dict[str, int] = {}
    for entry in entries:
        category = str(entry.get(key) or "unknown")
        counts[category] = counts.get(category, 0) + 1
    return counts


def _count_risk_levels(data: Any, counts: dict[str, int]):
    if isinstance(data, dict):
        for key, value in data.items():
            if key in ("risk_level", "severity") and isinstance(value, str):
                if value in counts:
                    counts[value] += 1
            else:
                _count_risk_levels(value, counts)
    elif isinstance(data, list):
        for item in data:
            _count_risk_levels(item, counts)


def find_confidence(data: Any) -> Optional[float]:
    """First numeric confidence value found at a known path."""
    for path in CONFIDENCE_PATHS:
        value = _number(_nested(data, path))
        if value is not None:
            return value
    return None


def common_metadata(data: dict) -> dict[str, Any]:
    warnings = data.get("warnings")
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "data_size": len(data),
        "has_warnings": bool(warnings),
        "warnings_count": len(warnings) if isinstance(warnings, list) else 0,
        "has_metadata": "metadata" in data,
    }


def quality_metrics(data: dict) -> dict[str, Any]:
    metrics = dict(data["quality_metrics"]) if isinstance(
        data.get("quality_metrics"), dict
    ) else {}
    for field_name in ("confidence", "analysis_confidence", "overall_confidence"):
        value = _number(data.get(field_name))
        if value is not None:
            metrics["confidence"] = value
            break
    return metrics


def risk_metrics(data: dict) -> dict[str, Any]:
    counts = dict.fromkeys(RISK_LEVELS, 0)
    _count_risk_levels(data, counts)
    metrics: dict[str, Any] = {"risk_distribution": counts}
    if "risk_level" in data:
        metrics["overall_risk"] = data["risk_level"]
    return metrics


# ─── Extractors ───────────────────────────────────────────────────────────────


def extract_translation(data: dict) -> dict[str, Any]:
    """Quality, coverage and compression metrics for a translation response."""
    metadata = common_metadata(data)

    # Quality
    quality: dict[str, Any] = {}
    raw_quality = data.get("translation_quality")
    if isinstance(raw_quality, dict):
        quality["clarity_score"] = _number(raw_quality.get("clarity_score"))
        quality["completeness_score"] = _number(raw_quality.get("completeness_score"))
        quality["readability_level"] = raw_quality.get("readability_level")
        if (
            quality["clarity_score"] is not None
            and quality["completeness_score"] is not None
        ):
            quality["overall_score"] = round(
                (quality["clarity_score"] + quality["completeness_score"]) / 2, 4
            )
    metadata["translation_quality"] = quality
    metadata["overall_score"] = quality.get("overall_score")

    # Sections
    sections = _dicts(data.get("section_translations"))
    content_length = sum(
        len(s["translated_content"])
        for s in sections
        if isinstance(s.get("translated_content"), str)
    )
    metadata["sections_count"] = {
        "total": len(sections),
        "with_summary": sum(1 for s in sections if s.get("summary")),
        "average_content_length": content_length // len(sections) if sections else 0,
    }

    # Terms and concepts
    terms = _dicts(data.get("legal_terms_preserved"))
    metadata["terms_preserved"] = {
        "total": len(terms),
        "with_explanation": sum(1 for t in terms if t.get("explanation")),
        "with_context": sum(1 for t in terms if t.get("context")),
    }

    concepts = _dicts(data.get("key_concepts"))
    importance = dict.fromkeys(IMPORTANCE_LEVELS, 0)
    for concept in concepts:
        level = concept.get("importance", "medium")
        if level in importance:
            importance[level] += 1
    metadata["key_concepts"] = {
        "total": len(concepts),
        "importance_distribution": importance,
    }

    # Complexity
    complexity: dict[str, Any] = {}
    raw_meta = data.get("metadata")
    if isinstance(raw_meta, dict):
        original = _number(raw_meta.get("original_length"))
        simplified = _number(raw_meta.get("simplified_length"))
        complexity = {
            "original_length": raw_meta.get("original_length"),
            "simplified_length": raw_meta.get("simplified_length"),
            "complexity_reduction": raw_meta.get("complexity_reduction"),
        }
        if original and simplified is not None:
            complexity["compression_ratio"] = round(simplified / original, 2)
    metadata["complexity_metrics"] = complexity

    return metadata


def _analysis_base(data: dict, analysis_type: str) -> dict[str, Any]:
    metadata = common_metadata(data)
    metadata["quality_metrics"] = quality_metrics(data)
    metadata["risk_metrics"] = risk_metrics(data)
    metadata["analysis_type"] = data.get("analysis_type", analysis_type)
    metadata["confidence"] = find_confidence(data)
    return metadata


def extract_contradiction(data: dict) -> dict[str, Any]:
    metadata = _analysis_base(data, CONTRADICTION)
    found = _dicts(data.get("contradictions_found"))
    metrics: dict[str, Any] = {
        "total": len(found),
        "type_distribution": _distribution(found, "type"),
        "severity_distribution": _distribution(found, "severity"),
    }
    summary = data.get("analysis_summary")
    if isinstance(summary, dict):
        metrics["consistency_score"] = _number(summary.get("overall_consistency_score"))
        metrics["total_from_summary"] = summary.get("total_contradictions")
    metadata["contradiction_metrics"] = metrics
    return metadata


def extract_ambiguity(data: dict) -> dict[str, Any]:
    metadata = _analysis_base(data, AMBIGUITY)
    found = _dicts(data.get("ambiguities_found"))
    metrics: dict[str, Any] = {
        "total": len(found),
        "type_distribution": _distribution(found, "type"),
        "risk_distribution": _distribution(found, "risk_level"),
    }
    assessment = data.get("clarity_assessment")
    if isinstance(assessment, dict):
        metrics["clarity_score"] = _number(assessment.get("overall_clarity_score"))
        metrics["readability_metrics"] = assessment.get("readability_metrics", {})
    metadata["ambiguity_metrics"] = metrics
    return metadata


def extract_general(data: dict) -> dict[str, Any]:
    metadata = _analysis_base(data, GENERAL)
    result = data.get("result") if isinstance(data.get("result"), dict) else {}
    findings = result.get("key_findings")
    recommendations = _dicts(data.get("recommendations"))
    metadata["general_metrics"] = {
        "has_summary": bool(result.get("summary")),
        "has_details": bool(result.get("details")),
        "key_findings_count": len(findings) if isinstance(findings, list) else 0,
        "recommendations_count": len(recommendations),
        "priority_distribution": _distribution(recommendations, "priority"),
    }
    return metadata


EXTRACTORS: dict[str, Callable[[dict], dict[str, Any]]] = {
    TRANSLATION: extract_translation,
    CONTRADICTION: extract_contradiction,
    AMBIGUITY: extract_ambiguity,
    GENERAL: extract_general,
}


def detect_schema_type(data: Any) -> str:
    """Guess the response type from its top-level keys."""
    if not isinstance(data, dict):
        return GENERAL
    if "section_translations" in data:
        return TRANSLATION
    if "contradictions_found" in data:
        return CONTRADICTION
    if "ambiguities_found" in data:
        return AMBIGUITY
    if data.get("analysis_type") in EXTRACTORS:
        return data["analysis_type"]
    return GENERAL


def extract_metadata(data: Any, schema_type: Optional[str] = None) -> dict[str, Any]:
    """Run the extractor for schema_type (detected when None)."""
    if not isinstance(data, dict):
        return {}
    schema_type = schema_type or detect_schema_type(data)
    extractor = EXTRACTORS.get(schema_type)
    if extractor is None:
        logger.debug(f"No extractor for type {schema_type}, using general")
        extractor = extract_general
    return extractor(data)
