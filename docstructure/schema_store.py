"""
Schema Store
============
Named JSON schemas for LLM responses, with a lenient validator.

Schemas live as <name>.json files in a directory (the packaged
docstructure/schemas by default) or are registered in memory. Loading is
memoized; the cache is filled under a lock and only with fully loaded
schemas.

Validation is deliberately looser than JSON Schema: any JSON number
satisfies "integer", and unknown properties are warnings, not errors.
"""

from __future__ import annotations

import json
import logging
import math
import random
import re
import threading
from pathlib import Path
from typing import Any, Optional

import jsonschema

from .errors import InvalidSchema, SchemaNotFound
from .models import SchemaValidationResult, json_type

logger = logging.getLogger(__name__)

DEFAULT_SCHEMA_DIR = Path(__file__).parent / "schemas"

SCHEMA_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")

SCHEMA_FOR_TYPE = {
    "translation": "translation_response",
    "contradiction": "contradiction_response",
    "ambiguity": "ambiguity_response",
    "general": "general_response",
}

SAMPLE_STRINGS = [
    "Sample text",
    "Example value",
    "Test content",
    "Demonstration string",
]


class SchemaStore:
    """
    Loads, caches and applies response schemas.

    get_schema() is fail-fast: SchemaNotFound or InvalidSchema.
    Validation methods never raise for bad data; they report.
    """

    def __init__(self, schema_dir: Optional[str | Path] = None):
        self.schema_dir = Path(schema_dir) if schema_dir else DEFAULT_SCHEMA_DIR
        self._cache: dict[str, dict] = {}
        self._lock = threading.Lock()

    # ─── Loading ──────────────────────────────────────────────────────────

    def get_schema(self, name: str) -> dict:
        """
        Load a schema by name.

        Raises:
            SchemaNotFound: No registered schema and no <name>.json file.
            InvalidSchema: The file is not valid JSON or not a valid schema.
        """
        cached = self._cache.get(name)
        if cached is not None:
            return cached

        with self._lock:
            cached = self._cache.get(name)
            if cached is not None:
                return cached

            schema = self._load(name)
            self._cache[name] = schema
            logger.debug(f"Loaded schema: {name}")
            return schema

    def register_schema(self, name: str, schema: dict):
        """
        Add an in-memory schema, replacing any cached one.

        Raises:
            InvalidSchema: If the schema is rejected by the meta-schema.
        """
        self._check(name, schema)
        with self._lock:
            self._cache[name] = schema
        logger.info(f"Registered schema: {name}")

    def has_schema(self, name: str) -> bool:
        try:
            self.get_schema(name)
        except SchemaNotFound:
            return False
        return True

    def available_schemas(self) -> list[str]:
        names = set(self._cache)
        if self.schema_dir.is_dir():
            names.update(p.stem for p in self.schema_dir.glob("*.json"))
        return sorted(names)

    def schema_info(self, name: str) -> dict[str, Any]:
        schema = self.get_schema(name)
        return {
            "name": name,
            "title": schema.get("title", name),
            "description": schema.get("description", ""),
            "required_fields": list(schema.get("required", [])),
            "properties": list(schema.get("properties", {})),
        }

    def schema_for_type(self, schema_type: str) -> Optional[dict]:
        """Schema for a response type, or None if unknown or unloadable."""
        name = SCHEMA_FOR_TYPE.get(schema_type)
        if name is None:
            return None
        try:
            return self.get_schema(name)
        except (SchemaNotFound, InvalidSchema) as e:
            logger.warning(f"No usable schema for type {schema_type}: {e}")
            return None

    def _load(self, name: str) -> dict:
        if not SCHEMA_NAME_PATTERN.match(name):
            raise SchemaNotFound(f"Schema not found: {name}")

        path = self.schema_dir / f"{name}.json"
        if not path.is_file():
            raise SchemaNotFound(f"Schema not found: {name}")

        try:
            schema = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise InvalidSchema(f"Invalid JSON schema: {name}. Error: {e}") from e

        self._check(name, schema)
        return schema

    @staticmethod
    def _check(name: str, schema: Any):
        if not isinstance(schema, dict):
            raise InvalidSchema(
                f"Invalid JSON schema: {name}. Root must be an object"
            )
        try:
            jsonschema.Draft7Validator.check_schema(schema)
        except jsonschema.exceptions.SchemaError as e:
            raise InvalidSchema(
                f"Invalid JSON schema: {name}. Error: {e.message}"
            ) from e

    # ─── Validation ───────────────────────────────────────────────────────

    def validate_response(self, response: str, schema: dict) -> SchemaValidationResult:
        """Validate a raw JSON string against a schema."""
        try:
            data = json.loads(response)
        except json.JSONDecodeError as e:
            return SchemaValidationResult(valid=False, errors=[f"Invalid JSON: {e}"])
        return self.validate_data_against_schema(data, schema)

    def validate_data_against_schema(
        self, data: Any, schema: dict
    ) -> SchemaValidationResult:
        """
        Validate decoded data against a schema.

        Checks the root type, required fields, and each known property
        recursively. Unknown properties become warnings.
        """
        errors: list[str] = []
        warnings: list[str] = []

        if isinstance(schema, bool):
            if not schema:
                errors.append("Root element is not allowed")
            return SchemaValidationResult(valid=not errors, errors=errors)

        expected = schema.get("type")
        actual = json_type(data)
        if expected is not None and not _type_matches(actual, expected):
            errors.append(
                f"Root element expected type '{_type_label(expected)}', got '{actual}'"
            )
        elif isinstance(data, dict):
            self._validate_object(data, schema, errors, warnings)

        return SchemaValidationResult(
            valid=not errors, errors=errors, warnings=warnings
        )

    def _validate_object(
        self,
        data: dict,
        schema: dict,
        errors: list[str],
        warnings: list[str],
    ):
        for field_name in schema.get("required", []):
            if field_name not in data:
                errors.append(f"Missing required field: {field_name}")

        properties = schema.get("properties")
        if properties is None:
            return

        for key, value in data.items():
            if key not in properties:
                warnings.append(f"Unexpected field: {key}")
                continue
            self._validate_value(value, properties[key], key, errors, warnings)

    def _validate_value(
        self,
        value: Any,
        schema: Any,
        path: str,
        errors: list[str],
        warnings: list[str],
    ):
        # Boolean subschemas: true accepts anything, false nothing
        if schema is False:
            errors.append(f"Field '{path}' is not allowed")
            return
        if not isinstance(schema, dict):
            return

        expected = schema.get("type")
        actual = json_type(value)

        if expected is not None and not _type_matches(actual, expected):
            errors.append(
                f"Field '{path}' expected type '{_type_label(expected)}', got '{actual}'"
            )
            return

        if actual == "string":
            self._validate_string(value, schema, path, errors)
        elif actual == "number":
            self._validate_number(value, schema, path, errors)
        elif actual == "array":
            self._validate_array(value, schema, path, errors, warnings)
        elif actual == "object" and (
            "properties" in schema or "required" in schema
        ):
            nested_errors: list[str] = []
            nested_warnings: list[str] = []
            self._validate_object(value, schema, nested_errors, nested_warnings)
            errors.extend(f"In field '{path}': {e}" for e in nested_errors)
            warnings.extend(f"In field '{path}': {w}" for w in nested_warnings)

        if "enum" in schema and actual != "string" and value not in schema["enum"]:
            errors.append(
                f"Field '{path}' must be one of: "
                f"{', '.join(str(v) for v in schema['enum'])}"
            )

    @staticmethod
    def _validate_string(value: str, schema: dict, path: str, errors: list[str]):
        if "minLength" in schema and len(value) < schema["minLength"]:
            errors.append(
                f"Field '{path}' must be at least {schema['minLength']} characters long"
            )
        if "maxLength" in schema and len(value) > schema["maxLength"]:
            errors.append(
                f"Field '{path}' must be no more than {schema['maxLength']} characters long"
            )
        if "enum" in schema and value not in schema["enum"]:
            errors.append(
                f"Field '{path}' must be one of: "
                f"{', '.join(str(v) for v in schema['enum'])}"
            )

    @staticmethod
    def _validate_number(value, schema: dict, path: str, errors: list[str]):
        if "minimum" in schema and value < schema["minimum"]:
            errors.append(f"Field '{path}' must be at least {schema['minimum']}")
        if "maximum" in schema and value > schema["maximum"]:
            errors.append(f"Field '{path}' must be no more than {schema['maximum']}")

    def _validate_array(
        self,
        value: list,
        schema: dict,
        path: str,
        errors: list[str],
        warnings: list[str],
    ):
        if "minItems" in schema and len(value) < schema["minItems"]:
            errors.append(
                f"Field '{path}' must have at least {schema['minItems']} items"
            )
        if "maxItems" in schema and len(value) > schema["maxItems"]:
            errors.append(
                f"Field '{path}' must have no more than {schema['maxItems']} items"
            )

        item_schema = schema.get("items")
        if isinstance(item_schema, (dict, bool)):
            for index, item in enumerate(value):
                self._validate_value(
                    item, item_schema, f"{path}[{index}]", errors, warnings
                )

    # ─── Samples ──────────────────────────────────────────────────────────

    def generate_sample_response(
        self, name: str, rng: Optional[random.Random] = None
    ) -> dict:
        """
        Example data for contract tests. Required fields are always present,
        optional ones with probability one half.
        """
        rng = rng or random.Random()
        return self._sample_object(self.get_schema(name), rng)

    def _sample_object(self, schema: dict, rng: random.Random) -> dict:
        required = set(schema.get("required", []))
        sample = {}
        for name, prop_schema in schema.get("properties", {}).items():
            if name in required or rng.random() < 0.5:
                sample[name] = self._sample_value(prop_schema, rng)
        return sample

    def _sample_value(self, schema: Any, rng: random.Random) -> Any:
        if not isinstance(schema, dict):
            schema = {}
        expected = schema.get("type", "string")
        if isinstance(expected, list):
            expected = expected[0]

        if "enum" in schema:
            return rng.choice(schema["enum"])
        if expected == "string":
            min_length = schema.get("minLength", 0)
            text = rng.choice(SAMPLE_STRINGS).ljust(min_length, "x")
            if "maxLength" in schema:
                text = text[:max(schema["maxLength"], min_length)]
            return text
        if expected == "number":
            low, high = _bounds(schema)
            return round(rng.uniform(low, high), 2)
        if expected == "integer":
            low, high = _bounds(schema)
            low = math.ceil(low)
            return rng.randint(low, max(math.floor(high), low))
        if expected == "boolean":
            return rng.random() < 0.5
        if expected == "array":
            high = schema.get("maxItems", 3)
            low = schema.get("minItems", min(1, high))
            high = max(high, low)
            item_schema = schema.get("items", {"type": "string"})
            return [
                self._sample_value(item_schema, rng)
                for _ in range(rng.randint(low, high))
            ]
        if expected == "object":
            return self._sample_object(schema, rng)
        if expected == "null":
            return None
        return "sample_value"


def _bounds(schema: dict) -> tuple[float, float]:
    """Sampling range from minimum / maximum; never empty."""
    low = schema.get("minimum", min(0, schema.get("maximum", 0)))
    high = schema.get("maximum", low + 100)
    return low, max(high, low)


def _type_matches(actual: str, expected) -> bool:
    """
    Compare a JSON type tag with a schema type or list of types.
    Any JSON number satisfies "integer".
    """
    expected_types = expected if isinstance(expected, list) else [expected]
    for expected_type in expected_types:
        if actual == expected_type:
            return True
        if expected_type == "integer" and actual == "number":
            return True
    return False


def _type_label(expected) -> str:
    return "|".join(expected) if isinstance(expected, list) else str(expected)
