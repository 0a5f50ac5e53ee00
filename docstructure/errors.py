"""
Errors
======
Typed failures raised inside the engine.

Only input validation and schema loading reach callers. Budget and JSON
failures are converted into degraded results at the public entry points.
"""

from __future__ import annotations


class DocStructureError(Exception):
    """Base class for all engine errors."""


class InputValidationError(DocStructureError, ValueError):
    """Raised when a document, batch or anchor id has an unusable shape."""


class ResponseParsingError(DocStructureError):
    """Raised when an LLM reply cannot be turned into a JSON object."""


class SchemaError(DocStructureError):
    """Base class for schema loading failures."""


class SchemaNotFound(SchemaError, LookupError):
    """Raised when no schema is registered or stored under a name."""


class InvalidSchema(SchemaError):
    """Raised when a stored schema is not a valid JSON schema object."""


class AnalysisBudgetExceeded(DocStructureError):
    """
    Raised by the section detector when the wall-clock budget runs out.
    Carries the sections built before the limit was hit.
    """

    def __init__(self, message: str, sections: list, processed_elements: int):
        super().__init__(message)
        self.sections = sections
        self.processed_elements = processed_elements
