"""
Typed Exception Hierarchy for the JSON Mapper.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

The engine runs on schema-less input authored by users. Callers need to tell
a bad mapping configuration from a failing custom function from an upsert
conflict without parsing message strings:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example:
    try:
        outcome = transform_record(record, mapping_set, lookup=fetch)
    except ConflictError as e:
        return {"error": e.code, "key": e.key}          # 409 at the API
    except ValidationError as e:
        return {"error": e.code, "message": str(e)}     # 400 at the API

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    JsonMapError (base)
    |
    +-- ValidationError
    |   +-- ExpressionError
    |   +-- MissingUniqueFieldError
    |
    +-- TransformationError
    |
    +-- UnresolvedReferenceError
    |
    +-- UpsertError
    |   +-- ConflictError
    |   +-- LookupFailedError
    |
    +-- ExistingRecordNotFound   (raised BY callers, not by the engine)

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Validation      | VALIDATION_ERROR            | Malformed mapping / value mapping / path
                | INVALID_EXPRESSION          | Expression outside the restricted grammar
                | MISSING_UNIQUE_FIELD        | Upsert key field absent from output
----------------|-----------------------------|-----------------------------------------
Transformation  | TRANSFORMATION_FAILED       | Custom function / aggregation failure
----------------|-----------------------------|-----------------------------------------
Reference       | UNRESOLVED_VALUE_MAPPING    | Value mapping id not found (warning)
----------------|-----------------------------|-----------------------------------------
Upsert          | UPSERT_CONFLICT             | conflictResolution=error and record exists
                | EXISTING_LOOKUP_FAILED      | Caller's lookup callback failed
                | EXISTING_RECORD_NOT_FOUND   | Caller signal: no existing record
"""

from __future__ import annotations

from typing import Any


class JsonMapError(Exception):
    """
    Base exception for all JSON mapper errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "JSONMAP_ERROR"


# Validation


class ValidationError(JsonMapError):
    """Malformed mapping configuration, path, or upsert precondition."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None, errors: list[str] | None = None):
        self.field = field
        self.errors = list(errors or [])
        super().__init__(message)


class ExpressionError(ValidationError):
    """Expression rejected by the restricted grammar."""

    code: str = "INVALID_EXPRESSION"

    def __init__(self, expression: str, reasons: list[str]):
        self.expression = expression
        super().__init__(
            f"Invalid expression {expression!r}: {'; '.join(reasons)}",
            errors=reasons,
        )


class MissingUniqueFieldError(ValidationError):
    """One or more upsert unique fields are absent from the output record."""

    code: str = "MISSING_UNIQUE_FIELD"

    def __init__(self, missing_fields: list[str]):
        self.missing_fields = list(missing_fields)
        super().__init__(
            f"Unique field(s) missing from output: {', '.join(missing_fields)}",
            field=missing_fields[0] if missing_fields else None,
        )


# Transformation


class TransformationError(JsonMapError):
    """A field mapping failed to produce a value, identified by its target path."""

    code: str = "TRANSFORMATION_FAILED"

    def __init__(self, target: str, reason: str):
        self.target = target
        self.reason = reason
        super().__init__(f"Transformation for target '{target}' failed: {reason}")


class UnresolvedReferenceError(JsonMapError):
    """A value-mapping mapping references an id that is not in the value mapping set."""

    code: str = "UNRESOLVED_VALUE_MAPPING"

    def __init__(self, value_mapping_id: str, target: str | None = None):
        self.value_mapping_id = value_mapping_id
        self.target = target
        super().__init__(f"Value mapping not found: {value_mapping_id}")


# Upsert


class UpsertError(JsonMapError):
    """Base exception for upsert resolution errors."""

    code: str = "UPSERT_ERROR"


class ConflictError(UpsertError):
    """Upsert policy is 'error' and a record with the same composite key exists."""

    code: str = "UPSERT_CONFLICT"

    def __init__(self, key: dict[str, Any]):
        self.key = dict(key)
        rendered = ", ".join(f"{k}={v!r}" for k, v in self.key.items())
        super().__init__(f"Record already exists for key ({rendered})")


class LookupFailedError(UpsertError):
    """The caller-supplied existing-record lookup raised."""

    code: str = "EXISTING_LOOKUP_FAILED"

    def __init__(self, key: dict[str, Any], reason: str):
        self.key = dict(key)
        self.reason = reason
        super().__init__(f"Existing record lookup failed: {reason}")


class ExistingRecordNotFound(JsonMapError):
    """
    Raised by a lookup callback to signal that no existing record exists.

    The engine treats it exactly like the callback returning ``None``.
    """

    code: str = "EXISTING_RECORD_NOT_FOUND"


_HTTP_STATUS_BY_TYPE: tuple[tuple[type[JsonMapError], int], ...] = (
    (ConflictError, 409),
    (ValidationError, 400),
    (TransformationError, 500),
    (LookupFailedError, 502),
)


def http_status_for(error: JsonMapError) -> int:
    """Status code an API boundary should use for an engine error."""
    for exc_type, status in _HTTP_STATUS_BY_TYPE:
        if isinstance(error, exc_type):
            return status
    return 500
