"""
Mapping Set Validator (``jsonmap_config.validator``).

Responsibility
--------------
Validates a ``MappingSet`` at load time, catching configuration mistakes
that would otherwise only surface as per-record warnings at evaluation
time.

Architecture position
---------------------
**Config layer** -- build-time validation.  Called by
``jsonmap_config.load_mapping_set`` after parsing.  Uses the kernel's
restricted expression grammar and the value matcher's range parser.

Invariants enforced
-------------------
* Every field mapping has a non-empty target; an empty source is only
  allowed for template, function and ``_system.`` mappings.
* Each transformation kind carries what it needs (template text, a valid
  custom function, a value mapping id, an aggregation function, a valid
  condition).
* Value mapping ids are unique; regex keys compile; range keys parse.
* An enabled upsert names at least one unique field.

Failure modes
-------------
* Validation errors (``ConfigValidationResult.errors``)  -> the mapping
  set MUST NOT be used.
* Validation warnings (``ConfigValidationResult.warnings``)  -> the
  mapping set is usable but should be reviewed (unresolved value mapping
  references, duplicate targets).
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from jsonmap_engines.paths import parse_path
from jsonmap_engines.value_matcher import parse_range
from jsonmap_kernel.domain.expression_ast import validate_expression
from jsonmap_kernel.domain.types import (
    SYSTEM_SOURCE_PREFIX,
    FieldMapping,
    MappingSet,
    TransformationKind,
    ValueMappingType,
)
from jsonmap_kernel.exceptions import ValidationError


@dataclass
class ConfigValidationResult:
    """
    Result of mapping set validation.

    Contract
    --------
    * ``is_valid`` returns ``True`` only when ``errors`` is empty.
    * Warnings do not block use but should be reviewed.
    """

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)


_EMPTY_SOURCE_KINDS = frozenset({TransformationKind.TEMPLATE, TransformationKind.FUNCTION})


def validate_mapping_set(mapping_set: MappingSet) -> ConfigValidationResult:
    """
    Validate a mapping set.

    Postconditions:
        - Returns a ``ConfigValidationResult`` with errors and warnings.
        - A mapping set with errors MUST NOT be used.
    """
    result = ConfigValidationResult()

    _validate_value_mappings(mapping_set, result)
    for mapping in mapping_set.field_mappings:
        _validate_field_mapping(mapping, mapping_set, result)
    _validate_duplicate_targets(mapping_set, result)
    _validate_upsert(mapping_set, result)

    return result


def _label(mapping: FieldMapping) -> str:
    return f"Mapping '{mapping.id or mapping.target}'"


def _validate_path(path: str, what: str, mapping: FieldMapping, result: ConfigValidationResult) -> None:
    try:
        parse_path(path)
    except ValidationError as e:
        result.add_error(f"{_label(mapping)} {what}: {e}")


def _validate_expression(
    expression: str, what: str, mapping: FieldMapping, result: ConfigValidationResult
) -> None:
    for err in validate_expression(expression):
        result.add_error(f"{_label(mapping)} {what}: {err.message} (expression: {expression})")


def _validate_field_mapping(
    mapping: FieldMapping, mapping_set: MappingSet, result: ConfigValidationResult
) -> None:
    kind = mapping.transformation
    label = _label(mapping)

    _validate_path(mapping.target, "target", mapping, result)
    if not mapping.source.strip():
        if kind not in _EMPTY_SOURCE_KINDS:
            result.add_error(f"{label}: source is required for '{kind.value}' mappings")
    elif not mapping.reads_system_field:
        _validate_path(mapping.source, "source", mapping, result)

    if kind == TransformationKind.TEMPLATE and mapping.template is None:
        result.add_error(f"{label}: template mappings need a template")

    if kind == TransformationKind.FUNCTION:
        if not mapping.custom_function:
            result.add_error(f"{label}: function mappings need a customFunction")
        else:
            _validate_expression(mapping.custom_function, "customFunction", mapping, result)

    if kind == TransformationKind.VALUE_MAPPING:
        if not mapping.value_mapping_id:
            result.add_error(f"{label}: value-mapping mappings need a valueMappingId")
        elif mapping.value_mapping_id not in {vm.id for vm in mapping_set.value_mappings}:
            result.add_warning(
                f"{label}: value mapping '{mapping.value_mapping_id}' not found; "
                f"source values will pass through unchanged"
            )

    if kind == TransformationKind.AGGREGATION and mapping.aggregation is None:
        result.add_error(f"{label}: aggregation mappings need an aggregation function")

    if kind == TransformationKind.CONDITIONAL:
        if not mapping.condition:
            result.add_error(f"{label}: conditional mappings need a condition")
        else:
            _validate_expression(mapping.condition, "condition", mapping, result)

    if mapping.source.startswith(SYSTEM_SOURCE_PREFIX) and not mapping.source[len(SYSTEM_SOURCE_PREFIX):]:
        result.add_error(f"{label}: empty system field name")


def _validate_value_mappings(mapping_set: MappingSet, result: ConfigValidationResult) -> None:
    """Check id uniqueness and that every pattern is usable by its strategy."""
    seen: set[str] = set()
    for vm in mapping_set.value_mappings:
        if vm.id in seen:
            result.add_error(f"Duplicate value mapping id: {vm.id}")
        seen.add(vm.id)

        if not vm.mappings:
            result.add_warning(f"Value mapping '{vm.id}' has no patterns; every value gets the default")

        for pattern in vm.patterns:
            if vm.type == ValueMappingType.REGEX:
                try:
                    re.compile(pattern)
                except re.error as e:
                    result.add_error(f"Value mapping '{vm.id}': invalid regex {pattern!r}: {e}")
            elif vm.type == ValueMappingType.RANGE and parse_range(pattern) is None:
                result.add_error(
                    f"Value mapping '{vm.id}': range key {pattern!r} is not of the form 'min-max'"
                )


def _validate_duplicate_targets(mapping_set: MappingSet, result: ConfigValidationResult) -> None:
    """Warn when several active mappings write the same target."""
    counts: dict[str, int] = {}
    for mapping in mapping_set.field_mappings:
        if mapping.active:
            counts[mapping.target] = counts.get(mapping.target, 0) + 1
    for target, count in counts.items():
        if count > 1:
            result.add_warning(
                f"Target '{target}' is written by {count} active mappings; the last one wins"
            )


def _validate_upsert(mapping_set: MappingSet, result: ConfigValidationResult) -> None:
    if mapping_set.upsert_enabled and not mapping_set.upsert.unique_fields:
        result.add_error("Upsert is enabled but no uniqueFields are configured")
    if mapping_set.change_events_enabled and not mapping_set.change_events.event_type:
        result.add_warning("Change events are enabled without an eventType")
