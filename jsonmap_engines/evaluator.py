"""
jsonmap_engines.evaluator -- Field mapping evaluator.

Responsibility:
    Apply an ordered list of field mappings to one input record and build
    the output record, then append the caller's system fields.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Delegates to paths (read/write), value_matcher (value-mapping kind),
    merge (sub-child-merge kind) and expressions (function/conditional).

Invariants enforced:
    - Mappings run strictly in list order; inactive mappings are skipped.
    - Last write wins when two mappings share a target.
    - The input record is never mutated; every write is copy-on-write.
    - An absent source is not written by direct, value-mapping, conditional
      and sub-child mappings.  A present ``None`` passes through.
    - Value mappings are resolved from the ``value_mappings`` argument only.
    - System fields are appended after every mapping has run.

Failure modes:
    - A failing mapping leaves its target unset and is collected as a
      ``MappingWarning``.  With ``strict=True`` the first failure aborts
      the evaluation as a ``TransformationError`` naming the target.
    - ``UnresolvedReferenceError`` is always a warning: the source value is
      written unchanged.
"""

from __future__ import annotations

import copy
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from jsonmap_engines.expressions import evaluate_expression, evaluate_predicate
from jsonmap_engines.merge import merge_records
from jsonmap_engines.paths import get_path, set_path
from jsonmap_engines.tracer import traced_engine
from jsonmap_engines.value_matcher import match_value
from jsonmap_kernel.domain.types import (
    SYSTEM_SOURCE_PREFIX,
    AggregationFunction,
    EvaluationResult,
    FieldMapping,
    MappingWarning,
    SystemFields,
    TransformationKind,
    ValueMapping,
)
from jsonmap_kernel.domain.values import MISSING, to_number, to_text
from jsonmap_kernel.exceptions import (
    JsonMapError,
    TransformationError,
    UnresolvedReferenceError,
    ValidationError,
)
from jsonmap_kernel.logging_config import LogContext, get_logger

logger = get_logger("engines.evaluator")

_PLACEHOLDER = re.compile(r"\$\{([^}]+)\}")


# -----------------------------------------------------------------------------
# Source resolution and templates
# -----------------------------------------------------------------------------


def resolve_source(
    data: Any,
    source: str,
    system_fields: SystemFields | None = None,
) -> Any:
    """Value at ``source`` in ``data``, a ``_system.`` field, or MISSING."""
    if not source or not source.strip():
        return MISSING
    if source.startswith(SYSTEM_SOURCE_PREFIX):
        if system_fields is None:
            return MISSING
        return system_fields.resolve(source[len(SYSTEM_SOURCE_PREFIX):])
    return get_path(data, source, MISSING)


def render_template(
    template: str,
    data: Any,
    value: Any = MISSING,
    system_fields: SystemFields | None = None,
) -> str:
    """
    Substitute every ``${path}`` in ``template``.

    ``${value}`` is the mapping's resolved source value.  Any other
    placeholder is read from ``data`` (or the system fields for
    ``${_system.name}``).  Unresolved placeholders become the empty string.
    """

    def substitute(match: re.Match[str]) -> str:
        path = match.group(1).strip()
        if path == "value":
            return to_text(value)
        return to_text(resolve_source(data, path, system_fields))

    return _PLACEHOLDER.sub(substitute, template)


# -----------------------------------------------------------------------------
# Aggregation
# -----------------------------------------------------------------------------


def aggregate(
    items: Any,
    function: AggregationFunction,
    separator: str = "",
    target: str = "",
) -> Any:
    """Reduce an array with one of the closed set of aggregation functions."""
    if not isinstance(items, (list, tuple)):
        raise TransformationError(
            target, f"aggregation source must be an array, got {type(items).__name__}"
        )
    fn = AggregationFunction(function)
    if fn == AggregationFunction.COUNT:
        return len(items)
    if fn == AggregationFunction.CONCAT:
        return separator.join(to_text(item) for item in items if item is not None)

    numbers = [n for n in (to_number(item) for item in items) if n is not None]
    if fn == AggregationFunction.SUM:
        return sum(numbers)
    if not numbers:
        return None
    return min(numbers) if fn == AggregationFunction.MIN else max(numbers)


# -----------------------------------------------------------------------------
# Evaluation
# -----------------------------------------------------------------------------


@dataclass
class _EvaluationState:
    """Working state of one evaluate_mappings call."""

    data: Any
    value_mappings: Mapping[str, ValueMapping]
    system_fields: SystemFields | None
    output: dict[str, Any] = field(default_factory=dict)
    warnings: list[MappingWarning] = field(default_factory=list)


def _target_value(mapping: FieldMapping, state: _EvaluationState) -> Any:
    """Value to write at ``mapping.target``, or MISSING to leave it unset."""
    kind = TransformationKind(mapping.transformation)
    source = resolve_source(state.data, mapping.source, state.system_fields)

    if kind == TransformationKind.DIRECT:
        return source

    if kind == TransformationKind.TEMPLATE:
        if mapping.template is None:
            raise ValidationError("Template mapping requires a template", field=mapping.target)
        return render_template(mapping.template, state.data, source, state.system_fields)

    if kind == TransformationKind.FUNCTION:
        if not mapping.custom_function:
            raise ValidationError("Function mapping requires a custom function", field=mapping.target)
        return evaluate_expression(
            mapping.custom_function,
            value=None if source is MISSING else source,
            data=state.data,
            output=state.output,
            target=mapping.target,
        )

    if kind == TransformationKind.VALUE_MAPPING:
        if not mapping.value_mapping_id:
            raise ValidationError("Value-mapping mapping requires a value mapping id", field=mapping.target)
        if source is MISSING:
            return MISSING
        table = state.value_mappings.get(mapping.value_mapping_id)
        if table is None:
            error = UnresolvedReferenceError(mapping.value_mapping_id, target=mapping.target)
            state.warnings.append(MappingWarning.from_error(error, mapping.target))
            logger.warning(
                "value_mapping_unresolved",
                extra={"value_mapping_id": mapping.value_mapping_id},
            )
            return source
        return match_value(source, table)

    if kind == TransformationKind.SUB_CHILD_MERGE:
        if source is MISSING:
            return MISSING
        current = get_path(state.output, mapping.target)
        return merge_records(current, source, mapping.merge_strategy, mapping.preserve_fields)

    if kind == TransformationKind.SUB_CHILD_REPLACE:
        return MISSING if source is MISSING else copy.deepcopy(source)

    if kind == TransformationKind.AGGREGATION:
        if mapping.aggregation is None:
            raise ValidationError("Aggregation mapping requires an aggregation function", field=mapping.target)
        if source is MISSING:
            raise TransformationError(mapping.target, f"aggregation source '{mapping.source}' not found")
        return aggregate(source, mapping.aggregation, mapping.separator, mapping.target)

    # CONDITIONAL
    if not mapping.condition:
        raise ValidationError("Conditional mapping requires a condition", field=mapping.target)
    if source is MISSING:
        return MISSING
    passed = evaluate_predicate(
        mapping.condition,
        value=source,
        data=state.data,
        output=state.output,
        target=mapping.target,
    )
    return source if passed else MISSING


def _apply(mapping: FieldMapping, state: _EvaluationState, strict: bool) -> None:
    try:
        value = _target_value(mapping, state)
    except JsonMapError as e:
        if strict:
            if isinstance(e, TransformationError):
                raise
            raise TransformationError(mapping.target, str(e)) from e
        state.warnings.append(MappingWarning.from_error(e, mapping.target))
        logger.warning(
            "mapping_failed",
            extra={"error_code": e.code, "error": str(e), "source": mapping.source},
        )
        return
    if value is not MISSING:
        state.output = set_path(state.output, mapping.target, value)


def _index_value_mappings(
    value_mappings: Iterable[ValueMapping] | Mapping[str, ValueMapping],
) -> dict[str, ValueMapping]:
    if isinstance(value_mappings, Mapping):
        return dict(value_mappings)
    return {vm.id: vm for vm in value_mappings}


@traced_engine("evaluator", "1.0", fingerprint_fields=("data",))
def evaluate_mappings(
    data: Any,
    field_mappings: Iterable[FieldMapping],
    value_mappings: Iterable[ValueMapping] | Mapping[str, ValueMapping] = (),
    *,
    strict: bool = False,
    system_fields: SystemFields | None = None,
) -> EvaluationResult:
    """
    Apply ``field_mappings`` to ``data`` in order and return the output.

    Args:
        data: The input record (any JSON-compatible value).
        field_mappings: Ordered mappings; inactive ones are skipped.
        value_mappings: Value mapping tables, as a sequence or keyed by id.
        strict: Abort on the first failing mapping instead of collecting
            warnings.
        system_fields: Fields appended after the mappings run; also
            readable through ``_system.`` sources.

    Returns:
        EvaluationResult with the output record and collected warnings.
    """
    state = _EvaluationState(
        data=data,
        value_mappings=_index_value_mappings(value_mappings),
        system_fields=system_fields,
    )

    for mapping in field_mappings:
        if not mapping.active:
            continue
        with LogContext.bind(mapping_target=mapping.target):
            _apply(mapping, state, strict)

    if system_fields is not None:
        state.output = {**state.output, **system_fields.as_output()}

    logger.debug(
        "mappings_evaluated",
        extra={"output_fields": len(state.output), "warning_count": len(state.warnings)},
    )
    return EvaluationResult(output=state.output, warnings=tuple(state.warnings))
