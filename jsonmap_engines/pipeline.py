"""
jsonmap_engines.pipeline -- End-to-end record transformation.

Responsibility:
    Run one input record through evaluate -> upsert -> change event for a
    ``MappingSet``, in the blocking or the async form.

Architecture position:
    Engines -- orchestration over the pure engines.  The optional lookup
    callback is the only I/O and the only suspension point.

Invariants enforced:
    - Without upsert the action is ``created`` and there is no old record.
    - With upsert the existing record is fetched by the output's composite
      key before resolution.
    - A change event diffs the existing record (or None) against the
      resolved record.  No event is built when the upsert action is
      ``skipped``.
    - Upsert and diff failures are never swallowed.

Failure modes:
    - Everything raised by the evaluator in strict mode, by upsert
      resolution, by the lookup wrapper, or by the diff generator.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from jsonmap_engines.diff import build_change_event
from jsonmap_engines.evaluator import evaluate_mappings
from jsonmap_engines.upsert import (
    Lookup,
    extract_unique_key,
    fetch_existing,
    fetch_existing_sync,
    resolve_upsert,
)
from jsonmap_kernel.domain.clock import Clock
from jsonmap_kernel.domain.types import (
    EvaluationResult,
    MappingSet,
    SystemFields,
    TransformationOutcome,
    UpsertAction,
    UpsertResult,
)
from jsonmap_kernel.logging_config import LogContext, get_logger

logger = get_logger("engines.pipeline")


def _evaluate(
    data: Any,
    mapping_set: MappingSet,
    strict: bool,
    system_fields: SystemFields | None,
) -> EvaluationResult:
    return evaluate_mappings(
        data,
        mapping_set.field_mappings,
        mapping_set.value_mappings,
        strict=strict,
        system_fields=system_fields,
    )


def _finish(
    mapping_set: MappingSet,
    evaluation: EvaluationResult,
    resolved: UpsertResult | None,
    existing: dict[str, Any] | None,
    system_fields: SystemFields | None,
    clock: Clock | None,
    id_factory: Callable[[], str] | None,
    metadata: dict[str, Any] | None,
) -> TransformationOutcome:
    if resolved is None:
        record, action = evaluation.output, UpsertAction.CREATED
    else:
        record, action = resolved.record, resolved.action

    event = None
    if mapping_set.change_events_enabled and action != UpsertAction.SKIPPED:
        event_metadata: dict[str, Any] = {"version": mapping_set.version}
        if system_fields is not None and system_fields.correlation_id is not None:
            event_metadata["correlationId"] = system_fields.correlation_id
        event_metadata.update(metadata or {})
        event = build_change_event(
            mapping_set.entity_id,
            existing,
            record,
            mapping_set.change_events,
            clock=clock,
            id_factory=id_factory,
            metadata=event_metadata,
        )

    logger.info(
        "record_transformed",
        extra={
            "action": action.value,
            "warning_count": len(evaluation.warnings),
            "event_emitted": event is not None,
        },
    )
    return TransformationOutcome(
        output=evaluation.output,
        record=record,
        action=action,
        event=event,
        existing=existing,
        warnings=evaluation.warnings,
    )


def _context(mapping_set: MappingSet, system_fields: SystemFields | None):
    return LogContext.bind(
        entity_id=mapping_set.entity_id,
        correlation_id=system_fields.correlation_id if system_fields else None,
    )


def transform_record(
    data: Any,
    mapping_set: MappingSet,
    *,
    lookup: Lookup | None = None,
    strict: bool = False,
    system_fields: SystemFields | None = None,
    clock: Clock | None = None,
    id_factory: Callable[[], str] | None = None,
    metadata: dict[str, Any] | None = None,
) -> TransformationOutcome:
    """
    Transform one record end to end.

    ``lookup`` receives the composite key (unique field path -> value) and
    returns the existing record, ``None``, or an awaitable of either.
    Without a lookup, upsert resolution always sees no existing record.
    """
    with _context(mapping_set, system_fields):
        evaluation = _evaluate(data, mapping_set, strict, system_fields)
        resolved, existing = None, None
        if mapping_set.upsert_enabled:
            key = extract_unique_key(evaluation.output, mapping_set.upsert.unique_fields)
            if lookup is not None:
                existing = fetch_existing_sync(lookup, key)
            resolved = resolve_upsert(evaluation.output, existing, mapping_set.upsert)
        return _finish(
            mapping_set, evaluation, resolved, existing,
            system_fields, clock, id_factory, metadata,
        )


async def transform_record_async(
    data: Any,
    mapping_set: MappingSet,
    *,
    lookup: Lookup | None = None,
    strict: bool = False,
    system_fields: SystemFields | None = None,
    clock: Clock | None = None,
    id_factory: Callable[[], str] | None = None,
    metadata: dict[str, Any] | None = None,
) -> TransformationOutcome:
    """Async form of transform_record; awaits the lookup when it is async."""
    with _context(mapping_set, system_fields):
        evaluation = _evaluate(data, mapping_set, strict, system_fields)
        resolved, existing = None, None
        if mapping_set.upsert_enabled:
            key = extract_unique_key(evaluation.output, mapping_set.upsert.unique_fields)
            if lookup is not None:
                existing = await fetch_existing(lookup, key)
            resolved = resolve_upsert(evaluation.output, existing, mapping_set.upsert)
        return _finish(
            mapping_set, evaluation, resolved, existing,
            system_fields, clock, id_factory, metadata,
        )
