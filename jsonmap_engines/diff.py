"""
jsonmap_engines.diff -- Change diff generator.

Responsibility:
    Compute the field-level difference between two states of a record and
    package it as a ``ChangeEvent``; render events in the custom or
    CloudEvents 1.0 envelope.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Time and event ids come
    from an injected clock and id factory; publishing is the caller's job.

Invariants enforced:
    - Keys are visited old-first, then keys only present in the new record,
      so the change list is deterministic.
    - Values are compared by serialized equality (key order ignored).
    - Nested values are compared atomically unless ``recursive=True``, in
      which case nested objects are diffed key by key with dotted field
      names.  Arrays are always atomic.
    - ``diff_records(x, x)`` is empty for every record ``x``.
    - ``add`` carries ``old_value=None``; ``delete`` carries ``new_value=None``.

Failure modes:
    - ``ValidationError`` when a record is neither an object nor None.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from typing import Any

from jsonmap_engines.tracer import traced_engine
from jsonmap_kernel.domain.clock import Clock, SystemClock, utc_isoformat
from jsonmap_kernel.domain.types import (
    ChangeEvent,
    ChangeEventConfiguration,
    ChangeOperation,
    EventFormat,
    FieldChange,
)
from jsonmap_kernel.domain.values import MISSING, json_equal
from jsonmap_kernel.exceptions import ValidationError
from jsonmap_kernel.logging_config import get_logger

logger = get_logger("engines.diff")

EVENT_SOURCE_PREFIX = "jsonmap/entity/"
CLOUDEVENTS_SPEC_VERSION = "1.0"


def _as_object(record: Any, name: str) -> dict[str, Any]:
    if record is None:
        return {}
    if not isinstance(record, dict):
        raise ValidationError(f"{name} record must be an object, got {type(record).__name__}", field=name)
    return record


def _diff_objects(
    old: dict[str, Any],
    new: dict[str, Any],
    prefix: str,
    recursive: bool,
    changes: list[FieldChange],
) -> None:
    keys = list(old)
    keys.extend(k for k in new if k not in old)
    for key in keys:
        name = f"{prefix}{key}"
        old_value = old.get(key, MISSING)
        new_value = new.get(key, MISSING)
        if old_value is MISSING:
            changes.append(FieldChange(name, None, new_value, ChangeOperation.ADD))
        elif new_value is MISSING:
            changes.append(FieldChange(name, old_value, None, ChangeOperation.DELETE))
        elif json_equal(old_value, new_value):
            continue
        elif recursive and isinstance(old_value, dict) and isinstance(new_value, dict):
            _diff_objects(old_value, new_value, f"{name}.", recursive, changes)
        else:
            changes.append(FieldChange(name, old_value, new_value, ChangeOperation.UPDATE))


def diff_records(
    old: dict[str, Any] | None,
    new: dict[str, Any] | None,
    *,
    recursive: bool = False,
) -> tuple[FieldChange, ...]:
    """Field-level changes from ``old`` (None means no prior state) to ``new``."""
    changes: list[FieldChange] = []
    _diff_objects(_as_object(old, "old"), _as_object(new, "new"), "", recursive, changes)
    return tuple(changes)


def _new_event_id() -> str:
    return f"evt_{uuid.uuid4().hex}"


@traced_engine("diff", "1.0", fingerprint_fields=("entity_id", "old", "new"))
def build_change_event(
    entity_id: str,
    old: dict[str, Any] | None,
    new: dict[str, Any],
    config: ChangeEventConfiguration,
    *,
    clock: Clock | None = None,
    id_factory: Callable[[], str] | None = None,
    metadata: dict[str, Any] | None = None,
) -> ChangeEvent:
    """
    Diff ``old`` against ``new`` and wrap the result in a ChangeEvent.

    ``metadata`` supplies correlationId / source / version; it and
    ``config.custom_properties`` are attached only when
    ``config.include_metadata`` is set.
    """
    clock = clock or SystemClock()
    changes = diff_records(old, new, recursive=config.recursive_diff)

    event_metadata: dict[str, Any] | None = None
    if config.include_metadata:
        event_metadata = {"source": "jsonmap"}
        event_metadata.update(metadata or {})
        event_metadata.update(config.custom_properties)

    event = ChangeEvent(
        id=(id_factory or _new_event_id)(),
        entity_id=entity_id,
        event_type=config.event_type,
        timestamp=utc_isoformat(clock.now()),
        new=new,
        changes=changes,
        old=old if config.include_old_values and old is not None else None,
        metadata=event_metadata,
    )
    logger.info(
        "change_event_built",
        extra={"event_id": event.id, "event_type": event.event_type, "change_count": len(changes)},
    )
    return event


def format_event(event: ChangeEvent, fmt: EventFormat = EventFormat.CUSTOM) -> dict[str, Any]:
    """Render ``event`` as a JSON-compatible dict in the requested envelope."""
    envelope = event.to_dict()
    if EventFormat(fmt) != EventFormat.CLOUDEVENTS:
        return envelope

    cloud: dict[str, Any] = {
        "specversion": CLOUDEVENTS_SPEC_VERSION,
        "type": event.event_type,
        "source": f"{EVENT_SOURCE_PREFIX}{event.entity_id}",
        "id": event.id,
        "time": event.timestamp,
        "datacontenttype": "application/json",
        "data": envelope["data"],
    }
    if event.metadata is not None:
        cloud["metadata"] = event.metadata
    return cloud
