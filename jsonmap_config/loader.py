"""
Mapping Set Loader (``jsonmap_config.loader``).

Responsibility
--------------
Loads YAML (or JSON) mapping-set files and parses them into the frozen
``jsonmap_kernel.domain.types`` dataclasses; exports them back to plain
dicts.  Public runtime entry point is ``jsonmap_config.load_mapping_set()``,
which also validates.

Architecture position
---------------------
**Config layer** -- infrastructure tooling.  Depends on the kernel domain
types only; the engines never import this package.

Invariants enforced
-------------------
* Keys are the camelCase names used by stored mapping configurations;
  snake_case aliases are accepted everywhere.
* ``ValueMapping.mappings`` keeps the document's pattern order, whether it
  is written as an object, a list of ``{pattern, value}`` objects or a list
  of ``[pattern, value]`` pairs.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  mapping-set identity and change detection.
* ``export_mapping_set`` is the inverse of ``parse_mapping_set``.

Failure modes
-------------
* Missing file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys or unknown enum values  -> ``ValidationError``.
"""

from __future__ import annotations

import hashlib
import json
from enum import Enum
from pathlib import Path
from typing import Any, TypeVar

import yaml

from jsonmap_kernel.domain.types import (
    AggregationFunction,
    ChangeEventConfiguration,
    ConflictResolution,
    EventFormat,
    FieldMapping,
    MappingSet,
    MergeStrategy,
    TransformationKind,
    UpsertConfiguration,
    ValueMapping,
    ValueMappingType,
)
from jsonmap_kernel.domain.values import canonical_json, to_text
from jsonmap_kernel.exceptions import ValidationError

E = TypeVar("E", bound=Enum)

# Transformation names used by older stored configurations
_TRANSFORMATION_ALIASES = {"aggregate": TransformationKind.AGGREGATION.value}


def load_yaml_file(path: Path | str) -> Any:
    """
    Load a single YAML (or ``.json``) file and return its contents.

    Preconditions:
        - ``path`` must point to an existing, readable file.
    Postconditions:
        - Returns the parsed document (an empty dict for an empty file).
    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        json.JSONDecodeError: if a ``.json`` file contains invalid JSON.
    """
    path = Path(path)
    with open(path, encoding="utf-8") as f:
        if path.suffix.lower() == ".json":
            return json.load(f)
        return yaml.safe_load(f) or {}


def _get(data: dict[str, Any], *names: str, default: Any = None) -> Any:
    """First present key among ``names``."""
    for name in names:
        if name in data:
            return data[name]
    return default


def _require(data: dict[str, Any], *names: str) -> Any:
    value = _get(data, *names)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f"Missing required key '{names[0]}'", field=names[0])
    return value


def _enum(enum_cls: type[E], value: Any, field: str) -> E:
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError(
            f"Invalid {field} {value!r} (expected one of: {allowed})", field=field
        ) from None


_TRUE_TEXT = frozenset({"true", "yes", "on", "1"})
_FALSE_TEXT = frozenset({"false", "no", "off", "0", ""})


def _flag(data: dict[str, Any], *names: str, default: bool) -> bool:
    """Boolean option; accepts YAML/JSON booleans, 0/1 and true/false text."""
    value = _get(data, *names)
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE_TEXT:
            return True
        if text in _FALSE_TEXT:
            return False
    raise ValidationError(f"'{names[0]}' must be a boolean, got {value!r}", field=names[0])


def _paths(data: dict[str, Any], *names: str) -> tuple[str, ...]:
    """List of paths; a single string is one path."""
    value = _get(data, *names)
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    if isinstance(value, (list, tuple)) and all(isinstance(p, str) for p in value):
        return tuple(value)
    raise ValidationError(f"'{names[0]}' must be a list of paths, got {value!r}", field=names[0])


def _as_mapping(data: Any, what: str) -> dict[str, Any]:
    if not isinstance(data, dict):
        raise ValidationError(f"{what} must be an object, got {type(data).__name__}", field=what)
    return data


def parse_field_mapping(data: dict[str, Any]) -> FieldMapping:
    """
    Parse a ``FieldMapping`` from a dict.

    Aggregation mappings may name their function in ``template`` (the
    format of older stored configurations).
    """
    data = _as_mapping(data, "field mapping")
    raw_kind = _get(data, "transformation", default="direct")
    kind = _enum(
        TransformationKind,
        _TRANSFORMATION_ALIASES.get(raw_kind, raw_kind),
        "transformation",
    )

    template = _get(data, "template")
    raw_aggregation = _get(data, "aggregation", "aggregationFunction", "aggregation_function")
    if (
        raw_aggregation is None
        and kind == TransformationKind.AGGREGATION
        and template in {f.value for f in AggregationFunction}
    ):
        raw_aggregation, template = template, None

    source = _get(data, "source", default="")
    return FieldMapping(
        source="" if source is None else str(source),
        target=str(_require(data, "target")),
        transformation=kind,
        template=template,
        custom_function=_get(data, "customFunction", "custom_function"),
        value_mapping_id=_get(data, "valueMappingId", "valueMapId", "value_mapping_id"),
        active=_flag(data, "active", default=True),
        condition=_get(data, "condition"),
        aggregation=(
            _enum(AggregationFunction, raw_aggregation, "aggregation")
            if raw_aggregation is not None
            else None
        ),
        separator=str(_get(data, "separator", default="")),
        merge_strategy=_enum(
            MergeStrategy, _get(data, "mergeStrategy", "merge_strategy", default="shallow"), "mergeStrategy"
        ),
        preserve_fields=_paths(data, "preserveFields", "preserve_fields"),
        id=_get(data, "id"),
    )


def _parse_pairs(raw: Any, owner: str) -> tuple[tuple[str, Any], ...]:
    if raw is None:
        return ()
    if isinstance(raw, dict):
        return tuple((to_text(k), v) for k, v in raw.items())
    if isinstance(raw, list):
        pairs: list[tuple[str, Any]] = []
        for item in raw:
            if isinstance(item, dict) and "pattern" in item:
                pairs.append((to_text(item["pattern"]), item.get("value")))
            elif isinstance(item, (list, tuple)) and len(item) == 2:
                pairs.append((to_text(item[0]), item[1]))
            else:
                raise ValidationError(
                    f"Value mapping '{owner}': entries must be {{pattern, value}} objects "
                    f"or [pattern, value] pairs, got {item!r}",
                    field="mappings",
                )
        return tuple(pairs)
    raise ValidationError(
        f"Value mapping '{owner}': mappings must be an object or a list", field="mappings"
    )


def parse_value_mapping(data: dict[str, Any]) -> ValueMapping:
    """Parse a ``ValueMapping`` from a dict."""
    data = _as_mapping(data, "value mapping")
    vm_id = str(_require(data, "id"))
    return ValueMapping(
        id=vm_id,
        type=_enum(ValueMappingType, _get(data, "type", default="exact"), "type"),
        mappings=_parse_pairs(_get(data, "mappings"), vm_id),
        default_value=_get(data, "defaultValue", "default_value"),
        case_sensitive=_flag(data, "caseSensitive", "case_sensitive", default=False),
        name=_get(data, "name", default="") or "",
        description=_get(data, "description", default="") or "",
    )


def parse_upsert_configuration(data: dict[str, Any]) -> UpsertConfiguration:
    """Parse an ``UpsertConfiguration`` from a dict."""
    data = _as_mapping(data, "upsert configuration")
    return UpsertConfiguration(
        enabled=_flag(data, "enabled", default=False),
        unique_fields=_paths(data, "uniqueFields", "unique_fields"),
        conflict_resolution=_enum(
            ConflictResolution,
            _get(data, "conflictResolution", "conflict_resolution", default="update"),
            "conflictResolution",
        ),
        merge_strategy=_enum(
            MergeStrategy, _get(data, "mergeStrategy", "merge_strategy", default="shallow"), "mergeStrategy"
        ),
    )


def parse_change_event_configuration(data: dict[str, Any]) -> ChangeEventConfiguration:
    """Parse a ``ChangeEventConfiguration`` from a dict."""
    data = _as_mapping(data, "change event configuration")
    return ChangeEventConfiguration(
        enabled=_flag(data, "enabled", default=False),
        event_type=str(_get(data, "eventType", "event_type", default="") or ""),
        include_old_values=_flag(data, "includeOldValues", "include_old_values", default=False),
        include_metadata=_flag(data, "includeMetadata", "include_metadata", default=False),
        custom_properties=dict(_get(data, "customProperties", "custom_properties", default=None) or {}),
        format=_enum(EventFormat, _get(data, "format", default="custom"), "format"),
        recursive_diff=_flag(data, "recursiveDiff", "recursive_diff", default=False),
    )


def parse_mapping_set(data: dict[str, Any]) -> MappingSet:
    """
    Parse a ``MappingSet`` from a dict.

    Preconditions:
        - ``data`` must contain ``entityId``.
    Postconditions:
        - ``checksum`` is the SHA-256 of the source document.
    Raises:
        ValidationError: for missing required keys or invalid enum values.
    """
    data = _as_mapping(data, "mapping set")
    upsert = _get(data, "upsert", "upsertConfiguration", "upsert_configuration")
    events = _get(data, "changeEvents", "changeEventConfiguration", "change_events")
    return MappingSet(
        entity_id=str(_require(data, "entityId", "entity_id")),
        name=_get(data, "name", default="") or "",
        version=int(_get(data, "version", default=1)),
        field_mappings=tuple(
            parse_field_mapping(m)
            for m in _get(data, "fieldMappings", "field_mappings", "mappings", default=()) or ()
        ),
        value_mappings=tuple(
            parse_value_mapping(v)
            for v in _get(data, "valueMappings", "value_mappings", default=()) or ()
        ),
        upsert=parse_upsert_configuration(upsert) if upsert is not None else None,
        change_events=parse_change_event_configuration(events) if events is not None else None,
        checksum=compute_checksum(data),
    )


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------


def export_field_mapping(mapping: FieldMapping) -> dict[str, Any]:
    out: dict[str, Any] = {
        "source": mapping.source,
        "target": mapping.target,
        "transformation": mapping.transformation.value,
        "active": mapping.active,
    }
    if mapping.id is not None:
        out["id"] = mapping.id
    optional = {
        "template": mapping.template,
        "customFunction": mapping.custom_function,
        "valueMappingId": mapping.value_mapping_id,
        "condition": mapping.condition,
        "aggregation": mapping.aggregation.value if mapping.aggregation else None,
    }
    out.update({k: v for k, v in optional.items() if v is not None})
    if mapping.separator:
        out["separator"] = mapping.separator
    if mapping.transformation == TransformationKind.SUB_CHILD_MERGE:
        out["mergeStrategy"] = mapping.merge_strategy.value
        if mapping.preserve_fields:
            out["preserveFields"] = list(mapping.preserve_fields)
    return out


def export_value_mapping(mapping: ValueMapping) -> dict[str, Any]:
    out: dict[str, Any] = {
        "id": mapping.id,
        "type": mapping.type.value,
        "mappings": [{"pattern": p, "value": v} for p, v in mapping.mappings],
        "defaultValue": mapping.default_value,
        "caseSensitive": mapping.case_sensitive,
    }
    if mapping.name:
        out["name"] = mapping.name
    if mapping.description:
        out["description"] = mapping.description
    return out


def export_mapping_set(mapping_set: MappingSet) -> dict[str, Any]:
    """Plain-dict form of ``mapping_set`` that ``parse_mapping_set`` reads back."""
    out: dict[str, Any] = {
        "entityId": mapping_set.entity_id,
        "version": mapping_set.version,
    }
    if mapping_set.name:
        out["name"] = mapping_set.name
    out["fieldMappings"] = [export_field_mapping(m) for m in mapping_set.field_mappings]
    out["valueMappings"] = [export_value_mapping(v) for v in mapping_set.value_mappings]
    if mapping_set.upsert is not None:
        u = mapping_set.upsert
        out["upsert"] = {
            "enabled": u.enabled,
            "uniqueFields": list(u.unique_fields),
            "conflictResolution": u.conflict_resolution.value,
            "mergeStrategy": u.merge_strategy.value,
        }
    if mapping_set.change_events is not None:
        c = mapping_set.change_events
        out["changeEvents"] = {
            "enabled": c.enabled,
            "eventType": c.event_type,
            "includeOldValues": c.include_old_values,
            "includeMetadata": c.include_metadata,
            "customProperties": dict(c.custom_properties),
            "format": c.format.value,
            "recursiveDiff": c.recursive_diff,
        }
    return out


def compute_checksum(data: Any) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Preconditions:
        - ``data`` is JSON-like; mapping keys are compared as their
          text form, so YAML integer and boolean keys are accepted.
    Postconditions:
        - Returns a hex-encoded SHA-256 hash string.
        - Identical ``data`` always produces identical checksums
          (deterministic).
    """
    return hashlib.sha256(canonical_json(data).encode()).hexdigest()
