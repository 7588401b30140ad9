"""
jsonmap_kernel.domain.types -- Pure frozen dataclasses for the mapping engine.

ZERO I/O. Every object here is an immutable value constructed per
invocation; nothing is cached or persisted inside the engine.

Closed sets (transformation kinds, matching strategies, conflict policies,
merge strategies, aggregations, change operations) are ``str`` enums so
that configuration text maps onto them directly and dispatch never happens
on raw strings.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from jsonmap_kernel.domain.clock import utc_isoformat
from jsonmap_kernel.domain.values import MISSING
from jsonmap_kernel.exceptions import JsonMapError, ValidationError


# =============================================================================
# Enums
# =============================================================================


class TransformationKind(str, Enum):
    """How a field mapping turns its source into its target value."""

    DIRECT = "direct"
    TEMPLATE = "template"
    FUNCTION = "function"
    VALUE_MAPPING = "value-mapping"
    SUB_CHILD_MERGE = "sub-child-merge"
    SUB_CHILD_REPLACE = "sub-child-replace"
    AGGREGATION = "aggregation"
    CONDITIONAL = "conditional"


class ValueMappingType(str, Enum):
    """Matching strategy of a value mapping table."""

    EXACT = "exact"
    REGEX = "regex"
    RANGE = "range"
    CONTAINS = "contains"
    PREFIX = "prefix"
    SUFFIX = "suffix"


class ConflictResolution(str, Enum):
    """What to do when an upsert finds an existing record."""

    UPDATE = "update"
    MERGE = "merge"
    SKIP = "skip"
    ERROR = "error"


class MergeStrategy(str, Enum):
    """Object merge depth."""

    SHALLOW = "shallow"
    DEEP = "deep"


class AggregationFunction(str, Enum):
    """Closed set of reductions over an array source."""

    SUM = "sum"
    COUNT = "count"
    MIN = "min"
    MAX = "max"
    CONCAT = "concat"


class ChangeOperation(str, Enum):
    """Kind of a single field-level change."""

    ADD = "add"
    UPDATE = "update"
    DELETE = "delete"


class UpsertAction(str, Enum):
    """Outcome of upsert resolution."""

    CREATED = "created"
    UPDATED = "updated"
    MERGED = "merged"
    SKIPPED = "skipped"


class EventFormat(str, Enum):
    """Serialization envelope for change events."""

    CUSTOM = "custom"
    CLOUDEVENTS = "cloudevents"


SYSTEM_SOURCE_PREFIX = "_system."


# =============================================================================
# Mapping configuration
# =============================================================================


@dataclass(frozen=True)
class FieldMapping:
    """Single rule: one input path to one output path under a transformation."""

    source: str
    target: str
    transformation: TransformationKind = TransformationKind.DIRECT
    template: str | None = None
    custom_function: str | None = None
    value_mapping_id: str | None = None
    active: bool = True
    condition: str | None = None  # conditional predicate expression
    aggregation: AggregationFunction | None = None
    separator: str = ""  # concat joiner
    merge_strategy: MergeStrategy = MergeStrategy.SHALLOW  # sub-child-merge
    preserve_fields: tuple[str, ...] = ()  # sub-child-merge
    id: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.target, str) or not self.target.strip():
            raise ValidationError("Field mapping target must be non-empty", field="target")

    @property
    def reads_system_field(self) -> bool:
        return self.source.startswith(SYSTEM_SOURCE_PREFIX)


@dataclass(frozen=True)
class ValueMapping:
    """
    Reusable scalar lookup table.

    ``mappings`` is an ordered sequence of ``(pattern, value)`` pairs; for
    regex/range/contains/prefix/suffix the first matching pattern wins, so the
    order is part of the contract.
    """

    id: str
    type: ValueMappingType = ValueMappingType.EXACT
    mappings: tuple[tuple[str, Any], ...] = ()
    default_value: Any = None
    case_sensitive: bool = False
    name: str = ""
    description: str = ""

    @property
    def patterns(self) -> tuple[str, ...]:
        return tuple(pattern for pattern, _ in self.mappings)


@dataclass(frozen=True)
class UpsertConfiguration:
    """Resolution of a computed record against an existing one."""

    enabled: bool = False
    unique_fields: tuple[str, ...] = ()
    conflict_resolution: ConflictResolution = ConflictResolution.UPDATE
    merge_strategy: MergeStrategy = MergeStrategy.SHALLOW


@dataclass(frozen=True)
class ChangeEventConfiguration:
    """Change event emission settings."""

    enabled: bool = False
    event_type: str = ""
    include_old_values: bool = False
    include_metadata: bool = False
    custom_properties: dict[str, Any] = field(default_factory=dict)
    format: EventFormat = EventFormat.CUSTOM
    recursive_diff: bool = False


@dataclass(frozen=True)
class MappingSet:
    """Everything needed to transform records of one entity."""

    entity_id: str
    field_mappings: tuple[FieldMapping, ...] = ()
    value_mappings: tuple[ValueMapping, ...] = ()
    upsert: UpsertConfiguration | None = None
    change_events: ChangeEventConfiguration | None = None
    name: str = ""
    version: int = 1
    checksum: str = ""

    @property
    def upsert_enabled(self) -> bool:
        return self.upsert is not None and self.upsert.enabled

    @property
    def change_events_enabled(self) -> bool:
        return self.change_events is not None and self.change_events.enabled


# =============================================================================
# System fields
# =============================================================================


@dataclass(frozen=True)
class SystemFields:
    """Caller-specified fields appended verbatim after all mappings run."""

    processed_at: datetime | None = None
    correlation_id: str | None = None
    entity_type: str | None = None

    def as_output(self) -> dict[str, Any]:
        """Output keys for the non-empty system fields."""
        out: dict[str, Any] = {}
        if self.processed_at is not None:
            out["processedAt"] = utc_isoformat(self.processed_at)
        if self.correlation_id is not None:
            out["correlationId"] = self.correlation_id
        if self.entity_type is not None:
            out["entityType"] = self.entity_type
        return out

    def resolve(self, name: str) -> Any:
        """Value for a ``_system.<name>`` source, or MISSING."""
        if name in ("timestamp", "processedAt") and self.processed_at is not None:
            return utc_isoformat(self.processed_at)
        if name == "correlationId" and self.correlation_id is not None:
            return self.correlation_id
        if name in ("entityType", "entityName") and self.entity_type is not None:
            return self.entity_type
        return MISSING


# =============================================================================
# Results
# =============================================================================


@dataclass(frozen=True)
class MappingWarning:
    """A non-fatal problem collected while evaluating one mapping."""

    code: str
    message: str
    target: str | None = None
    details: dict[str, Any] | None = None

    @classmethod
    def from_error(cls, error: JsonMapError, target: str | None = None) -> MappingWarning:
        details = {
            k: v for k, v in vars(error).items()
            if not k.startswith("_") and k not in ("args", "target")
        }
        return cls(
            code=error.code,
            message=str(error),
            target=target if target is not None else getattr(error, "target", None),
            details=details or None,
        )


@dataclass(frozen=True)
class EvaluationResult:
    """Output of applying a field mapping set to one input record."""

    output: dict[str, Any]
    warnings: tuple[MappingWarning, ...] = ()

    @property
    def has_warnings(self) -> bool:
        return len(self.warnings) > 0


@dataclass(frozen=True)
class UpsertResult:
    """Resolved record and what happened to it."""

    record: dict[str, Any]
    action: UpsertAction
    key: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class FieldChange:
    """Difference of one field between two record states."""

    field: str
    old_value: Any
    new_value: Any
    operation: ChangeOperation

    def to_dict(self) -> dict[str, Any]:
        return {
            "field": self.field,
            "oldValue": self.old_value,
            "newValue": self.new_value,
            "operation": self.operation.value,
        }


@dataclass(frozen=True)
class ChangeEvent:
    """Structured record of the differences between two states of an entity."""

    id: str
    entity_id: str
    event_type: str
    timestamp: str
    new: dict[str, Any]
    changes: tuple[FieldChange, ...] = ()
    old: dict[str, Any] | None = None  # only when includeOldValues
    metadata: dict[str, Any] | None = None  # only when includeMetadata

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"new": self.new}
        if self.old is not None:
            data["old"] = self.old
        data["changes"] = [c.to_dict() for c in self.changes]
        envelope: dict[str, Any] = {
            "id": self.id,
            "entityId": self.entity_id,
            "eventType": self.event_type,
            "timestamp": self.timestamp,
            "data": data,
        }
        if self.metadata is not None:
            envelope["metadata"] = self.metadata
        return envelope


@dataclass(frozen=True)
class TransformationOutcome:
    """End-to-end result: evaluated output, resolved record, optional event."""

    output: dict[str, Any]
    record: dict[str, Any]
    action: UpsertAction
    event: ChangeEvent | None = None
    existing: dict[str, Any] | None = None
    warnings: tuple[MappingWarning, ...] = ()
