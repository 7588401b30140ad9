"""
Pure domain layer.

Immutable value objects and pure helpers with NO dependencies on
persistence, network, or the system clock (``SystemClock`` aside).
"""

from jsonmap_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from jsonmap_kernel.domain.expression_ast import ExpressionASTError, validate_expression
from jsonmap_kernel.domain.types import (
    AggregationFunction,
    ChangeEvent,
    ChangeEventConfiguration,
    ChangeOperation,
    ConflictResolution,
    EvaluationResult,
    EventFormat,
    FieldChange,
    FieldMapping,
    MappingSet,
    MappingWarning,
    MergeStrategy,
    SystemFields,
    TransformationKind,
    TransformationOutcome,
    UpsertAction,
    UpsertConfiguration,
    UpsertResult,
    ValueMapping,
    ValueMappingType,
)
from jsonmap_kernel.domain.values import MISSING

__all__ = [
    "AggregationFunction",
    "ChangeEvent",
    "ChangeEventConfiguration",
    "ChangeOperation",
    "Clock",
    "ConflictResolution",
    "DeterministicClock",
    "EvaluationResult",
    "EventFormat",
    "ExpressionASTError",
    "FieldChange",
    "FieldMapping",
    "MISSING",
    "MappingSet",
    "MappingWarning",
    "MergeStrategy",
    "SystemClock",
    "SystemFields",
    "TransformationKind",
    "TransformationOutcome",
    "UpsertAction",
    "UpsertConfiguration",
    "UpsertResult",
    "ValueMapping",
    "ValueMappingType",
    "validate_expression",
]
