"""
jsonmap_config -- loading, validation and change detection for mapping sets.

Responsibility:
    Provides ``load_mapping_set()``, the runtime way to obtain a validated
    ``MappingSet`` from a YAML or JSON file.  Parsing helpers live in
    ``jsonmap_config.loader``; validation in ``jsonmap_config.validator``.

Architecture position:
    Configuration -- sits above ``jsonmap_kernel`` and ``jsonmap_engines``.
    Neither of those packages may import from ``jsonmap_config``.

Invariants enforced:
    - A mapping set with validation errors is never returned.
    - Deterministic identity: the same document always produces the same
      ``MappingSet.checksum``.

Failure modes:
    - ``FileNotFoundError`` -- the file does not exist.
    - ``yaml.YAMLError`` -- the file is not valid YAML.
    - ``ValidationError`` -- parsing or validation failed; ``errors`` lists
      every validation error.

Audit relevance:
    Every successful ``load_mapping_set()`` call emits a
    ``JSONMAP_CONFIG_TRACE`` log entry with the entity id, version,
    checksum, mapping counts and warning count.
"""

from __future__ import annotations

from pathlib import Path

from jsonmap_config.changes import MappingChanges, diff_mapping_sets
from jsonmap_config.loader import (
    compute_checksum,
    export_mapping_set,
    load_yaml_file,
    parse_mapping_set,
)
from jsonmap_config.validator import ConfigValidationResult, validate_mapping_set
from jsonmap_kernel.domain.types import MappingSet
from jsonmap_kernel.exceptions import ValidationError
from jsonmap_kernel.logging_config import get_logger

_logger = get_logger("config")


def load_mapping_set(path: Path | str) -> MappingSet:
    """Load, parse and validate the mapping set stored at ``path``.

    Guarantees:
        - The returned ``MappingSet`` has passed ``validate_mapping_set``.
        - A ``JSONMAP_CONFIG_TRACE`` log entry is emitted on every
          successful call.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValidationError: If the document cannot be parsed or fails
            validation.
    """
    mapping_set = parse_mapping_set(load_yaml_file(path))

    validation = validate_mapping_set(mapping_set)
    if not validation.is_valid:
        raise ValidationError(
            "Mapping set validation failed:\n"
            + "\n".join(f"  - {e}" for e in validation.errors),
            field=str(path),
            errors=validation.errors,
        )
    for warning in validation.warnings:
        _logger.warning("mapping_set_warning", extra={"warning": warning})

    _logger.info(
        "JSONMAP_CONFIG_TRACE",
        extra={
            "trace_type": "JSONMAP_CONFIG_TRACE",
            "entity_id": mapping_set.entity_id,
            "mapping_set_version": mapping_set.version,
            "checksum": mapping_set.checksum,
            "field_mapping_count": len(mapping_set.field_mappings),
            "value_mapping_count": len(mapping_set.value_mappings),
            "warning_count": len(validation.warnings),
        },
    )
    return mapping_set


__all__ = [
    "ConfigValidationResult",
    "MappingChanges",
    "compute_checksum",
    "diff_mapping_sets",
    "export_mapping_set",
    "load_mapping_set",
    "load_yaml_file",
    "parse_mapping_set",
    "validate_mapping_set",
]
