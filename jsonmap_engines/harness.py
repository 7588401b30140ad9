"""
Mapping test harness: run a mapping set against sample rows without side effects.

Pure function. Evaluates every sample row, checks the upsert key of each
output and its uniqueness across the batch, and returns a detailed report.
No lookup, no change events.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from jsonmap_engines.evaluator import evaluate_mappings
from jsonmap_engines.upsert import extract_unique_key
from jsonmap_kernel.domain.types import MappingSet, MappingWarning
from jsonmap_kernel.domain.values import canonical_json
from jsonmap_kernel.exceptions import ValidationError


@dataclass(frozen=True)
class MappingTestRow:
    """Result for one sample row."""

    source_row: int
    success: bool
    raw_data: Any
    output: dict[str, Any] | None = None
    warnings: tuple[MappingWarning, ...] = ()
    errors: tuple[str, ...] = ()


@dataclass(frozen=True)
class MappingTestReport:
    """Report from a run_mapping_test run."""

    mapping_name: str
    mapping_version: int
    sample_count: int
    success_count: int
    error_count: int
    rows: tuple[MappingTestRow, ...] = ()
    summary_errors: tuple[str, ...] = ()


def run_mapping_test(
    mapping_set: MappingSet,
    sample_rows: Sequence[Any],
) -> MappingTestReport:
    """
    Test a mapping set against sample data. Pure function.

    A row succeeds when it evaluates without warnings and, with upsert
    enabled, its output carries a complete composite key not already seen
    earlier in the batch.

    Do not rename to test_* (pytest would collect it as a test).
    """
    rows: list[MappingTestRow] = []
    all_errors: set[str] = set()
    seen_keys: dict[str, int] = {}
    success_count = 0

    for i, raw in enumerate(sample_rows):
        source_row = i + 1
        result = evaluate_mappings(raw, mapping_set.field_mappings, mapping_set.value_mappings)
        errors_list = [f"{w.code}: {w.message}" for w in result.warnings]

        if mapping_set.upsert_enabled:
            try:
                key = extract_unique_key(result.output, mapping_set.upsert.unique_fields)
            except ValidationError as e:
                errors_list.append(f"{e.code}: {e}")
            else:
                rendered = canonical_json(key)
                if rendered in seen_keys:
                    errors_list.append(
                        f"DUPLICATE_UNIQUE_KEY: key {rendered} already used by row {seen_keys[rendered]}"
                    )
                else:
                    seen_keys[rendered] = source_row

        all_errors.update(errors_list)
        success = not errors_list
        if success:
            success_count += 1
        rows.append(
            MappingTestRow(
                source_row=source_row,
                success=success,
                raw_data=raw,
                output=result.output,
                warnings=result.warnings,
                errors=tuple(errors_list),
            )
        )

    return MappingTestReport(
        mapping_name=mapping_set.name or mapping_set.entity_id,
        mapping_version=mapping_set.version,
        sample_count=len(sample_rows),
        success_count=success_count,
        error_count=len(sample_rows) - success_count,
        rows=tuple(rows),
        summary_errors=tuple(sorted(all_errors)),
    )
