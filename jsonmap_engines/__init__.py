"""
Module: jsonmap_engines
Responsibility:
    Package entrypoint that re-exports the public symbols of the pure
    transformation engines.  This is the canonical import surface for
    callers (API layers, jsonmap_config, scripts).

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import jsonmap_kernel (and sibling engine modules).
    MUST NOT import jsonmap_config.

Invariants enforced:
    - Purity: engines never read the system clock directly; timestamps come
      from an injected ``Clock``.
    - Statelessness: no shared mutable state between calls; value mappings
      are passed explicitly on every call.
    - Determinism: identical inputs produce identical outputs (event ids
      and timestamps aside, which are injectable).

Failure modes:
    - JsonMapError subclasses propagated from the individual engines.

Audit relevance:
    Every engine entry point is traced via the ``@traced_engine`` decorator
    (see ``jsonmap_engines.tracer``), emitting JSONMAP_ENGINE_TRACE log
    records that include engine name, version, input fingerprint, and
    duration.

Usage:
    from jsonmap_engines import evaluate_mappings, resolve_upsert, build_change_event
    from jsonmap_engines.pipeline import transform_record
"""

from jsonmap_kernel.logging_config import get_logger

logger = get_logger("engines")

from jsonmap_engines.diff import build_change_event, diff_records, format_event
from jsonmap_engines.evaluator import (
    aggregate,
    evaluate_mappings,
    render_template,
    resolve_source,
)
from jsonmap_engines.expressions import (
    compile_expression,
    evaluate_expression,
    evaluate_predicate,
)
from jsonmap_engines.harness import MappingTestReport, MappingTestRow, run_mapping_test
from jsonmap_engines.merge import merge_records
from jsonmap_engines.paths import (
    IndexSegment,
    KeySegment,
    get_path,
    has_path,
    parse_path,
    set_path,
)
from jsonmap_engines.pipeline import transform_record, transform_record_async
from jsonmap_engines.tracer import compute_input_fingerprint, traced_engine
from jsonmap_engines.upsert import (
    extract_unique_key,
    fetch_existing,
    fetch_existing_sync,
    resolve_upsert,
)
from jsonmap_engines.value_matcher import ValueMatch, find_match, match_value, parse_range

__all__ = [
    # Paths
    "IndexSegment",
    "KeySegment",
    "get_path",
    "has_path",
    "parse_path",
    "set_path",
    # Value matching
    "ValueMatch",
    "find_match",
    "match_value",
    "parse_range",
    # Expressions
    "compile_expression",
    "evaluate_expression",
    "evaluate_predicate",
    # Evaluator
    "aggregate",
    "evaluate_mappings",
    "render_template",
    "resolve_source",
    # Merge
    "merge_records",
    # Upsert
    "extract_unique_key",
    "fetch_existing",
    "fetch_existing_sync",
    "resolve_upsert",
    # Diff
    "build_change_event",
    "diff_records",
    "format_event",
    # Pipeline
    "transform_record",
    "transform_record_async",
    # Harness
    "MappingTestReport",
    "MappingTestRow",
    "run_mapping_test",
    # Tracing
    "compute_input_fingerprint",
    "traced_engine",
]
