#!/usr/bin/env python3
"""
Run a mapping set over input records: evaluate, resolve upserts, build change events.

Existing records for upsert resolution come from a JSON file (a single
object or a list of objects); the record whose unique fields match the
output's composite key is used.

Usage:
    python3 scripts/run_mapping.py --mapping-set <yaml> --input <json> [options]

Examples:
    # Transform one record (or a list of records) and print the outcomes
    python3 scripts/run_mapping.py --mapping-set customer.yaml --input order.json

    # Resolve against stored records and emit CloudEvents envelopes
    python3 scripts/run_mapping.py --mapping-set customer.yaml --input order.json \\
        --existing stored.json --event-format cloudevents

    # Dry-run the mapping set against sample rows (no upsert, no events)
    python3 scripts/run_mapping.py --mapping-set customer.yaml --input samples.json --test
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any

# Project root on sys.path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Run a mapping set: evaluate -> [upsert] -> [change event].",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--mapping-set",
        required=True,
        type=Path,
        help="Path to the mapping set (YAML or JSON).",
    )
    parser.add_argument(
        "--input",
        required=True,
        type=Path,
        help="Path to the input JSON (one record or a list of records).",
    )
    parser.add_argument(
        "--existing",
        type=Path,
        default=None,
        help="JSON file with existing records used for upsert resolution.",
    )
    parser.add_argument(
        "--strict",
        action="store_true",
        help="Abort on the first failing field mapping instead of collecting warnings.",
    )
    parser.add_argument(
        "--test",
        action="store_true",
        help="Run the mapping test harness over the input rows and print the report.",
    )
    parser.add_argument(
        "--event-format",
        choices=("custom", "cloudevents"),
        default=None,
        help="Change event envelope (default: the mapping set's format).",
    )
    parser.add_argument(
        "--correlation-id",
        default=None,
        help="Correlation id appended as a system field and attached to events.",
    )
    parser.add_argument(
        "--entity-type",
        default=None,
        help="Entity type appended as a system field.",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=("DEBUG", "INFO", "WARNING", "ERROR"),
        help="Structured log level written to stderr (default: WARNING).",
    )
    return parser.parse_args(argv)


def _load_json(path: Path) -> Any:
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def _as_records(data: Any) -> list[Any]:
    return data if isinstance(data, list) else [data]


def _make_lookup(existing_records: list[dict[str, Any]]):
    from jsonmap_engines.paths import get_path
    from jsonmap_kernel.domain.values import json_equal

    def lookup(key: dict[str, Any]) -> dict[str, Any] | None:
        for record in existing_records:
            if all(json_equal(get_path(record, path), value) for path, value in key.items()):
                return record
        return None

    return lookup


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)

    # Lazy imports so we fail fast on args first
    import yaml

    from jsonmap_config import load_mapping_set
    from jsonmap_engines.diff import format_event
    from jsonmap_engines.harness import run_mapping_test
    from jsonmap_engines.pipeline import transform_record
    from jsonmap_kernel.domain.clock import SystemClock
    from jsonmap_kernel.domain.types import EventFormat, SystemFields
    from jsonmap_kernel.exceptions import JsonMapError, http_status_for
    from jsonmap_kernel.logging_config import configure_logging

    configure_logging(level=getattr(logging, args.log_level))

    try:
        mapping_set = load_mapping_set(args.mapping_set)
    except (OSError, json.JSONDecodeError, yaml.YAMLError, JsonMapError) as e:
        print(f"ERROR: Failed to load mapping set: {e}", file=sys.stderr)
        return 1

    try:
        records = _as_records(_load_json(args.input))
        existing = _as_records(_load_json(args.existing)) if args.existing else []
    except (OSError, json.JSONDecodeError) as e:
        print(f"ERROR: Failed to read input: {e}", file=sys.stderr)
        return 1

    if args.test:
        report = run_mapping_test(mapping_set, records)
        print(f"Mapping {report.mapping_name} v{report.mapping_version}")
        print(f"  Samples: {report.sample_count}, OK: {report.success_count}, Errors: {report.error_count}")
        for row in report.rows:
            if not row.success:
                print(f"  Row {row.source_row}: {list(row.errors)}")
        return 0 if report.error_count == 0 else 1

    fmt = EventFormat(args.event_format) if args.event_format else None
    if fmt is None and mapping_set.change_events is not None:
        fmt = mapping_set.change_events.format
    clock = SystemClock()
    lookup = _make_lookup(existing) if existing else None

    results: list[dict[str, Any]] = []
    failed = 0
    for i, record in enumerate(records, 1):
        system_fields = SystemFields(
            processed_at=clock.now(),
            correlation_id=args.correlation_id,
            entity_type=args.entity_type,
        )
        try:
            outcome = transform_record(
                record,
                mapping_set,
                lookup=lookup,
                strict=args.strict,
                system_fields=system_fields,
                clock=clock,
            )
        except JsonMapError as e:
            failed += 1
            results.append({
                "row": i,
                "error": {"code": e.code, "status": http_status_for(e), "message": str(e)},
            })
            continue

        entry: dict[str, Any] = {
            "row": i,
            "action": outcome.action.value,
            "record": outcome.record,
        }
        if outcome.warnings:
            entry["warnings"] = [
                {"code": w.code, "target": w.target, "message": w.message}
                for w in outcome.warnings
            ]
        if outcome.event is not None:
            entry["event"] = format_event(outcome.event, fmt or EventFormat.CUSTOM)
        results.append(entry)

    json.dump(results, sys.stdout, indent=2, default=str)
    print()
    return 0 if failed == 0 else 1


if __name__ == "__main__":
    sys.exit(main())
