"""
jsonmap_engines.merge -- Sub-tree merge resolver.

Responsibility:
    Combine two JSON objects under the shallow or deep merge strategy.
    Used by the evaluator (sub-child-merge) and by upsert resolution
    (conflictResolution=merge).

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - shallow: a copy of ``target`` with every top-level key of ``source``
      overwritten or added.
    - deep: objects present on both sides are merged recursively; for
      anything else ``source`` wins.
    - Arrays are atomic under both strategies (no element-wise merge).
    - ``preserve_fields`` names top-level keys of ``target`` that the merge
      never overwrites when ``target`` holds them.
    - Inputs are never mutated.

Failure modes:
    - A non-object ``source`` replaces ``target`` outright; a non-object
      ``target`` is treated as empty.
"""

from __future__ import annotations

import copy
from typing import Any

from jsonmap_kernel.domain.types import MergeStrategy


def _deep_merge(target: dict[str, Any], source: dict[str, Any]) -> dict[str, Any]:
    merged = dict(target)
    for key, value in source.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = _deep_merge(current, value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def merge_records(
    target: Any,
    source: Any,
    strategy: MergeStrategy = MergeStrategy.SHALLOW,
    preserve_fields: tuple[str, ...] = (),
) -> Any:
    """Merge ``source`` into ``target`` and return the new value."""
    if not isinstance(source, dict):
        return copy.deepcopy(source)
    base = target if isinstance(target, dict) else {}

    if preserve_fields:
        source = {k: v for k, v in source.items() if k not in preserve_fields or k not in base}

    if MergeStrategy(strategy) == MergeStrategy.DEEP:
        return _deep_merge(base, source)

    merged = dict(base)
    merged.update(copy.deepcopy(source))
    return merged
