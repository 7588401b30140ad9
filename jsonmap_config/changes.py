"""
Mapping set change detection.

Compares two revisions of a mapping list and reports which field mappings
were added, modified or removed.  Mappings are matched by ``id``; a mapping
without an id is matched by its target path.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from jsonmap_kernel.domain.types import FieldMapping, MappingSet


@dataclass(frozen=True)
class MappingChanges:
    """Field mappings added, modified and removed between two revisions."""

    added: tuple[FieldMapping, ...] = ()
    modified: tuple[FieldMapping, ...] = ()
    removed: tuple[FieldMapping, ...] = ()

    @property
    def has_changes(self) -> bool:
        return bool(self.added or self.modified or self.removed)


def _mappings_of(value: MappingSet | Iterable[FieldMapping]) -> tuple[FieldMapping, ...]:
    if isinstance(value, MappingSet):
        return value.field_mappings
    return tuple(value)


def _identity(mapping: FieldMapping) -> str:
    return f"id:{mapping.id}" if mapping.id is not None else f"target:{mapping.target}"


def diff_mapping_sets(
    current: MappingSet | Iterable[FieldMapping],
    updated: MappingSet | Iterable[FieldMapping],
) -> MappingChanges:
    """Changes from ``current`` to ``updated``, in the order each side lists them."""
    before = {_identity(m): m for m in _mappings_of(current)}
    after = {_identity(m): m for m in _mappings_of(updated)}

    return MappingChanges(
        added=tuple(m for key, m in after.items() if key not in before),
        modified=tuple(m for key, m in after.items() if key in before and before[key] != m),
        removed=tuple(m for key, m in before.items() if key not in after),
    )
