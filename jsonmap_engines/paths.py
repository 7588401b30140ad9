"""
jsonmap_engines.paths -- Path accessor over nested JSON-like structures.

Responsibility:
    Parse dotted/indexed path expressions into typed segments and read or
    write values at those paths.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Leaf component used by
    every other engine.

Path grammar:
    customer.id            object keys separated by dots
    items[0].sku           explicit array index
    items.0.sku            bare numeric segment: list index on a list,
                           key "0" on an object
    meta["a.b"]            quoted key (may contain dots or brackets)
    $.customer.id          optional JSONPath-style root prefix

Invariants enforced:
    - Reads never fail: reading through a missing key, a ``None`` or a
      scalar yields the default.
    - Writes never mutate their input: containers along the written path are
      copied, everything else is shared.
    - Writing through a missing intermediate creates an empty object (or an
      empty list when the next segment is an explicit ``[n]`` index).
      Writing past the end of a list pads it with ``None``.  A scalar in the
      way is replaced.

Failure modes:
    - ``ValidationError`` for empty or malformed paths.
"""

from __future__ import annotations

import functools
from dataclasses import dataclass
from typing import Any, Union

from jsonmap_kernel.domain.values import MISSING
from jsonmap_kernel.exceptions import ValidationError


@dataclass(frozen=True)
class KeySegment:
    """Object key.  ``numeric`` keys written as ``a.0`` also index lists."""

    name: str
    numeric: bool = False


@dataclass(frozen=True)
class IndexSegment:
    """Explicit array index written as ``[n]``."""

    index: int


PathSegment = Union[KeySegment, IndexSegment]


def _is_ascii_digits(text: str) -> bool:
    return text.isascii() and text.isdigit()


@functools.lru_cache(maxsize=2048)
def parse_path(path: str) -> tuple[PathSegment, ...]:
    """Parse a path expression into typed segments."""
    if not isinstance(path, str):
        raise ValidationError(f"Path must be a string, got {type(path).__name__}", field=str(path))

    text = path.strip()
    if text.startswith("$"):
        text = text[1:]
        if text.startswith("."):
            text = text[1:]
    if not text:
        raise ValidationError("Path is empty", field=path)

    def malformed(reason: str) -> ValidationError:
        return ValidationError(f"Malformed path {path!r}: {reason}", field=path)

    segments: list[PathSegment] = []
    i, n = 0, len(text)
    while i < n:
        if text[i] == "[":
            if i + 1 < n and text[i + 1] in ("'", '"'):
                quote = text[i + 1]
                end = text.find(quote, i + 2)
                if end == -1 or end + 1 >= n or text[end + 1] != "]":
                    raise malformed("unterminated quoted key")
                segments.append(KeySegment(text[i + 2:end]))
                i = end + 2
            else:
                close = text.find("]", i)
                if close == -1:
                    raise malformed("unterminated index")
                inner = text[i + 1:close].strip()
                if not _is_ascii_digits(inner):
                    raise malformed(f"index must be a non-negative integer, got {inner!r}")
                segments.append(IndexSegment(int(inner)))
                i = close + 1
        else:
            j = i
            while j < n and text[j] not in ".[":
                j += 1
            name = text[i:j]
            if not name:
                raise malformed("empty segment")
            segments.append(KeySegment(name, numeric=_is_ascii_digits(name)))
            i = j

        if i < n:
            if text[i] == ".":
                i += 1
                if i >= n:
                    raise malformed("trailing dot")
            elif text[i] != "[":
                raise malformed(f"unexpected character {text[i]!r}")

    return tuple(segments)


def _read(node: Any, segment: PathSegment) -> Any:
    if isinstance(segment, IndexSegment):
        if isinstance(node, (list, tuple)) and segment.index < len(node):
            return node[segment.index]
        return MISSING
    if isinstance(node, dict):
        if segment.name in node:
            return node[segment.name]
        if segment.numeric and int(segment.name) in node:
            return node[int(segment.name)]
        return MISSING
    if segment.numeric and isinstance(node, (list, tuple)):
        index = int(segment.name)
        return node[index] if index < len(node) else MISSING
    return MISSING


def get_path(record: Any, path: str, default: Any = None) -> Any:
    """Value at ``path``, or ``default`` when any segment is absent."""
    current = record
    for segment in parse_path(path):
        current = _read(current, segment)
        if current is MISSING:
            return default
    return current


def has_path(record: Any, path: str) -> bool:
    """True when ``path`` resolves to a present value (``None`` counts)."""
    return get_path(record, path, MISSING) is not MISSING


def _indexes_list(node: Any, segment: PathSegment) -> bool:
    if isinstance(segment, IndexSegment):
        return not isinstance(node, dict)
    return segment.numeric and isinstance(node, (list, tuple))


def _list_index(segment: PathSegment) -> int:
    return segment.index if isinstance(segment, IndexSegment) else int(segment.name)


def _assign(node: Any, segments: tuple[PathSegment, ...], value: Any) -> Any:
    segment, rest = segments[0], segments[1:]

    if _indexes_list(node, segment):
        items = list(node) if isinstance(node, (list, tuple)) else []
        index = _list_index(segment)
        if index >= len(items):
            items.extend([None] * (index + 1 - len(items)))
        items[index] = _assign(items[index], rest, value) if rest else value
        return items

    container = dict(node) if isinstance(node, dict) else {}
    key = segment.name if isinstance(segment, KeySegment) else str(segment.index)
    if rest:
        container[key] = _assign(container.get(key, MISSING), rest, value)
    else:
        container[key] = value
    return container


def set_path(record: Any, path: str, value: Any) -> Any:
    """Return a copy of ``record`` with ``value`` written at ``path``."""
    segments = parse_path(path)
    base = {} if record is None or record is MISSING else record
    return _assign(base, segments, value)
