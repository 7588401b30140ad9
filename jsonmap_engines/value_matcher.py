"""
jsonmap_engines.value_matcher -- Scalar-to-scalar lookup with six strategies.

Responsibility:
    Resolve a value against a ``ValueMapping`` table using one of the
    matching strategies: exact, regex, range, contains, prefix, suffix.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Deterministic first-match: patterns are tried in the table's order and
      the first structurally matching pattern wins.  Insertion order is part
      of the contract because several patterns may match one value.
    - Case folding (``case_sensitive=False``) applies to exact, contains,
      prefix and suffix; both the value and the patterns are folded.
    - Regex patterns are searched (not anchored) in the stringified value;
      case handling is left to the pattern itself (e.g. ``(?i)``).
    - Range patterns are ``"min-max"`` with inclusive bounds; a non-numeric
      value falls straight through to the default.

Failure modes:
    - ``ValidationError`` when a regex pattern does not compile.
    - Malformed range patterns never match (the config validator reports
      them).
    - No match and no ``default_value`` returns the input value unchanged.
"""

from __future__ import annotations

import functools
import re
from dataclasses import dataclass
from typing import Any

from jsonmap_kernel.domain.types import ValueMapping, ValueMappingType
from jsonmap_kernel.domain.values import to_number, to_text
from jsonmap_kernel.exceptions import ValidationError
from jsonmap_kernel.logging_config import get_logger

logger = get_logger("engines.value_matcher")

_RANGE_PATTERN = re.compile(
    r"^\s*(-?\d+(?:\.\d+)?)\s*-\s*(-?\d+(?:\.\d+)?)\s*$"
)


@dataclass(frozen=True)
class ValueMatch:
    """Result of matching one value against a value mapping."""

    matched: bool
    value: Any
    pattern: str | None = None


def parse_range(pattern: str) -> tuple[float, float] | None:
    """Parse ``"min-max"`` into inclusive float bounds, or None if malformed."""
    m = _RANGE_PATTERN.match(pattern)
    if not m:
        return None
    low, high = float(m.group(1)), float(m.group(2))
    if low > high:
        return None
    return low, high


@functools.lru_cache(maxsize=512)
def compile_pattern(pattern: str) -> re.Pattern[str]:
    """Compile a regex pattern, raising ValidationError if it is invalid."""
    try:
        return re.compile(pattern)
    except re.error as e:
        raise ValidationError(f"Invalid regular expression {pattern!r}: {e}", field=pattern) from e


def _fold(text: str, case_sensitive: bool) -> str:
    return text if case_sensitive else text.casefold()


def _no_match(value: Any, mapping: ValueMapping) -> ValueMatch:
    fallback = mapping.default_value if mapping.default_value is not None else value
    return ValueMatch(matched=False, value=fallback)


def _match_exact(value: Any, mapping: ValueMapping) -> ValueMatch:
    needle = _fold(to_text(value), mapping.case_sensitive)
    for pattern, mapped in mapping.mappings:
        if _fold(pattern, mapping.case_sensitive) == needle:
            return ValueMatch(matched=True, value=mapped, pattern=pattern)
    return _no_match(value, mapping)


def _match_regex(value: Any, mapping: ValueMapping) -> ValueMatch:
    text = to_text(value)
    for pattern, mapped in mapping.mappings:
        if compile_pattern(pattern).search(text):
            return ValueMatch(matched=True, value=mapped, pattern=pattern)
    return _no_match(value, mapping)


def _match_range(value: Any, mapping: ValueMapping) -> ValueMatch:
    number = to_number(value)
    if number is None:
        return _no_match(value, mapping)
    for pattern, mapped in mapping.mappings:
        bounds = parse_range(pattern)
        if bounds is None:
            logger.debug(
                "range_pattern_skipped",
                extra={"value_mapping_id": mapping.id, "pattern": pattern},
            )
            continue
        low, high = bounds
        if low <= number <= high:
            return ValueMatch(matched=True, value=mapped, pattern=pattern)
    return _no_match(value, mapping)


def _match_substring(value: Any, mapping: ValueMapping) -> ValueMatch:
    haystack = _fold(to_text(value), mapping.case_sensitive)
    for pattern, mapped in mapping.mappings:
        needle = _fold(pattern, mapping.case_sensitive)
        if mapping.type == ValueMappingType.CONTAINS:
            hit = needle in haystack
        elif mapping.type == ValueMappingType.PREFIX:
            hit = haystack.startswith(needle)
        else:
            hit = haystack.endswith(needle)
        if hit:
            return ValueMatch(matched=True, value=mapped, pattern=pattern)
    return _no_match(value, mapping)


_STRATEGIES = {
    ValueMappingType.EXACT: _match_exact,
    ValueMappingType.REGEX: _match_regex,
    ValueMappingType.RANGE: _match_range,
    ValueMappingType.CONTAINS: _match_substring,
    ValueMappingType.PREFIX: _match_substring,
    ValueMappingType.SUFFIX: _match_substring,
}


def find_match(value: Any, mapping: ValueMapping) -> ValueMatch:
    """Match ``value`` against ``mapping`` and report which pattern hit."""
    return _STRATEGIES[ValueMappingType(mapping.type)](value, mapping)


def match_value(value: Any, mapping: ValueMapping) -> Any:
    """Mapped value for ``value`` (or the default / the value itself)."""
    return find_match(value, mapping).value
