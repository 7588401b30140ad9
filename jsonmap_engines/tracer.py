"""
jsonmap_engines.tracer -- Engine invocation tracer emitting JSONMAP_ENGINE_TRACE.

Responsibility:
    Provide a lightweight decorator (``@traced_engine``) that wraps pure
    engine invocations with structured trace logging.  The trace captures
    engine_name, engine_version, input_fingerprint (deterministic SHA-256
    hash of selected inputs), duration_ms, and whether the call raised.

Architecture position:
    Engines -- infrastructure support for the pure calculation layer.
    Does NOT introduce I/O into engines; emits a log record only.

Invariants enforced:
    - Fingerprint computation is deterministic: values are canonicalized
      with sorted object keys; the hash is SHA-256 truncated to 16 hex chars.
    - The decorator only reads arguments and emits a log record; it does not
      mutate inputs.

Usage:
    from jsonmap_engines.tracer import traced_engine

    @traced_engine("diff", "1.0", fingerprint_fields=("old", "new"))
    def diff_records(old, new):
        ...
"""

from __future__ import annotations

import functools
import hashlib
import inspect
import time
from collections.abc import Callable
from typing import Any

from jsonmap_kernel.domain.values import canonical_json
from jsonmap_kernel.logging_config import get_logger

_logger = get_logger("engines.tracer")


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    arguments: dict[str, Any],
) -> str:
    """Compute a deterministic SHA-256 fingerprint of selected input fields.

    Missing fields are recorded as null.  Dataclass values are fingerprinted
    by their ``repr``, which is stable for the frozen domain types.
    """
    parts: list[str] = []
    for name in fingerprint_fields:
        val = arguments.get(name)
        if isinstance(val, (dict, list, tuple, str, int, float, bool)) or val is None:
            rendered = canonical_json(val)
        else:
            rendered = repr(val)
        parts.append(f"{name}={rendered}")
    canonical = "|".join(parts)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]


def _emit(
    engine_name: str,
    engine_version: str,
    func: Callable,
    fingerprint: str,
    t0: float,
    failed: bool,
) -> None:
    _logger.info(
        "JSONMAP_ENGINE_TRACE",
        extra={
            "trace_type": "JSONMAP_ENGINE_TRACE",
            "engine_name": engine_name,
            "engine_version": engine_version,
            "input_fingerprint": fingerprint,
            "duration_ms": round((time.monotonic() - t0) * 1000, 2),
            "function": func.__qualname__,
            "failed": failed,
        },
    )


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable:
    """Decorator that emits JSONMAP_ENGINE_TRACE for engine invocations.

    Works on plain and ``async`` functions.  Fingerprint fields may be
    passed positionally or by keyword.
    """

    def decorator(func: Callable) -> Callable:
        signature = inspect.signature(func)

        def fingerprint_of(args: tuple, kwargs: dict) -> str:
            if not fingerprint_fields:
                return ""
            bound = signature.bind_partial(*args, **kwargs)
            return compute_input_fingerprint(fingerprint_fields, dict(bound.arguments))

        if inspect.iscoroutinefunction(func):

            @functools.wraps(func)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                fp = fingerprint_of(args, kwargs)
                t0 = time.monotonic()
                failed = True
                try:
                    result = await func(*args, **kwargs)
                    failed = False
                    return result
                finally:
                    _emit(engine_name, engine_version, func, fp, t0, failed)

            return async_wrapper

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            fp = fingerprint_of(args, kwargs)
            t0 = time.monotonic()
            failed = True
            try:
                result = func(*args, **kwargs)
                failed = False
                return result
            finally:
                _emit(engine_name, engine_version, func, fp, t0, failed)

        return wrapper

    return decorator
