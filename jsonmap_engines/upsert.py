"""
jsonmap_engines.upsert -- Upsert conflict resolver.

Responsibility:
    Combine a freshly computed output record with the existing record that
    shares its composite unique key, under the configured conflict policy.
    Also wraps the caller-supplied "fetch existing record" callback.

Architecture position:
    Engines -- pure calculation layer.  The lookup callback is the only
    suspension point; the engine holds no lock while it runs and does not
    serialize concurrent upserts on the same key (callers must).

Invariants enforced:
    - Every unique field must be present (and non-null) in the output.
    - An existing record must carry the same composite key as the output.
    - update -> output, merge -> merge(existing, output), skip -> existing,
      error -> ConflictError carrying the key.
    - A lookup signals "not found" only by returning ``None`` or raising
      ``ExistingRecordNotFound``.

Failure modes:
    - ``ValidationError`` for an enabled upsert with no unique fields or an
      existing record with a different key.
    - ``MissingUniqueFieldError`` when the output lacks a unique field.
    - ``ConflictError`` under the ``error`` policy.
    - ``LookupFailedError`` for any other exception from the lookup.
    - ``ValidationError`` when ``fetch_existing_sync`` gets an async lookup
      inside a running event loop.
"""

from __future__ import annotations

import asyncio
import copy
import inspect
from collections.abc import Callable, Sequence
from typing import Any

from jsonmap_engines.merge import merge_records
from jsonmap_engines.paths import get_path
from jsonmap_engines.tracer import traced_engine
from jsonmap_kernel.domain.types import (
    ConflictResolution,
    UpsertAction,
    UpsertConfiguration,
    UpsertResult,
)
from jsonmap_kernel.domain.values import MISSING, json_equal
from jsonmap_kernel.exceptions import (
    ConflictError,
    ExistingRecordNotFound,
    JsonMapError,
    LookupFailedError,
    MissingUniqueFieldError,
    ValidationError,
)
from jsonmap_kernel.logging_config import get_logger

logger = get_logger("engines.upsert")

Lookup = Callable[[dict[str, Any]], Any]


def extract_unique_key(record: Any, unique_fields: Sequence[str]) -> dict[str, Any]:
    """Composite key of ``record``, keyed by unique field path in order."""
    if not unique_fields:
        raise ValidationError("Upsert requires at least one unique field", field="uniqueFields")
    key: dict[str, Any] = {}
    missing: list[str] = []
    for path in unique_fields:
        value = get_path(record, path, MISSING)
        if value is MISSING or value is None:
            missing.append(path)
        else:
            key[path] = value
    if missing:
        raise MissingUniqueFieldError(missing)
    return key


@traced_engine("upsert", "1.0", fingerprint_fields=("output", "existing"))
def resolve_upsert(
    output: dict[str, Any],
    existing: dict[str, Any] | None,
    config: UpsertConfiguration,
) -> UpsertResult:
    """Resolve ``output`` against ``existing`` under ``config``."""
    key = extract_unique_key(output, config.unique_fields)

    if existing is None:
        action, record = UpsertAction.CREATED, copy.deepcopy(output)
    else:
        try:
            existing_key = extract_unique_key(existing, config.unique_fields)
        except MissingUniqueFieldError as e:
            raise ValidationError(
                "Existing record does not carry the unique key",
                field=e.field,
                errors=e.missing_fields,
            ) from e
        if not json_equal(existing_key, key):
            raise ValidationError(
                "Existing record key does not match the output key",
                field=config.unique_fields[0],
            )

        policy = ConflictResolution(config.conflict_resolution)
        if policy == ConflictResolution.ERROR:
            logger.info("upsert_conflict", extra={"unique_key": key})
            raise ConflictError(key)
        if policy == ConflictResolution.SKIP:
            action, record = UpsertAction.SKIPPED, copy.deepcopy(existing)
        elif policy == ConflictResolution.MERGE:
            action = UpsertAction.MERGED
            record = merge_records(existing, output, config.merge_strategy)
        else:
            action, record = UpsertAction.UPDATED, copy.deepcopy(output)

    logger.info("upsert_resolved", extra={"action": action.value, "unique_key": key})
    return UpsertResult(record=record, action=action, key=key)


def _check_found(found: Any, key: dict[str, Any]) -> dict[str, Any] | None:
    if found is None:
        return None
    if not isinstance(found, dict):
        raise LookupFailedError(key, f"lookup returned {type(found).__name__}, expected an object")
    return found


async def fetch_existing(lookup: Lookup, key: dict[str, Any]) -> dict[str, Any] | None:
    """
    Call ``lookup(key)`` and await it when it returns an awaitable.

    Returns None when the lookup reports no existing record.
    """
    try:
        found = lookup(key)
        if inspect.isawaitable(found):
            found = await found
    except ExistingRecordNotFound:
        return None
    except JsonMapError:
        raise
    except Exception as e:
        logger.warning("existing_lookup_failed", extra={"unique_key": key, "error": str(e)})
        raise LookupFailedError(key, f"{type(e).__name__}: {e}") from e
    return _check_found(found, key)


def _running_loop() -> asyncio.AbstractEventLoop | None:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


def fetch_existing_sync(lookup: Lookup, key: dict[str, Any]) -> dict[str, Any] | None:
    """
    Blocking variant of fetch_existing; drives an async lookup to completion.

    An async lookup cannot be driven from inside a running event loop;
    that raises ``ValidationError`` naming ``transform_record_async``.
    """
    try:
        found = lookup(key)
        if inspect.isawaitable(found):
            if _running_loop() is not None:
                if inspect.iscoroutine(found):
                    found.close()
                raise ValidationError(
                    "Async lookup called from a running event loop; "
                    "use transform_record_async",
                    field="lookup",
                )
            found = asyncio.run(_await(found))
    except ExistingRecordNotFound:
        return None
    except JsonMapError:
        raise
    except Exception as e:
        logger.warning("existing_lookup_failed", extra={"unique_key": key, "error": str(e)})
        raise LookupFailedError(key, f"{type(e).__name__}: {e}") from e
    return _check_found(found, key)


async def _await(awaitable: Any) -> Any:
    return await awaitable
