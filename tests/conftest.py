"""
Pytest fixtures for the jsonmap test suite.

Provides:
- Deterministic clock and event ids
- Structured logging reset and capture
- Sample mapping configurations shared across engine and config tests
"""

import logging
from io import StringIO
from itertools import count

import pytest

from jsonmap_kernel.domain.clock import DeterministicClock
from jsonmap_kernel.domain.types import (
    ChangeEventConfiguration,
    ConflictResolution,
    FieldMapping,
    MappingSet,
    MergeStrategy,
    TransformationKind,
    UpsertConfiguration,
    ValueMapping,
    ValueMappingType,
)
from jsonmap_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()


@pytest.fixture
def log_stream():
    """Route jsonmap logs (DEBUG and up) into a StringIO as JSON lines."""
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    configure_logging(level=logging.DEBUG, handler=handler)
    return stream


@pytest.fixture
def clock():
    """Deterministic clock fixed at 2024-01-01T12:00:00Z."""
    return DeterministicClock()


@pytest.fixture
def event_ids():
    """Id factory producing evt-1, evt-2, ..."""
    counter = count(1)
    return lambda: f"evt-{next(counter)}"


@pytest.fixture
def country_mapping():
    return ValueMapping(
        id="country",
        type=ValueMappingType.EXACT,
        mappings=(("US", "United States"), ("GB", "United Kingdom")),
        default_value="Unknown",
    )


@pytest.fixture
def priority_mapping():
    return ValueMapping(
        id="priority",
        type=ValueMappingType.RANGE,
        mappings=(("0-50", "low"), ("51-100", "high")),
        default_value="off-scale",
    )


@pytest.fixture
def customer_mapping_set(country_mapping, priority_mapping):
    """Customer entity with upsert on customerId and change events enabled."""
    return MappingSet(
        entity_id="customer",
        name="Customer import",
        version=3,
        field_mappings=(
            FieldMapping(source="customer.id", target="customerId"),
            FieldMapping(source="customer.name", target="name"),
            FieldMapping(
                source="customer.country",
                target="country",
                transformation=TransformationKind.VALUE_MAPPING,
                value_mapping_id="country",
            ),
            FieldMapping(
                source="score",
                target="priority",
                transformation=TransformationKind.VALUE_MAPPING,
                value_mapping_id="priority",
            ),
            FieldMapping(source="customer.address", target="address"),
        ),
        value_mappings=(country_mapping, priority_mapping),
        upsert=UpsertConfiguration(
            enabled=True,
            unique_fields=("customerId",),
            conflict_resolution=ConflictResolution.MERGE,
            merge_strategy=MergeStrategy.DEEP,
        ),
        change_events=ChangeEventConfiguration(
            enabled=True,
            event_type="CustomerChanged",
            include_old_values=True,
            include_metadata=True,
            custom_properties={"team": "crm"},
        ),
    )


@pytest.fixture
def customer_input():
    return {
        "customer": {
            "id": "123",
            "name": "Ada",
            "country": "us",
            "address": {"city": "London", "zip": "N1"},
        },
        "score": 75,
    }
