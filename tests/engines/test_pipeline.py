"""
Tests for end-to-end record transformation.

Covers:
- evaluate -> upsert -> change event composition
- Blocking and async forms with sync and async lookups
- Skipped upserts emitting no event
- Error propagation and log context
"""

import asyncio
import dataclasses
import json
from datetime import datetime, timezone

import pytest

from jsonmap_engines.pipeline import transform_record, transform_record_async
from jsonmap_kernel.domain.types import (
    ChangeOperation,
    ConflictResolution,
    FieldMapping,
    MappingSet,
    SystemFields,
    UpsertAction,
    UpsertConfiguration,
)
from jsonmap_kernel.exceptions import ConflictError, LookupFailedError, MissingUniqueFieldError


EXPECTED_OUTPUT = {
    "customerId": "123",
    "name": "Ada",
    "country": "United States",
    "priority": "high",
    "address": {"city": "London", "zip": "N1"},
}


class TestWithoutExisting:
    def test_created_with_all_add_event(self, customer_mapping_set, customer_input, clock, event_ids):
        outcome = transform_record(
            customer_input, customer_mapping_set, clock=clock, id_factory=event_ids
        )
        assert outcome.output == EXPECTED_OUTPUT
        assert outcome.record == EXPECTED_OUTPUT
        assert outcome.action == UpsertAction.CREATED
        assert outcome.existing is None
        assert outcome.event.id == "evt-1"
        assert {c.operation for c in outcome.event.changes} == {ChangeOperation.ADD}
        assert outcome.event.old is None

    def test_lookup_returning_none(self, customer_mapping_set, customer_input):
        keys = []

        def lookup(key):
            keys.append(key)
            return None

        outcome = transform_record(customer_input, customer_mapping_set, lookup=lookup)
        assert keys == [{"customerId": "123"}]
        assert outcome.action == UpsertAction.CREATED


class TestWithExisting:
    existing = {
        "customerId": "123",
        "name": "Ada L.",
        "address": {"city": "Paris", "region": "IDF"},
        "loyalty": 10,
    }

    def test_deep_merge_and_event(self, customer_mapping_set, customer_input, clock, event_ids):
        outcome = transform_record(
            customer_input,
            customer_mapping_set,
            lookup=lambda key: dict(self.existing),
            clock=clock,
            id_factory=event_ids,
        )
        assert outcome.action == UpsertAction.MERGED
        assert outcome.record == {
            "customerId": "123",
            "name": "Ada",
            "address": {"city": "London", "region": "IDF", "zip": "N1"},
            "loyalty": 10,
            "country": "United States",
            "priority": "high",
        }
        event = outcome.event
        assert event.old == self.existing
        assert [(c.field, c.operation) for c in event.changes] == [
            ("name", ChangeOperation.UPDATE),
            ("address", ChangeOperation.UPDATE),
            ("country", ChangeOperation.ADD),
            ("priority", ChangeOperation.ADD),
        ]
        assert event.metadata == {"source": "jsonmap", "version": 3, "team": "crm"}

    def test_skip_emits_no_event(self, customer_mapping_set, customer_input):
        mapping_set = dataclasses.replace(
            customer_mapping_set,
            upsert=UpsertConfiguration(
                enabled=True,
                unique_fields=("customerId",),
                conflict_resolution=ConflictResolution.SKIP,
            ),
        )
        outcome = transform_record(customer_input, mapping_set, lookup=lambda key: dict(self.existing))
        assert outcome.action == UpsertAction.SKIPPED
        assert outcome.record == self.existing
        assert outcome.event is None

    def test_error_policy_raises(self, customer_mapping_set, customer_input):
        mapping_set = dataclasses.replace(
            customer_mapping_set,
            upsert=UpsertConfiguration(
                enabled=True,
                unique_fields=("customerId",),
                conflict_resolution=ConflictResolution.ERROR,
            ),
        )
        with pytest.raises(ConflictError):
            transform_record(customer_input, mapping_set, lookup=lambda key: dict(self.existing))

    def test_lookup_failure_propagates(self, customer_mapping_set, customer_input):
        def lookup(key):
            raise OSError("unreachable")

        with pytest.raises(LookupFailedError):
            transform_record(customer_input, customer_mapping_set, lookup=lookup)


class TestAsync:
    def test_async_lookup(self, customer_mapping_set, customer_input, clock, event_ids):
        async def lookup(key):
            await asyncio.sleep(0)
            return {"customerId": key["customerId"], "loyalty": 5}

        outcome = asyncio.run(
            transform_record_async(
                customer_input, customer_mapping_set, lookup=lookup, clock=clock, id_factory=event_ids
            )
        )
        assert outcome.action == UpsertAction.MERGED
        assert outcome.record["loyalty"] == 5
        assert outcome.event.id == "evt-1"

    def test_sync_lookup_in_async_form(self, customer_mapping_set, customer_input):
        outcome = asyncio.run(
            transform_record_async(customer_input, customer_mapping_set, lookup=lambda key: None)
        )
        assert outcome.action == UpsertAction.CREATED

    def test_sync_form_drives_async_lookup(self, customer_mapping_set, customer_input):
        async def lookup(key):
            return None

        outcome = transform_record(customer_input, customer_mapping_set, lookup=lookup)
        assert outcome.action == UpsertAction.CREATED


class TestOptionalStages:
    def test_plain_mapping_set(self):
        mapping_set = MappingSet(
            entity_id="note",
            field_mappings=(FieldMapping(source="text", target="body"),),
        )
        outcome = transform_record({"text": "hi"}, mapping_set)
        assert outcome.record == {"body": "hi"}
        assert outcome.action == UpsertAction.CREATED
        assert outcome.event is None

    def test_missing_unique_field(self, customer_mapping_set):
        with pytest.raises(MissingUniqueFieldError):
            transform_record({"customer": {"name": "No id"}}, customer_mapping_set)

    def test_system_fields_and_correlation_metadata(self, customer_mapping_set, customer_input, clock):
        fields = SystemFields(
            processed_at=datetime(2024, 5, 1, tzinfo=timezone.utc),
            correlation_id="corr-1",
            entity_type="customer",
        )
        outcome = transform_record(
            customer_input, customer_mapping_set, system_fields=fields, clock=clock
        )
        assert outcome.record["processedAt"] == "2024-05-01T00:00:00.000Z"
        assert outcome.record["entityType"] == "customer"
        assert outcome.event.metadata["correlationId"] == "corr-1"

    def test_warnings_surface(self, customer_mapping_set, customer_input):
        mapping_set = dataclasses.replace(customer_mapping_set, value_mappings=())
        outcome = transform_record(customer_input, mapping_set)
        assert {w.code for w in outcome.warnings} == {"UNRESOLVED_VALUE_MAPPING"}
        assert outcome.record["country"] == "us"


class TestLogging:
    def test_record_transformed_carries_context(self, customer_mapping_set, customer_input, log_stream):
        transform_record(
            customer_input,
            customer_mapping_set,
            system_fields=SystemFields(correlation_id="corr-7"),
        )
        records = [json.loads(line) for line in log_stream.getvalue().splitlines()]
        done = [r for r in records if r["message"] == "record_transformed"]
        assert len(done) == 1
        assert done[0]["entity_id"] == "customer"
        assert done[0]["correlation_id"] == "corr-7"
        assert done[0]["action"] == "created"
        assert done[0]["event_emitted"] is True
