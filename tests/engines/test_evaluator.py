"""
Tests for the field mapping evaluator.

Covers:
- Each transformation kind
- Ordering, inactive mappings and last-write-wins
- Warnings vs strict mode
- System fields
- Logging of per-mapping failures
"""

import copy
import json
from datetime import datetime, timezone

import pytest

from jsonmap_engines.evaluator import aggregate, evaluate_mappings, render_template
from jsonmap_kernel.domain.types import (
    AggregationFunction,
    FieldMapping,
    MergeStrategy,
    SystemFields,
    TransformationKind as K,
)
from jsonmap_kernel.exceptions import TransformationError


def _run(data, *mappings, value_mappings=(), **kwargs):
    return evaluate_mappings(data, mappings, value_mappings, **kwargs)


class TestDirect:
    def test_copies_value(self):
        result = _run({"a": {"b": 1}}, FieldMapping(source="a.b", target="x.y"))
        assert result.output == {"x": {"y": 1}}
        assert not result.has_warnings

    def test_present_null_passes_through(self):
        assert _run({"a": None}, FieldMapping(source="a", target="b")).output == {"b": None}

    def test_missing_source_not_written(self):
        assert _run({}, FieldMapping(source="a", target="b")).output == {}

    def test_input_not_mutated(self):
        data = {"a": {"b": [1, 2]}}
        snapshot = copy.deepcopy(data)
        _run(data, FieldMapping(source="a", target="a.c"))
        assert data == snapshot


class TestOrdering:
    def test_inactive_mapping_skipped(self):
        result = _run(
            {"a": 1},
            FieldMapping(source="a", target="x"),
            FieldMapping(source="a", target="y", active=False),
        )
        assert result.output == {"x": 1}

    def test_last_write_wins(self):
        result = _run(
            {"first": 1, "second": 2},
            FieldMapping(source="first", target="a.b"),
            FieldMapping(source="second", target="a.b"),
        )
        assert result.output == {"a": {"b": 2}}

    def test_inactive_later_mapping_does_not_win(self):
        result = _run(
            {"first": 1, "second": 2},
            FieldMapping(source="first", target="a"),
            FieldMapping(source="second", target="a", active=False),
        )
        assert result.output == {"a": 1}


class TestTemplate:
    def test_scenario(self):
        mapping = FieldMapping(
            source="customer.id",
            target="customerId",
            transformation=K.TEMPLATE,
            template="CUST-${customer.id}",
        )
        assert _run({"customer": {"id": "123"}}, mapping).output == {"customerId": "CUST-123"}

    def test_unresolved_placeholder_is_empty(self):
        mapping = FieldMapping(source="", target="t", transformation=K.TEMPLATE, template="[${nope}]")
        assert _run({}, mapping).output == {"t": "[]"}

    def test_value_placeholder(self):
        mapping = FieldMapping(source="n", target="t", transformation=K.TEMPLATE, template="#${value}")
        assert _run({"n": 7}, mapping).output == {"t": "#7"}

    def test_multiple_placeholders_and_json_text(self):
        assert render_template(
            "${a} ${b} ${c} ${d}", {"a": True, "b": 2.0, "c": None, "d": [1]}
        ) == "true 2  [1]"

    def test_system_placeholder(self):
        fields = SystemFields(entity_type="order")
        assert render_template("${_system.entityName}Processed", {}, system_fields=fields) == "orderProcessed"


class TestFunction:
    def test_custom_function(self):
        mapping = FieldMapping(
            source="price",
            target="gross",
            transformation=K.FUNCTION,
            custom_function="round(value * (1 + data.vat), 2)",
        )
        assert _run({"price": 100, "vat": 0.2}, mapping).output == {"gross": 120.0}

    def test_reads_in_progress_output(self):
        result = _run(
            {"id": "7"},
            FieldMapping(source="id", target="customerId"),
            FieldMapping(
                source="",
                target="label",
                transformation=K.FUNCTION,
                custom_function="'C-' + output.customerId",
            ),
        )
        assert result.output["label"] == "C-7"

    def test_failure_is_warning_and_target_unset(self):
        result = _run(
            {"a": 1},
            FieldMapping(source="a", target="bad", transformation=K.FUNCTION, custom_function="value / 0"),
            FieldMapping(source="a", target="good"),
        )
        assert result.output == {"good": 1}
        assert len(result.warnings) == 1
        warning = result.warnings[0]
        assert warning.code == "TRANSFORMATION_FAILED"
        assert warning.target == "bad"

    def test_rejected_expression_is_warning(self):
        result = _run(
            {"a": 1},
            FieldMapping(source="a", target="x", transformation=K.FUNCTION, custom_function="open('f')"),
        )
        assert result.output == {}
        assert result.warnings[0].code == "INVALID_EXPRESSION"


class TestValueMapping:
    def test_maps_value(self, country_mapping):
        mapping = FieldMapping(
            source="c", target="country", transformation=K.VALUE_MAPPING, value_mapping_id="country"
        )
        result = _run({"c": "gb"}, mapping, value_mappings=[country_mapping])
        assert result.output == {"country": "United Kingdom"}

    def test_value_mappings_keyed_by_id(self, country_mapping):
        mapping = FieldMapping(
            source="c", target="country", transformation=K.VALUE_MAPPING, value_mapping_id="country"
        )
        result = _run({"c": "US"}, mapping, value_mappings={"country": country_mapping})
        assert result.output == {"country": "United States"}

    def test_unresolved_reference_passes_value_with_warning(self):
        mapping = FieldMapping(
            source="c", target="country", transformation=K.VALUE_MAPPING, value_mapping_id="missing"
        )
        result = _run({"c": "US"}, mapping)
        assert result.output == {"country": "US"}
        assert result.warnings[0].code == "UNRESOLVED_VALUE_MAPPING"
        assert result.warnings[0].details == {"value_mapping_id": "missing"}

    def test_unresolved_reference_is_warning_in_strict_mode(self):
        mapping = FieldMapping(
            source="c", target="country", transformation=K.VALUE_MAPPING, value_mapping_id="missing"
        )
        result = _run({"c": "US"}, mapping, strict=True)
        assert result.output == {"country": "US"}
        assert result.has_warnings


class TestSubChild:
    def test_merge_into_existing_target(self):
        result = _run(
            {"billing": {"city": "Paris", "zip": "75"}, "shipping": {"city": "Lyon"}},
            FieldMapping(source="billing", target="address"),
            FieldMapping(source="shipping", target="address", transformation=K.SUB_CHILD_MERGE),
        )
        assert result.output == {"address": {"city": "Lyon", "zip": "75"}}

    def test_deep_merge_with_preserved_fields(self):
        result = _run(
            {"a": {"id": 1, "meta": {"x": 1}}, "b": {"id": 2, "meta": {"y": 2}}},
            FieldMapping(source="a", target="t"),
            FieldMapping(
                source="b",
                target="t",
                transformation=K.SUB_CHILD_MERGE,
                merge_strategy=MergeStrategy.DEEP,
                preserve_fields=("id",),
            ),
        )
        assert result.output == {"t": {"id": 1, "meta": {"x": 1, "y": 2}}}

    def test_replace(self):
        result = _run(
            {"a": {"x": 1}, "b": {"y": 2}},
            FieldMapping(source="a", target="t"),
            FieldMapping(source="b", target="t", transformation=K.SUB_CHILD_REPLACE),
        )
        assert result.output == {"t": {"y": 2}}

    def test_replace_copies_subtree(self):
        data = {"b": {"y": [1]}}
        result = _run(data, FieldMapping(source="b", target="t", transformation=K.SUB_CHILD_REPLACE))
        result.output["t"]["y"].append(2)
        assert data == {"b": {"y": [1]}}


class TestAggregation:
    @pytest.mark.parametrize(
        "fn, expected",
        [
            (AggregationFunction.SUM, 10.5),
            (AggregationFunction.COUNT, 5),
            (AggregationFunction.MIN, 1),
            (AggregationFunction.MAX, 5.5),
        ],
    )
    def test_numeric(self, fn, expected):
        assert aggregate([1, "4", 5.5, "x", None], fn) == expected

    def test_concat(self):
        assert aggregate(["a", 1, None, True], AggregationFunction.CONCAT, ", ") == "a, 1, true"

    def test_empty(self):
        assert aggregate([], AggregationFunction.SUM) == 0
        assert aggregate([], AggregationFunction.MIN) is None
        assert aggregate([], AggregationFunction.COUNT) == 0

    def test_mapping(self):
        mapping = FieldMapping(
            source="items", target="count", transformation=K.AGGREGATION, aggregation=AggregationFunction.COUNT
        )
        assert _run({"items": [1, 2, 3]}, mapping).output == {"count": 3}

    def test_non_array_source_is_warning(self):
        mapping = FieldMapping(
            source="items", target="n", transformation=K.AGGREGATION, aggregation=AggregationFunction.SUM
        )
        result = _run({"items": 5}, mapping)
        assert result.output == {}
        assert result.warnings[0].code == "TRANSFORMATION_FAILED"

    def test_non_array_source_raises(self):
        with pytest.raises(TransformationError):
            aggregate("abc", AggregationFunction.SUM, target="n")


class TestConditional:
    def _mapping(self):
        return FieldMapping(
            source="email", target="contact", transformation=K.CONDITIONAL, condition="data.optIn"
        )

    def test_written_when_true(self):
        assert _run({"email": "a@b", "optIn": True}, self._mapping()).output == {"contact": "a@b"}

    def test_unset_when_false(self):
        assert _run({"email": "a@b", "optIn": False}, self._mapping()).output == {}

    def test_condition_sees_value(self):
        mapping = FieldMapping(
            source="age", target="adult", transformation=K.CONDITIONAL, condition="value >= 18"
        )
        assert _run({"age": 20}, mapping).output == {"adult": 20}
        assert _run({"age": 10}, mapping).output == {}


class TestStrictMode:
    def test_transformation_error_propagates(self):
        mapping = FieldMapping(source="a", target="bad", transformation=K.FUNCTION, custom_function="value / 0")
        with pytest.raises(TransformationError) as exc_info:
            _run({"a": 1}, mapping, strict=True)
        assert exc_info.value.target == "bad"

    def test_other_errors_wrapped(self):
        mapping = FieldMapping(source="a", target="bad", transformation=K.FUNCTION, custom_function="open('x')")
        with pytest.raises(TransformationError) as exc_info:
            _run({"a": 1}, mapping, strict=True)
        assert exc_info.value.target == "bad"
        assert exc_info.value.__cause__.code == "INVALID_EXPRESSION"

    def test_missing_configuration_wrapped(self):
        mapping = FieldMapping(source="a", target="t", transformation=K.TEMPLATE)
        with pytest.raises(TransformationError):
            _run({"a": 1}, mapping, strict=True)


class TestSystemFields:
    def test_appended_after_mappings(self):
        fields = SystemFields(
            processed_at=datetime(2024, 1, 1, 12, tzinfo=timezone.utc),
            correlation_id="corr-9",
            entity_type="customer",
        )
        result = _run({"a": 1}, FieldMapping(source="a", target="correlationId"), system_fields=fields)
        assert result.output == {
            "correlationId": "corr-9",
            "processedAt": "2024-01-01T12:00:00.000Z",
            "entityType": "customer",
        }

    def test_system_source(self):
        fields = SystemFields(entity_type="order")
        mapping = FieldMapping(source="_system.entityName", target="kind")
        result = _run({}, mapping, system_fields=fields)
        assert result.output["kind"] == "order"

    def test_system_source_without_fields_is_missing(self):
        assert _run({}, FieldMapping(source="_system.entityName", target="kind")).output == {}


class TestLogging:
    def test_failure_logged_with_target_context(self, log_stream):
        _run(
            {"a": 1},
            FieldMapping(source="a", target="bad", transformation=K.FUNCTION, custom_function="value / 0"),
        )
        records = [json.loads(line) for line in log_stream.getvalue().splitlines()]
        failures = [r for r in records if r["message"] == "mapping_failed"]
        assert len(failures) == 1
        assert failures[0]["mapping_target"] == "bad"
        assert failures[0]["error_code"] == "TRANSFORMATION_FAILED"

    def test_engine_trace_emitted(self, log_stream):
        _run({"a": 1}, FieldMapping(source="a", target="b"))
        records = [json.loads(line) for line in log_stream.getvalue().splitlines()]
        traces = [r for r in records if r["message"] == "JSONMAP_ENGINE_TRACE"]
        assert traces[0]["engine_name"] == "evaluator"
        assert traces[0]["failed"] is False
