"""load_mapping_set(): parse, validate, trace."""

import json

import pytest
import yaml

from jsonmap_config import load_mapping_set
from jsonmap_kernel.exceptions import ValidationError

VALID = {
    "entityId": "order",
    "version": 4,
    "fieldMappings": [
        {"source": "order.number", "target": "orderNumber"},
        {
            "source": "order.status",
            "target": "status",
            "transformation": "value-mapping",
            "valueMappingId": "status",
        },
        {"source": "order.number", "target": "orderNumber"},
    ],
    "valueMappings": [
        {"id": "status", "type": "prefix", "mappings": [{"pattern": "SHIP", "value": "shipped"}]},
    ],
    "upsert": {"enabled": True, "uniqueFields": ["orderNumber"]},
}


def _write(tmp_path, doc, name="mapping.yaml"):
    path = tmp_path / name
    path.write_text(yaml.safe_dump(doc))
    return path


def _records(stream):
    return [json.loads(line) for line in stream.getvalue().splitlines()]


class TestLoadMappingSet:
    def test_valid_file(self, tmp_path):
        mapping_set = load_mapping_set(_write(tmp_path, VALID))
        assert mapping_set.entity_id == "order"
        assert mapping_set.version == 4
        assert len(mapping_set.checksum) == 64

    def test_string_path(self, tmp_path):
        assert load_mapping_set(str(_write(tmp_path, VALID))).entity_id == "order"

    def test_json_file(self, tmp_path):
        path = tmp_path / "mapping.json"
        path.write_text(json.dumps(VALID))
        assert load_mapping_set(path).checksum == load_mapping_set(_write(tmp_path, VALID)).checksum

    def test_integer_and_text_pattern_keys(self, tmp_path):
        path = tmp_path / "status.yaml"
        path.write_text(
            "entityId: order\n"
            "fieldMappings:\n"
            "  - {source: status, target: statusLabel, transformation: value-mapping, valueMappingId: status}\n"
            "valueMappings:\n"
            "  - id: status\n"
            "    mappings: {1: active, 0: inactive, unknown: pending}\n"
        )
        mapping_set = load_mapping_set(path)
        assert [p for p, _ in mapping_set.value_mappings[0].mappings] == ["1", "0", "unknown"]
        assert len(mapping_set.checksum) == 64

    def test_invalid_set_lists_every_error(self, tmp_path):
        doc = dict(VALID, upsert={"enabled": True}, fieldMappings=[{"source": "", "target": "x"}])
        with pytest.raises(ValidationError) as exc_info:
            load_mapping_set(_write(tmp_path, doc))
        assert len(exc_info.value.errors) == 2
        assert "validation failed" in str(exc_info.value)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_mapping_set(tmp_path / "absent.yaml")


class TestTrace:
    def test_config_trace_emitted(self, tmp_path, log_stream):
        mapping_set = load_mapping_set(_write(tmp_path, VALID))
        traces = [r for r in _records(log_stream) if r["message"] == "JSONMAP_CONFIG_TRACE"]
        assert len(traces) == 1
        trace = traces[0]
        assert trace["entity_id"] == "order"
        assert trace["mapping_set_version"] == 4
        assert trace["checksum"] == mapping_set.checksum
        assert trace["field_mapping_count"] == 3
        assert trace["value_mapping_count"] == 1
        assert trace["warning_count"] == 1

    def test_warnings_logged(self, tmp_path, log_stream):
        load_mapping_set(_write(tmp_path, VALID))
        warnings = [r for r in _records(log_stream) if r["message"] == "mapping_set_warning"]
        assert "orderNumber" in warnings[0]["warning"]
        assert warnings[0]["level"] == "WARNING"
