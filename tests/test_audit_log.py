"""Tests for audit records."""
import json
import logging

import pytest

from mcp_vlan_manager.utils.audit_log import (
    OperationRecord,
    audit_logger,
    get_recent_operations,
    log_operation,
    setup_audit_logging,
)


@pytest.fixture
def audit_file(tmp_path):
    path = setup_audit_logging(str(tmp_path / "logs"))
    yield path
    for handler in list(audit_logger.handlers):
        handler.close()
        audit_logger.removeHandler(handler)


class TestLogOperation:
    """Tests for emitting records."""

    def test_record_fields(self):
        record = log_operation("create_vlan", ["core1", "core2"], {"vlan_id": 100})
        assert record.device_id == "core1,core2"
        assert record.success is True
        assert record.error is None
        assert record.parameters == {"vlan_id": 100}

    def test_failure_record(self):
        record = log_operation("delete_vlan", "core1", success=False, error="busy")
        assert record.device_id == "core1"
        assert record.success is False
        assert record.error == "busy"

    def test_json_round_trip(self):
        record = log_operation("set_port_pvid", "core1", {"port_id": "3"})
        assert OperationRecord.from_json(record.to_json()) == record

    def test_written_to_file(self, audit_file):
        log_operation("create_vlan", ["core1"], {"vlan_id": 100})
        with open(audit_file, encoding="utf-8") as f:
            lines = [json.loads(line) for line in f if line.strip()]
        assert lines[-1]["operation"] == "create_vlan"
        assert lines[-1]["parameters"] == {"vlan_id": 100}

    def test_audit_logger_does_not_propagate(self, audit_file):
        assert audit_logger.propagate is False
        assert audit_logger.level == logging.INFO


class TestRecentOperations:
    """Tests for querying recent records."""

    def test_most_recent_first_with_limit(self):
        for vlan_id in (10, 20, 30):
            log_operation("create_vlan", "core1", {"vlan_id": vlan_id})
        records = get_recent_operations(limit=2)
        assert [r.parameters["vlan_id"] for r in records] == [30, 20]

    def test_filters(self):
        log_operation("create_vlan", ["core1", "core2"], {"vlan_id": 10})
        log_operation("delete_vlan", "core2", {"vlan_id": 10})
        log_operation("create_vlan", "access1", {"vlan_id": 20})

        assert len(get_recent_operations(device_id="core2")) == 2
        assert len(get_recent_operations(device_id="core")) == 0
        assert [r.device_id for r in get_recent_operations(operation="create_vlan")] == [
            "access1", "core1,core2",
        ]

    def test_reads_file_and_skips_bad_lines(self, audit_file):
        log_operation("create_vlan", "core1", {"vlan_id": 10})
        with open(audit_file, "a", encoding="utf-8") as f:
            f.write("not json\n")
        log_operation("delete_vlan", "core1", {"vlan_id": 10})

        records = get_recent_operations(audit_file)
        assert [r.operation for r in records] == ["delete_vlan", "create_vlan"]

    def test_missing_file_uses_memory(self, tmp_path):
        log_operation("create_vlan", "core1")
        records = get_recent_operations(str(tmp_path / "absent.log"))
        assert [r.operation for r in records] == ["create_vlan"]
