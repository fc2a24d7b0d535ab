"""Tests for backup records and the file-based backup store."""
from datetime import datetime, timedelta, timezone

import pytest

from mcp_vlan_manager.backups import BackupRecord, BackupStore, checksum, make_backup_id
from mcp_vlan_manager.errors import NotFoundError, ValidationError


CONFIG = {"vlan_config": {"vlan_conf": {"vlans": [{"vlanId": 100, "vlanName": "BACKUP"}]}}}


@pytest.fixture
def store(tmp_path):
    return BackupStore(tmp_path / "backups")


def record_at(switch_id: str, when: datetime) -> BackupRecord:
    return BackupRecord(
        backup_id=make_backup_id(switch_id, when),
        switch_id=switch_id,
        config_data=CONFIG,
        timestamp=when.isoformat(),
    )


class TestBackupRecord:
    """Tests for backup metadata."""

    def test_backup_id_format(self):
        when = datetime(2026, 1, 5, 10, 0, 0, 123456, tzinfo=timezone.utc)
        assert make_backup_id("core1", when) == "core1_2026-01-05T10-00-00-123456"

    def test_checksum_ignores_key_order(self):
        assert checksum({"a": 1, "b": 2}) == checksum({"b": 2, "a": 1})
        assert checksum({"a": 1}) != checksum({"a": 2})
        assert checksum({"a": 1}).startswith("sha256:")

    def test_create(self):
        record = BackupRecord.create("core1", CONFIG, {"name": "Core 1"})
        assert record.backup_id.startswith("core1_")
        assert record.size > 0
        assert record.checksum == checksum(CONFIG)
        assert record.created_at.tzinfo is not None

    def test_summary_has_no_payload(self):
        summary = BackupRecord.create("core1", CONFIG, {"name": "Core 1"}).summary()
        assert summary["switch_name"] == "Core 1"
        assert "config_data" not in summary

    def test_dict_round_trip(self):
        record = BackupRecord.create("core1", CONFIG)
        assert BackupRecord.from_dict(record.to_dict()) == record


class TestBackupStore:
    """Tests for saving, listing and deleting backups."""

    def test_directory_is_created(self, tmp_path):
        BackupStore(tmp_path / "a" / "b")
        assert (tmp_path / "a" / "b").is_dir()

    def test_save_and_load(self, store):
        record = BackupRecord.create("core1", CONFIG)
        path = store.save(record)
        assert path.name == f"{record.backup_id}.json"
        assert store.exists(record.backup_id)
        assert store.load(record.backup_id).config_data == CONFIG

    def test_load_missing(self, store):
        with pytest.raises(NotFoundError):
            store.load("core1_2020-01-01T00-00-00-000000")

    def test_load_corrupt_file(self, store):
        (store.directory / "core1_bad.json").write_text("{not json")
        with pytest.raises(NotFoundError, match="could not be read"):
            store.load("core1_bad")

    @pytest.mark.parametrize("backup_id", ["../etc/passwd", "a/b", "", ".hidden", "x..y"])
    def test_invalid_ids(self, store, backup_id):
        with pytest.raises(ValidationError):
            store.load(backup_id)

    def test_list_newest_first_and_filter(self, store):
        base = datetime(2026, 1, 1, tzinfo=timezone.utc)
        store.save(record_at("core1", base))
        store.save(record_at("core2", base + timedelta(hours=1)))
        store.save(record_at("core1", base + timedelta(hours=2)))
        (store.directory / "junk.json").write_text("[]")

        all_ids = [r.backup_id for r in store.list_backups()]
        assert all_ids == [
            make_backup_id("core1", base + timedelta(hours=2)),
            make_backup_id("core2", base + timedelta(hours=1)),
            make_backup_id("core1", base),
        ]
        assert len(store.list_backups("core1")) == 2

    def test_delete(self, store):
        record = BackupRecord.create("core1", CONFIG)
        store.save(record)
        assert store.delete(record.backup_id) is True
        assert store.delete(record.backup_id) is False
        assert not store.exists(record.backup_id)

    def test_cleanup_older_than(self, store):
        now = datetime(2026, 3, 1, tzinfo=timezone.utc)
        old = record_at("core1", now - timedelta(days=40))
        recent = record_at("core1", now - timedelta(days=5))
        store.save(old)
        store.save(recent)

        deleted = store.cleanup_older_than(30, now=now)
        assert deleted == [old.backup_id]
        assert [r.backup_id for r in store.list_backups()] == [recent.backup_id]
