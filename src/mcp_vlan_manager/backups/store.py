"""Backup artifact storage.

One JSON file per backup:

    <backup_dir>/
    ├── core1_2026-01-05T10-00-00-000000.json
    └── access1_2026-01-05T10-00-01-000000.json

The file name is the backup ID, so a backup can be loaded without an index.
"""
import hashlib
import json
import logging
import re
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Optional

from ..errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

_BACKUP_ID = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


def make_backup_id(switch_id: str, when: Optional[datetime] = None) -> str:
    when = when or datetime.now(timezone.utc)
    return f"{switch_id}_{when.strftime('%Y-%m-%dT%H-%M-%S-%f')}"


def checksum(config_data: Any) -> str:
    config_str = json.dumps(config_data, sort_keys=True, default=str)
    return f"sha256:{hashlib.sha256(config_str.encode()).hexdigest()[:16]}"


@dataclass
class BackupRecord:
    """A stored switch configuration with metadata."""
    backup_id: str
    switch_id: str
    config_data: dict[str, Any]
    switch_info: dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    backup_type: str = "full"
    size: int = 0
    checksum: str = ""

    @classmethod
    def create(cls, switch_id: str, config_data: dict, switch_info: Optional[dict] = None) -> "BackupRecord":
        now = datetime.now(timezone.utc)
        return cls(
            backup_id=make_backup_id(switch_id, now),
            switch_id=switch_id,
            config_data=config_data,
            switch_info=switch_info or {},
            timestamp=now.isoformat(),
            size=len(json.dumps(config_data, default=str)),
            checksum=checksum(config_data),
        )

    @property
    def created_at(self) -> Optional[datetime]:
        try:
            return datetime.fromisoformat(self.timestamp)
        except (TypeError, ValueError):
            return None

    def summary(self) -> dict:
        """Metadata without the configuration payload."""
        return {
            "backup_id": self.backup_id,
            "switch_id": self.switch_id,
            "switch_name": self.switch_info.get("name"),
            "timestamp": self.timestamp,
            "size": self.size,
            "backup_type": self.backup_type,
            "checksum": self.checksum,
        }

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "BackupRecord":
        return cls(
            backup_id=data["backup_id"],
            switch_id=data["switch_id"],
            config_data=data.get("config_data") or {},
            switch_info=data.get("switch_info") or {},
            timestamp=data.get("timestamp", ""),
            backup_type=data.get("backup_type", "full"),
            size=data.get("size", 0),
            checksum=data.get("checksum", ""),
        )


class BackupStore:
    """Reads and writes backup files in one directory."""

    def __init__(self, directory: str | Path):
        self.directory = Path(directory).expanduser()
        self._ensure_directory()

    def _ensure_directory(self) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        logger.debug(f"Backup directory ensured: {self.directory}")

    def _path(self, backup_id: str) -> Path:
        if not backup_id or not _BACKUP_ID.match(backup_id) or ".." in backup_id:
            raise ValidationError(f"Invalid backup ID: {backup_id!r}")
        return self.directory / f"{backup_id}.json"

    def save(self, record: BackupRecord) -> Path:
        path = self._path(record.backup_id)
        path.write_text(json.dumps(record.to_dict(), indent=2, default=str))
        logger.info(f"Saved backup {record.backup_id} ({record.size} bytes)")
        return path

    def load(self, backup_id: str) -> BackupRecord:
        """Load one backup. Raises NotFoundError if missing or unreadable."""
        path = self._path(backup_id)
        if not path.exists():
            raise NotFoundError(f"Backup {backup_id} not found", details={"backup_id": backup_id})
        try:
            return BackupRecord.from_dict(json.loads(path.read_text()))
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.error(f"Failed to load backup from {path}: {e}")
            raise NotFoundError(
                f"Backup {backup_id} could not be read", details={"backup_id": backup_id}
            ) from e

    def exists(self, backup_id: str) -> bool:
        return self._path(backup_id).exists()

    def list_backups(self, switch_id: Optional[str] = None) -> list[BackupRecord]:
        """Stored backups, newest first. Unreadable files are skipped."""
        records = []
        for path in self.directory.glob("*.json"):
            try:
                record = BackupRecord.from_dict(json.loads(path.read_text()))
            except (OSError, ValueError, KeyError, TypeError) as e:
                logger.warning(f"Failed to load backup metadata from {path.name}: {e}")
                continue
            if switch_id is None or record.switch_id == switch_id:
                records.append(record)
        records.sort(key=lambda r: r.timestamp, reverse=True)
        return records

    def delete(self, backup_id: str) -> bool:
        path = self._path(backup_id)
        if path.exists():
            path.unlink()
            logger.info(f"Deleted backup {backup_id}")
            return True
        return False

    def cleanup_older_than(self, days: int, now: Optional[datetime] = None) -> list[str]:
        """Delete backups older than ``days``. Returns the deleted IDs."""
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=days)
        deleted = []
        for record in self.list_backups():
            created = record.created_at
            if created is None:
                continue
            if created.tzinfo is None:
                created = created.replace(tzinfo=timezone.utc)
            if created >= cutoff:
                continue
            try:
                if self.delete(record.backup_id):
                    deleted.append(record.backup_id)
            except OSError as e:
                logger.warning(f"Failed to delete old backup {record.backup_id}: {e}")
        logger.info(f"Cleaned up {len(deleted)} old backup(s)")
        return deleted
