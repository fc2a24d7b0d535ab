"""Backup artifact storage."""
from .store import BackupRecord, BackupStore, checksum, make_backup_id

__all__ = ["BackupRecord", "BackupStore", "checksum", "make_backup_id"]
