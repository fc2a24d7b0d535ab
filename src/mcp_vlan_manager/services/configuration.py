"""Configuration backups, restore and comparison.

Backups are full reads of a switch (``backup_configuration`` on its client)
persisted as JSON through BackupStore. A short in-memory history per switch
answers "what was backed up recently" without touching the disk.
"""
import asyncio
import json
import logging
from collections import deque
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from ..backups import BackupRecord, BackupStore
from ..errors import ValidationError
from ..registry import SwitchRegistry
from ..utils.audit_log import log_operation

logger = logging.getLogger(__name__)

HISTORY_SIZE = 50

# Sections of a backup compared between two switches
COMPARED_SECTIONS = ("system_info", "vlan_config", "port_config")

NOT_PRESENT = "not present"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _same(a: Any, b: Any) -> bool:
    return json.dumps(a, sort_keys=True, default=str) == json.dumps(b, sort_keys=True, default=str)


def compare_sections(config1: dict, config2: dict, sections: Iterable[str] = COMPARED_SECTIONS) -> dict:
    """Field-by-field comparison of two backups, section by section.

    A field present on one side only counts as a difference.
    """
    differences = []
    similarities = []
    for section in sections:
        first, second = config1.get(section), config2.get(section)
        if not isinstance(first, dict) or not isinstance(second, dict):
            continue
        for key in first:
            if key not in second:
                differences.append({
                    "category": section,
                    "field": key,
                    "switch1_value": first[key],
                    "switch2_value": NOT_PRESENT,
                })
            elif _same(first[key], second[key]):
                similarities.append({
                    "category": section,
                    "field": key,
                    "description": f"{key} values are identical",
                })
            else:
                differences.append({
                    "category": section,
                    "field": key,
                    "switch1_value": first[key],
                    "switch2_value": second[key],
                })
        for key in second:
            if key not in first:
                differences.append({
                    "category": section,
                    "field": key,
                    "switch1_value": NOT_PRESENT,
                    "switch2_value": second[key],
                })

    compared = len(similarities) + len(differences)
    return {
        "differences": differences,
        "similarities": similarities,
        "summary": {
            "total_differences": len(differences),
            "total_similarities": len(similarities),
            "compatibility_score": (
                round(len(similarities) / compared * 100, 1) if compared else None
            ),
        },
    }


class ConfigurationService:
    """Backup, restore and compare switch configurations."""

    def __init__(self, registry: SwitchRegistry, store: Optional[BackupStore] = None):
        self.registry = registry
        settings = registry.inventory.backup
        self.store = store or BackupStore(settings.directory)
        self.retention_days = settings.retention_days
        self._history: dict[str, deque] = {}

    def _switch_info(self, switch_id: str) -> dict:
        config = self.registry.get_record(switch_id).config
        return {
            "name": config.name,
            "ip": config.host,
            "type": config.type,
            "model": config.model,
        }

    def _remember(self, record: BackupRecord) -> None:
        history = self._history.setdefault(record.switch_id, deque(maxlen=HISTORY_SIZE))
        history.append({
            "backup_id": record.backup_id,
            "timestamp": record.timestamp,
            "size": record.size,
            "backup_type": record.backup_type,
        })

    async def create_switch_backup(self, switch_id: str) -> BackupRecord:
        """Read a switch's full configuration and persist it."""
        switch_info = self._switch_info(switch_id)
        try:
            config_data = await self.registry.call(switch_id, "backup_configuration")
        except Exception as e:
            logger.error(f"Failed to create backup for {switch_id}: {e}")
            log_operation("backup_switch_configuration", switch_id, {}, success=False, error=str(e))
            raise

        record = BackupRecord.create(switch_id, config_data, switch_info)
        self.store.save(record)
        self._remember(record)
        log_operation(
            "backup_switch_configuration", switch_id,
            {"backup_id": record.backup_id, "size": record.size},
        )
        return record

    async def backup_switches(self, switch_ids: Optional[Iterable[str]] = None) -> dict:
        """Back up several switches; succeeds when at least one backup does."""
        targets = self.registry.resolve_targets(switch_ids)
        outcomes = await asyncio.gather(
            *(self.create_switch_backup(sid) for sid in targets), return_exceptions=True
        )

        results = {}
        for sid, outcome in zip(targets, outcomes):
            if isinstance(outcome, BaseException):
                results[sid] = {
                    "success": False,
                    "error": str(outcome) or type(outcome).__name__,
                    "error_type": getattr(outcome, "kind", type(outcome).__name__),
                }
            else:
                results[sid] = {"success": True, **outcome.summary()}

        successful = sum(1 for r in results.values() if r["success"])
        logger.info(f"Configuration backup completed for {successful}/{len(targets)} switches")
        return {
            "success": successful > 0,
            "backup_results": results,
            "summary": {
                "total_switches": len(targets),
                "successful_backups": successful,
                "failed_backups": len(targets) - successful,
            },
            "timestamp": _now(),
        }

    async def restore_switch_configuration(self, switch_id: str, backup_id: str) -> dict:
        """Push a stored backup back to the switch it was taken from."""
        record = self.store.load(backup_id)
        if record.switch_id != switch_id:
            raise ValidationError(
                f"Backup {backup_id} is not for switch {switch_id}",
                details={"backup_id": backup_id, "backup_switch": record.switch_id},
            )

        params = {"backup_id": backup_id}
        try:
            result = await self.registry.call(switch_id, "restore_configuration", record.config_data)
        except Exception as e:
            logger.error(f"Failed to restore configuration for {switch_id}: {e}")
            log_operation("restore_switch_configuration", switch_id, params, success=False, error=str(e))
            raise

        log_operation("restore_switch_configuration", switch_id, params)
        logger.info(f"Restored backup {backup_id} to {switch_id}")
        return {
            "success": True,
            "backup_id": backup_id,
            "switch_id": switch_id,
            "restore_result": result,
            "timestamp": _now(),
        }

    async def compare_configurations(self, switch1_id: str, switch2_id: str) -> dict:
        """Compare the live configurations of two switches."""
        config1, config2 = await asyncio.gather(
            self.registry.call(switch1_id, "backup_configuration"),
            self.registry.call(switch2_id, "backup_configuration"),
        )
        return {
            "switch1": {"id": switch1_id, "config": config1},
            "switch2": {"id": switch2_id, "config": config2},
            "comparison": compare_sections(config1, config2),
            "timestamp": _now(),
        }

    def list_backups(self, switch_id: Optional[str] = None) -> list[dict]:
        return [record.summary() for record in self.store.list_backups(switch_id)]

    def delete_backup(self, backup_id: str) -> dict:
        deleted = self.store.delete(backup_id)
        if deleted:
            log_operation("delete_backup", [], {"backup_id": backup_id})
        return {"success": deleted, "backup_id": backup_id}

    def cleanup_old_backups(self, retention_days: Optional[int] = None) -> dict:
        days = self.retention_days if retention_days is None else retention_days
        if days < 0:
            raise ValidationError("retention_days must not be negative")
        deleted = self.store.cleanup_older_than(days)
        if deleted:
            log_operation("cleanup_old_backups", [], {"retention_days": days, "deleted": len(deleted)})
        return {"deleted_count": len(deleted), "deleted_backups": deleted}

    def get_configuration_history(self, switch_id: str, limit: int = 10) -> list[dict]:
        history = self._history.get(switch_id) or ()
        return list(history)[-limit:] if limit > 0 else []
