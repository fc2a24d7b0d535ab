"""Audit records for VLAN and configuration operations.

Every mutating operation and every consistency check emits one JSON line on
the dedicated ``vlanmgr.audit`` logger. Records are also kept in a bounded
in-memory buffer so recent activity can be queried without a log file.
"""
import json
import logging
import os
from collections import deque
from dataclasses import dataclass, asdict, field
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional

audit_logger = logging.getLogger("vlanmgr.audit")

AUDIT_FILE_NAME = "audit.log"

_recent: deque = deque(maxlen=500)


def setup_audit_logging(log_dir: Optional[str] = None) -> str:
    """Send audit records to a rotating file. Returns the file path.

    Args:
        log_dir: Directory for audit logs. Defaults to ~/.vlanmgr/
    """
    if log_dir is None:
        log_dir = os.path.expanduser("~/.vlanmgr")
    Path(log_dir).mkdir(parents=True, exist_ok=True)
    audit_file = os.path.join(log_dir, AUDIT_FILE_NAME)

    audit_logger.setLevel(logging.INFO)
    audit_logger.handlers.clear()
    handler = RotatingFileHandler(
        audit_file,
        maxBytes=10 * 1024 * 1024,
        backupCount=10,
        encoding="utf-8",
    )
    # One JSON document per line
    handler.setFormatter(logging.Formatter("%(message)s"))
    audit_logger.addHandler(handler)
    audit_logger.propagate = False
    return audit_file


@dataclass
class OperationRecord:
    """Record of one operation against one or more switches."""
    timestamp: str
    device_id: str  # switch ID, or comma-joined IDs for fan-outs
    operation: str  # create_vlan, delete_vlan, assign_port, ...
    success: bool
    parameters: dict = field(default_factory=dict)
    error: Optional[str] = None

    def to_json(self) -> str:
        return json.dumps(asdict(self), default=str)

    @classmethod
    def from_json(cls, json_str: str) -> "OperationRecord":
        return cls(**json.loads(json_str))


def log_operation(
    operation: str,
    device_ids: Any,
    parameters: Optional[dict] = None,
    success: bool = True,
    error: Optional[str] = None,
) -> OperationRecord:
    """Emit an audit record. Never raises."""
    if isinstance(device_ids, (list, tuple, set)):
        device_id = ",".join(str(d) for d in device_ids)
    else:
        device_id = str(device_ids or "")

    record = OperationRecord(
        timestamp=datetime.now(timezone.utc).isoformat(),
        device_id=device_id,
        operation=operation,
        success=success,
        parameters=parameters or {},
        error=error,
    )
    _recent.append(record)
    try:
        audit_logger.info(record.to_json())
    except Exception as e:
        logging.getLogger(__name__).warning(f"Audit record for {operation} not written: {e}")
    return record


def _matches(record: OperationRecord, device_id: Optional[str], operation: Optional[str]) -> bool:
    if device_id and device_id not in record.device_id.split(","):
        return False
    if operation and record.operation != operation:
        return False
    return True


def get_recent_operations(
    log_file: Optional[str] = None,
    device_id: Optional[str] = None,
    operation: Optional[str] = None,
    limit: int = 100,
) -> list[OperationRecord]:
    """Recent records, most recent first.

    Reads the audit file when one is given and exists, otherwise the
    in-memory buffer of this process.
    """
    if log_file and os.path.exists(log_file):
        records = []
        with open(log_file, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    records.append(OperationRecord.from_json(line))
                except (json.JSONDecodeError, TypeError):
                    continue  # Skip malformed lines
    else:
        records = list(_recent)

    selected = [r for r in records if _matches(r, device_id, operation)]
    return list(reversed(selected[-limit:]))


def clear_recent_operations() -> None:
    _recent.clear()
