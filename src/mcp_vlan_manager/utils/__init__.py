"""Retry, logging and audit helpers."""
from .connection import OperationResult, with_retry
from .logging_config import setup_logging, timed, timed_section, perf_logger
from .audit_log import (
    OperationRecord,
    log_operation,
    get_recent_operations,
    setup_audit_logging,
)

__all__ = [
    "OperationResult",
    "with_retry",
    "setup_logging",
    "timed",
    "timed_section",
    "perf_logger",
    "OperationRecord",
    "log_operation",
    "get_recent_operations",
    "setup_audit_logging",
]
