"""Logging configuration for the VLAN manager MCP server.

Provides:
- File-based logging with rotation
- Console output on stderr (stdout carries the MCP protocol)
- Performance timing helpers for tool calls and device operations

Environment Variables:
    VLANMGR_LOG_LEVEL: DEBUG, INFO, WARNING, ERROR (default: INFO)
    VLANMGR_LOG_FILE: Path to log file (default: ~/.vlanmgr/vlanmgr.log)
    VLANMGR_LOG_MAX_SIZE: Max log file size in MB (default: 10)
    VLANMGR_LOG_BACKUPS: Number of backup files to keep (default: 5)

Usage:
    setup_logging()  # Call once at startup

    @timed("authenticate")
    async def authenticate(self):
        ...

    async with timed_section("create_vlan", vlan_id=100):
        ...
"""
import functools
import inspect
import logging
import os
import sys
import time
from contextlib import asynccontextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Callable, Optional

# Performance logger - separate from main logger for easy filtering
perf_logger = logging.getLogger("vlanmgr.perf")

PACKAGE_LOGGERS = ("vlanmgr", "mcp_vlan_manager")


def get_log_level() -> int:
    """Get log level from environment."""
    level_str = os.environ.get("VLANMGR_LOG_LEVEL", "INFO").upper()
    return getattr(logging, level_str, logging.INFO)


def get_log_file() -> Path:
    """Get log file path from environment."""
    default_path = Path.home() / ".vlanmgr" / "vlanmgr.log"
    return Path(os.environ.get("VLANMGR_LOG_FILE", str(default_path)))


def setup_logging() -> Path:
    """Configure console, rotating file and performance handlers.

    Returns the directory holding the log files.
    """
    log_level = get_log_level()
    log_file = get_log_file()
    max_bytes = int(os.environ.get("VLANMGR_LOG_MAX_SIZE", "10")) * 1024 * 1024
    backup_count = int(os.environ.get("VLANMGR_LOG_BACKUPS", "5"))

    log_file.parent.mkdir(parents=True, exist_ok=True)

    main_format = logging.Formatter(
        "%(asctime)s.%(msecs)03d | %(name)-30s | %(levelname)-7s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    perf_format = logging.Formatter(
        "%(asctime)s.%(msecs)03d | PERF | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(main_format)

    # File handler captures everything
    file_handler = RotatingFileHandler(
        log_file, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(main_format)

    perf_log_file = log_file.parent / "vlanmgr-perf.log"
    perf_handler = RotatingFileHandler(
        perf_log_file, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
    )
    perf_handler.setLevel(logging.DEBUG)
    perf_handler.setFormatter(perf_format)

    for name in PACKAGE_LOGGERS:
        pkg_logger = logging.getLogger(name)
        pkg_logger.setLevel(logging.DEBUG)  # Capture all, handlers filter
        pkg_logger.addHandler(console_handler)
        pkg_logger.addHandler(file_handler)

    # vlanmgr.perf also reaches the console through the vlanmgr logger
    perf_logger.setLevel(logging.DEBUG)
    perf_logger.addHandler(perf_handler)

    logging.getLogger("vlanmgr").info(
        f"Logging initialized: level={logging.getLevelName(log_level)}, file={log_file}"
    )
    perf_logger.info(f"Performance logging to: {perf_log_file}")
    return log_file.parent


def _perf_line(operation: str, device_id: Optional[str], elapsed_ms: float, outcome: str, extra: dict) -> str:
    msg = f"{operation:24s} | {device_id or 'N/A':15s} | {elapsed_ms:8.2f}ms | {outcome}"
    if extra:
        msg += " | " + " | ".join(f"{k}={v}" for k, v in extra.items())
    return msg


def timed(operation: str, device_id: Optional[str] = None):
    """Decorator logging the execution time of an async function.

    The device is taken from ``self.device_id`` when not given explicitly.
    """
    def decorator(func: Callable) -> Callable:
        if not inspect.iscoroutinefunction(func):
            raise TypeError("timed() only wraps coroutine functions")

        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            dev_id = device_id
            if dev_id is None and args and hasattr(args[0], "device_id"):
                dev_id = args[0].device_id
            async with timed_section(operation, device_id=dev_id):
                return await func(*args, **kwargs)

        return wrapper

    return decorator


@asynccontextmanager
async def timed_section(operation: str, device_id: Optional[str] = None, **extra):
    """Async context manager timing a code section.

    Usage:
        async with timed_section("vlan_create", device_id="vimins_core1", vlan_id=100):
            await client.create_vlan(...)
    """
    start = time.perf_counter()
    try:
        yield
    except Exception as e:
        elapsed = (time.perf_counter() - start) * 1000
        perf_logger.warning(_perf_line(operation, device_id, elapsed, f"FAIL: {e}", extra))
        raise
    elapsed = (time.perf_counter() - start) * 1000
    perf_logger.info(_perf_line(operation, device_id, elapsed, "OK", extra))
