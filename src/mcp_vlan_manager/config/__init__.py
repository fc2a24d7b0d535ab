"""Inventory and topology configuration."""
from .inventory import (
    DeviceInventory,
    UplinkConnection,
    InterCoreLink,
    BackupSettings,
    MonitoringSettings,
)

__all__ = [
    "DeviceInventory",
    "UplinkConnection",
    "InterCoreLink",
    "BackupSettings",
    "MonitoringSettings",
]
