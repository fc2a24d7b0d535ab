"""Error taxonomy shared by device clients, the registry and the VLAN engine.

Every error carries a stable ``kind`` string; the tool layer maps it into the
result object returned to callers.
"""
from typing import Any, Optional


class SwitchManagerError(Exception):
    """Base class for all errors raised by this package."""

    kind = "internal_error"

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "message": self.message,
            "details": self.details,
        }


class ConfigError(SwitchManagerError):
    """Static configuration is unusable (fatal at startup)."""

    kind = "config_error"


class ValidationError(SwitchManagerError):
    """Bad input such as an out-of-range VLAN ID or a missing field."""

    kind = "validation_error"


class AuthenticationError(SwitchManagerError):
    """Credentials rejected or login could not be verified."""

    kind = "authentication_error"


class DeviceConnectionError(SwitchManagerError, ConnectionError):
    """Device unreachable."""

    kind = "connection_error"


class DeviceTimeoutError(SwitchManagerError, TimeoutError):
    """Device did not answer within its configured timeout."""

    kind = "timeout_error"


class DeviceError(SwitchManagerError):
    """The device answered but reported a failure."""

    kind = "device_error"


class ConflictError(SwitchManagerError):
    """VLAN ID already exists on a create target."""

    kind = "conflict_error"


class DependencyError(SwitchManagerError):
    """VLAN still has port memberships on a delete target."""

    kind = "dependency_error"


class PartialFailureError(SwitchManagerError):
    """Some targets of a multi-device operation failed.

    Attributes:
        results: Per-target result map of the forward phase
        failed: Target IDs that failed the forward phase
        rollback: Per-target result map of the rollback phase (empty if none ran)
    """

    kind = "partial_failure"

    def __init__(
        self,
        message: str,
        results: Optional[dict[str, dict]] = None,
        failed: Optional[list[str]] = None,
        rollback: Optional[dict[str, dict]] = None,
    ):
        self.results = results or {}
        self.failed = failed or []
        self.rollback = rollback or {}
        super().__init__(message, details={
            "results": self.results,
            "failed": self.failed,
            "rollback": self.rollback,
        })

    @property
    def rollback_failures(self) -> list[str]:
        return [sid for sid, r in self.rollback.items() if not r.get("success")]


class NotFoundError(SwitchManagerError):
    """Unknown switch, VLAN or backup ID."""

    kind = "not_found"


class UnavailableError(SwitchManagerError):
    """Switch is known but has no live client."""

    kind = "unavailable"
