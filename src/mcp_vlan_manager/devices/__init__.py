"""Session clients for the supported switch families."""
from typing import Optional, Union

import httpx

from .base import DeviceConfig, HealthResult, SessionState, SwitchClient, ERRORS_KEY
from .sodola import SodolaClient
from .vimins import ViminsClient
from ..errors import ConfigError

__all__ = [
    "SwitchClient",
    "DeviceConfig",
    "HealthResult",
    "SessionState",
    "ERRORS_KEY",
    "SodolaClient",
    "ViminsClient",
    "DEVICE_TYPES",
    "create_client",
]

# Device family registry
DEVICE_TYPES = {
    "vimins": ViminsClient,
    "sodola": SodolaClient,
}


def create_client(
    device_id: str,
    config: Union[DeviceConfig, dict],
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> SwitchClient:
    """Factory function to create a client for the device's family."""
    if isinstance(config, dict):
        config = DeviceConfig(**config)
    family = config.type.lower()
    if family not in DEVICE_TYPES:
        raise ConfigError(f"Unknown device type: {config.type}", details={"device": device_id})

    client_class = DEVICE_TYPES[family]
    return client_class(device_id, config, transport=transport)
