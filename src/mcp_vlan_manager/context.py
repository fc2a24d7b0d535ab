"""Service wiring built once at startup and passed to every tool."""
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from .config.inventory import DeviceInventory
from .devices import DeviceConfig, SwitchClient, create_client
from .registry import SwitchRegistry
from .services import ConfigurationService, DiagnosticsService
from .vlan.engine import VLANOrchestrator

logger = logging.getLogger(__name__)


@dataclass
class ServiceContext:
    """Everything a tool handler may touch."""
    inventory: DeviceInventory
    registry: SwitchRegistry
    vlans: VLANOrchestrator
    configuration: ConfigurationService
    diagnostics: DiagnosticsService
    audit_log_file: Optional[str] = None

    @classmethod
    def create(
        cls,
        inventory: DeviceInventory,
        client_factory: Callable[[str, DeviceConfig], SwitchClient] = create_client,
        audit_log_file: Optional[str] = None,
    ) -> "ServiceContext":
        registry = SwitchRegistry(inventory, client_factory=client_factory)
        return cls(
            inventory=inventory,
            registry=registry,
            vlans=VLANOrchestrator(registry),
            configuration=ConfigurationService(registry),
            diagnostics=DiagnosticsService(registry),
            audit_log_file=audit_log_file,
        )

    async def start(self, monitor: bool = True) -> dict:
        """Connect to the switches and, optionally, start the health monitor."""
        summary = await self.registry.initialize()
        if monitor:
            self.registry.start_health_monitor()
        return summary

    async def close(self) -> None:
        await self.registry.close()
        logger.info("Service context closed")
