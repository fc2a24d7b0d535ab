"""Switch registry and health monitor.

Holds one record per configured switch, owns the live session clients and
runs operations across many switches at once with per-device isolation.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Optional

from .config.inventory import DeviceInventory
from .devices import DeviceConfig, SwitchClient, create_client
from .errors import (
    AuthenticationError,
    DeviceTimeoutError,
    NotFoundError,
    UnavailableError,
    ValidationError,
)
from .utils.connection import OperationResult
from .utils.logging_config import timed_section

logger = logging.getLogger(__name__)

ONLINE = "online"
OFFLINE = "offline"

# Failures that say the device itself is unusable right now
_OFFLINE_ERRORS = (AuthenticationError, ConnectionError, TimeoutError, asyncio.TimeoutError)


def _check_operation(operation: str) -> None:
    """Only public SwitchClient methods may be run through the registry."""
    if operation.startswith("_") or not callable(getattr(SwitchClient, operation, None)):
        raise ValidationError(f"Unknown switch operation: {operation}")


@dataclass
class SwitchRecord:
    """Registry entry for one switch."""
    id: str
    config: DeviceConfig
    client: Optional[SwitchClient] = None
    status: str = OFFLINE
    last_health_check: Optional[datetime] = None
    error: Optional[str] = None

    @property
    def is_online(self) -> bool:
        return self.status == ONLINE and self.client is not None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.config.name,
            "host": self.config.host,
            "type": self.config.type,
            "model": self.config.model,
            "status": self.status,
            "authenticated": bool(self.client and self.client.is_authenticated),
            "last_health_check": (
                self.last_health_check.isoformat() if self.last_health_check else None
            ),
            "error": self.error,
        }


class SwitchRegistry:
    """All configured switches, their clients and their health.

    Membership is fixed at construction; only record state changes later.
    """

    def __init__(
        self,
        inventory: DeviceInventory,
        client_factory: Callable[[str, DeviceConfig], SwitchClient] = create_client,
    ):
        self.inventory = inventory
        self._client_factory = client_factory
        self._records: dict[str, SwitchRecord] = {
            device_id: SwitchRecord(id=device_id, config=inventory.build_device_config(device_id))
            for device_id in inventory.get_device_ids()
        }
        self.initialized = False
        self._monitor_task: Optional[asyncio.Task] = None
        self.last_sweep: Optional[dict] = None

    # === Lifecycle ===

    async def _connect(self, record: SwitchRecord) -> bool:
        """Create a client and authenticate it. Failures leave the record offline."""
        client = None
        try:
            client = self._client_factory(record.id, record.config)
            await asyncio.wait_for(client.authenticate(), timeout=record.config.operation_timeout)
        except Exception as e:
            message = str(e) or type(e).__name__
            logger.error(f"Failed to connect to switch {record.id}: {message}")
            record.client = None
            record.status = OFFLINE
            record.error = message
            if client is not None:
                await self._close_client(record.id, client)
            return False

        record.client = client
        record.status = ONLINE
        record.error = None
        logger.info(f"Switch {record.id} ({record.config.host}) is online")
        return True

    async def initialize(self) -> dict:
        """Connect to every configured switch concurrently."""
        logger.info(f"Initializing {len(self._records)} switch(es)")
        records = list(self._records.values())
        await asyncio.gather(*(self._connect(r) for r in records))
        self.initialized = True

        online = self.online_switch_ids()
        logger.info(f"Switch registry initialized: {len(online)}/{len(records)} online")
        return {
            "total": len(records),
            "online": online,
            "offline": [r.id for r in records if not r.is_online],
        }

    async def _check_one(self, record: SwitchRecord) -> Optional[str]:
        """Health-check one switch. Returns an error message or None."""
        now = datetime.now(timezone.utc)
        if record.client is None:
            logger.info(f"Attempting reconnection to switch {record.id}")
            connected = await self._connect(record)
            record.last_health_check = now
            return None if connected else record.error

        try:
            health = await asyncio.wait_for(
                record.client.health_check(), timeout=record.config.operation_timeout
            )
        except asyncio.TimeoutError:
            record.status = OFFLINE
            record.error = f"health check timed out after {record.config.operation_timeout}s"
            record.last_health_check = now
            return record.error

        record.last_health_check = now
        if health.authenticated:
            record.status = ONLINE
            record.error = None
            return None

        logger.warning(f"Switch {record.id} health check failed, attempting reconnection")
        try:
            await asyncio.wait_for(
                record.client.authenticate(), timeout=record.config.operation_timeout
            )
        except Exception as e:
            logger.error(f"Failed to reconnect to switch {record.id}: {e}")
            record.status = OFFLINE
            record.error = health.error or str(e)
            return record.error

        record.status = ONLINE
        record.error = None
        logger.info(f"Reconnected to switch {record.id}")
        return None

    async def run_health_checks(self) -> dict:
        """One sweep over all switches; per-device failures are collected."""
        logger.debug("Performing health checks on all switches")
        records = list(self._records.values())
        outcomes = await asyncio.gather(
            *(self._check_one(r) for r in records), return_exceptions=True
        )

        failures = {}
        for record, outcome in zip(records, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(f"Health check failed for switch {record.id}: {outcome}")
                record.status = OFFLINE
                record.error = str(outcome)
                failures[record.id] = str(outcome)
            elif outcome:
                failures[record.id] = outcome

        online = len(self.online_switch_ids())
        self.last_sweep = {
            "checked": len(records),
            "online": online,
            "offline": len(records) - online,
            "failures": failures,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        logger.debug(f"Health check completed: {online}/{len(records)} switches online")
        return self.last_sweep

    async def _monitor_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await self.run_health_checks()
            except Exception as e:
                logger.error(f"Health check monitoring error: {e}")

    def start_health_monitor(self, interval: Optional[float] = None) -> None:
        """Start the periodic health sweep in the background."""
        if self._monitor_task and not self._monitor_task.done():
            return
        if interval is None:
            interval = self.inventory.monitoring.health_check_interval
        self._monitor_task = asyncio.create_task(self._monitor_loop(interval))
        logger.info(f"Health check monitoring started (interval: {interval}s)")

    async def stop_health_monitor(self) -> None:
        task, self._monitor_task = self._monitor_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Health check monitoring stopped")

    @property
    def health_monitor_running(self) -> bool:
        return self._monitor_task is not None and not self._monitor_task.done()

    async def _close_client(self, switch_id: str, client: SwitchClient) -> None:
        try:
            await client.close()
        except Exception as e:
            logger.warning(f"Error closing client for {switch_id}: {e}")

    async def close(self) -> None:
        """Stop monitoring and release every client."""
        await self.stop_health_monitor()
        closing = []
        for record in self._records.values():
            if record.client is not None:
                closing.append(self._close_client(record.id, record.client))
                record.client = None
            record.status = OFFLINE
        await asyncio.gather(*closing)
        self.initialized = False
        logger.info("Switch registry closed")

    # === Lookups ===

    def switch_ids(self) -> list[str]:
        return list(self._records)

    def get_record(self, switch_id: str) -> SwitchRecord:
        if switch_id not in self._records:
            raise NotFoundError(f"Switch {switch_id} not found", details={"switch_id": switch_id})
        return self._records[switch_id]

    def get_client(self, switch_id: str) -> SwitchClient:
        record = self.get_record(switch_id)
        if record.client is None:
            raise UnavailableError(
                f"Switch {switch_id} is not available: {record.error or 'not connected'}",
                details={"switch_id": switch_id, "status": record.status},
            )
        return record.client

    def list_switches(self, family: Optional[str] = None, status: Optional[str] = None) -> list[dict]:
        return [
            record.to_dict()
            for record in self._records.values()
            if (family is None or record.config.type == family)
            and (status is None or record.status == status)
        ]

    def online_switch_ids(self) -> list[str]:
        return [r.id for r in self._records.values() if r.is_online]

    def resolve_targets(self, switch_ids: Optional[Iterable[str]] = None) -> list[str]:
        """Explicit targets (all must exist) or, by default, the online switches."""
        if switch_ids is None:
            return self.online_switch_ids()
        targets = list(dict.fromkeys(switch_ids))
        for switch_id in targets:
            self.get_record(switch_id)
        return targets

    # === Operations ===

    def _mark_failure(self, switch_id: str, error: BaseException) -> None:
        if isinstance(error, _OFFLINE_ERRORS):
            record = self._records.get(switch_id)
            if record is not None:
                record.status = OFFLINE
                record.error = str(error) or type(error).__name__
                logger.warning(f"Switch {switch_id} marked offline: {record.error}")

    async def call(self, switch_id: str, operation: str, *args: Any) -> Any:
        """Run one client operation on one switch within its operation timeout.

        Raises the operation's error. Connection, timeout and auth failures
        also mark the switch offline.
        """
        _check_operation(operation)
        client = self.get_client(switch_id)
        timeout = client.config.operation_timeout
        try:
            async with timed_section(operation, device_id=switch_id):
                return await asyncio.wait_for(getattr(client, operation)(*args), timeout=timeout)
        except asyncio.TimeoutError as e:
            if isinstance(e, DeviceTimeoutError):
                self._mark_failure(switch_id, e)
                raise
            error = DeviceTimeoutError(f"{switch_id}: {operation} timed out after {timeout}s")
            self._mark_failure(switch_id, error)
            raise error from e
        except Exception as e:
            self._mark_failure(switch_id, e)
            raise

    async def _call_result(self, switch_id: str, operation: str, *args: Any) -> dict:
        try:
            data = await self.call(switch_id, operation, *args)
        except Exception as e:
            logger.error(f"Bulk operation {operation} failed for {switch_id}: {e}")
            return OperationResult(
                success=False,
                error=str(e) or type(e).__name__,
                error_type=getattr(e, "kind", type(e).__name__),
                device_id=switch_id,
                operation=operation,
            ).to_dict()
        return OperationResult(
            success=True, data=data, device_id=switch_id, operation=operation
        ).to_dict()

    async def bulk_operation(
        self,
        operation: str,
        switch_ids: Optional[Iterable[str]] = None,
        *args: Any,
    ) -> dict[str, dict]:
        """Run one operation on many switches concurrently.

        Every target gets an entry; one failure never affects the others.
        """
        _check_operation(operation)
        targets = list(switch_ids) if switch_ids is not None else self.online_switch_ids()
        results = await asyncio.gather(
            *(self._call_result(sid, operation, *args) for sid in targets)
        )
        return dict(zip(targets, results))

    async def bulk_system_info(self, switch_ids: Optional[Iterable[str]] = None) -> dict:
        return await self.bulk_operation("get_system_info", switch_ids)

    # === Topology and status ===

    def switch_role(self, switch_id: str) -> str:
        self.get_record(switch_id)
        return "core" if switch_id in self.inventory.core_switch_ids() else "access"

    def get_network_topology(self) -> dict:
        topology = self.inventory.get_topology()
        return {
            "switches": {
                sid: dict(record.to_dict(), role=self.switch_role(sid))
                for sid, record in self._records.items()
            },
            "inter_core_links": topology["inter_core_links"],
            "uplinks": topology["uplinks"],
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    def service_status(self) -> dict:
        switches = self.list_switches()
        online = sum(1 for s in switches if s["status"] == ONLINE)
        checks = [r.last_health_check for r in self._records.values() if r.last_health_check]
        return {
            "initialized": self.initialized,
            "total_switches": len(switches),
            "online_switches": online,
            "offline_switches": len(switches) - online,
            "health_monitor_running": self.health_monitor_running,
            "last_health_check": max(checks).isoformat() if checks else None,
            "switches": switches,
        }
