"""Shared fixtures: an in-memory switch client and a small three-switch network."""
import copy
from typing import Any

import pytest

from mcp_vlan_manager.config.inventory import DeviceInventory
from mcp_vlan_manager.context import ServiceContext
from mcp_vlan_manager.devices import DeviceConfig, SwitchClient
from mcp_vlan_manager.errors import DeviceConnectionError, DeviceError
from mcp_vlan_manager.utils.audit_log import clear_recent_operations


INVENTORY = {
    "defaults": {
        "username": "admin",
        "password": "secret",
        "operation_timeout": 5,
    },
    "devices": {
        "core1": {"type": "vimins", "name": "Core 1", "host": "10.0.0.1", "model": "VM-S100"},
        "core2": {"type": "vimins", "name": "Core 2", "host": "10.0.0.2", "model": "VM-S100"},
        "access1": {"type": "sodola", "name": "Access 1", "host": "10.0.0.10", "model": "SL-SWTGW218AS"},
    },
    "topology": {
        "inter_core_links": {
            "core_lag": {"switches": ["core1", "core2"], "ports": {"core1": ["TE1", "TE2"], "core2": ["TE1", "TE2"]}},
        },
        "uplinks": {
            "office": {
                "switch": "access1",
                "primary_core": "core1",
                "primary_port": "TE6",
                "secondary_core": "core2",
                "secondary_port": "TE6",
            },
        },
    },
    "vlans": {
        "standard": {100: {"name": "BACKUP", "description": "Backup network"}},
        "reserved": [1, 1002, 1003, 1004, 1005],
    },
}


def inventory_data() -> dict:
    return copy.deepcopy(INVENTORY)


class FakeSwitch(SwitchClient):
    """Switch client backed by a dict; records every call."""

    family = "fake"

    def __init__(self, device_id: str, config: DeviceConfig, vlans: dict = None):
        super().__init__(device_id, config)
        # vlan_id -> {"name", "description", "ports": {port_id: tagged}}
        self.vlans: dict[int, dict] = copy.deepcopy(vlans or {})
        self.calls: list[str] = []
        self.fail: dict[str, Exception] = {}
        self.port_settings: dict[str, dict] = {}
        self.auth_calls = 0
        self.restored = None

    def _enter(self, operation: str) -> None:
        self.calls.append(operation)
        if operation in self.fail:
            raise self.fail[operation]

    def add_vlan(self, vlan_id: int, name: str, description: str = "", ports: dict = None) -> None:
        self.vlans[vlan_id] = {"name": name, "description": description, "ports": dict(ports or {})}

    async def authenticate(self) -> bool:
        self.auth_calls += 1
        self._enter("authenticate")
        self.session.mark_authenticated()
        return True

    async def get_system_info(self) -> dict:
        self._enter("get_system_info")
        return {"sys_sysinfo": {"model": self.config.model, "cpu": 10, "memory": 20}}

    async def get_port_status(self) -> dict:
        self._enter("get_port_status")
        return {"port_port": [{"portId": "1", "status": "up"}, {"portId": "2", "status": "down"}]}

    async def get_vlan_config(self) -> dict:
        self._enter("get_vlan_config")
        ports: dict[str, dict] = {}
        for vid, vlan in self.vlans.items():
            for port, tagged in vlan["ports"].items():
                entry = ports.setdefault(port, {"portId": port, "vlans": [], "taggedVlans": []})
                entry["vlans"].append(vid)
                if tagged:
                    entry["taggedVlans"].append(vid)
        return {
            "vlan_conf": {"vlans": [
                {"vlanId": vid, "vlanName": v["name"], "description": v["description"]}
                for vid, v in self.vlans.items()
            ]},
            "vlan_port": {"ports": list(ports.values())},
        }

    async def configure_port(self, port_id: str, settings: dict) -> Any:
        self._enter("configure_port")
        self.port_settings[port_id] = dict(settings)
        return {"status": "ok"}

    async def create_vlan(self, vlan_id: int, name: str, description: str = "") -> Any:
        self._enter("create_vlan")
        if vlan_id in self.vlans:
            raise DeviceError(f"{self.device_id}: VLAN {vlan_id} exists")
        self.add_vlan(vlan_id, name, description)
        return {"status": "ok"}

    async def configure_vlan_port(self, port_id: str, vlan_settings: dict) -> Any:
        self._enter("configure_vlan_port")
        self.port_settings[port_id] = dict(vlan_settings)
        vlan_ids = list(vlan_settings.get("allowed_vlans") or [])
        if vlan_settings.get("vlan_id") is not None:
            vlan_ids.append(vlan_settings["vlan_id"])
        for vid in vlan_ids:
            if vid not in self.vlans:
                raise DeviceError(f"{self.device_id}: VLAN {vid} does not exist")
            self.vlans[vid]["ports"][port_id] = bool(
                vlan_settings.get("tagged") or vid in (vlan_settings.get("allowed_vlans") or [])
            )
        return {"status": "ok"}

    async def delete_vlan(self, vlan_id: int) -> Any:
        self._enter("delete_vlan")
        if vlan_id not in self.vlans:
            raise DeviceError(f"{self.device_id}: VLAN {vlan_id} does not exist")
        del self.vlans[vlan_id]
        return {"status": "ok"}

    async def remove_port_from_vlan(self, port_id: str, vlan_id: int) -> Any:
        self._enter("remove_port_from_vlan")
        self.vlans.get(vlan_id, {"ports": {}})["ports"].pop(port_id, None)
        return {"status": "ok"}

    async def backup_configuration(self) -> dict:
        self._enter("backup_configuration")
        config = self._backup_header()
        config["system_info"] = await self.get_system_info()
        config["port_config"] = await self.get_port_status()
        config["vlan_config"] = await self.get_vlan_config()
        return config

    async def restore_configuration(self, data: dict) -> Any:
        self._enter("restore_configuration")
        self.restored = data
        return {"status": "ok"}


class Fleet:
    """Inventory plus a client factory handing out FakeSwitch instances."""

    def __init__(self, data: dict = None):
        self.inventory = DeviceInventory.from_dict(data or inventory_data())
        self.switches: dict[str, FakeSwitch] = {}
        self.preset: dict[str, dict] = {}
        self.unreachable: set[str] = set()

    def factory(self, device_id: str, config: DeviceConfig) -> FakeSwitch:
        if device_id in self.unreachable:
            raise DeviceConnectionError(f"{device_id}: connection refused")
        switch = FakeSwitch(device_id, config, self.preset.get(device_id))
        self.switches[device_id] = switch
        return switch

    def reset_calls(self) -> None:
        for switch in self.switches.values():
            switch.calls.clear()

    def total_calls(self) -> int:
        return sum(len(s.calls) for s in self.switches.values())


@pytest.fixture(autouse=True)
def clean_audit_buffer():
    clear_recent_operations()
    yield
    clear_recent_operations()


@pytest.fixture
def fleet():
    return Fleet()


@pytest.fixture
def context(fleet, tmp_path):
    """ServiceContext over the fake fleet with backups in a temp directory."""
    fleet.inventory.backup.directory = str(tmp_path / "backups")
    return ServiceContext.create(fleet.inventory, client_factory=fleet.factory)
