"""Switch inventory, topology and VLAN policy from YAML configuration."""
import dataclasses
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

from ..devices import DEVICE_TYPES, DeviceConfig
from ..errors import ConfigError
from ..vlan.models import (
    DEFAULT_RESERVED_VLANS,
    DEFAULT_TEMPLATES,
    MAX_VLAN_ID,
    MIN_VLAN_ID,
    VLANTemplate,
)

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "MCP_VLAN_CONFIG"

_IPV4 = re.compile(
    r"^(?:(?:25[0-5]|2[0-4][0-9]|[01]?[0-9][0-9]?)\.){3}"
    r"(?:25[0-5]|2[0-4][0-9]|[01]?[0-9][0-9]?)$"
)
_HOSTNAME = re.compile(
    r"^(?=.{1,253}$)(?!-)[A-Za-z0-9-]{1,63}(?<!-)(\.(?!-)[A-Za-z0-9-]{1,63}(?<!-))*$"
)

_DEVICE_FIELDS = {f.name for f in dataclasses.fields(DeviceConfig)}


def _valid_host(host: str) -> bool:
    """IPv4 address or DNS hostname. Dotted numbers must be a valid IPv4."""
    if _IPV4.match(host):
        return True
    if host.replace(".", "").isdigit():
        return False
    return bool(_HOSTNAME.match(host))


@dataclass
class UplinkConnection:
    """Access switch attached to a primary and optional secondary core."""
    name: str
    switch: str
    primary_core: str
    primary_port: str
    secondary_core: Optional[str] = None
    secondary_port: Optional[str] = None

    def core_links(self) -> list[tuple[str, str, str]]:
        """(role, core switch, core port) for each configured core side."""
        links = [("primary", self.primary_core, self.primary_port)]
        if self.secondary_core:
            links.append(("secondary", self.secondary_core, self.secondary_port or ""))
        return links


@dataclass
class InterCoreLink:
    """Link (typically a LAG) between two core switches."""
    name: str
    switches: list[str]
    ports: dict[str, list[str]] = field(default_factory=dict)
    description: str = ""


@dataclass
class BackupSettings:
    directory: str = "data/backups"
    retention_days: int = 30


@dataclass
class MonitoringSettings:
    health_check_interval: float = 300
    alert_thresholds: dict = field(default_factory=lambda: {
        "cpu_usage": 80,
        "memory_usage": 85,
        "port_error_rate": 0.01,
    })


class DeviceInventory:
    """Manages the switch inventory loaded from YAML config.

    ```yaml
    defaults:
      username: admin
      password_env: SWITCH_PASSWORD
    devices:
      vimins_core1:
        type: vimins
        name: Coreswitch_1_Office
        host: 10.202.28.9
    topology:
      uplinks:
        office:
          switch: sodola_office
          primary_core: vimins_core1
          primary_port: TE6
    vlans:
      standard:
        500: {name: MGMT, description: Management Network}
      reserved: [1, 1002, 1003, 1004, 1005]
    ```
    """

    def __init__(self, config_path: Optional[str] = None, data: Optional[dict] = None):
        if data is not None:
            self.config_path = config_path
            self._config = data
        else:
            self.config_path = config_path or self._find_config()
            self._config = self._read_config(self.config_path)
        self._load_config()

    @classmethod
    def from_dict(cls, data: dict) -> "DeviceInventory":
        return cls(data=data)

    def _find_config(self) -> str:
        """Find the devices.yaml config file."""
        env_path = os.environ.get(CONFIG_ENV_VAR)
        if env_path:
            return env_path

        search_paths = [
            Path.cwd() / "configs" / "devices.yaml",
            Path.cwd() / "devices.yaml",
            Path.home() / ".config" / "mcp-vlan-manager" / "devices.yaml",
            Path("/etc/mcp-vlan-manager/devices.yaml"),
        ]

        for path in search_paths:
            if path.exists():
                return str(path)

        raise ConfigError(
            "Could not find devices.yaml. Create one in ./configs/devices.yaml "
            f"or set {CONFIG_ENV_VAR}"
        )

    @staticmethod
    def _read_config(path: str) -> dict:
        try:
            with open(path) as f:
                return yaml.safe_load(f) or {}
        except OSError as e:
            raise ConfigError(f"Cannot read config {path}: {e}") from e
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    def _load_config(self) -> None:
        """Merge defaults into devices and validate everything."""
        if not isinstance(self._config, dict):
            raise ConfigError("Configuration root must be a mapping")

        devices = self._config.get("devices") or {}
        if not devices:
            raise ConfigError("No devices configured")

        # Apply defaults
        defaults = self._config.get("defaults", {})
        for device_id, device_config in devices.items():
            if not isinstance(device_config, dict):
                raise ConfigError(f"Device '{device_id}' must be a mapping")
            for key, value in defaults.items():
                if key not in device_config:
                    device_config[key] = value
            device_config.setdefault("name", device_id)

        self._config["devices"] = devices
        self._validate_devices()
        self._load_vlan_policy()
        self._load_topology()
        self._templates = self._load_templates()
        self.backup = BackupSettings(**(self._config.get("backup") or {}))
        self.monitoring = self._load_monitoring()
        logger.info(f"Loaded inventory with {len(devices)} device(s)")

    def _validate_devices(self) -> None:
        errors = []
        for device_id, config in self._config["devices"].items():
            family = str(config.get("type", "")).lower()
            if family not in DEVICE_TYPES:
                errors.append(f"{device_id}: unknown device type '{config.get('type')}'")
            host = str(config.get("host", ""))
            if not _valid_host(host):
                errors.append(f"{device_id}: invalid host '{host}'")
            if not config.get("username"):
                errors.append(f"{device_id}: username is required")

        if errors:
            logger.error(f"Configuration validation failed: {errors}")
            raise ConfigError(
                f"Configuration validation failed: {', '.join(errors)}",
                details={"errors": errors},
            )

    def _load_vlan_policy(self) -> None:
        vlans = self._config.get("vlans") or {}
        self.standard_vlans: dict[int, dict] = {}
        errors = []
        for vlan_id, info in (vlans.get("standard") or {}).items():
            try:
                vid = int(vlan_id)
            except (TypeError, ValueError):
                errors.append(f"Invalid VLAN ID: {vlan_id}")
                continue
            if not MIN_VLAN_ID <= vid <= MAX_VLAN_ID:
                errors.append(f"Invalid VLAN ID: {vid}. Must be between {MIN_VLAN_ID} and {MAX_VLAN_ID}.")
                continue
            self.standard_vlans[vid] = dict(info or {})

        if errors:
            raise ConfigError(
                f"Configuration validation failed: {', '.join(errors)}",
                details={"errors": errors},
            )

        self.reserved_vlans: list[int] = sorted(
            int(v) for v in vlans.get("reserved", DEFAULT_RESERVED_VLANS)
        )
        management = vlans.get("management_vlan")
        self.management_vlan: Optional[int] = int(management) if management is not None else None

    def _load_topology(self) -> None:
        topology = self._config.get("topology") or {}
        devices = self._config["devices"]

        self.uplinks: dict[str, UplinkConnection] = {}
        for name, link in (topology.get("uplinks") or {}).items():
            try:
                self.uplinks[name] = UplinkConnection(name=name, **link)
            except TypeError as e:
                raise ConfigError(f"Invalid uplink '{name}': {e}") from e

        self.inter_core_links: dict[str, InterCoreLink] = {}
        for name, link in (topology.get("inter_core_links") or {}).items():
            ports = link.get("ports") or {}
            switches = list(link.get("switches") or ports.keys())
            self.inter_core_links[name] = InterCoreLink(
                name=name,
                switches=switches,
                ports={k: [v] if isinstance(v, str) else list(v) for k, v in ports.items()},
                description=link.get("description", ""),
            )

        # Topology referencing unknown devices is tolerated but suspicious
        for uplink in self.uplinks.values():
            referenced = [uplink.switch] + [core for _, core, _ in uplink.core_links()]
            for device_id in referenced:
                if device_id not in devices:
                    logger.warning(f"Uplink '{uplink.name}' references unknown device: {device_id}")
        for link in self.inter_core_links.values():
            for device_id in link.switches:
                if device_id not in devices:
                    logger.warning(f"Inter-core link '{link.name}' references unknown device: {device_id}")

    def _load_templates(self) -> dict[str, VLANTemplate]:
        templates = dict(DEFAULT_TEMPLATES)
        for key, data in (self._config.get("vlan_templates") or {}).items():
            try:
                templates[key] = VLANTemplate.from_dict(key, data)
            except (KeyError, TypeError, ValueError) as e:
                raise ConfigError(f"Invalid VLAN template '{key}': {e}") from e
        return templates

    def _load_monitoring(self) -> MonitoringSettings:
        data = dict(self._config.get("monitoring") or {})
        settings = MonitoringSettings()
        if "health_check_interval" in data:
            settings.health_check_interval = float(data["health_check_interval"])
        settings.alert_thresholds.update(data.get("alert_thresholds") or {})
        return settings

    # === Devices ===

    def get_device_ids(self) -> list[str]:
        """Get all device IDs."""
        return list(self._config.get("devices", {}).keys())

    def get_device_config(self, device_id: str) -> dict:
        """Get raw config for a device (defaults merged)."""
        devices = self._config.get("devices", {})
        if device_id not in devices:
            raise KeyError(f"Unknown device: {device_id}")
        return devices[device_id]

    def build_device_config(self, device_id: str) -> DeviceConfig:
        """Typed config for a device; keys DeviceConfig does not know are ignored."""
        raw = self.get_device_config(device_id)
        return DeviceConfig(**{k: v for k, v in raw.items() if k in _DEVICE_FIELDS})

    def get_device_ids_by_type(self, device_type: str) -> list[str]:
        """Get device IDs filtered by family."""
        return [
            device_id
            for device_id, config in self._config.get("devices", {}).items()
            if str(config.get("type", "")).lower() == device_type.lower()
        ]

    # === VLAN policy ===

    def is_reserved_vlan(self, vlan_id: int) -> bool:
        return vlan_id in self.reserved_vlans

    def get_templates(self) -> dict[str, VLANTemplate]:
        return dict(self._templates)

    def get_template(self, key: str) -> VLANTemplate:
        if key not in self._templates:
            raise KeyError(f"Unknown VLAN template: {key}")
        return self._templates[key]

    # === Topology ===

    def get_topology(self) -> dict:
        """Topology as plain data."""
        return {
            "inter_core_links": {
                name: dataclasses.asdict(link) for name, link in self.inter_core_links.items()
            },
            "uplinks": {
                name: dataclasses.asdict(link) for name, link in self.uplinks.items()
            },
        }

    def core_switch_ids(self) -> set[str]:
        """Switches on the core end of any uplink or inter-core link."""
        cores = set()
        for uplink in self.uplinks.values():
            cores.update(core for _, core, _ in uplink.core_links())
        for link in self.inter_core_links.values():
            cores.update(link.switches)
        return cores
