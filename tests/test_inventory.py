"""Tests for inventory loading and validation."""
import pytest
import yaml

from mcp_vlan_manager.config.inventory import CONFIG_ENV_VAR, DeviceInventory
from mcp_vlan_manager.errors import ConfigError

from conftest import inventory_data


class TestLoading:
    """Tests for reading the YAML file."""

    def test_load_from_path(self, tmp_path):
        path = tmp_path / "devices.yaml"
        path.write_text(yaml.safe_dump(inventory_data()))
        inventory = DeviceInventory(str(path))
        assert inventory.config_path == str(path)
        assert inventory.get_device_ids() == ["core1", "core2", "access1"]

    def test_load_from_env(self, tmp_path, monkeypatch):
        path = tmp_path / "switches.yaml"
        path.write_text(yaml.safe_dump(inventory_data()))
        monkeypatch.setenv(CONFIG_ENV_VAR, str(path))
        assert DeviceInventory().config_path == str(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="Cannot read config"):
            DeviceInventory(str(tmp_path / "nope.yaml"))

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "devices.yaml"
        path.write_text("devices: [unclosed")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            DeviceInventory(str(path))

    def test_no_config_anywhere(self, tmp_path, monkeypatch):
        monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("HOME", str(tmp_path))
        with pytest.raises(ConfigError, match="Could not find devices.yaml"):
            DeviceInventory()


class TestDevices:
    """Tests for device entries."""

    def test_defaults_are_merged(self):
        inventory = DeviceInventory.from_dict(inventory_data())
        raw = inventory.get_device_config("core1")
        assert raw["username"] == "admin"
        assert raw["operation_timeout"] == 5

    def test_explicit_values_win_over_defaults(self):
        data = inventory_data()
        data["devices"]["core2"]["username"] = "operator"
        inventory = DeviceInventory.from_dict(data)
        assert inventory.get_device_config("core2")["username"] == "operator"

    def test_build_device_config(self):
        data = inventory_data()
        data["devices"]["core1"]["location"] = "rack 1"
        config = DeviceInventory.from_dict(data).build_device_config("core1")
        assert config.type == "vimins"
        assert config.host == "10.0.0.1"
        assert config.operation_timeout == 5
        assert not hasattr(config, "location")

    def test_name_defaults_to_id(self):
        data = inventory_data()
        del data["devices"]["core1"]["name"]
        assert DeviceInventory.from_dict(data).build_device_config("core1").name == "core1"

    def test_unknown_device(self):
        with pytest.raises(KeyError):
            DeviceInventory.from_dict(inventory_data()).get_device_config("nope")

    def test_by_type(self):
        inventory = DeviceInventory.from_dict(inventory_data())
        assert inventory.get_device_ids_by_type("vimins") == ["core1", "core2"]
        assert inventory.get_device_ids_by_type("SODOLA") == ["access1"]

    def test_no_devices(self):
        with pytest.raises(ConfigError, match="No devices configured"):
            DeviceInventory.from_dict({"devices": {}})

    def test_unknown_type(self):
        data = inventory_data()
        data["devices"]["core1"]["type"] = "cisco"
        with pytest.raises(ConfigError, match="unknown device type") as exc:
            DeviceInventory.from_dict(data)
        assert exc.value.details["errors"] == ["core1: unknown device type 'cisco'"]

    @pytest.mark.parametrize("host", ["999.1.1.1", "10.0.0", "", "bad host", "-switch"])
    def test_invalid_host(self, host):
        data = inventory_data()
        data["devices"]["access1"]["host"] = host
        with pytest.raises(ConfigError, match="invalid host"):
            DeviceInventory.from_dict(data)

    def test_hostname_is_accepted(self):
        data = inventory_data()
        data["devices"]["access1"]["host"] = "access1.office.lan"
        DeviceInventory.from_dict(data)

    def test_missing_username(self):
        data = inventory_data()
        del data["defaults"]["username"]
        with pytest.raises(ConfigError, match="username is required"):
            DeviceInventory.from_dict(data)

    def test_all_errors_reported_together(self):
        data = inventory_data()
        data["devices"]["core1"]["type"] = "cisco"
        data["devices"]["core2"]["host"] = "300.0.0.1"
        with pytest.raises(ConfigError) as exc:
            DeviceInventory.from_dict(data)
        assert len(exc.value.details["errors"]) == 2


class TestVlanPolicy:
    """Tests for standard, reserved and template VLAN settings."""

    def test_standard_and_reserved(self):
        inventory = DeviceInventory.from_dict(inventory_data())
        assert inventory.standard_vlans[100]["name"] == "BACKUP"
        assert inventory.is_reserved_vlan(1)
        assert inventory.is_reserved_vlan(1002)
        assert not inventory.is_reserved_vlan(100)

    def test_reserved_defaults(self):
        data = inventory_data()
        del data["vlans"]
        inventory = DeviceInventory.from_dict(data)
        assert inventory.reserved_vlans == [1, 1002, 1003, 1004, 1005]
        assert inventory.standard_vlans == {}

    @pytest.mark.parametrize("vlan_id", [0, 4095, "abc"])
    def test_invalid_standard_vlan(self, vlan_id):
        data = inventory_data()
        data["vlans"]["standard"] = {vlan_id: {"name": "BAD"}}
        with pytest.raises(ConfigError, match="Invalid VLAN ID"):
            DeviceInventory.from_dict(data)

    def test_default_templates(self):
        templates = DeviceInventory.from_dict(inventory_data()).get_templates()
        assert set(templates) >= {"management", "user_access", "guest_network", "backup_network"}
        assert templates["backup_network"].contains(150)
        assert templates["backup_network"].mtu == 9216

    def test_custom_template(self):
        data = inventory_data()
        data["vlan_templates"] = {"iot": {"name": "IoT", "vlan_range": [700, 749], "security_policy": "isolated"}}
        inventory = DeviceInventory.from_dict(data)
        template = inventory.get_template("iot")
        assert template.vlan_range == (700, 749)
        assert template.to_dict()["vlan_range"] == [700, 749]

    def test_bad_template(self):
        data = inventory_data()
        data["vlan_templates"] = {"iot": {"name": "IoT"}}
        with pytest.raises(ConfigError, match="Invalid VLAN template 'iot'"):
            DeviceInventory.from_dict(data)


class TestTopology:
    """Tests for uplinks, inter-core links and settings."""

    def test_uplinks(self):
        inventory = DeviceInventory.from_dict(inventory_data())
        uplink = inventory.uplinks["office"]
        assert uplink.core_links() == [("primary", "core1", "TE6"), ("secondary", "core2", "TE6")]

    def test_single_homed_uplink(self):
        data = inventory_data()
        data["topology"]["uplinks"]["office"] = {"switch": "access1", "primary_core": "core1", "primary_port": "TE5"}
        inventory = DeviceInventory.from_dict(data)
        assert inventory.uplinks["office"].core_links() == [("primary", "core1", "TE5")]

    def test_bad_uplink(self):
        data = inventory_data()
        data["topology"]["uplinks"]["office"]["color"] = "blue"
        with pytest.raises(ConfigError, match="Invalid uplink 'office'"):
            DeviceInventory.from_dict(data)

    def test_inter_core_ports_as_string(self):
        data = inventory_data()
        data["topology"]["inter_core_links"]["core_lag"]["ports"] = {"core1": "TE1", "core2": "TE1"}
        link = DeviceInventory.from_dict(data).inter_core_links["core_lag"]
        assert link.ports == {"core1": ["TE1"], "core2": ["TE1"]}

    def test_core_switch_ids(self):
        assert DeviceInventory.from_dict(inventory_data()).core_switch_ids() == {"core1", "core2"}

    def test_topology_as_data(self):
        topology = DeviceInventory.from_dict(inventory_data()).get_topology()
        assert topology["uplinks"]["office"]["primary_port"] == "TE6"
        assert topology["inter_core_links"]["core_lag"]["switches"] == ["core1", "core2"]

    def test_backup_and_monitoring_settings(self):
        data = inventory_data()
        data["backup"] = {"directory": "/var/backups/switches", "retention_days": 7}
        data["monitoring"] = {"health_check_interval": 60, "alert_thresholds": {"cpu_usage": 90}}
        inventory = DeviceInventory.from_dict(data)
        assert inventory.backup.directory == "/var/backups/switches"
        assert inventory.backup.retention_days == 7
        assert inventory.monitoring.health_check_interval == 60
        assert inventory.monitoring.alert_thresholds["cpu_usage"] == 90
        assert inventory.monitoring.alert_thresholds["memory_usage"] == 85

    def test_default_settings(self):
        inventory = DeviceInventory.from_dict(inventory_data())
        assert inventory.backup.retention_days == 30
        assert inventory.monitoring.health_check_interval == 300
