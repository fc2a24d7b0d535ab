"""Tests for the Vimins CGI client against a simulated switch."""
import json
from urllib.parse import parse_qs

import httpx
import pytest

from mcp_vlan_manager.config.inventory import DeviceInventory
from mcp_vlan_manager.devices import ERRORS_KEY, DeviceConfig, ViminsClient
from mcp_vlan_manager.errors import (
    AuthenticationError,
    DependencyError,
    DeviceConnectionError,
    DeviceError,
    ValidationError,
)
from mcp_vlan_manager.registry import OFFLINE, ONLINE, SwitchRegistry
from mcp_vlan_manager.vlan.engine import VLANOrchestrator

from conftest import inventory_data


class ViminsSimulator:
    """Answers /cgi/get.cgi and /cgi/set.cgi like a VM-S100."""

    def __init__(self):
        self.login_ok = True
        self.down = False
        self.data = {
            "sys_sysinfo": {"model": "VM-S100", "firmware": "1.2.3"},
            "sys_cpumem": {"cpuUsage": "12%", "memUsage": 40},
            "vlan_conf": {"vlans": [{"vlanId": 1, "vlanName": "default"}]},
            "vlan_port": {"ports": [{"portId": "1", "vlans": [1], "pvid": 1}]},
        }
        self.failing = {}
        self.requests = []
        self.posts = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        command = request.url.params.get("cmd")
        if request.url.path == "/cgi/set.cgi":
            form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
            self.posts.append((command, form))
            if command in self.failing:
                return httpx.Response(200, json={"status": "error", "message": self.failing[command]})
            return httpx.Response(200, json={"status": "ok"})

        if command == "home_login":
            return httpx.Response(200, json={"data": {"loginType": "local"}})
        if command == "home_loginStatus":
            status = "ok" if self.login_ok else "pending"
            return httpx.Response(200, json={"data": {"status": status}})
        if self.down:
            raise httpx.ConnectError("connection refused", request=request)
        if command == "broken":
            return httpx.Response(200, text="<html>not json</html>")
        if command in self.failing:
            return httpx.Response(200, json={"status": "fail", "message": self.failing[command]})
        return httpx.Response(200, json={"data": self.data.get(command)})


@pytest.fixture
def switch():
    return ViminsSimulator()


@pytest.fixture
def client(switch):
    config = DeviceConfig(
        type="vimins", name="Core 1", host="10.0.0.1", username="admin", password="secret",
    )
    client = ViminsClient("core1", config, transport=httpx.MockTransport(switch.handler))
    client.LOGIN_POLL_DELAY = 0
    return client


class TestAuthentication:
    """Tests for the three-step login."""

    @pytest.mark.asyncio
    async def test_login_sequence(self, client, switch):
        assert await client.authenticate() is True
        assert client.session.is_valid()

        commands = [r.url.params.get("cmd") for r in switch.requests]
        assert commands == ["home_login", "home_loginAuth", "home_loginStatus"]
        assert switch.posts[0] == ("home_loginAuth", {"username": "admin", "password": "secret"})

    @pytest.mark.asyncio
    async def test_every_request_has_cache_buster(self, client, switch):
        await client.authenticate()
        assert all(r.url.params.get("dummy", "").isdigit() for r in switch.requests)

    @pytest.mark.asyncio
    async def test_login_never_confirmed(self, client, switch):
        switch.login_ok = False
        with pytest.raises(AuthenticationError):
            await client.authenticate()
        polls = [r for r in switch.requests if r.url.params.get("cmd") == "home_loginStatus"]
        assert len(polls) == ViminsClient.LOGIN_POLL_ATTEMPTS
        assert not client.session.authenticated

    @pytest.mark.asyncio
    async def test_credentials_rejected(self, switch):
        config = DeviceConfig(type="vimins", name="Core 1", host="10.0.0.1", username="admin", password="x")
        client = ViminsClient(
            "core1", config, transport=httpx.MockTransport(lambda request: httpx.Response(401)),
        )
        with pytest.raises(AuthenticationError):
            await client.authenticate()

    @pytest.mark.asyncio
    async def test_api_call_logs_in_first(self, client, switch):
        await client.api_call("sys_sysinfo")
        commands = [r.url.params.get("cmd") for r in switch.requests]
        assert commands[0] == "home_login"
        assert commands[-1] == "sys_sysinfo"


class TestReads:
    """Tests for multi-command reads."""

    @pytest.mark.asyncio
    async def test_vlan_config_collects_commands(self, client):
        config = await client.get_vlan_config()
        assert config["vlan_conf"]["vlans"][0]["vlanId"] == 1
        assert config["vlan_port"]["ports"][0]["portId"] == "1"
        # No data for vlan_membership: dropped, not an error
        assert "vlan_membership" not in config
        assert ERRORS_KEY not in config

    @pytest.mark.asyncio
    async def test_failed_command_is_reported_not_raised(self, client, switch):
        switch.failing["sys_cpumem"] = "busy"
        info = await client.get_system_info()
        assert info["sys_sysinfo"]["model"] == "VM-S100"
        assert "busy" in info[ERRORS_KEY]["sys_cpumem"]

    @pytest.mark.asyncio
    async def test_switch_lost_after_login_raises(self, client, switch):
        await client.authenticate()
        switch.down = True
        with pytest.raises(DeviceConnectionError):
            await client.get_vlan_config()
        with pytest.raises(DeviceConnectionError):
            await client.get_system_info()

    @pytest.mark.asyncio
    async def test_vlan_table_failure_raises(self, client, switch):
        switch.failing["vlan_conf"] = "busy"
        with pytest.raises(DeviceError, match="busy"):
            await client.get_vlan_config()

    @pytest.mark.asyncio
    async def test_membership_failure_is_flagged(self, client, switch):
        assert client.unread_membership_sources(await client.get_vlan_config()) == []

        switch.failing["vlan_port"] = "busy"
        config = await client.get_vlan_config()
        assert config["vlan_conf"]["vlans"][0]["vlanId"] == 1
        assert client.unread_membership_sources(config) == ["vlan_port"]

    @pytest.mark.asyncio
    async def test_health_check_of_lost_switch(self, client, switch):
        await client.authenticate()
        switch.down = True
        health = await client.health_check()
        assert health.authenticated is False
        assert "refused" in health.error

    @pytest.mark.asyncio
    async def test_non_json_response(self, client):
        with pytest.raises(DeviceError, match="non-JSON"):
            await client.api_call("broken")

    @pytest.mark.asyncio
    async def test_unsupported_method(self, client):
        with pytest.raises(ValueError):
            await client.api_call("sys_sysinfo", method="PUT")


class TestMutations:
    """Tests for CGI writes."""

    @pytest.mark.asyncio
    async def test_create_vlan(self, client, switch):
        await client.create_vlan(100, "BACKUP", "Backup network")
        assert switch.posts[-1] == (
            "vlan_create", {"vlanId": "100", "vlanName": "BACKUP", "description": "Backup network"},
        )

    @pytest.mark.asyncio
    async def test_create_vlan_failure(self, client, switch):
        switch.failing["vlan_create"] = "VLAN exists"
        with pytest.raises(DeviceError, match="VLAN exists"):
            await client.create_vlan(100, "BACKUP")

    @pytest.mark.asyncio
    async def test_trunk_settings_are_mapped(self, client, switch):
        await client.configure_vlan_port("TE6", {
            "mode": "trunk", "allowed_vlans": [100, 200], "native_vlan": 1, "tagged": True,
        })
        command, form = switch.posts[-1]
        assert command == "vlan_portEdit"
        assert form == {
            "portId": "TE6",
            "mode": "trunk",
            "allowedVlans": "100,200",
            "nativeVlan": "1",
            "tagged": "true",
        }

    @pytest.mark.asyncio
    async def test_unset_settings_are_omitted(self, client, switch):
        await client.configure_vlan_port("3", {"vlan_id": 100, "tagged": True, "pvid": None})
        _, form = switch.posts[-1]
        assert "pvid" not in form
        assert form["vlanId"] == "100"

    @pytest.mark.asyncio
    async def test_vlan_port_needs_a_vlan(self, client, switch):
        with pytest.raises(ValidationError):
            await client.configure_vlan_port("3", {"tagged": True})
        assert switch.posts == []

    @pytest.mark.asyncio
    async def test_remove_port_and_delete(self, client, switch):
        await client.remove_port_from_vlan("3", 100)
        await client.delete_vlan(100)
        assert switch.posts[-2] == ("vlan_portEdit", {"portId": "3", "vlanId": "100", "action": "remove"})
        assert switch.posts[-1] == ("vlan_delete", {"vlanId": "100"})

    @pytest.mark.asyncio
    async def test_configure_port(self, client, switch):
        await client.configure_port("5", {"enabled": False, "speed": "1000"})
        assert switch.posts[-1] == ("port_portEdit", {"portId": "5", "enabled": "false", "speed": "1000"})


class TestBackupRestore:
    """Tests for configuration backup and restore."""

    @pytest.mark.asyncio
    async def test_backup_contains_all_sections(self, client):
        backup = await client.backup_configuration()
        assert backup["switch"] == "Core 1"
        assert backup["ip"] == "10.0.0.1"
        for section in ("system_info", "port_config", "vlan_config", "lag_config", "mac_table"):
            assert section in backup

    @pytest.mark.asyncio
    async def test_backup_of_lost_switch_raises(self, client, switch):
        await client.authenticate()
        switch.down = True
        with pytest.raises(DeviceConnectionError):
            await client.backup_configuration()

    @pytest.mark.asyncio
    async def test_restore_posts_json(self, client, switch):
        await client.restore_configuration({"vlan_config": {"vlan_conf": {}}})
        command, form = switch.posts[-1]
        assert command == "config_restore"
        assert json.loads(form["config"]) == {"vlan_config": {"vlan_conf": {}}}


async def simulated_network(switches: dict) -> VLANOrchestrator:
    """Orchestrator whose every switch is a ViminsClient over a simulator."""
    def factory(device_id, config):
        client = ViminsClient(device_id, config, transport=httpx.MockTransport(switches[device_id].handler))
        client.LOGIN_POLL_DELAY = 0
        return client

    registry = SwitchRegistry(DeviceInventory.from_dict(inventory_data()), client_factory=factory)
    await registry.initialize()
    return VLANOrchestrator(registry)


class TestSimulatedNetwork:
    """Tests for orchestration over simulated Vimins switches."""

    @pytest.fixture
    def switches(self):
        return {sid: ViminsSimulator() for sid in ("core1", "core2", "access1")}

    @pytest.mark.asyncio
    async def test_switch_lost_after_login(self, switches):
        engine = await simulated_network(switches)
        switches["core2"].down = True

        report = await engine.validate_vlan_consistency()
        assert report["unreachable_switches"] == ["core2"]
        assert engine.registry.get_record("core2").status == OFFLINE
        assert engine.registry.get_record("core1").status == ONLINE

        listing = await engine.list_vlans()
        assert "core2" not in listing
        assert listing["core1"]["success"] is True

    @pytest.mark.asyncio
    async def test_listing_reports_lost_switch(self, switches):
        engine = await simulated_network(switches)
        switches["core1"].down = True
        listing = await engine.list_vlans("core1")
        assert listing["core1"]["success"] is False
        assert listing["core1"]["error_type"] == "connection_error"

    @pytest.mark.asyncio
    async def test_busy_membership_table_blocks_delete(self, switches):
        switch = switches["core1"]
        switch.data["vlan_conf"]["vlans"].append({"vlanId": 100, "vlanName": "BACKUP"})
        switch.failing["vlan_port"] = "busy"
        engine = await simulated_network(switches)

        with pytest.raises(DependencyError) as exc:
            await engine.delete_vlan(100, ["core1"])
        assert "core1" in exc.value.details["unverified"]
        assert not any(command == "vlan_delete" for command, _ in switch.posts)

        result = await engine.delete_vlan(100, ["core1"], force=True)
        assert result["success"] is True
        assert switch.posts[-1] == ("vlan_delete", {"vlanId": "100"})
