"""Vimins switch client (VM-S100 series).

The Vimins web UI is backed by a small CGI API:
- GET /cgi/get.cgi?cmd=<name> returns JSON with the payload under "data"
- POST /cgi/set.cgi?cmd=<name> takes form-encoded parameters

Every request carries a "dummy" millisecond timestamp to defeat caching on
the switch's embedded HTTP server.
"""
import asyncio
import json
import logging
import time
from typing import Any, Optional

import httpx

from .base import ERRORS_KEY, SwitchClient
from ..errors import AuthenticationError, DeviceError, SwitchManagerError, ValidationError
from ..utils.connection import with_retry
from ..utils.logging_config import timed

logger = logging.getLogger(__name__)

# Python-side VLAN port settings -> Vimins form field names
VLAN_PORT_FIELDS = {
    "vlan_id": "vlanId",
    "tagged": "tagged",
    "pvid": "pvid",
    "mode": "mode",
    "allowed_vlans": "allowedVlans",
    "native_vlan": "nativeVlan",
    "action": "action",
}

FAILED_STATUSES = ("error", "fail", "failed")


def _form_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple, set)):
        return ",".join(str(v) for v in value)
    return str(value)


def _form(fields: dict, mapping: Optional[dict] = None) -> dict[str, str]:
    """Encode settings as form fields, dropping unset values."""
    mapping = mapping or {}
    return {
        mapping.get(key, key): _form_value(value)
        for key, value in fields.items()
        if value is not None
    }


class ViminsClient(SwitchClient):
    """Vimins switch handler using the JSON CGI API."""

    family = "vimins"

    GET_PATH = "/cgi/get.cgi"
    SET_PATH = "/cgi/set.cgi"

    LOGIN_POLL_ATTEMPTS = 5
    LOGIN_POLL_DELAY = 1.0

    SYSTEM_COMMANDS = ["sys_sysinfo", "home_main", "panel_info", "sys_cpumem"]
    PORT_COMMANDS = ["port_port", "port_cnt", "port_bwutilz"]
    VLAN_COMMANDS = ["vlan_conf", "vlan_port", "vlan_membership"]
    LAG_COMMANDS = ["lag_mgmt", "lag_port", "lag_lacp"]
    MAC_COMMANDS = ["mac_miscStatus", "mac_static"]
    MEMBERSHIP_SOURCES = ("vlan_port",)

    def default_headers(self) -> dict[str, str]:
        headers = super().default_headers()
        headers["Accept"] = "application/json, text/plain, */*"
        return headers

    @staticmethod
    def _dummy() -> str:
        return str(int(time.time() * 1000))

    async def _get(self, command: str, params: Optional[dict] = None) -> httpx.Response:
        query = {"cmd": command, "dummy": self._dummy()}
        query.update(params or {})
        return await self._request("GET", self.GET_PATH, params=query)

    async def _set(self, command: str, data: Optional[dict] = None) -> httpx.Response:
        return await self._request(
            "POST",
            self.SET_PATH,
            params={"cmd": command, "dummy": self._dummy()},
            data=data or {},
        )

    def _json(self, resp: httpx.Response, command: str) -> Any:
        try:
            return resp.json()
        except ValueError as e:
            raise DeviceError(f"{self.device_id}: {command} returned non-JSON response") from e

    @with_retry(max_attempts=3, min_wait=1, max_wait=10)
    async def _fetch_login_info(self) -> httpx.Response:
        return await self._get("home_login")

    async def _login_verified(self) -> bool:
        """Poll home_loginStatus until the switch reports the session as ok."""
        for attempt in range(1, self.LOGIN_POLL_ATTEMPTS + 1):
            resp = await self._get("home_loginStatus")
            try:
                payload = resp.json()
            except ValueError:
                payload = None
            if isinstance(payload, dict):
                data = payload.get("data")
                if isinstance(data, dict) and data.get("status") == "ok":
                    return True
            logger.debug(f"Login status not ok for {self.name} (attempt {attempt})")
            if attempt < self.LOGIN_POLL_ATTEMPTS:
                await asyncio.sleep(self.LOGIN_POLL_DELAY)
        return False

    @timed("authenticate")
    async def authenticate(self) -> bool:
        """Three-step login: fetch login info, submit credentials, poll status."""
        logger.info(f"Authenticating to Vimins switch {self.name} ({self.host})")
        self.session.invalidate()
        try:
            await self._fetch_login_info()
            await self._set("home_loginAuth", {
                "username": self.config.username,
                "password": self.config.get_password(),
            })
            verified = await self._login_verified()
        except SwitchManagerError as e:
            logger.error(f"Authentication failed for {self.name}: {e}")
            raise

        if not verified:
            logger.error(f"Authentication verification failed for {self.name}")
            raise AuthenticationError(
                f"{self.device_id}: authentication verification failed",
                details={"attempts": self.LOGIN_POLL_ATTEMPTS},
            )

        self.session.mark_authenticated()
        logger.info(f"Authenticated to {self.name}")
        return True

    async def api_call(self, command: str, params: Optional[dict] = None, method: str = "GET") -> Any:
        """Run one CGI command on an authenticated session.

        Raises DeviceError when the switch answers with a failure status.
        """
        await self.ensure_session()
        if method == "GET":
            resp = await self._get(command, params)
        elif method == "POST":
            resp = await self._set(command, params)
        else:
            raise ValueError(f"Unsupported method: {method}")

        payload = self._json(resp, command)
        if isinstance(payload, dict):
            status = str(payload.get("status", "")).lower()
            if status in FAILED_STATUSES or payload.get("error"):
                message = payload.get("message") or payload.get("error") or status
                raise DeviceError(
                    f"{self.device_id}: {command} failed: {message}",
                    details={"command": command, "response": payload},
                )
        return payload

    async def _read_data(self, command: str) -> Any:
        payload = await self.api_call(command)
        if isinstance(payload, dict):
            return payload.get("data")
        return None

    # Reads
    async def get_system_info(self) -> dict:
        return await self._collect(self.SYSTEM_COMMANDS, self._read_data)

    async def get_port_status(self) -> dict:
        return await self._collect(self.PORT_COMMANDS, self._read_data)

    async def get_vlan_config(self) -> dict:
        return await self._collect(self.VLAN_COMMANDS, self._read_data, required=("vlan_conf",))

    async def get_lag_config(self) -> dict:
        return await self._collect(self.LAG_COMMANDS, self._read_data)

    async def get_mac_table(self) -> dict:
        return await self._collect(self.MAC_COMMANDS, self._read_data)

    # Mutations
    async def configure_port(self, port_id: str, settings: dict) -> Any:
        data = {"portId": str(port_id)}
        data.update(_form(settings))
        result = await self.api_call("port_portEdit", data, "POST")
        logger.info(f"Configured port {port_id} on {self.name}: {settings}")
        return result

    async def create_vlan(self, vlan_id: int, name: str, description: str = "") -> Any:
        result = await self.api_call("vlan_create", {
            "vlanId": str(vlan_id),
            "vlanName": name,
            "description": description,
        }, "POST")
        logger.info(f"Created VLAN {vlan_id} ({name}) on {self.name}")
        return result

    async def configure_vlan_port(self, port_id: str, vlan_settings: dict) -> Any:
        if vlan_settings.get("vlan_id") is None and vlan_settings.get("allowed_vlans") is None:
            raise ValidationError("vlan_id or allowed_vlans is required")
        data = {"portId": str(port_id)}
        data.update(_form(vlan_settings, VLAN_PORT_FIELDS))
        result = await self.api_call("vlan_portEdit", data, "POST")
        logger.info(f"Configured VLAN settings on port {port_id} of {self.name}: {vlan_settings}")
        return result

    async def delete_vlan(self, vlan_id: int) -> Any:
        result = await self.api_call("vlan_delete", {"vlanId": str(vlan_id)}, "POST")
        logger.info(f"Deleted VLAN {vlan_id} on {self.name}")
        return result

    async def remove_port_from_vlan(self, port_id: str, vlan_id: int) -> Any:
        result = await self.api_call("vlan_portEdit", {
            "portId": str(port_id),
            "vlanId": str(vlan_id),
            "action": "remove",
        }, "POST")
        logger.info(f"Removed port {port_id} from VLAN {vlan_id} on {self.name}")
        return result

    # Backup/restore
    async def backup_configuration(self) -> dict:
        config = self._backup_header()
        config["system_info"] = await self.get_system_info()
        config["port_config"] = await self.get_port_status()
        config["vlan_config"] = await self.get_vlan_config()
        for key, read in (("lag_config", self.get_lag_config), ("mac_table", self.get_mac_table)):
            try:
                config[key] = await read()
            except DeviceError as e:
                # Firmware without LAG or MAC commands rejects them all
                config[key] = {ERRORS_KEY: {key: str(e)}}
        logger.info(f"Backed up {self.name} ({len(json.dumps(config, default=str))} bytes)")
        return config

    async def restore_configuration(self, data: dict) -> Any:
        result = await self.api_call(
            "config_restore",
            {"config": json.dumps(data, default=str)},
            "POST",
        )
        logger.info(f"Restored configuration on {self.name}")
        return result
