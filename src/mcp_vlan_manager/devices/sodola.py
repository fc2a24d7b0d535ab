"""Sodola switch client (SL-SWTGW218AS and similar).

These switches only offer an HTML management UI. Reads scrape data tables
from a set of candidate pages; writes are plain form POSTs. Page names vary
between firmware builds, so several candidates are tried for each read.
"""
import json
import logging
from typing import Any, Optional

import httpx

from .base import SwitchClient
from .html_scan import ScannedPage, extract_key_values, extract_records, scan_html
from ..errors import AuthenticationError, DeviceError, SwitchManagerError, ValidationError
from ..utils.logging_config import timed

logger = logging.getLogger(__name__)


def _form_value(value: Any) -> str:
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (list, tuple, set)):
        return ",".join(str(v) for v in value)
    return str(value)


class SodolaClient(SwitchClient):
    """Sodola switch handler using HTML scraping and form submission."""

    family = "sodola"

    LOGIN_PAGE = "/login.html"
    LOGIN_ACTION = "/login"

    SYSTEM_PAGES = ["/system.html", "/admin.html", "/management.html", "/"]
    PORT_PAGES = ["/port.html", "/port_config.html", "/interface.html", "/ports.html"]
    VLAN_PAGES = ["/vlan.html", "/vlan_config.html", "/vlan_membership.html"]
    BACKUP_PAGES = ["/backup.html", "/config_backup.html", "/export.html"]
    RESTORE_PAGES = ["/restore.html", "/config_restore.html", "/import.html"]

    PORT_CONFIG_PAGE = "/port_config.html"
    VLAN_CONFIG_PAGE = "/vlan_config.html"
    VLAN_MEMBERSHIP_PAGE = "/vlan_membership.html"

    SYSTEM_KEYWORDS = ("model", "version", "mac", "serial", "uptime", "cpu", "memory")
    PORT_TOKENS = ("port", "interface")
    VLAN_TOKENS = ("vlan", "vid")
    DOWNLOAD_HINTS = ("backup", "config", "export")

    def default_headers(self) -> dict[str, str]:
        headers = super().default_headers()
        headers.update({
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.5",
        })
        return headers

    @staticmethod
    def _looks_authenticated(page: ScannedPage) -> bool:
        return "Switch" in page.title or page.has_class("main-content") or page.has_frames

    @timed("authenticate")
    async def authenticate(self) -> bool:
        """Try HTTP Basic auth first, then fall back to the login form."""
        logger.info(f"Authenticating to Sodola switch {self.name} ({self.host})")
        self.session.invalidate()
        password = self.config.get_password()

        self._http.auth = httpx.BasicAuth(self.config.username, password)
        try:
            resp = await self._request("GET", "/")
            if self._looks_authenticated(scan_html(resp.text)):
                self.session.mark_authenticated()
                logger.info(f"Authenticated to {self.name} via Basic Auth")
                return True
        except AuthenticationError:
            logger.debug(f"Basic Auth rejected by {self.name}, trying form login")
            self._http.auth = None
        except DeviceError as e:
            logger.debug(f"Basic Auth check failed on {self.name}: {e}")

        try:
            await self._form_login(password)
        except SwitchManagerError as e:
            logger.error(f"Authentication failed for {self.name}: {e}")
            raise
        return True

    async def _form_login(self, password: str) -> None:
        resp = await self._request("GET", self.LOGIN_PAGE)
        page = scan_html(resp.text)
        if not page.forms:
            raise AuthenticationError(f"{self.device_id}: login form not found")

        data = {"username": self.config.username, "password": password}
        for name, value in page.forms[0].hidden_fields().items():
            data.setdefault(name, value)

        resp = await self._request(
            "POST",
            self.LOGIN_ACTION,
            data=data,
            headers={"Referer": f"{self.config.base_url}{self.LOGIN_PAGE}"},
        )
        result = scan_html(resp.text)
        if "Login" in result.title or result.has_class("error"):
            raise AuthenticationError(f"{self.device_id}: form-based login failed")

        self.session.mark_authenticated()
        logger.info(f"Authenticated to {self.name} via form login")

    async def get_page(self, path: str) -> str:
        """Fetch a page on an authenticated session."""
        await self.ensure_session()
        resp = await self._request("GET", path)
        return resp.text

    async def submit_form(
        self,
        path: str,
        data: Optional[dict] = None,
        files: Optional[dict] = None,
    ) -> dict:
        """POST a form and check the answer page for an error marker."""
        await self.ensure_session()
        resp = await self._request(
            "POST",
            path,
            data=data,
            files=files,
            headers={"Referer": f"{self.config.base_url}{path}"},
        )
        page = scan_html(resp.text)
        if page.has_class("error"):
            raise DeviceError(
                f"{self.device_id}: form submission to {path} was rejected",
                details={"path": path, "title": page.title},
            )
        return {"path": path, "title": page.title}

    async def _scan(self, path: str) -> ScannedPage:
        return scan_html(await self.get_page(path))

    async def _system_page(self, path: str) -> dict:
        return extract_key_values(await self._scan(path), self.SYSTEM_KEYWORDS)

    async def _port_page(self, path: str) -> list:
        return extract_records(await self._scan(path), self.PORT_TOKENS)

    async def _vlan_page(self, path: str) -> list:
        return extract_records(await self._scan(path), self.VLAN_TOKENS)

    # Reads
    async def get_system_info(self) -> dict:
        return await self._collect(self.SYSTEM_PAGES, self._system_page)

    async def get_port_status(self) -> dict:
        return await self._collect(self.PORT_PAGES, self._port_page)

    async def get_vlan_config(self) -> dict:
        return await self._collect(self.VLAN_PAGES, self._vlan_page)

    # Mutations
    async def configure_port(self, port_id: str, settings: dict) -> Any:
        page = await self._scan(self.PORT_CONFIG_PAGE)
        if not page.forms:
            raise DeviceError(f"{self.device_id}: port configuration form not found")
        data = {"port": str(port_id)}
        data.update({k: _form_value(v) for k, v in settings.items() if v is not None})
        result = await self.submit_form(self.PORT_CONFIG_PAGE, data)
        logger.info(f"Configured port {port_id} on {self.name}: {settings}")
        return result

    async def create_vlan(self, vlan_id: int, name: str, description: str = "") -> Any:
        result = await self.submit_form(self.VLAN_CONFIG_PAGE, {
            "vlan_id": str(vlan_id),
            "vlan_name": name,
            "description": description,
            "action": "create",
        })
        logger.info(f"Created VLAN {vlan_id} ({name}) on {self.name}")
        return result

    async def configure_vlan_port(self, port_id: str, vlan_settings: dict) -> Any:
        vlan_id = vlan_settings.get("vlan_id")
        allowed = vlan_settings.get("allowed_vlans")
        if vlan_id is None and allowed is None:
            raise ValidationError("vlan_id or allowed_vlans is required")

        data = {"port": str(port_id), "tagged": _form_value(bool(vlan_settings.get("tagged")))}
        if vlan_id is not None:
            data["vlan_id"] = str(vlan_id)
        for key in ("pvid", "mode", "allowed_vlans", "native_vlan", "action"):
            if vlan_settings.get(key):
                data[key] = _form_value(vlan_settings[key])

        result = await self.submit_form(self.VLAN_MEMBERSHIP_PAGE, data)
        logger.info(f"Configured VLAN settings on port {port_id} of {self.name}: {vlan_settings}")
        return result

    async def delete_vlan(self, vlan_id: int) -> Any:
        result = await self.submit_form(self.VLAN_CONFIG_PAGE, {
            "vlan_id": str(vlan_id),
            "action": "delete",
        })
        logger.info(f"Deleted VLAN {vlan_id} on {self.name}")
        return result

    async def remove_port_from_vlan(self, port_id: str, vlan_id: int) -> Any:
        result = await self.submit_form(self.VLAN_MEMBERSHIP_PAGE, {
            "port": str(port_id),
            "vlan_id": str(vlan_id),
            "action": "remove",
        })
        logger.info(f"Removed port {port_id} from VLAN {vlan_id} on {self.name}")
        return result

    # Backup/restore
    def _download_link(self, page: ScannedPage) -> Optional[str]:
        for href in page.links:
            if any(hint in href.lower() for hint in self.DOWNLOAD_HINTS):
                return href
        return None

    async def backup_configuration(self) -> dict:
        """Download the switch's own config file if offered, else scrape pages."""
        config = self._backup_header()
        for endpoint in self.BACKUP_PAGES:
            try:
                link = self._download_link(await self._scan(endpoint))
                if not link:
                    continue
                resp = await self._request("GET", link)
            except SwitchManagerError as e:
                logger.debug(f"Backup endpoint {endpoint} failed for {self.name}: {e}")
                continue
            config["backup_type"] = "file"
            config["backup_source"] = endpoint
            config["config_file"] = resp.text
            break
        else:
            config["backup_type"] = "comprehensive"

        config["system_info"] = await self.get_system_info()
        config["port_config"] = await self.get_port_status()
        config["vlan_config"] = await self.get_vlan_config()
        logger.info(
            f"Backed up {self.name} ({config['backup_type']}, "
            f"{len(json.dumps(config, default=str))} bytes)"
        )
        return config

    async def restore_configuration(self, data: dict) -> Any:
        """Upload the config as a file to the first restore page with a file input."""
        last_error = None
        for path in self.RESTORE_PAGES:
            try:
                page = await self._scan(path)
                if not page.has_file_input:
                    continue
                upload = json.dumps(data, default=str)
                result = await self.submit_form(
                    path,
                    files={"config_file": ("config.json", upload, "application/json")},
                )
            except SwitchManagerError as e:
                logger.debug(f"Restore page {path} failed for {self.name}: {e}")
                last_error = e
                continue
            logger.info(f"Restored configuration on {self.name} via {path}")
            return result

        message = f"{self.device_id}: no working restore method found"
        if last_error:
            message = f"{message} (last error: {last_error})"
        raise DeviceError(message)
