"""Base device session client abstraction for managed switches."""
import asyncio
import logging
import os
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from ..errors import (
    AuthenticationError,
    DeviceConnectionError,
    DeviceError,
    DeviceTimeoutError,
)

logger = logging.getLogger(__name__)

# Key under which read operations report failed sub-queries
ERRORS_KEY = "_errors"

DEFAULT_SESSION_TTL = 30 * 60


@dataclass
class DeviceConfig:
    """Configuration for a managed switch."""
    type: str
    name: str
    host: str
    username: str
    password: Optional[str] = None
    password_env: str = "SWITCH_PASSWORD"
    model: str = ""
    mac: Optional[str] = None
    scheme: str = "http"
    timeout: float = 15
    operation_timeout: float = 60
    session_ttl: float = DEFAULT_SESSION_TTL
    verify_ssl: bool = True

    def get_password(self) -> str:
        """Get password from config or environment variable."""
        if self.password:
            return self.password
        return os.environ.get(self.password_env, "")

    @property
    def base_url(self) -> str:
        return f"{self.scheme}://{self.host}"


@dataclass
class SessionState:
    """Authentication state for one switch."""
    ttl: float = DEFAULT_SESSION_TTL
    authenticated: bool = False
    last_auth: Optional[float] = None  # time.monotonic()
    last_auth_at: Optional[datetime] = None

    def is_valid(self, now: Optional[float] = None) -> bool:
        if not self.authenticated or self.last_auth is None:
            return False
        now = time.monotonic() if now is None else now
        return (now - self.last_auth) <= self.ttl

    def mark_authenticated(self) -> None:
        self.authenticated = True
        self.last_auth = time.monotonic()
        self.last_auth_at = datetime.now(timezone.utc)

    def invalidate(self) -> None:
        self.authenticated = False
        self.last_auth = None


@dataclass
class HealthResult:
    """Outcome of a health check. Never raised, always returned."""
    switch: str
    host: str
    authenticated: bool
    last_auth_time: Optional[str] = None
    system_info: dict = field(default_factory=dict)
    port_status: dict = field(default_factory=dict)
    error: Optional[str] = None
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> dict:
        return asdict(self)


class SwitchClient(ABC):
    """Abstract session client for one physical switch.

    Subclasses implement the vendor protocol; everything above this layer
    talks to switches only through these methods.
    """

    family: str = ""
    # get_vlan_config sub-queries that carry port memberships
    MEMBERSHIP_SOURCES: tuple[str, ...] = ()

    def __init__(
        self,
        device_id: str,
        config: DeviceConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.device_id = device_id
        self.config = config
        self.session = SessionState(ttl=config.session_ttl)
        self._session_lock = asyncio.Lock()
        self._http = httpx.AsyncClient(
            base_url=config.base_url,
            timeout=httpx.Timeout(config.timeout),
            verify=config.verify_ssl,
            transport=transport,
            headers=self.default_headers(),
        )

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def host(self) -> str:
        return self.config.host

    @property
    def is_authenticated(self) -> bool:
        return self.session.authenticated

    def default_headers(self) -> dict[str, str]:
        return {"User-Agent": "MCP-VLAN-Manager/1.0"}

    # Session management
    @abstractmethod
    async def authenticate(self) -> bool:
        """Establish a session. Raises AuthenticationError on rejection."""
        pass

    async def ensure_session(self) -> None:
        """Re-authenticate if the session is missing or expired.

        Concurrent callers share one login: the validity check is repeated
        under the lock, so late arrivals see the fresh session.
        """
        if self.session.is_valid():
            return
        async with self._session_lock:
            if self.session.is_valid():
                return
            await self.authenticate()

    def invalidate_session(self) -> None:
        self.session.invalidate()

    async def close(self) -> None:
        """Drop the session and release the HTTP client."""
        logger.info(f"Cleaning up {self.family} client for {self.name}")
        self.session.invalidate()
        await self._http.aclose()

    # HTTP plumbing
    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Issue one request, translating transport and auth failures."""
        try:
            resp = await self._http.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise DeviceTimeoutError(f"{self.device_id}: {method} {url} timed out") from e
        except httpx.TransportError as e:
            raise DeviceConnectionError(f"{self.device_id}: {method} {url} failed: {e}") from e

        logger.debug(f"{self.family} {method} {url} -> {resp.status_code}")
        if resp.status_code in (401, 403):
            self.session.invalidate()
            raise AuthenticationError(
                f"{self.device_id}: {method} {url} rejected with HTTP {resp.status_code}"
            )
        if resp.status_code != 200:
            raise DeviceError(f"{self.device_id}: {method} {url} failed: HTTP {resp.status_code}")
        return resp

    async def _collect(self, keys: list[str], fetch, required: tuple[str, ...] = ()) -> dict:
        """Run one fetch per sub-query and merge whatever succeeds.

        Empty results are dropped. Failures are logged and listed under
        ERRORS_KEY instead of aborting the whole read, unless every
        sub-query failed or one of ``required`` did; then the error is raised.
        """
        collected: dict[str, Any] = {}
        errors: dict[str, str] = {}
        failures: dict[str, Exception] = {}
        for key in keys:
            try:
                data = await fetch(key)
            except Exception as e:
                logger.warning(f"Failed to get {key} for {self.name}: {e}")
                errors[key] = str(e)
                failures[key] = e
                continue
            if data:
                collected[key] = data

        missing = [key for key in required if key in failures]
        if missing:
            raise failures[missing[0]]
        if keys and len(failures) == len(keys):
            raise failures[keys[-1]]
        if errors:
            collected[ERRORS_KEY] = errors
        return collected

    # Reads (partial results, never raise for a single sub-query)
    @abstractmethod
    async def get_system_info(self) -> dict:
        pass

    @abstractmethod
    async def get_port_status(self) -> dict:
        pass

    @abstractmethod
    async def get_vlan_config(self) -> dict:
        pass

    # Mutations (raise on failure)
    @abstractmethod
    async def configure_port(self, port_id: str, settings: dict) -> Any:
        pass

    @abstractmethod
    async def create_vlan(self, vlan_id: int, name: str, description: str = "") -> Any:
        pass

    @abstractmethod
    async def configure_vlan_port(self, port_id: str, vlan_settings: dict) -> Any:
        pass

    @abstractmethod
    async def delete_vlan(self, vlan_id: int) -> Any:
        pass

    @abstractmethod
    async def remove_port_from_vlan(self, port_id: str, vlan_id: int) -> Any:
        pass

    @abstractmethod
    async def backup_configuration(self) -> dict:
        pass

    @abstractmethod
    async def restore_configuration(self, data: dict) -> Any:
        pass

    # Optional extras; families without them report empty data
    async def get_lag_config(self) -> dict:
        return {}

    async def get_mac_table(self) -> dict:
        return {}

    def unread_membership_sources(self, vlan_config: dict) -> list[str]:
        """Membership sub-queries that failed in a get_vlan_config result."""
        failed = vlan_config.get(ERRORS_KEY) if isinstance(vlan_config, dict) else None
        return [key for key in self.MEMBERSHIP_SOURCES if key in (failed or {})]

    async def health_check(self) -> HealthResult:
        """Authenticated flag plus a best-effort system/port read."""
        try:
            await self.ensure_session()
            system_info = await self.get_system_info()
            port_status = await self.get_port_status()
            return HealthResult(
                switch=self.name,
                host=self.host,
                authenticated=self.session.authenticated,
                last_auth_time=_iso(self.session.last_auth_at),
                system_info=system_info,
                port_status=port_status,
            )
        except Exception as e:
            logger.error(f"Health check failed for {self.name}: {e}")
            return HealthResult(
                switch=self.name,
                host=self.host,
                authenticated=False,
                last_auth_time=_iso(self.session.last_auth_at),
                error=str(e),
            )

    def _backup_header(self) -> dict:
        return {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "switch": self.name,
            "ip": self.host,
        }

    # Context manager support
    async def __aenter__(self):
        await self.ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None
