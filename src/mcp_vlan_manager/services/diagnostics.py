"""Network health reports, per-switch diagnostics and alerting."""
import asyncio
import logging
import re
import time
from collections import deque
from datetime import datetime, timezone
from typing import Any, Optional

from ..devices import HealthResult
from ..registry import SwitchRegistry

logger = logging.getLogger(__name__)

HISTORY_SIZE = 100

HEALTHY = "healthy"
DEGRADED = "degraded"
CRITICAL = "critical"

_PERCENT = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*%?\s*$")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def find_percentage(data: Any, token: str) -> Optional[float]:
    """First numeric value under a key containing ``token`` (e.g. "cpu").

    Accepts numbers and strings like "42" or "42%". Searches nested dicts.
    """
    if not isinstance(data, dict):
        return None
    for key, value in data.items():
        if token in str(key).lower() and not isinstance(value, (dict, list, bool)):
            if isinstance(value, (int, float)):
                return float(value)
            match = _PERCENT.match(str(value))
            if match:
                return float(match.group(1))
    for value in data.values():
        if isinstance(value, dict):
            found = find_percentage(value, token)
            if found is not None:
                return found
    return None


def overall_status(online: int, total: int) -> str:
    if online == total:
        return HEALTHY
    if online > 0:
        return DEGRADED
    return CRITICAL


class DiagnosticsService:
    """Health and diagnostic reads across the registry, with a short history."""

    def __init__(self, registry: SwitchRegistry):
        self.registry = registry
        self.thresholds = registry.inventory.monitoring.alert_thresholds
        self._history: dict[str, deque] = {}

    def _store(self, switch_id: str, kind: str, result: Any) -> None:
        history = self._history.setdefault(switch_id, deque(maxlen=HISTORY_SIZE))
        history.append({"timestamp": _now(), "type": kind, "result": result})

    async def switch_health(self, switch_id: str) -> HealthResult:
        """Health of one switch; a switch without a live client is unhealthy."""
        record = self.registry.get_record(switch_id)
        if record.client is None:
            return HealthResult(
                switch=record.config.name,
                host=record.config.host,
                authenticated=False,
                error=record.error or "not connected",
            )
        try:
            return await self.registry.call(switch_id, "health_check")
        except Exception as e:
            return HealthResult(
                switch=record.config.name,
                host=record.config.host,
                authenticated=False,
                error=str(e) or type(e).__name__,
            )

    async def network_health_check(self, include_topology: bool = True) -> dict:
        """Health of every configured switch with an overall verdict."""
        start = time.perf_counter()
        switch_ids = self.registry.switch_ids()
        healths = await asyncio.gather(*(self.switch_health(sid) for sid in switch_ids))

        switch_health = {}
        alerts = []
        for sid, health in zip(switch_ids, healths):
            record = self.registry.get_record(sid)
            switch_health[sid] = dict(
                health.to_dict(),
                switch_info={
                    "name": record.config.name,
                    "ip": record.config.host,
                    "type": record.config.type,
                    "model": record.config.model,
                },
            )
            self._store(sid, "health_check", health.to_dict())
            alerts.extend(self.check_for_alerts(sid, health))

        total = len(switch_ids)
        online = sum(1 for h in healths if h.authenticated)
        report = {
            "overall_health": {
                "status": overall_status(online, total),
                "total_switches": total,
                "online_switches": online,
                "offline_switches": total - online,
                "health_percentage": round(online / total * 100) if total else 0,
            },
            "switch_health": switch_health,
            "alerts": alerts,
            "timestamp": _now(),
            "duration_ms": round((time.perf_counter() - start) * 1000, 1),
        }
        if include_topology:
            report["topology"] = self.registry.get_network_topology()
        return report

    async def _read(self, switch_id: str, operation: str) -> Any:
        try:
            return await self.registry.call(switch_id, operation)
        except Exception as e:
            logger.warning(f"Diagnostic read {operation} failed for {switch_id}: {e}")
            return {"error": str(e) or type(e).__name__}

    async def switch_diagnostics(
        self,
        switch_id: str,
        include_ports: bool = True,
        include_vlans: bool = True,
    ) -> dict:
        """Every read a switch supports, each failing independently."""
        start = time.perf_counter()
        record = self.registry.get_record(switch_id)
        health = await self.switch_health(switch_id)

        results: dict[str, Any] = {"health": health.to_dict()}
        if health.authenticated:
            reads = ["get_system_info", "get_lag_config", "get_mac_table"]
            if include_ports:
                reads.append("get_port_status")
            if include_vlans:
                reads.append("get_vlan_config")
            data = await asyncio.gather(*(self._read(switch_id, op) for op in reads))
            names = {
                "get_system_info": "system_info",
                "get_port_status": "port_status",
                "get_vlan_config": "vlan_config",
                "get_lag_config": "lag_config",
                "get_mac_table": "mac_table",
            }
            for operation, value in zip(reads, data):
                # Families without LAG/MAC reads return nothing; leave them out
                if operation in ("get_lag_config", "get_mac_table") and not value:
                    continue
                results[names[operation]] = value

        diagnostics = {
            "switch_id": switch_id,
            "switch_info": {
                "name": record.config.name,
                "ip": record.config.host,
                "type": record.config.type,
                "model": record.config.model,
            },
            "results": results,
            "alerts": self.check_for_alerts(switch_id, health),
            "timestamp": _now(),
            "duration_ms": round((time.perf_counter() - start) * 1000, 1),
        }
        self._store(switch_id, "comprehensive", diagnostics)
        return diagnostics

    def check_for_alerts(self, switch_id: str, health: HealthResult) -> list[dict]:
        """Alerts for one health result: auth failure, CPU and memory use."""
        alerts = []
        if not health.authenticated:
            alerts.append({
                "severity": "critical",
                "type": "authentication_failure",
                "switch_id": switch_id,
                "message": f"Switch {switch_id} authentication failed",
            })

        if health.system_info:
            cpu = find_percentage(health.system_info, "cpu")
            limit = self.thresholds.get("cpu_usage")
            if cpu is not None and limit is not None and cpu > limit:
                alerts.append({
                    "severity": "warning",
                    "type": "high_cpu_usage",
                    "switch_id": switch_id,
                    "message": f"Switch {switch_id} CPU usage: {cpu:g}%",
                })
            memory = find_percentage(health.system_info, "mem")
            limit = self.thresholds.get("memory_usage")
            if memory is not None and limit is not None and memory > limit:
                alerts.append({
                    "severity": "warning",
                    "type": "high_memory_usage",
                    "switch_id": switch_id,
                    "message": f"Switch {switch_id} memory usage: {memory:g}%",
                })

        for alert in alerts:
            if alert["severity"] == "critical":
                logger.error(f"ALERT: {alert['message']}")
            else:
                logger.warning(f"ALERT: {alert['message']}")
        return alerts

    def get_diagnostic_history(self, switch_id: str, limit: int = 10) -> list[dict]:
        history = self._history.get(switch_id) or ()
        return list(history)[-limit:] if limit > 0 else []

    def service_status(self) -> dict:
        return {
            "switches_with_history": len(self._history),
            "total_diagnostics": sum(len(h) for h in self._history.values()),
        }
