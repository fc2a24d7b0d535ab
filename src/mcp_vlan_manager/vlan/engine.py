"""VLAN orchestration across all managed switches.

Multi-switch operations follow a fixed protocol per call:

    create: validate ID -> availability check on every target -> fan out
            create -> on any failure, delete from the targets that succeeded
    delete: validate ID -> (unless forced) dependency check -> fan out delete

Conflicts and dependencies abort before anything is changed. Rollback is
best effort: a rollback that fails itself is reported, not retried.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from .models import MAX_VLAN_ID, MIN_VLAN_ID, VLAN
from .parsing import as_vlan_id, parse_vlan_config
from ..errors import (
    ConflictError,
    DependencyError,
    DeviceError,
    NotFoundError,
    PartialFailureError,
    SwitchManagerError,
    UnavailableError,
    ValidationError,
)
from ..registry import SwitchRegistry
from ..utils.audit_log import log_operation

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class VLANOrchestrator:
    """Create, delete, audit and map VLANs across the switch registry."""

    def __init__(self, registry: SwitchRegistry):
        self.registry = registry
        self.inventory = registry.inventory

    # === Validation ===

    def _coerce_vlan_id(self, vlan_id: Any) -> int:
        """Integer VLAN ID inside 1-4094; reserved IDs are allowed."""
        if isinstance(vlan_id, bool):
            vlan_id = None
        value = as_vlan_id(vlan_id)
        if value is None or not MIN_VLAN_ID <= value <= MAX_VLAN_ID:
            raise ValidationError(
                f"Invalid VLAN ID: {vlan_id}. Must be between {MIN_VLAN_ID} and {MAX_VLAN_ID}",
                details={"vlan_id": vlan_id},
            )
        return value

    def validate_vlan_id(self, vlan_id: Any) -> int:
        """VLAN ID usable for allocation: in range and not reserved."""
        value = self._coerce_vlan_id(vlan_id)
        if self.inventory.is_reserved_vlan(value):
            raise ValidationError(
                f"VLAN ID {value} is reserved and cannot be used",
                details={"vlan_id": value, "reserved": self.inventory.reserved_vlans},
            )
        return value

    def _resolve(self, targets: Optional[Iterable[str]]) -> list[str]:
        switches = self.registry.resolve_targets(targets)
        if not switches:
            raise UnavailableError("No target switches available")
        return switches

    # === Reads ===

    async def _read_vlans(self, switch_id: str, include_details: bool = True) -> list[VLAN]:
        vlan_config = await self.registry.call(switch_id, "get_vlan_config")
        return parse_vlan_config(switch_id, vlan_config, include_details)

    async def _scan(self, switch_ids: list[str], include_details: bool) -> dict[str, Any]:
        """VLAN lists per switch; a failed read maps to its exception."""
        outcomes = await asyncio.gather(
            *(self._read_vlans(sid, include_details) for sid in switch_ids),
            return_exceptions=True,
        )
        return dict(zip(switch_ids, outcomes))

    async def list_vlans(self, switch_id: Optional[str] = None, include_details: bool = True) -> dict:
        """VLANs per switch (one switch, or every online switch)."""
        if switch_id:
            self.registry.get_record(switch_id)
            switch_ids = [switch_id]
        else:
            switch_ids = self.registry.online_switch_ids()

        listing = {}
        for sid, outcome in (await self._scan(switch_ids, include_details)).items():
            if isinstance(outcome, BaseException):
                listing[sid] = {
                    "success": False,
                    "error": str(outcome) or type(outcome).__name__,
                    "error_type": getattr(outcome, "kind", type(outcome).__name__),
                }
            else:
                listing[sid] = {
                    "success": True,
                    "vlans": [v.to_dict(include_details) for v in outcome],
                    "timestamp": _now(),
                }
        return listing

    def template_for(self, vlan_id: int) -> Optional[str]:
        for key, template in self.inventory.get_templates().items():
            if template.contains(vlan_id):
                return key
        return None

    async def get_vlan_info(self, vlan_id: Any, switch_id: Optional[str] = None) -> dict:
        """One VLAN across switches, with a name-consistency flag."""
        vlan_id = self._coerce_vlan_id(vlan_id)
        listing = await self.list_vlans(switch_id, include_details=True)

        found = {}
        for sid, data in listing.items():
            if not data["success"]:
                continue
            for vlan in data["vlans"]:
                if vlan["id"] == vlan_id:
                    found[sid] = vlan
        if not found:
            raise NotFoundError(f"VLAN {vlan_id} not found", details={"vlan_id": vlan_id})

        names = {v["name"] for v in found.values() if v["name"]}
        return {
            "vlan_id": vlan_id,
            "switches": found,
            "template": self.template_for(vlan_id),
            "standard": self.inventory.standard_vlans.get(vlan_id),
            "summary": {
                "total_switches": len(found),
                "consistent": len(names) <= 1,
            },
        }

    # === Create / delete ===

    async def _check_availability(self, vlan_id: int, switch_ids: list[str]) -> None:
        conflicts = []
        unreadable = {}
        for sid, outcome in (await self._scan(switch_ids, include_details=False)).items():
            if isinstance(outcome, BaseException):
                logger.warning(f"Could not check VLAN availability on {sid}: {outcome}")
                unreadable[sid] = str(outcome) or type(outcome).__name__
            elif any(v.id == vlan_id for v in outcome):
                conflicts.append(sid)
        if conflicts:
            raise ConflictError(
                f"VLAN {vlan_id} already exists on {', '.join(conflicts)}",
                details={"vlan_id": vlan_id, "switches": conflicts},
            )
        if unreadable:
            raise UnavailableError(
                f"Cannot check VLAN {vlan_id} availability on {', '.join(unreadable)}",
                details={"vlan_id": vlan_id, "switches": unreadable},
            )

    async def _read_memberships(self, switch_id: str) -> list[VLAN]:
        """VLANs with ports; raises when the membership data is incomplete."""
        vlan_config = await self.registry.call(switch_id, "get_vlan_config")
        unread = self.registry.get_client(switch_id).unread_membership_sources(vlan_config)
        if unread:
            raise DeviceError(
                f"{switch_id}: port memberships could not be read ({', '.join(unread)})",
                details={"switch_id": switch_id, "unread": unread},
            )
        return parse_vlan_config(switch_id, vlan_config, include_details=True)

    async def _check_dependencies(self, vlan_id: int, switch_ids: list[str]) -> None:
        outcomes = await asyncio.gather(
            *(self._read_memberships(sid) for sid in switch_ids), return_exceptions=True
        )
        dependencies = {}
        unverified = {}
        for sid, outcome in zip(switch_ids, outcomes):
            if isinstance(outcome, BaseException):
                logger.warning(f"Could not check VLAN dependencies on {sid}: {outcome}")
                unverified[sid] = str(outcome) or type(outcome).__name__
                continue
            for vlan in outcome:
                if vlan.id == vlan_id and vlan.ports:
                    dependencies[sid] = [p.port for p in vlan.ports]
        if dependencies:
            summary = ", ".join(
                f"{len(ports)} port assignment(s) on {sid}" for sid, ports in dependencies.items()
            )
            raise DependencyError(
                f"VLAN {vlan_id} has dependencies: {summary}",
                details={"vlan_id": vlan_id, "ports": dependencies},
            )
        if unverified:
            raise DependencyError(
                f"VLAN {vlan_id} dependencies could not be verified on {', '.join(unverified)}; "
                "use force to delete anyway",
                details={"vlan_id": vlan_id, "unverified": unverified},
            )

    async def _rollback_create(self, vlan_id: int, succeeded: list[str]) -> dict:
        if not succeeded:
            return {}
        logger.warning(f"Rolling back VLAN {vlan_id} creation on {', '.join(succeeded)}")
        rollback = await self.registry.bulk_operation("delete_vlan", succeeded, vlan_id)
        for sid, result in rollback.items():
            if result["success"]:
                logger.info(f"Rolled back VLAN {vlan_id} from {sid}")
            else:
                logger.error(f"Failed to roll back VLAN {vlan_id} from {sid}: {result['error']}")
        return rollback

    async def create_vlan(
        self,
        vlan_id: Any,
        vlan_name: str,
        targets: Optional[Iterable[str]] = None,
        description: str = "",
    ) -> dict:
        """Create a VLAN on every target or, failing that, on none.

        Raises:
            ValidationError: bad or reserved ID, missing name
            ConflictError: a target already has the VLAN (nothing changed)
            PartialFailureError: some creates failed; succeeded targets were
                rolled back as far as possible
        """
        vlan_id = self.validate_vlan_id(vlan_id)
        if not vlan_name:
            raise ValidationError("vlan_name is required")
        switches = self._resolve(targets)
        params = {"vlan_id": vlan_id, "vlan_name": vlan_name, "description": description}

        logger.info(f"Creating VLAN {vlan_id} ({vlan_name}) on {', '.join(switches)}")
        await self._check_availability(vlan_id, switches)

        results = await self.registry.bulk_operation(
            "create_vlan", switches, vlan_id, vlan_name, description
        )
        failed = [sid for sid, r in results.items() if not r["success"]]
        if failed:
            succeeded = [sid for sid, r in results.items() if r["success"]]
            rollback = await self._rollback_create(vlan_id, succeeded)
            rollback_failed = [sid for sid, r in rollback.items() if not r["success"]]

            message = f"VLAN {vlan_id} creation failed on {', '.join(failed)}"
            if succeeded:
                message += f"; rolled back from {', '.join(s for s in succeeded if s not in rollback_failed) or 'none'}"
            if rollback_failed:
                message += (
                    f"; rollback failed on {', '.join(rollback_failed)}, "
                    "network may be inconsistent"
                )
            log_operation("create_vlan", switches, params, success=False, error=message)
            raise PartialFailureError(message, results=results, failed=failed, rollback=rollback)

        log_operation("create_vlan", switches, params)
        logger.info(f"Created VLAN {vlan_id} on {len(switches)} switch(es)")
        return {
            "success": True,
            "vlan_id": vlan_id,
            "vlan_name": vlan_name,
            "description": description,
            "switches": switches,
            "results": results,
        }

    async def delete_vlan(
        self,
        vlan_id: Any,
        targets: Optional[Iterable[str]] = None,
        force: bool = False,
    ) -> dict:
        """Delete a VLAN from every target.

        Without ``force`` a VLAN that still has port memberships anywhere is
        left alone (DependencyError), and any failed delete raises
        PartialFailureError. With ``force`` failures are returned under
        ``errors``. Nothing is rolled back either way.
        """
        vlan_id = self.validate_vlan_id(vlan_id)
        switches = self._resolve(targets)
        params = {"vlan_id": vlan_id, "force": force}

        logger.info(f"Deleting VLAN {vlan_id} from {', '.join(switches)} (force={force})")
        if not force:
            await self._check_dependencies(vlan_id, switches)

        results = await self.registry.bulk_operation("delete_vlan", switches, vlan_id)
        failed = [sid for sid, r in results.items() if not r["success"]]
        errors = [f"{sid}: {results[sid]['error']}" for sid in failed]

        if failed and not force:
            message = f"VLAN {vlan_id} deletion failed: {', '.join(errors)}"
            log_operation("delete_vlan", switches, params, success=False, error=message)
            raise PartialFailureError(message, results=results, failed=failed)

        log_operation(
            "delete_vlan", switches, params,
            success=not failed, error="; ".join(errors) or None,
        )
        response = {
            "success": not failed,
            "vlan_id": vlan_id,
            "switches": switches,
            "force": force,
            "results": results,
        }
        if errors:
            response["errors"] = errors
        return response

    # === Single-switch port operations ===

    async def _port_operation(self, audit_name: str, switch_id: str, params: dict, operation: str, *args: Any) -> dict:
        try:
            result = await self.registry.call(switch_id, operation, *args)
        except Exception as e:
            log_operation(audit_name, switch_id, params, success=False, error=str(e))
            raise
        log_operation(audit_name, switch_id, params)
        return {"success": True, "switch_id": switch_id, **params, "result": result}

    async def assign_port_to_vlan(self, switch_id: str, port_id: str, vlan_id: Any, tagged: bool = False) -> dict:
        """Tagged or untagged membership; untagged also sets the port's PVID."""
        vlan_id = self._coerce_vlan_id(vlan_id)
        settings = {"vlan_id": vlan_id, "tagged": bool(tagged), "pvid": None if tagged else vlan_id}
        result = await self._port_operation(
            "assign_port_to_vlan", switch_id,
            {"port_id": port_id, "vlan_id": vlan_id, "tagged": bool(tagged)},
            "configure_vlan_port", port_id, settings,
        )
        logger.info(f"Assigned port {port_id} to VLAN {vlan_id} on {switch_id} (tagged: {tagged})")
        return result

    async def remove_port_from_vlan(self, switch_id: str, port_id: str, vlan_id: Any) -> dict:
        vlan_id = self._coerce_vlan_id(vlan_id)
        result = await self._port_operation(
            "remove_port_from_vlan", switch_id,
            {"port_id": port_id, "vlan_id": vlan_id},
            "remove_port_from_vlan", port_id, vlan_id,
        )
        logger.info(f"Removed port {port_id} from VLAN {vlan_id} on {switch_id}")
        return result

    async def set_port_pvid(self, switch_id: str, port_id: str, vlan_id: Any) -> dict:
        vlan_id = self._coerce_vlan_id(vlan_id)
        result = await self._port_operation(
            "set_port_pvid", switch_id,
            {"port_id": port_id, "vlan_id": vlan_id},
            "configure_vlan_port", port_id, {"vlan_id": vlan_id, "pvid": vlan_id},
        )
        logger.info(f"Set PVID {vlan_id} on port {port_id} for {switch_id}")
        return result

    async def configure_trunk_port(
        self,
        switch_id: str,
        port_id: str,
        allowed_vlans: Iterable[Any],
        native_vlan: Any = 1,
    ) -> dict:
        if isinstance(allowed_vlans, (str, bytes)) or not allowed_vlans:
            raise ValidationError("allowed_vlans must be a non-empty list of VLAN IDs")
        allowed = [self._coerce_vlan_id(v) for v in allowed_vlans]
        native = self._coerce_vlan_id(native_vlan)
        settings = {"mode": "trunk", "allowed_vlans": allowed, "native_vlan": native, "tagged": True}
        result = await self._port_operation(
            "configure_trunk_port", switch_id,
            {"port_id": port_id, "allowed_vlans": allowed, "native_vlan": native},
            "configure_vlan_port", port_id, settings,
        )
        logger.info(
            f"Configured trunk port {port_id} on {switch_id} with VLANs: "
            f"{', '.join(str(v) for v in allowed)}"
        )
        return result

    # === Network-wide analysis ===

    async def validate_vlan_consistency(self, vlan_id: Any = None) -> dict:
        """Group VLANs by ID across switches and flag name/description drift."""
        if vlan_id is not None:
            vlan_id = self._coerce_vlan_id(vlan_id)
        listing = await self.list_vlans(None, include_details=True)

        summary: dict[int, dict] = {}
        for sid, data in listing.items():
            if not data["success"]:
                continue
            for vlan in data["vlans"]:
                if vlan_id is not None and vlan["id"] != vlan_id:
                    continue
                entry = summary.setdefault(vlan["id"], {
                    "id": vlan["id"],
                    "names": [],
                    "descriptions": [],
                    "switches": [],
                    "port_count": 0,
                })
                if vlan["name"] and vlan["name"] not in entry["names"]:
                    entry["names"].append(vlan["name"])
                description = vlan.get("description") or ""
                if description not in entry["descriptions"]:
                    entry["descriptions"].append(description)
                entry["switches"].append(sid)
                entry["port_count"] += len(vlan.get("ports") or [])

        inconsistencies = []
        for vid in sorted(summary):
            entry = summary[vid]
            if len(entry["names"]) > 1:
                inconsistencies.append({
                    "type": "name_mismatch",
                    "vlan_id": vid,
                    "issue": f"VLAN {vid} has different names across switches",
                    "details": list(entry["names"]),
                })
            if len(entry["descriptions"]) > 1:
                inconsistencies.append({
                    "type": "description_mismatch",
                    "vlan_id": vid,
                    "issue": f"VLAN {vid} has different descriptions across switches",
                    "details": list(entry["descriptions"]),
                })

        unreachable = [sid for sid, data in listing.items() if not data["success"]]
        # Offline switches were never read
        unreachable += [sid for sid in self.registry.switch_ids() if sid not in listing]
        consistent = not inconsistencies
        log_operation(
            "validate_vlan_consistency", list(listing),
            {"vlan_id": vlan_id, "consistent": consistent, "inconsistencies": len(inconsistencies)},
        )
        return {
            "consistent": consistent,
            "inconsistencies": inconsistencies,
            "vlan_summary": {vid: summary[vid] for vid in sorted(summary)},
            "unreachable_switches": unreachable,
            "summary": {
                "total_vlans": len(summary),
                "inconsistencies_found": len(inconsistencies),
                "switches_analyzed": len(listing),
            },
        }

    async def get_vlan_topology_map(self, vlan_id: Any) -> dict:
        """VLAN presence per switch laid over the configured uplink graph."""
        vlan_id = self._coerce_vlan_id(vlan_id)
        listing = await self.list_vlans(None, include_details=True)

        switches = {}
        for sid, data in listing.items():
            vlan = None
            if data["success"]:
                vlan = next((v for v in data["vlans"] if v["id"] == vlan_id), None)
            switches[sid] = {
                "reachable": data["success"],
                "has_vlan": vlan is not None,
                "vlan_info": vlan,
                "role": self.registry.switch_role(sid),
            }

        def has_vlan(sid: str) -> bool:
            return sid in switches and switches[sid]["has_vlan"]

        connections = []
        for uplink in self.inventory.uplinks.values():
            for link_role, core, port in uplink.core_links():
                connections.append({
                    "name": uplink.name,
                    "link": link_role,
                    "from": uplink.switch,
                    "to": core,
                    "port": port,
                    "vlan_propagated": has_vlan(uplink.switch) and has_vlan(core),
                })

        propagation_paths = []
        for link in self.inventory.inter_core_links.values():
            for a, b in zip(link.switches, link.switches[1:]):
                connected = has_vlan(a) and has_vlan(b)
                propagation_paths.append({
                    "name": link.name,
                    "path": f"{a} <-> {b}",
                    "type": "inter_core",
                    "status": "connected" if connected else "not_propagated",
                })

        return {
            "vlan_id": vlan_id,
            "switches": switches,
            "connections": connections,
            "propagation_paths": propagation_paths,
            "summary": {
                "switches_with_vlan": sum(1 for s in switches.values() if s["has_vlan"]),
                "propagated_connections": sum(1 for c in connections if c["vlan_propagated"]),
                "total_connections": len(connections),
            },
        }

    # === Composite workflows ===

    async def deploy_vlan_network_wide(self, vlan_config: dict) -> dict:
        """Create a VLAN everywhere, assign ports, and trunk it over the uplinks."""
        if not isinstance(vlan_config, dict):
            raise ValidationError("vlan_config is required")
        vlan_id = vlan_config.get("vlan_id")
        vlan_name = vlan_config.get("vlan_name")
        if vlan_id is None or not vlan_name:
            raise ValidationError("vlan_config must include vlan_id and vlan_name")

        creation = await self.create_vlan(
            vlan_id, vlan_name, None, vlan_config.get("description", "")
        )
        vlan_id = creation["vlan_id"]

        port_results = []
        for assignment in vlan_config.get("port_assignments") or []:
            switch_id = assignment.get("switch_id")
            port_id = assignment.get("port_id")
            try:
                result = await self.assign_port_to_vlan(
                    switch_id, port_id, vlan_id, assignment.get("tagged", False)
                )
                port_results.append({"switch_id": switch_id, "port_id": port_id, "success": True, "result": result})
            except SwitchManagerError as e:
                port_results.append({"switch_id": switch_id, "port_id": port_id, "success": False, "error": str(e)})

        trunk_results = []
        seen = set()
        for uplink in self.inventory.uplinks.values():
            for _, core, port in uplink.core_links():
                if not port or (core, port) in seen or core not in creation["switches"]:
                    continue
                seen.add((core, port))
                try:
                    result = await self.configure_trunk_port(core, port, [vlan_id], 1)
                    trunk_results.append({"connection": uplink.name, "switch": core, "port": port, "success": True, "result": result})
                except SwitchManagerError as e:
                    trunk_results.append({"connection": uplink.name, "switch": core, "port": port, "success": False, "error": str(e)})

        return {
            "success": all(r["success"] for r in port_results + trunk_results),
            "vlan_creation": creation,
            "port_assignments": port_results,
            "trunk_configuration": trunk_results,
            "summary": {
                "vlan_id": vlan_id,
                "vlan_name": vlan_name,
                "switches_configured": len(creation["switches"]),
                "ports_configured": sum(1 for r in port_results if r["success"]),
                "trunks_configured": sum(1 for r in trunk_results if r["success"]),
            },
        }

    async def _sync_to(self, vlan: VLAN, target: str) -> dict:
        existed = False
        try:
            await self.create_vlan(vlan.id, vlan.name, [target], vlan.description)
        except ConflictError:
            existed = True
        except SwitchManagerError as e:
            return {"switch": target, "success": False, "error": str(e)}

        port_errors = []
        for port in vlan.ports:
            try:
                await self.assign_port_to_vlan(target, port.port, vlan.id, port.tagged)
            except SwitchManagerError as e:
                logger.warning(f"Failed to sync port {port.port} to {target}: {e}")
                port_errors.append({"port": port.port, "error": str(e)})

        result = {
            "switch": target,
            "success": True,
            "vlan_existed": existed,
            "ports_synced": len(vlan.ports) - len(port_errors),
        }
        if port_errors:
            result["port_errors"] = port_errors
        return result

    async def sync_vlan_across_switches(self, vlan_id: Any, source_switch: str, target_switches: Iterable[str]) -> dict:
        """Copy one VLAN's name, description and ports from a source switch."""
        vlan_id = self.validate_vlan_id(vlan_id)
        targets = [t for t in self.registry.resolve_targets(target_switches) if t != source_switch]
        if not targets:
            raise ValidationError("target_switches must name at least one switch other than the source")

        source_vlans = await self._read_vlans(source_switch, include_details=True)
        vlan = next((v for v in source_vlans if v.id == vlan_id), None)
        if vlan is None:
            raise NotFoundError(
                f"VLAN {vlan_id} not found on source switch {source_switch}",
                details={"vlan_id": vlan_id, "switch_id": source_switch},
            )

        sync_results = await asyncio.gather(*(self._sync_to(vlan, t) for t in targets))
        return {
            "source_switch": source_switch,
            "source_vlan": vlan.to_dict(),
            "sync_results": list(sync_results),
            "summary": {
                "successful_syncs": sum(1 for r in sync_results if r["success"]),
                "failed_syncs": sum(1 for r in sync_results if not r["success"]),
            },
        }

    async def backup_vlan_configuration(self) -> dict:
        return {"timestamp": _now(), "backup_data": await self.list_vlans(None, include_details=True)}

    def list_templates(self) -> dict:
        return {key: t.to_dict() for key, t in self.inventory.get_templates().items()}
