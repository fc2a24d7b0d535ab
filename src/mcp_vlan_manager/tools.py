"""Tool handlers behind the MCP server.

Every handler takes the service context and a flat parameter dict and
returns ``{"success", "message", "data"}``. ``call_tool`` is the only
boundary where errors turn into results:

    {"success": False, "message": "...", "error": {"kind", "message", "details"}}
"""
import asyncio
import logging
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from .context import ServiceContext
from .devices import DEVICE_TYPES
from .errors import NotFoundError, SwitchManagerError, ValidationError
from .registry import ONLINE
from .utils.audit_log import get_recent_operations, log_operation

logger = logging.getLogger(__name__)

Handler = Callable[[ServiceContext, dict], Awaitable[dict]]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _require(params: dict, *names: str) -> None:
    missing = [n for n in names if params.get(n) is None or params.get(n) == ""]
    if missing:
        raise ValidationError(
            f"{', '.join(missing)} {'is' if len(missing) == 1 else 'are'} required",
            details={"missing": missing},
        )


def _flag(params: dict, name: str, default: bool) -> bool:
    value = params.get(name)
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def _switch_list(params: dict, name: str):
    """Optional list of switch IDs; a single string is accepted too."""
    value = params.get(name)
    if value is None or value == []:
        return None
    if isinstance(value, str):
        return [value]
    return list(value)


def _result(message: str, data: Any = None, success: bool = True) -> dict:
    return {"success": success, "message": message, "data": data}


def error_result(error: SwitchManagerError) -> dict:
    return {"success": False, "message": error.message, "error": error.to_dict()}


# === VLAN tools ===

async def create_vlan(ctx: ServiceContext, params: dict) -> dict:
    _require(params, "vlan_id", "vlan_name")
    data = await ctx.vlans.create_vlan(
        params["vlan_id"],
        params["vlan_name"],
        _switch_list(params, "target_switches"),
        params.get("description") or "",
    )
    return _result(f"VLAN {data['vlan_id']} ({data['vlan_name']}) created successfully", data)


async def delete_vlan(ctx: ServiceContext, params: dict) -> dict:
    _require(params, "vlan_id")
    data = await ctx.vlans.delete_vlan(
        params["vlan_id"],
        _switch_list(params, "target_switches"),
        _flag(params, "force", False),
    )
    if data["success"]:
        return _result(f"VLAN {data['vlan_id']} deleted successfully", data)
    return _result(f"VLAN {data['vlan_id']} deleted with errors", data, success=False)


async def list_vlans(ctx: ServiceContext, params: dict) -> dict:
    switch_id = params.get("switch_id") or None
    data = await ctx.vlans.list_vlans(switch_id, _flag(params, "include_details", True))
    message = f"VLANs listed for switch {switch_id}" if switch_id else "All VLANs listed"
    return _result(message, data)


async def get_vlan_info(ctx: ServiceContext, params: dict) -> dict:
    _require(params, "vlan_id")
    data = await ctx.vlans.get_vlan_info(params["vlan_id"], params.get("switch_id") or None)
    return _result(f"VLAN {data['vlan_id']} information retrieved", data)


async def assign_port_to_vlan(ctx: ServiceContext, params: dict) -> dict:
    _require(params, "switch_id", "port_id", "vlan_id")
    tagged = _flag(params, "tagged", False)
    data = await ctx.vlans.assign_port_to_vlan(
        params["switch_id"], str(params["port_id"]), params["vlan_id"], tagged
    )
    return _result(
        f"Port {data['port_id']} assigned to VLAN {data['vlan_id']} "
        f"({'tagged' if tagged else 'untagged'}) on {data['switch_id']}",
        data,
    )


async def remove_port_from_vlan(ctx: ServiceContext, params: dict) -> dict:
    _require(params, "switch_id", "port_id", "vlan_id")
    data = await ctx.vlans.remove_port_from_vlan(
        params["switch_id"], str(params["port_id"]), params["vlan_id"]
    )
    return _result(
        f"Port {data['port_id']} removed from VLAN {data['vlan_id']} on {data['switch_id']}", data
    )


async def set_port_pvid(ctx: ServiceContext, params: dict) -> dict:
    _require(params, "switch_id", "port_id", "vlan_id")
    data = await ctx.vlans.set_port_pvid(
        params["switch_id"], str(params["port_id"]), params["vlan_id"]
    )
    return _result(
        f"PVID {data['vlan_id']} set on port {data['port_id']} of {data['switch_id']}", data
    )


async def configure_trunk_port(ctx: ServiceContext, params: dict) -> dict:
    _require(params, "switch_id", "port_id", "allowed_vlans")
    native_vlan = params.get("native_vlan")
    data = await ctx.vlans.configure_trunk_port(
        params["switch_id"],
        str(params["port_id"]),
        params["allowed_vlans"],
        1 if native_vlan is None else native_vlan,
    )
    return _result(f"Trunk port {data['port_id']} configured on {data['switch_id']}", data)


async def validate_vlan_consistency(ctx: ServiceContext, params: dict) -> dict:
    data = await ctx.vlans.validate_vlan_consistency(params.get("vlan_id"))
    if data["consistent"]:
        message = "VLAN configuration is consistent across switches"
    else:
        message = f"Found {len(data['inconsistencies'])} VLAN inconsistencies"
    return _result(message, data)


async def get_vlan_topology_map(ctx: ServiceContext, params: dict) -> dict:
    _require(params, "vlan_id")
    data = await ctx.vlans.get_vlan_topology_map(params["vlan_id"])
    return _result(f"Topology map generated for VLAN {data['vlan_id']}", data)


async def deploy_vlan_network_wide(ctx: ServiceContext, params: dict) -> dict:
    _require(params, "vlan_config")
    data = await ctx.vlans.deploy_vlan_network_wide(params["vlan_config"])
    summary = data["summary"]
    return _result(
        f"VLAN {summary['vlan_id']} deployed to {summary['switches_configured']} switch(es)",
        data,
        success=data["success"],
    )


async def sync_vlan_across_switches(ctx: ServiceContext, params: dict) -> dict:
    _require(params, "vlan_id", "source_switch", "target_switches")
    data = await ctx.vlans.sync_vlan_across_switches(
        params["vlan_id"], params["source_switch"], _switch_list(params, "target_switches") or []
    )
    summary = data["summary"]
    return _result(
        f"VLAN synced to {summary['successful_syncs']} switch(es), "
        f"{summary['failed_syncs']} failed",
        data,
        success=summary["failed_syncs"] == 0,
    )


async def list_vlan_templates(ctx: ServiceContext, params: dict) -> dict:
    templates = ctx.vlans.list_templates()
    return _result(f"{len(templates)} VLAN templates available", {"templates": templates})


async def backup_vlan_configuration(ctx: ServiceContext, params: dict) -> dict:
    data = await ctx.vlans.backup_vlan_configuration()
    return _result("VLAN configuration snapshot taken", data)


# === Switch tools ===

async def get_all_switches(ctx: ServiceContext, params: dict) -> dict:
    switches = ctx.registry.list_switches()
    if _flag(params, "include_details", False):
        online = [s["id"] for s in switches if s["status"] == ONLINE]
        details = await ctx.registry.bulk_system_info(online)
        for switch in switches:
            if switch["id"] in details:
                result = details[switch["id"]]
                if result["success"]:
                    switch["system_info"] = result["data"]
                else:
                    switch["error"] = result["error"]

    summary = {
        "total": len(switches),
        "online": sum(1 for s in switches if s["status"] == ONLINE),
        "offline": sum(1 for s in switches if s["status"] != ONLINE),
        "by_type": {
            family: sum(1 for s in switches if s["type"] == family) for family in DEVICE_TYPES
        },
    }
    return _result(
        f"Retrieved information for {len(switches)} switches",
        {"switches": switches, "summary": summary, "timestamp": _now()},
    )


async def get_switch_status(ctx: ServiceContext, params: dict) -> dict:
    _require(params, "switch_id")
    switch_id = params["switch_id"]
    record = ctx.registry.get_record(switch_id)
    current_health = None
    if record.is_online:
        current_health = (await ctx.diagnostics.switch_health(switch_id)).to_dict()
    data = dict(record.to_dict(), current_health=current_health, timestamp=_now())
    return _result(f"Status retrieved for switch {switch_id}", data)


async def get_switch_info(ctx: ServiceContext, params: dict) -> dict:
    _require(params, "switch_id")
    switch_id = params["switch_id"]
    record = ctx.registry.get_record(switch_id)
    system_info, health = await asyncio.gather(
        ctx.registry.call(switch_id, "get_system_info"),
        ctx.diagnostics.switch_health(switch_id),
    )
    data = {
        "switch_id": switch_id,
        "config": {
            "name": record.config.name,
            "ip": record.config.host,
            "type": record.config.type,
            "model": record.config.model,
        },
        "status": record.status,
        "role": ctx.registry.switch_role(switch_id),
        "system_info": system_info,
        "health": health.to_dict(),
        "timestamp": _now(),
    }
    return _result(f"Switch information retrieved for {switch_id}", data)


async def get_port_status(ctx: ServiceContext, params: dict) -> dict:
    _require(params, "switch_id")
    switch_id = params["switch_id"]
    port_status = await ctx.registry.call(switch_id, "get_port_status")
    return _result(
        f"Port status retrieved for switch {switch_id}",
        {"switch_id": switch_id, "port_status": port_status, "timestamp": _now()},
    )


async def configure_port(ctx: ServiceContext, params: dict) -> dict:
    _require(params, "switch_id", "port_id", "config")
    switch_id, port_id, settings = params["switch_id"], str(params["port_id"]), params["config"]
    if not isinstance(settings, dict) or not settings:
        raise ValidationError("config must be a non-empty object of port settings")

    audit_params = {"port_id": port_id, "config": settings}
    try:
        result = await ctx.registry.call(switch_id, "configure_port", port_id, settings)
    except Exception as e:
        log_operation("configure_port", switch_id, audit_params, success=False, error=str(e))
        raise
    log_operation("configure_port", switch_id, audit_params)
    return _result(
        f"Port {port_id} configured on {switch_id}",
        {"switch_id": switch_id, "port_id": port_id, "config": settings, "result": result},
    )


async def get_network_topology(ctx: ServiceContext, params: dict) -> dict:
    return _result("Network topology retrieved", ctx.registry.get_network_topology())


# === Configuration tools ===

async def backup_switch_configuration(ctx: ServiceContext, params: dict) -> dict:
    data = await ctx.configuration.backup_switches(_switch_list(params, "switch_ids"))
    summary = data["summary"]
    return _result(
        f"Configuration backup completed for {summary['successful_backups']}/"
        f"{summary['total_switches']} switches",
        data,
        success=data["success"],
    )


async def restore_switch_configuration(ctx: ServiceContext, params: dict) -> dict:
    _require(params, "switch_id", "backup_id")
    data = await ctx.configuration.restore_switch_configuration(
        params["switch_id"], params["backup_id"]
    )
    return _result(f"Backup {data['backup_id']} restored to {data['switch_id']}", data)


async def compare_switch_configurations(ctx: ServiceContext, params: dict) -> dict:
    _require(params, "switch1_id", "switch2_id")
    data = await ctx.configuration.compare_configurations(params["switch1_id"], params["switch2_id"])
    return _result(
        f"Configuration comparison completed between {params['switch1_id']} "
        f"and {params['switch2_id']}",
        data,
    )


async def list_backups(ctx: ServiceContext, params: dict) -> dict:
    backups = ctx.configuration.list_backups(params.get("switch_id") or None)
    return _result(f"{len(backups)} backup(s) found", {"backups": backups})


async def delete_backup(ctx: ServiceContext, params: dict) -> dict:
    _require(params, "backup_id")
    data = ctx.configuration.delete_backup(params["backup_id"])
    if not data["success"]:
        raise NotFoundError(f"Backup {params['backup_id']} not found", details=data)
    return _result(f"Backup {params['backup_id']} deleted", data)


async def cleanup_old_backups(ctx: ServiceContext, params: dict) -> dict:
    days = params.get("retention_days")
    data = ctx.configuration.cleanup_old_backups(None if days is None else int(days))
    return _result(f"Cleaned up {data['deleted_count']} old backup(s)", data)


# === Diagnostics tools ===

async def network_health_check(ctx: ServiceContext, params: dict) -> dict:
    data = await ctx.diagnostics.network_health_check(_flag(params, "include_topology", True))
    overall = data["overall_health"]
    return _result(
        f"Network health check completed: {overall['status']} "
        f"({overall['online_switches']}/{overall['total_switches']} online)",
        data,
    )


async def switch_diagnostics(ctx: ServiceContext, params: dict) -> dict:
    _require(params, "switch_id")
    data = await ctx.diagnostics.switch_diagnostics(
        params["switch_id"],
        _flag(params, "include_ports", True),
        _flag(params, "include_vlans", True),
    )
    return _result(f"Switch diagnostics completed for {params['switch_id']}", data)


async def get_audit_log(ctx: ServiceContext, params: dict) -> dict:
    limit = int(params.get("limit") or 20)
    records = get_recent_operations(
        ctx.audit_log_file,
        device_id=params.get("device_id") or None,
        operation=params.get("operation") or None,
        limit=limit,
    )
    return _result(
        f"{len(records)} audit record(s)",
        {
            "total_records": len(records),
            "filters": {
                "device_id": params.get("device_id"),
                "operation": params.get("operation"),
                "limit": limit,
            },
            "records": [asdict(r) for r in records],
        },
    )


TOOLS: dict[str, Handler] = {
    "create_vlan": create_vlan,
    "delete_vlan": delete_vlan,
    "list_vlans": list_vlans,
    "get_vlan_info": get_vlan_info,
    "assign_port_to_vlan": assign_port_to_vlan,
    "remove_port_from_vlan": remove_port_from_vlan,
    "set_port_pvid": set_port_pvid,
    "configure_trunk_port": configure_trunk_port,
    "validate_vlan_consistency": validate_vlan_consistency,
    "get_vlan_topology_map": get_vlan_topology_map,
    "deploy_vlan_network_wide": deploy_vlan_network_wide,
    "sync_vlan_across_switches": sync_vlan_across_switches,
    "list_vlan_templates": list_vlan_templates,
    "backup_vlan_configuration": backup_vlan_configuration,
    "get_all_switches": get_all_switches,
    "get_switch_status": get_switch_status,
    "get_switch_info": get_switch_info,
    "get_port_status": get_port_status,
    "configure_port": configure_port,
    "get_network_topology": get_network_topology,
    "backup_switch_configuration": backup_switch_configuration,
    "restore_switch_configuration": restore_switch_configuration,
    "compare_switch_configurations": compare_switch_configurations,
    "list_backups": list_backups,
    "delete_backup": delete_backup,
    "cleanup_old_backups": cleanup_old_backups,
    "network_health_check": network_health_check,
    "switch_diagnostics": switch_diagnostics,
    "get_audit_log": get_audit_log,
}


async def call_tool(ctx: ServiceContext, name: str, params: dict | None = None) -> dict:
    """Run a tool by name. Never raises."""
    handler = TOOLS.get(name)
    if handler is None:
        return error_result(NotFoundError(f"Unknown tool: {name}", details={"tool": name}))
    try:
        return await handler(ctx, dict(params or {}))
    except SwitchManagerError as e:
        logger.warning(f"Tool {name} failed ({e.kind}): {e.message}")
        return error_result(e)
    except Exception as e:
        logger.exception(f"Tool {name} failed")
        return error_result(SwitchManagerError(str(e) or type(e).__name__))
