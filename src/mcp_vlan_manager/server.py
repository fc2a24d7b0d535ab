"""MCP Server for cross-switch VLAN management.

Manages VLANs across Vimins (CGI/JSON API) and Sodola (HTML web UI) switches.

Tools exposed:
- create_vlan / delete_vlan: Network-wide VLAN creation (with rollback) and removal
- list_vlans / get_vlan_info: VLANs per switch, one VLAN across switches
- assign_port_to_vlan / remove_port_from_vlan / set_port_pvid / configure_trunk_port
- validate_vlan_consistency / get_vlan_topology_map: Network-wide VLAN audits
- deploy_vlan_network_wide / sync_vlan_across_switches: Composite VLAN workflows
- get_all_switches / get_switch_status / get_switch_info / get_port_status
- configure_port / get_network_topology
- backup_switch_configuration / restore_switch_configuration / list_backups
- compare_switch_configurations / network_health_check / switch_diagnostics
- get_audit_log: Recent audited operations

Resources:
- switch://<switch_id>/vlans: VLAN list of one switch
"""
import asyncio
import json
import logging
import sys

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import (
    TextContent,
    Tool,
    Resource,
)
from pydantic import AnyUrl

from .config.inventory import DeviceInventory
from .context import ServiceContext
from .errors import ConfigError
from .tools import call_tool
from .utils.audit_log import setup_audit_logging
from .utils.logging_config import setup_logging, timed_section

logger = logging.getLogger(__name__)

_SWITCH_ID = {"type": "string", "description": "Switch ID from the inventory (e.g., 'vimins_core1')"}
_SWITCH_IDS = {
    "type": "array",
    "items": {"type": "string"},
    "description": "Switch IDs (default: all online switches)",
}
_VLAN_ID = {"type": "integer", "description": "VLAN ID (1-4094)", "minimum": 1, "maximum": 4094}
_PORT_ID = {"type": "string", "description": "Port ID (e.g., '1', 'TE6', 'lag1')"}


def _schema(properties: dict, required: list[str]) -> dict:
    return {"type": "object", "properties": properties, "required": required}


TOOL_DEFINITIONS = [
    Tool(
        name="create_vlan",
        description="Create a VLAN on several switches; rolled back everywhere if any switch fails",
        inputSchema=_schema({
            "vlan_id": _VLAN_ID,
            "vlan_name": {"type": "string", "description": "VLAN name"},
            "target_switches": _SWITCH_IDS,
            "description": {"type": "string", "description": "VLAN description"},
        }, ["vlan_id", "vlan_name"]),
    ),
    Tool(
        name="delete_vlan",
        description="Delete a VLAN from several switches; refused while ports are assigned unless forced",
        inputSchema=_schema({
            "vlan_id": _VLAN_ID,
            "target_switches": _SWITCH_IDS,
            "force": {"type": "boolean", "description": "Skip the port dependency check", "default": False},
        }, ["vlan_id"]),
    ),
    Tool(
        name="list_vlans",
        description="List VLANs on one switch or on every online switch",
        inputSchema=_schema({
            "switch_id": _SWITCH_ID,
            "include_details": {"type": "boolean", "description": "Include port memberships", "default": True},
        }, []),
    ),
    Tool(
        name="get_vlan_info",
        description="Show one VLAN across switches, with a name consistency flag",
        inputSchema=_schema({"vlan_id": _VLAN_ID, "switch_id": _SWITCH_ID}, ["vlan_id"]),
    ),
    Tool(
        name="assign_port_to_vlan",
        description="Add a port to a VLAN (untagged membership also sets the PVID)",
        inputSchema=_schema({
            "switch_id": _SWITCH_ID,
            "port_id": _PORT_ID,
            "vlan_id": _VLAN_ID,
            "tagged": {"type": "boolean", "description": "Tagged membership", "default": False},
        }, ["switch_id", "port_id", "vlan_id"]),
    ),
    Tool(
        name="remove_port_from_vlan",
        description="Remove a port from a VLAN",
        inputSchema=_schema(
            {"switch_id": _SWITCH_ID, "port_id": _PORT_ID, "vlan_id": _VLAN_ID},
            ["switch_id", "port_id", "vlan_id"],
        ),
    ),
    Tool(
        name="set_port_pvid",
        description="Set the port VLAN ID (native VLAN for untagged ingress)",
        inputSchema=_schema(
            {"switch_id": _SWITCH_ID, "port_id": _PORT_ID, "vlan_id": _VLAN_ID},
            ["switch_id", "port_id", "vlan_id"],
        ),
    ),
    Tool(
        name="configure_trunk_port",
        description="Configure a port as a trunk carrying the given VLANs",
        inputSchema=_schema({
            "switch_id": _SWITCH_ID,
            "port_id": _PORT_ID,
            "allowed_vlans": {"type": "array", "items": {"type": "integer"}, "description": "VLANs on the trunk"},
            "native_vlan": {"type": "integer", "description": "Native VLAN", "default": 1},
        }, ["switch_id", "port_id", "allowed_vlans"]),
    ),
    Tool(
        name="validate_vlan_consistency",
        description="Check VLAN names and descriptions for drift across all switches",
        inputSchema=_schema({"vlan_id": _VLAN_ID}, []),
    ),
    Tool(
        name="get_vlan_topology_map",
        description="Map where a VLAN exists and whether it crosses each uplink",
        inputSchema=_schema({"vlan_id": _VLAN_ID}, ["vlan_id"]),
    ),
    Tool(
        name="deploy_vlan_network_wide",
        description="Create a VLAN everywhere, assign ports and trunk it across the core uplinks",
        inputSchema=_schema({
            "vlan_config": {
                "type": "object",
                "description": "vlan_id, vlan_name, description and port_assignments "
                               "[{switch_id, port_id, tagged}]",
            },
        }, ["vlan_config"]),
    ),
    Tool(
        name="sync_vlan_across_switches",
        description="Copy a VLAN (name, description, ports) from one switch to others",
        inputSchema=_schema({
            "vlan_id": _VLAN_ID,
            "source_switch": _SWITCH_ID,
            "target_switches": _SWITCH_IDS,
        }, ["vlan_id", "source_switch", "target_switches"]),
    ),
    Tool(
        name="list_vlan_templates",
        description="List the VLAN templates (ID ranges and policies)",
        inputSchema=_schema({}, []),
    ),
    Tool(
        name="backup_vlan_configuration",
        description="Snapshot the VLAN lists of every online switch",
        inputSchema=_schema({}, []),
    ),
    Tool(
        name="get_all_switches",
        description="List all managed switches with their status",
        inputSchema=_schema({
            "include_details": {"type": "boolean", "description": "Include system info", "default": False},
        }, []),
    ),
    Tool(
        name="get_switch_status",
        description="Registry status and current health of one switch",
        inputSchema=_schema({"switch_id": _SWITCH_ID}, ["switch_id"]),
    ),
    Tool(
        name="get_switch_info",
        description="System information and health of one switch",
        inputSchema=_schema({"switch_id": _SWITCH_ID}, ["switch_id"]),
    ),
    Tool(
        name="get_port_status",
        description="Port status of one switch",
        inputSchema=_schema({"switch_id": _SWITCH_ID}, ["switch_id"]),
    ),
    Tool(
        name="configure_port",
        description="Change port settings (e.g. enabled, speed, description)",
        inputSchema=_schema({
            "switch_id": _SWITCH_ID,
            "port_id": _PORT_ID,
            "config": {"type": "object", "description": "Port settings"},
        }, ["switch_id", "port_id", "config"]),
    ),
    Tool(
        name="get_network_topology",
        description="Configured inter-core links and uplinks with switch roles and status",
        inputSchema=_schema({}, []),
    ),
    Tool(
        name="backup_switch_configuration",
        description="Back up switch configurations to the backup directory",
        inputSchema=_schema({"switch_ids": _SWITCH_IDS}, []),
    ),
    Tool(
        name="restore_switch_configuration",
        description="Restore a stored backup to the switch it was taken from",
        inputSchema=_schema({
            "switch_id": _SWITCH_ID,
            "backup_id": {"type": "string", "description": "Backup ID from list_backups"},
        }, ["switch_id", "backup_id"]),
    ),
    Tool(
        name="compare_switch_configurations",
        description="Compare the live configurations of two switches",
        inputSchema=_schema(
            {"switch1_id": _SWITCH_ID, "switch2_id": _SWITCH_ID},
            ["switch1_id", "switch2_id"],
        ),
    ),
    Tool(
        name="list_backups",
        description="List stored backups, newest first",
        inputSchema=_schema({"switch_id": _SWITCH_ID}, []),
    ),
    Tool(
        name="delete_backup",
        description="Delete a stored backup",
        inputSchema=_schema(
            {"backup_id": {"type": "string", "description": "Backup ID"}},
            ["backup_id"],
        ),
    ),
    Tool(
        name="cleanup_old_backups",
        description="Delete backups older than the retention period",
        inputSchema=_schema({
            "retention_days": {"type": "integer", "description": "Days to keep (default from inventory)"},
        }, []),
    ),
    Tool(
        name="network_health_check",
        description="Health of every switch with an overall healthy/degraded/critical verdict",
        inputSchema=_schema({
            "include_topology": {"type": "boolean", "description": "Include topology", "default": True},
        }, []),
    ),
    Tool(
        name="switch_diagnostics",
        description="All diagnostic reads for one switch",
        inputSchema=_schema({
            "switch_id": _SWITCH_ID,
            "include_ports": {"type": "boolean", "default": True},
            "include_vlans": {"type": "boolean", "default": True},
        }, ["switch_id"]),
    ),
    Tool(
        name="get_audit_log",
        description="Recent audited operations, most recent first",
        inputSchema=_schema({
            "device_id": {"type": "string", "description": "Filter by switch ID"},
            "operation": {"type": "string", "description": "Filter by operation (e.g., 'create_vlan')"},
            "limit": {"type": "integer", "description": "Maximum records", "default": 20},
        }, []),
    ),
]


def create_server(ctx: ServiceContext) -> Server:
    """MCP server whose handlers all run against ``ctx``."""
    server = Server("mcp-vlan-manager")

    @server.list_tools()
    async def list_tools() -> list[Tool]:
        return TOOL_DEFINITIONS

    @server.call_tool()
    async def handle_call_tool(name: str, arguments: dict) -> list[TextContent]:
        arguments = arguments or {}
        device_id = arguments.get("switch_id", "N/A")
        async with timed_section(f"tool:{name}", device_id=device_id):
            result = await call_tool(ctx, name, arguments)
        return [TextContent(type="text", text=json.dumps(result, indent=2, default=str))]

    @server.list_resources()
    async def list_resources() -> list[Resource]:
        resources = []
        for record in ctx.registry.list_switches():
            resources.append(Resource(
                uri=AnyUrl(f"switch://{record['id']}/vlans"),
                name=f"{record['name']} VLANs",
                description=f"VLAN configuration of {record['id']}",
                mimeType="application/json",
            ))
        return resources

    @server.read_resource()
    async def read_resource(uri: AnyUrl) -> str:
        # switch://<switch_id>/vlans
        uri_str = str(uri)
        if uri_str.startswith("switch://"):
            parts = uri_str[len("switch://"):].split("/")
            if len(parts) >= 2 and parts[1] == "vlans":
                result = await call_tool(ctx, "list_vlans", {"switch_id": parts[0]})
                return json.dumps(result, indent=2, default=str)
        return json.dumps({"error": f"Unknown resource: {uri}"})

    return server


def main():
    """Run the MCP server."""
    log_dir = setup_logging()
    audit_file = setup_audit_logging(str(log_dir))

    try:
        inventory = DeviceInventory()
    except ConfigError as e:
        logger.error(f"Cannot start: {e}")
        sys.exit(1)

    ctx = ServiceContext.create(inventory, audit_log_file=audit_file)
    server = create_server(ctx)

    async def run():
        await ctx.start()
        try:
            async with stdio_server() as (read_stream, write_stream):
                await server.run(
                    read_stream,
                    write_stream,
                    server.create_initialization_options()
                )
        finally:
            await ctx.close()

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
