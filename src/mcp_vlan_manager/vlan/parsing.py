"""Turn vendor-shaped VLAN reads into VLAN objects.

Two shapes occur:
- CGI reads: {"vlan_conf": {"vlans": [...]}, "vlan_port": {"ports": [...]}}
- Scraped pages: {"/vlan.html": [{"vid": "100", "name": ..., "tagged ports": "1-4"}]}
Unrecognized data is ignored rather than rejected.
"""
import logging
import re
from typing import Any, Optional

from .models import VLAN, PortMembership

logger = logging.getLogger(__name__)

VLAN_ID_KEYS = ("vlan id", "vlan", "vid", "vlan_id", "id")
VLAN_NAME_KEYS = ("vlan name", "name", "vlan_name")
PORT_KEYS = ("port", "port id", "port_id", "interface")

# Scraped port-list columns and whether they mean tagged membership
MEMBERSHIP_COLUMNS = (
    ("tagged ports", True),
    ("untagged ports", False),
    ("member ports", False),
    ("members", False),
    ("ports", False),
)

# Per-port tables carry a flag instead of a port list
_FLAG_TRUE = ("yes", "y", "true", "1", "x", "on", "t")

_EMPTY_PORT_LISTS = ("", "-", "--", "---", "none", "n/a")
_RANGE = re.compile(r"^([A-Za-z]*)(\d+)-([A-Za-z]*)(\d+)$")


def parse_port_list(text: Any) -> list[str]:
    """Expand port list notation.

    Input: "1-4,7,TE3-4,lag1-lag2"
    Output: ["1", "2", "3", "4", "7", "TE3", "TE4", "lag1", "lag2"]
    """
    ports: list[str] = []
    if text is None:
        return ports
    text = str(text).strip()
    if text.lower() in _EMPTY_PORT_LISTS:
        return ports

    for part in re.split(r"[,\s]+", text):
        if not part:
            continue
        match = _RANGE.match(part)
        if match:
            prefix, start, end_prefix, end = match.groups()
            if end_prefix and end_prefix.lower() != prefix.lower():
                ports.append(part)
                continue
            start_n, end_n = int(start), int(end)
            if start_n <= end_n:
                ports.extend(f"{prefix}{i}" for i in range(start_n, end_n + 1))
                continue
        ports.append(part)
    return ports


def as_vlan_id(value: Any) -> Optional[int]:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


def _first(item: dict, keys: tuple[str, ...]) -> Any:
    for key in keys:
        value = item.get(key)
        if value not in (None, ""):
            return value
    return None


def _add_member(vlan: VLAN, membership: PortMembership) -> None:
    if not any(p.port == membership.port for p in vlan.ports):
        vlan.ports.append(membership)


def _parse_cgi(switch_id: str, vlan_config: dict, vlans: dict[int, VLAN], include_details: bool) -> None:
    conf = vlan_config.get("vlan_conf")
    if not isinstance(conf, dict):
        return
    for entry in conf.get("vlans") or []:
        if not isinstance(entry, dict):
            continue
        vlan_id = as_vlan_id(entry.get("vlanId", entry.get("id")))
        if vlan_id is None:
            continue
        vlans.setdefault(vlan_id, VLAN(
            id=vlan_id,
            name=str(entry.get("vlanName") or entry.get("name") or ""),
            description=str(entry.get("description") or ""),
            source="vlan_conf",
        ))

    port_data = vlan_config.get("vlan_port")
    if not include_details or not isinstance(port_data, dict):
        return
    for port in port_data.get("ports") or []:
        if not isinstance(port, dict):
            continue
        port_id = str(port.get("portId", port.get("port", "")))
        tagged_vlans = {as_vlan_id(v) for v in port.get("taggedVlans") or []}
        for raw in port.get("vlans") or []:
            vlan_id = as_vlan_id(raw)
            if vlan_id not in vlans:
                continue
            tagged = vlan_id in tagged_vlans if tagged_vlans else bool(port.get("tagged"))
            _add_member(vlans[vlan_id], PortMembership(
                switch_id=switch_id,
                port=port_id,
                tagged=tagged,
                pvid=as_vlan_id(port.get("pvid")),
            ))


def _flag_tagged(item: dict) -> bool:
    """Tagged status of a per-port record, read from its flag column."""
    tagged = str(item.get("tagged") or "").strip().lower()
    if tagged:
        return tagged in _FLAG_TRUE
    untagged = str(item.get("untagged") or "").strip().lower()
    if untagged:
        return untagged not in _FLAG_TRUE
    mode = str(_first(item, ("mode", "membership", "type")) or "").strip().lower()
    if "untag" in mode or mode == "access":
        return False
    return "tag" in mode or mode == "trunk"


def _parse_scraped(switch_id: str, vlan_config: dict, vlans: dict[int, VLAN], include_details: bool) -> None:
    for page, records in vlan_config.items():
        if page.startswith("_") or not isinstance(records, list):
            continue
        for item in records:
            if not isinstance(item, dict):
                continue
            vlan_id = as_vlan_id(_first(item, VLAN_ID_KEYS))
            if vlan_id is None:
                continue
            name = str(_first(item, VLAN_NAME_KEYS) or "")
            description = str(item.get("description") or "")
            vlan = vlans.get(vlan_id)
            if vlan is None:
                vlan = vlans[vlan_id] = VLAN(id=vlan_id, name=name, description=description, source=page)
            else:
                # Per-port pages repeat the VLAN without its name
                vlan.name = vlan.name or name
                vlan.description = vlan.description or description
            if not include_details:
                continue
            port = _first(item, PORT_KEYS)
            if port is not None:
                tagged = _flag_tagged(item)
                pvid = as_vlan_id(item.get("pvid"))
                _add_member(vlan, PortMembership(
                    switch_id=switch_id,
                    port=str(port).strip(),
                    tagged=tagged,
                    pvid=pvid if pvid is not None else (None if tagged else vlan_id),
                ))
                continue
            for column, tagged in MEMBERSHIP_COLUMNS:
                for member in parse_port_list(item.get(column)):
                    _add_member(vlan, PortMembership(
                        switch_id=switch_id,
                        port=member,
                        tagged=tagged,
                        pvid=None if tagged else vlan_id,
                    ))


def parse_vlan_config(switch_id: str, vlan_config: dict, include_details: bool = True) -> list[VLAN]:
    """VLANs found in one switch's VLAN read, sorted by ID."""
    vlans: dict[int, VLAN] = {}
    if not isinstance(vlan_config, dict):
        logger.debug(f"Ignoring VLAN data of type {type(vlan_config).__name__} from {switch_id}")
        return []
    _parse_cgi(switch_id, vlan_config, vlans, include_details)
    _parse_scraped(switch_id, vlan_config, vlans, include_details)
    return [vlans[k] for k in sorted(vlans)]
