"""VLAN data model shared by the engine, the inventory and the tool layer."""
from dataclasses import dataclass, field, asdict
from typing import Optional


@dataclass
class PortMembership:
    """One port's membership in a VLAN on one switch."""
    switch_id: str
    port: str
    tagged: bool = False
    pvid: Optional[int] = None


@dataclass
class VLAN:
    """A VLAN as reported by one switch."""
    id: int
    name: str = ""
    description: str = ""
    ports: list[PortMembership] = field(default_factory=list)
    # Page or command the VLAN was read from
    source: Optional[str] = None

    def to_dict(self, include_ports: bool = True) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
        }
        if include_ports:
            data["ports"] = [asdict(p) for p in self.ports]
        if self.source:
            data["source"] = self.source
        return data


@dataclass(frozen=True)
class VLANTemplate:
    """Read-only reference data describing a class of VLANs."""
    key: str
    name: str
    vlan_range: tuple[int, int]
    security_policy: str = "standard"
    mtu: int = 1500
    trunk_all_uplinks: bool = True
    description: str = ""

    def contains(self, vlan_id: int) -> bool:
        low, high = self.vlan_range
        return low <= vlan_id <= high

    def to_dict(self) -> dict:
        data = asdict(self)
        data["vlan_range"] = list(self.vlan_range)
        return data

    @classmethod
    def from_dict(cls, key: str, data: dict) -> "VLANTemplate":
        low, high = data["vlan_range"]
        return cls(
            key=key,
            name=data.get("name", key),
            vlan_range=(int(low), int(high)),
            security_policy=data.get("security_policy", "standard"),
            mtu=int(data.get("mtu", 1500)),
            trunk_all_uplinks=bool(data.get("trunk_all_uplinks", True)),
            description=data.get("description", ""),
        )


DEFAULT_TEMPLATES = {
    "management": VLANTemplate(
        key="management",
        name="Management Network",
        vlan_range=(500, 509),
        security_policy="restricted",
        description="Switch and infrastructure management",
    ),
    "user_access": VLANTemplate(
        key="user_access",
        name="User Access",
        vlan_range=(600, 699),
        description="User workstations",
    ),
    "guest_network": VLANTemplate(
        key="guest_network",
        name="Guest Network",
        vlan_range=(300, 399),
        security_policy="isolated",
        description="Internet-only guest access",
    ),
    "backup_network": VLANTemplate(
        key="backup_network",
        name="Backup Infrastructure",
        vlan_range=(100, 199),
        security_policy="restricted",
        mtu=9216,
        description="Backup traffic with jumbo frames",
    ),
}

DEFAULT_RESERVED_VLANS = [1, 1002, 1003, 1004, 1005]

MIN_VLAN_ID = 1
MAX_VLAN_ID = 4094
