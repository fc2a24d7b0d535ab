"""VLAN model and vendor data reconciliation."""
from .models import (
    VLAN,
    PortMembership,
    VLANTemplate,
    DEFAULT_TEMPLATES,
    DEFAULT_RESERVED_VLANS,
    MIN_VLAN_ID,
    MAX_VLAN_ID,
)

__all__ = [
    "VLAN",
    "PortMembership",
    "VLANTemplate",
    "DEFAULT_TEMPLATES",
    "DEFAULT_RESERVED_VLANS",
    "MIN_VLAN_ID",
    "MAX_VLAN_ID",
]
