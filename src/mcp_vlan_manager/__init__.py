"""Cross-switch VLAN management for Vimins and Sodola switches."""

__version__ = "0.1.0"
