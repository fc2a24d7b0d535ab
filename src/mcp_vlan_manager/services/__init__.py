"""Configuration management and diagnostics built on the switch registry."""
from .configuration import ConfigurationService, compare_sections
from .diagnostics import DiagnosticsService

__all__ = ["ConfigurationService", "DiagnosticsService", "compare_sections"]
