"""Core building blocks: settings, logging and the process context."""

from hostgate.core.config import HostgateSettings, load_settings
from hostgate.core.context import HostgateContext
from hostgate.core.logging import configure_logging

__all__ = ["HostgateContext", "HostgateSettings", "load_settings", "configure_logging"]
