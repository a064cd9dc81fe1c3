"""
Proxy server lifecycle: the port state cell, the coordinator, and the app.
"""

from .app import create_app
from .port_coordinator import PortCoordinator
from .port_state import UNSET_PORT, PortState

__all__ = ["PortCoordinator", "PortState", "UNSET_PORT", "create_app"]
