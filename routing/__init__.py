"""
Routing package

Resolves which local inference backend serves a call and exposes the single
generate/embed facade the rest of the application depends on.
"""

from routing.manager import BackendManager, ConnectionTestResult
from routing.probe import AvailabilityProbe
from routing.selection import AUTO_PRIORITY, select
from routing.status import EventKind, RouterState, StatusEvent

__all__ = [
    "AUTO_PRIORITY",
    "AvailabilityProbe",
    "BackendManager",
    "ConnectionTestResult",
    "EventKind",
    "RouterState",
    "StatusEvent",
    "select",
]
