"""Observable router status and the subscription interface around it.

The manager never exposes mutable fields for a presentation layer to watch.
It publishes immutable `RouterState` values and notifies subscribers with a
`StatusEvent` each time one lands.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

from backends.interfaces import AvailabilitySnapshot
from backends.registry import ProviderKind
from config.schema import Mode, RouterConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RouterState:
    config: RouterConfig
    snapshot: AvailabilitySnapshot = field(default_factory=AvailabilitySnapshot)
    active_backend: Optional[ProviderKind] = None
    # False until the first probe batch has completed.
    resolved: bool = False

    @property
    def mode(self) -> Mode:
        return self.config.mode


class EventKind(str, Enum):
    CONFIG_CHANGED = "config_changed"
    AVAILABILITY_CHANGED = "availability_changed"
    BUSY_CHANGED = "busy_changed"
    PROVIDER_STATUS_CHANGED = "provider_status_changed"


@dataclass(frozen=True)
class StatusEvent:
    kind: EventKind
    state: RouterState
    busy: bool = False
    # Set only on PROVIDER_STATUS_CHANGED: the provider that went online or offline.
    provider: Optional[ProviderKind] = None
    available: Optional[bool] = None


Listener = Callable[[StatusEvent], None]


class StatusNotifier:
    """Fan-out of status events to synchronous listeners.

    A listener that raises is logged and skipped; it never breaks the router
    or the other listeners.
    """

    def __init__(self) -> None:
        self._listeners: List[Listener] = []
        self._lock = threading.Lock()

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def publish(self, event: StatusEvent) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.exception("Status listener %r failed on %s", listener, event.kind.value)

    def __len__(self) -> int:
        return len(self._listeners)


__all__ = ["EventKind", "Listener", "RouterState", "StatusEvent", "StatusNotifier"]
