"""Register Events — lifecycle notifications from an ActionRegister.

WHY
───
Devtools, metrics exporters and UI bindings want to know when dispatches
start, finish, abort or fail, and when handlers come and go, without
wrapping every call site.  The register emits small immutable events to
synchronous listeners.

ARCHITECTURE
────────────
::

    EventEmitter
      ├── .on(event_type, listener)  → unsubscribe()
      ├── .off(event_type, listener)
      ├── .emit(event)               ─ listener errors are logged, never raised
      └── .remove_all_listeners(event_type=None)

    ActionEvent
      ├── event_type  ─ EventType
      ├── action      ─ which action
      ├── timestamp   ─ when (UTC)
      └── data        ─ payload, metrics, reason, handler_id, ...

Related modules:
    dispatcher.py — emits action.* events
    registry.py   — reports handler.* changes through a listener hook
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from actionspine.core.logging import get_logger
from actionspine.execution.models import utcnow

logger = get_logger(__name__)


class EventType(str, Enum):
    """Lifecycle events emitted by an ActionRegister."""

    ACTION_START = "action.start"
    ACTION_COMPLETE = "action.complete"
    ACTION_ABORT = "action.abort"
    ACTION_ERROR = "action.error"
    HANDLER_REGISTER = "handler.register"
    HANDLER_UNREGISTER = "handler.unregister"


@dataclass(frozen=True)
class ActionEvent:
    """One lifecycle notification."""

    event_type: EventType
    action: str
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_type": self.event_type.value,
            "action": self.action,
            "timestamp": self.timestamp.isoformat(),
            "data": self.data,
        }


Listener = Callable[[ActionEvent], None]


class EventEmitter:
    """Synchronous in-process event fan-out."""

    def __init__(self) -> None:
        self._listeners: dict[EventType, list[Listener]] = {}

    def on(self, event_type: EventType | str, listener: Listener) -> Callable[[], None]:
        """Subscribe ``listener``; returns a closure that unsubscribes it."""
        event_type = EventType(event_type)
        self._listeners.setdefault(event_type, []).append(listener)

        def unsubscribe() -> None:
            self.off(event_type, listener)

        return unsubscribe

    def off(self, event_type: EventType | str, listener: Listener) -> None:
        listeners = self._listeners.get(EventType(event_type))
        if listeners and listener in listeners:
            listeners.remove(listener)

    def emit(self, event: ActionEvent) -> None:
        for listener in list(self._listeners.get(event.event_type, ())):
            try:
                listener(event)
            except Exception as e:
                logger.warning(
                    "events.listener_failed",
                    event_type=event.event_type.value,
                    action=event.action,
                    error=repr(e),
                )

    def remove_all_listeners(self, event_type: EventType | str | None = None) -> None:
        if event_type is None:
            self._listeners.clear()
        else:
            self._listeners.pop(EventType(event_type), None)

    def listener_count(self, event_type: EventType | str) -> int:
        return len(self._listeners.get(EventType(event_type), ()))
