"""Handler Registry — per-action, priority-ordered handler pipelines.

Manifesto:
The dispatcher needs to resolve ``"checkout"`` to an ordered list of
handlers.  The registry owns those lists: it assigns ids, keeps every
pipeline sorted by descending priority (stable on ties), refuses duplicate
ids, and hands out snapshots so an in-flight dispatch never sees a
registration that happened after it started.

ARCHITECTURE
────────────
::

    HandlerRegistry
      ├── .register(action, handler, config) ─ sorted insert → unregister()
      ├── .unregister(action, registration)  ─ identity-based removal
      ├── .snapshot(action)                  ─ immutable copy for a run
      ├── .remove_consumed(action, regs)     ─ once-handler cleanup
      ├── .clear_action(action) / .clear_all()
      └── .handler_count / .has_handlers / .actions / .stats

BEST PRACTICES
──────────────
- Keep the returned unregister closure; it removes exactly the
  registration it came from and is safe to call twice.
- Never mutate a snapshot; it is a tuple for a reason.

Related modules:
    dispatcher.py — ActionRegister owns one registry
    models.py     — HandlerConfig / HandlerRegistration

Tags:
    actionspine, execution, registry, handler-registry, priority

Doc-Types:
    api-reference
"""

from __future__ import annotations

import itertools
from collections.abc import Callable
from dataclasses import replace
from typing import Any

from actionspine.core.errors import HandlerConfigError
from actionspine.core.logging import get_logger
from actionspine.execution.models import (
    ActionStats,
    ExecutionMode,
    Handler,
    HandlerConfig,
    HandlerRegistration,
    Unregister,
)

logger = get_logger(__name__)

RegistryListener = Callable[[str, str, HandlerRegistration], None]


def _noop() -> None:
    return None


class HandlerRegistry:
    """Injectable per-action handler registry.

    Example:
        >>> registry = HandlerRegistry()
        >>> unregister = registry.register("save", lambda payload, ctl: "ok", HandlerConfig(priority=10))
        >>> registry.handler_count("save")
        1
        >>> unregister()
        >>> registry.handler_count("save")
        0
    """

    def __init__(self, listener: RegistryListener | None = None):
        self._pipelines: dict[str, list[HandlerRegistration]] = {}
        self._ids = itertools.count(1)
        self._sequence = itertools.count()
        self._listener = listener

    def _notify(self, change: str, action: str, registration: HandlerRegistration) -> None:
        if self._listener is not None:
            self._listener(change, action, registration)

    def register(
        self,
        action: str,
        handler: Handler,
        config: HandlerConfig | None = None,
        **overrides: Any,
    ) -> Unregister:
        """Register a handler and return its unregister closure.

        Args:
            action: Action name
            handler: ``handler(payload, controller)``, sync or async
            config: Optional HandlerConfig
            **overrides: HandlerConfig fields applied on top of ``config``

        Returns:
            Idempotent closure removing this exact registration. For a
            duplicate id the registration is refused and the closure is inert.
        """
        if not callable(handler):
            raise HandlerConfigError(f"Handler for '{action}' must be callable, got {handler!r}")

        config = config or HandlerConfig()
        if overrides:
            config = replace(config, **overrides)

        handler_id = config.id or f"handler_{next(self._ids)}"
        pipeline = self._pipelines.setdefault(action, [])

        if any(reg.id == handler_id for reg in pipeline):
            logger.debug("registry.duplicate_id", action=action, handler_id=handler_id)
            return _noop

        registration = HandlerRegistration(
            action=action,
            id=handler_id,
            handler=handler,
            config=replace(config, id=handler_id),
            sequence=next(self._sequence),
        )
        pipeline.append(registration)
        # list.sort is stable, and stays stable with reverse=True
        pipeline.sort(key=lambda reg: reg.rank, reverse=True)

        logger.debug(
            "registry.registered",
            action=action,
            handler_id=handler_id,
            priority=config.priority,
            handlers=len(pipeline),
        )
        self._notify("register", action, registration)

        def unregister() -> None:
            self.unregister(action, registration)

        return unregister

    def unregister(self, action: str, registration: HandlerRegistration) -> bool:
        """Remove an exact registration.

        Returns:
            True if it was removed, False if it was already gone
        """
        pipeline = self._pipelines.get(action)
        if not pipeline:
            return False
        for index, reg in enumerate(pipeline):
            if reg is registration:
                del pipeline[index]
                logger.debug("registry.unregistered", action=action, handler_id=reg.id)
                self._notify("unregister", action, reg)
                return True
        return False

    def snapshot(self, action: str) -> tuple[HandlerRegistration, ...]:
        """Atomic copy of the action's pipeline for one dispatch."""
        return tuple(self._pipelines.get(action, ()))

    def get(self, action: str, handler_id: str) -> HandlerRegistration | None:
        for reg in self._pipelines.get(action, ()):
            if reg.id == handler_id:
                return reg
        return None

    def remove_consumed(self, action: str, registrations: list[HandlerRegistration]) -> int:
        """Drop executed ``once`` registrations from the live pipeline.

        Returns:
            Number of registrations removed
        """
        removed = 0
        for registration in registrations:
            if registration.config.once and self.unregister(action, registration):
                removed += 1
        return removed

    def clear_action(self, action: str) -> None:
        """Drop one pipeline. Safe when nothing is registered."""
        pipeline = self._pipelines.pop(action, None)
        if pipeline:
            logger.debug("registry.cleared_action", action=action, handlers=len(pipeline))

    def clear_all(self) -> None:
        """Drop every pipeline."""
        total = sum(len(p) for p in self._pipelines.values())
        self._pipelines.clear()
        logger.debug("registry.cleared_all", handlers=total)

    # ── Introspection ────────────────────────────────────────────────

    def handler_count(self, action: str) -> int:
        return len(self._pipelines.get(action, ()))

    def has_handlers(self, action: str) -> bool:
        return self.handler_count(action) > 0

    def actions(self) -> list[str]:
        """Actions with at least one registered handler."""
        return [action for action, pipeline in self._pipelines.items() if pipeline]

    def stats(self, action: str, execution_mode: ExecutionMode) -> ActionStats | None:
        """Per-action statistics grouped by priority, or None if unknown."""
        pipeline = self._pipelines.get(action)
        if not pipeline:
            return None

        groups: list[dict[str, Any]] = []
        for reg in pipeline:
            entry = {
                "id": reg.id,
                "tags": list(reg.config.tags),
                "category": reg.config.category,
                "once": reg.config.once,
                "blocking": reg.config.blocking,
                "dependencies": list(reg.config.dependencies),
                "conflicts": list(reg.config.conflicts),
            }
            if groups and priority_equal(groups[-1]["priority"], reg.priority):
                groups[-1]["handlers"].append(entry)
            else:
                groups.append({"priority": reg.priority, "handlers": [entry]})

        return ActionStats(
            action=action,
            handler_count=len(pipeline),
            handlers_by_priority=groups,
            execution_mode=execution_mode,
        )


def priority_equal(a: float, b: float) -> bool:
    """Equality under the registry's total order (NaN equals NaN)."""
    return a == b or (a != a and b != b)
