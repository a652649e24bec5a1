"""Pipeline Controller — the capability object every handler receives.

Handlers never touch the :class:`RunContext` directly.  Each invocation
gets a fresh controller bound to the shared context of its dispatch; every
change a handler makes to the run (abort, early return, payload rewrite,
priority jump, extra results) goes through it.

::

    handler(payload, controller)
      ├── controller.abort(reason)          ─ stop the run (flag, last write wins)
      ├── controller.return_(value)         ─ terminate with a value (last write wins)
      ├── controller.modify_payload(fn)     ─ payload = fn(payload); errors keep the old one
      ├── controller.get_payload()
      ├── controller.jump_to_priority(p)    ─ sequential only: skip ranks above p
      ├── controller.set_result(value)      ─ append to results now
      ├── controller.get_results()          ─ copy of results so far
      └── controller.merge_result(fn)       ─ results[-1] = fn(results[:-1], results[-1])

``abort`` and ``return_`` are independent flags.  A handler may set both;
whichever was called last is recorded as the run's ``last_signal``.

Two owner-side switches decide when writes reach the run:

- ``staged=True`` keeps writes in a private buffer until :meth:`commit`
  (race mode: only the winner's writes are applied).
- :meth:`detach` drops the buffer and ignores every later write (timed-out
  invocations, race losers, abandoned parallel handlers).
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from actionspine.core.logging import get_logger
from actionspine.execution.cancellation import CancellationToken
from actionspine.execution.models import HandlerRegistration, RunContext

logger = get_logger(__name__)


@dataclass
class _StagedWrites:
    results: list[Any]
    payload: Any
    signals: list[tuple[str, Any]] = field(default_factory=list)


class PipelineController:
    """Per-invocation view of a dispatch's shared run state."""

    __slots__ = ("_context", "_registration", "_staged", "_detached")

    def __init__(self, context: RunContext, registration: HandlerRegistration, *, staged: bool = False):
        self._context = context
        self._registration = registration
        self._staged = _StagedWrites(results=list(context.results), payload=context.payload) if staged else None
        self._detached = False

    @property
    def handler_id(self) -> str:
        return self._registration.id

    @property
    def action(self) -> str:
        return self._context.action

    @property
    def is_aborted(self) -> bool:
        return self._context.aborted

    @property
    def is_terminated(self) -> bool:
        return self._context.terminated

    @property
    def is_detached(self) -> bool:
        return self._detached

    @property
    def cancellation_token(self) -> CancellationToken | None:
        return self._context.cancellation_token

    @property
    def is_cancelled(self) -> bool:
        token = self._context.cancellation_token
        return token is not None and token.cancelled

    # ── Owner side ───────────────────────────────────────────────────

    def detach(self) -> None:
        """Stop this invocation from affecting the run."""
        self._detached = True
        self._staged = None

    def commit(self) -> None:
        """Apply staged writes to the run, in the order they were made."""
        staged = self._staged
        if staged is None:
            return
        self._staged = None
        context = self._context
        context.results[:] = staged.results
        context.payload = staged.payload
        for signal, value in staged.signals:
            if signal == "abort":
                context.mark_aborted(value)
            else:
                context.mark_terminated(value)

    def _ignored(self, operation: str) -> bool:
        if not self._detached:
            return False
        logger.debug("controller.write_ignored", action=self.action, handler_id=self.handler_id, operation=operation)
        return True

    def _results(self) -> list[Any]:
        return self._staged.results if self._staged is not None else self._context.results

    # ── Handler side ─────────────────────────────────────────────────

    def next(self) -> None:
        """Continue to the next handler.

        Progression is automatic; kept so handlers written against the
        explicit-continue style still work.
        """
        return None

    def abort(self, reason: str | None = None) -> None:
        if self._ignored("abort"):
            return
        logger.debug("controller.abort", action=self.action, handler_id=self.handler_id, reason=reason)
        if self._staged is not None:
            self._staged.signals.append(("abort", reason))
        else:
            self._context.mark_aborted(reason)

    def return_(self, value: Any = None) -> None:
        if self._ignored("return"):
            return
        logger.debug("controller.return", action=self.action, handler_id=self.handler_id)
        if self._staged is not None:
            self._staged.signals.append(("return", value))
        else:
            self._context.mark_terminated(value)

    def modify_payload(self, modifier: Callable[[Any], Any]) -> None:
        if self._ignored("modify_payload"):
            return
        try:
            new_payload = modifier(self.get_payload())
        except Exception as e:
            logger.warning(
                "controller.modify_payload_failed",
                action=self.action,
                handler_id=self.handler_id,
                error=repr(e),
            )
            return
        if self._staged is not None:
            self._staged.payload = new_payload
        else:
            self._context.payload = new_payload

    def get_payload(self) -> Any:
        if self._staged is not None:
            return self._staged.payload
        return self._context.payload

    def jump_to_priority(self, priority: float) -> None:
        # jumps only steer sequential runs, which never stage
        if self._ignored("jump_to_priority") or self._staged is not None:
            return
        self._context.jump_target = priority

    def set_result(self, value: Any) -> None:
        if self._ignored("set_result"):
            return
        self._results().append(value)

    def get_results(self) -> list[Any]:
        return list(self._results())

    def merge_result(self, merger: Callable[[list[Any], Any], Any]) -> None:
        if self._ignored("merge_result"):
            return
        results = self._results()
        if not results:
            results.append(merger([], None))
            return
        results[-1] = merger(results[:-1], results[-1])
