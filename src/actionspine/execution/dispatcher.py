"""Action Register — the public dispatch facade.

WHY
───
UI bindings, services and tests all need the same two things: register a
handler for a named action, and dispatch that action with a payload.
``ActionRegister`` ties the registry, guard, strategies and result processor
together behind that small surface, and never lets a handler failure escape
as an exception.

ARCHITECTURE
────────────
::

    register(action, handler, config) ──► HandlerRegistry (sorted insert)

    dispatch_with_result(action, payload, options)
      │  1. validate options     ─ unknown mode / bad result options raise here
      │  2. snapshot + filter    ─ registry copy, HandlerFilter applied
      │  3. cancellation check   ─ token already cancelled → aborted report
      │  4. guard                ─ debounce, then throttle (options > handler config)
      │  5. RunContext           ─ payload, snapshot, mode, token, deadline
      │  6. strategy             ─ sequential | parallel | race
      │  7. once cleanup         ─ executed once-handlers leave the live registry
      │  8. result processing    ─ ResultOptions strategy
      ▼
    ExecutionResult  (+ action.start / action.complete | action.abort events)

    dispatch(...)  ─ same flow, returns None, swallows everything

Mode resolution: per-call option > per-action override > register default.

Related modules:
    registry.py    — pipelines
    guard.py       — debounce / throttle
    strategies.py  — execution disciplines
    results.py     — result reduction
    events.py      — lifecycle events

Example::

    register = ActionRegister(name="checkout")
    register.register("pay", charge_card, HandlerConfig(priority=10))
    report = await register.dispatch_with_result("pay", {"amount": 42})
    assert report.success

Tags:
    actionspine, execution, dispatcher, facade, pipeline

Doc-Types:
    api-reference
"""

from __future__ import annotations

import asyncio
import time
import uuid
from collections.abc import Mapping
from datetime import datetime
from typing import Any

from actionspine.core.errors import GuardRejectedError
from actionspine.core.logging import LogContext, get_logger
from actionspine.core.settings import ActionSpineSettings, get_settings
from actionspine.execution.events import ActionEvent, EventEmitter, EventType, Listener
from actionspine.execution.filters import filter_registrations
from actionspine.execution.guard import ActionGuard
from actionspine.execution.models import (
    ActionStats,
    DispatchOptions,
    ExecutionMetadata,
    ExecutionMode,
    ExecutionResult,
    Handler,
    HandlerConfig,
    HandlerOutcome,
    HandlerRegistration,
    ResultOptions,
    RunContext,
    Unregister,
    utcnow,
)
from actionspine.execution.registry import HandlerRegistry
from actionspine.execution.results import process_results
from actionspine.execution.strategies import get_strategy
from actionspine.execution.timeout import Deadline

logger = get_logger(__name__)

DEBOUNCED_REASON = "Debounced execution"
THROTTLED_REASON = "Throttled execution"


class ActionRegister:
    """Central registration and dispatch point for action pipelines.

    Parameters
    ----------
    name : str, optional
        Display name (default from settings).
    default_execution_mode : ExecutionMode | str, optional
        Mode for actions without an override (default from settings).
    settings : ActionSpineSettings, optional
        Settings object; the cached ``get_settings()`` when omitted.
    guard : ActionGuard, optional
        Inject a guard (e.g. with a fake clock in tests).
    """

    def __init__(
        self,
        name: str | None = None,
        default_execution_mode: ExecutionMode | str | None = None,
        settings: ActionSpineSettings | None = None,
        guard: ActionGuard | None = None,
    ) -> None:
        settings = settings or get_settings()
        self.name = name or settings.name
        self._execution_mode = ExecutionMode.coerce(
            default_execution_mode or settings.default_execution_mode
        )
        self._default_timeout_ms = settings.default_handler_timeout_ms
        self._events = EventEmitter()
        self._registry = HandlerRegistry(listener=self._on_registry_change)
        self._guard = guard or ActionGuard()
        self._action_modes: dict[str, ExecutionMode] = {}
        self._background: set[asyncio.Future[Any]] = set()

    # ── Registration ─────────────────────────────────────────────────

    def register(
        self,
        action: str,
        handler: Handler,
        config: HandlerConfig | None = None,
        **overrides: Any,
    ) -> Unregister:
        """Register ``handler`` for ``action``.

        Args:
            action: Action name
            handler: ``handler(payload, controller)``; may be async
            config: Optional HandlerConfig
            **overrides: HandlerConfig fields, e.g. ``priority=10, once=True``

        Returns:
            Idempotent unregister closure (inert for a duplicate id)
        """
        if (
            self._default_timeout_ms is not None
            and "timeout_ms" not in overrides
            and (config is None or config.timeout_ms is None)
        ):
            overrides["timeout_ms"] = self._default_timeout_ms
        return self._registry.register(action, handler, config, **overrides)

    def _on_registry_change(self, change: str, action: str, registration: HandlerRegistration) -> None:
        event_type = EventType.HANDLER_REGISTER if change == "register" else EventType.HANDLER_UNREGISTER
        self._emit(event_type, action, handler_id=registration.id, priority=registration.priority)

    # ── Dispatch ─────────────────────────────────────────────────────

    async def dispatch(
        self,
        action: str,
        payload: Any = None,
        options: DispatchOptions | Mapping[str, Any] | None = None,
    ) -> None:
        """Fire-and-forget dispatch. Never raises."""
        try:
            await self.dispatch_with_result(action, payload, options)
        except Exception as e:
            logger.error("dispatch.failed", action=action, register=self.name, error=repr(e))

    async def dispatch_with_result(
        self,
        action: str,
        payload: Any = None,
        options: DispatchOptions | Mapping[str, Any] | None = None,
    ) -> ExecutionResult:
        """Dispatch ``action`` and report what happened.

        Handler failures, aborts and guard rejections are reported, not
        raised. Configuration errors raise before any handler runs.

        Raises:
            UnknownExecutionModeError: ``execution_mode`` is not a known mode
            ResultStrategyError: result options cannot be honoured
        """
        opts = DispatchOptions.coerce(options)
        mode = self._resolve_mode(action, opts)
        result_options = opts.result.validate() if opts.result is not None else None

        started_at = utcnow()
        started = time.perf_counter()

        async with LogContext(register=self.name, action=action, dispatch_id=uuid.uuid4().hex[:12]):
            self._emit(EventType.ACTION_START, action, payload=payload)

            snapshot = filter_registrations(self._registry.snapshot(action), opts.filter)
            context = RunContext(
                action=action,
                payload=payload,
                handlers=snapshot,
                execution_mode=mode,
                cancellation_token=opts.cancellation_token,
            )

            if snapshot:
                await self._run(context, opts, result_options)
            else:
                logger.debug("dispatch.no_handlers")

            try:
                report = self._build_result(context, result_options, started_at, started)
            except Exception as e:
                self._emit(EventType.ACTION_ERROR, action, payload=payload, error=e)
                raise

            if report.aborted:
                logger.info("dispatch.aborted", reason=report.abort_reason, **report.execution.to_dict())
                self._emit(
                    EventType.ACTION_ABORT,
                    action,
                    payload=payload,
                    reason=report.abort_reason,
                    metrics=report.execution.to_dict(),
                )
            else:
                logger.debug("dispatch.completed", success=report.success, **report.execution.to_dict())
                self._emit(
                    EventType.ACTION_COMPLETE,
                    action,
                    payload=payload,
                    metrics=report.execution.to_dict(),
                )
            return report

    async def _run(
        self,
        context: RunContext,
        opts: DispatchOptions,
        result_options: ResultOptions | None,
    ) -> None:
        token = opts.cancellation_token
        if token is not None and token.cancelled:
            logger.info("dispatch.cancelled", reason=token.reason)
            context.mark_aborted(token.reason)
            return

        rejection = await self._check_guards(context.action, context.handlers, opts)
        if rejection is not None:
            logger.debug("dispatch.guard_rejected", guard=rejection.guard, reason=rejection.reason)
            context.rejection = rejection
            context.mark_aborted(rejection.reason)
            return

        if result_options is not None and result_options.timeout_ms is not None:
            context.deadline = Deadline.after_ms(result_options.timeout_ms)

        logger.debug(
            "dispatch.start",
            mode=context.execution_mode.value,
            handlers=len(context.handlers),
        )
        strategy = get_strategy(context.execution_mode)
        try:
            await strategy(context, self._track)
        finally:
            consumed = [reg for reg in context.handlers if reg.config.once and reg.consumed]
            if consumed:
                self._registry.remove_consumed(context.action, consumed)

    async def _check_guards(
        self,
        action: str,
        handlers: tuple[HandlerRegistration, ...],
        opts: DispatchOptions,
    ) -> GuardRejectedError | None:
        """Return the guard's rejection, or None if the dispatch may proceed."""
        debounce_ms = opts.debounce_ms
        if debounce_ms is None:
            debounce_ms = next((h.config.debounce_ms for h in handlers if h.config.debounce_ms is not None), None)
        throttle_ms = opts.throttle_ms
        if throttle_ms is None:
            throttle_ms = next((h.config.throttle_ms for h in handlers if h.config.throttle_ms is not None), None)

        if debounce_ms is not None and not await self._guard.debounce(action, debounce_ms):
            return GuardRejectedError("debounce", action, reason=DEBOUNCED_REASON)
        if throttle_ms is not None and not self._guard.throttle(action, throttle_ms):
            return GuardRejectedError("throttle", action, reason=THROTTLED_REASON)
        return None

    def _build_result(
        self,
        context: RunContext,
        result_options: ResultOptions | None,
        started_at: datetime,
        started: float,
    ) -> ExecutionResult:
        outcomes = [
            context.outcomes.get(reg.id) or HandlerOutcome(id=reg.id, priority=reg.priority)
            for reg in context.handlers
        ]
        race_failed = context.execution_mode is ExecutionMode.RACE and bool(context.errors)
        result = process_results(context, result_options)
        ended_at = utcnow()

        return ExecutionResult(
            action=context.action,
            success=not context.aborted and not race_failed,
            aborted=context.aborted,
            abort_reason=context.abort_reason,
            terminated=context.terminated,
            termination_result=context.termination_result,
            result=result,
            results=list(context.results),
            execution=ExecutionMetadata(
                duration_ms=(time.perf_counter() - started) * 1000.0,
                handlers_executed=sum(1 for o in outcomes if o.executed),
                handlers_skipped=sum(1 for o in outcomes if o.status == "skipped"),
                handlers_failed=sum(1 for o in outcomes if o.status == "failed"),
                started_at=started_at,
                ended_at=ended_at,
            ),
            execution_mode=context.execution_mode,
            handlers=outcomes,
            errors=list(context.errors),
            rejection=context.rejection,
        )

    # ── Background tasks ─────────────────────────────────────────────

    def _track(self, task: asyncio.Future[Any]) -> None:
        self._background.add(task)
        task.add_done_callback(self._background_done)

    def _background_done(self, task: asyncio.Future[Any]) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.debug("dispatch.background_failed", error=repr(task.exception()))

    @property
    def pending_background_tasks(self) -> int:
        """Handler invocations still running after their dispatch returned."""
        return len(self._background)

    async def aclose(self) -> None:
        """Wait for background handler invocations and release guard timers."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
        self._guard.clear_all()

    async def __aenter__(self) -> ActionRegister:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    # ── Execution modes ──────────────────────────────────────────────

    def _resolve_mode(self, action: str, opts: DispatchOptions) -> ExecutionMode:
        if opts.execution_mode is not None:
            return ExecutionMode.coerce(opts.execution_mode)
        return self._action_modes.get(action, self._execution_mode)

    def set_execution_mode(self, mode: ExecutionMode | str) -> None:
        self._execution_mode = ExecutionMode.coerce(mode)

    def get_execution_mode(self) -> ExecutionMode:
        return self._execution_mode

    def set_action_execution_mode(self, action: str, mode: ExecutionMode | str) -> None:
        self._action_modes[action] = ExecutionMode.coerce(mode)

    def get_action_execution_mode(self, action: str) -> ExecutionMode:
        return self._action_modes.get(action, self._execution_mode)

    def remove_action_execution_mode(self, action: str) -> None:
        self._action_modes.pop(action, None)

    # ── Introspection ────────────────────────────────────────────────

    def has_handlers(self, action: str) -> bool:
        return self._registry.has_handlers(action)

    def get_handler_count(self, action: str) -> int:
        return self._registry.handler_count(action)

    def get_registered_actions(self) -> list[str]:
        return self._registry.actions()

    def get_action_stats(self, action: str) -> ActionStats | None:
        return self._registry.stats(action, self.get_action_execution_mode(action))

    def get_all_action_stats(self) -> list[ActionStats]:
        return [
            stats
            for action in self._registry.actions()
            if (stats := self.get_action_stats(action)) is not None
        ]

    def clear_action(self, action: str) -> None:
        self._registry.clear_action(action)

    def clear_all(self) -> None:
        """Drop every handler and every event listener."""
        self._registry.clear_all()
        self._events.remove_all_listeners()
        logger.info("register.cleared", register=self.name)

    @property
    def guard(self) -> ActionGuard:
        return self._guard

    # ── Events ───────────────────────────────────────────────────────

    def on(self, event_type: EventType | str, listener: Listener) -> Unregister:
        """Subscribe to lifecycle events; returns an unsubscribe closure."""
        return self._events.on(event_type, listener)

    def off(self, event_type: EventType | str, listener: Listener) -> None:
        self._events.off(event_type, listener)

    def _emit(self, event_type: EventType, action: str, **data: Any) -> None:
        self._events.emit(ActionEvent(event_type=event_type, action=action, data=data))

    def __repr__(self) -> str:
        return f"ActionRegister(name={self.name!r}, mode={self._execution_mode.value}, actions={len(self.get_registered_actions())})"
