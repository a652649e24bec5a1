"""Execution Strategies — sequential, parallel and race pipeline runners.

WHY
───
The same registry snapshot can be run three ways.  Each strategy is a plain
coroutine over a :class:`RunContext`, so the dispatcher picks one from a
table keyed by :class:`ExecutionMode` and the strategies stay substitutable.

ARCHITECTURE
────────────
::

    execute_sequential(context, track)   one at a time, awaits each handler
    execute_parallel(context, track)     all at once, results in completion order
    execute_race(context, track)         all at once, first to settle decides

    shared per-handler path
      _admit   ─ condition / validation / once-claim   (False → "skipped")
      _settle  ─ retries + advisory timeout, never raises
      _fold    ─ outcome, error record, result append

    ``track`` receives tasks the run stops waiting for (race losers,
    timed-out invocations, non-blocking parallel handlers) so the owner can
    keep them referenced until they finish.  Their controllers are detached
    first, so nothing they do afterwards reaches the run.

Rules every strategy follows:
    - check ``aborted`` / ``terminated`` before invoking a handler
    - a raising handler is recorded and the run continues
    - a ``None`` return value is not appended to ``results``

Related modules:
    controller.py — the handler-facing side of RunContext
    dispatcher.py — selects a strategy and builds the report

Tags:
    actionspine, execution, strategies, asyncio, sequential, parallel, race

Doc-Types:
    api-reference
"""

from __future__ import annotations

import asyncio
import inspect
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from actionspine.core.logging import get_logger
from actionspine.execution.controller import PipelineController
from actionspine.execution.models import (
    ExecutionMode,
    HandlerRegistration,
    RunContext,
    priority_rank,
)
from actionspine.execution.retry import RetryContext, strategy_for
from actionspine.execution.timeout import Deadline, run_with_timeout_async

logger = get_logger(__name__)

TaskTracker = Callable[[asyncio.Future[Any]], None]
Strategy = Callable[[RunContext, TaskTracker], Awaitable[None]]


@dataclass
class _Settled:
    """Outcome of one handler invocation, before it is folded into the run."""

    registration: HandlerRegistration
    value: Any = None
    error: BaseException | None = None
    duration_ms: float = 0.0
    attempts: int = 0


# =============================================================================
# PER-HANDLER PATH
# =============================================================================


def _admit(context: RunContext, registration: HandlerRegistration, payload: Any) -> bool:
    """Decide whether ``registration`` runs in this dispatch."""
    config = registration.config
    try:
        if config.condition is not None and not config.condition(payload):
            return False
        if config.validation is not None and not config.validation(payload):
            return False
    except Exception as e:
        outcome = context.outcome_for(registration)
        outcome.status = "failed"
        outcome.error = e
        context.record_error(registration.id, e)
        logger.warning(
            "handler.predicate_failed",
            action=context.action,
            handler_id=registration.id,
            error=repr(e),
        )
        return False
    return registration.claim()


def _launched(context: RunContext, registration: HandlerRegistration) -> None:
    """Mark a handler as invoked but not yet folded into the run."""
    outcome = context.outcome_for(registration)
    outcome.status = "abandoned"
    outcome.invoked = True


async def _call(registration: HandlerRegistration, payload: Any, controller: PipelineController) -> Any:
    result = registration.handler(payload, controller)
    if inspect.isawaitable(result):
        result = await result
    return result


async def _attempt(
    registration: HandlerRegistration,
    payload: Any,
    controller: PipelineController,
    track: TaskTracker,
) -> Any:
    timeout_ms = registration.config.timeout_ms
    if timeout_ms is None:
        return await _call(registration, payload, controller)

    def abandon(task: asyncio.Future[Any]) -> None:
        controller.detach()
        track(task)

    task = asyncio.ensure_future(_call(registration, payload, controller))
    return await run_with_timeout_async(task, timeout_ms, handler_id=registration.id, on_abandon=abandon)


async def _settle(
    registration: HandlerRegistration,
    payload: Any,
    controller: PipelineController,
    track: TaskTracker,
) -> _Settled:
    """Invoke one handler with its retry and timeout policy. Never raises."""
    config = registration.config
    retry = RetryContext(strategy_for(config.retries, config.retry_delay_ms))
    settled = _Settled(registration=registration)

    started = time.perf_counter()
    try:
        settled.value = await retry.run_async(lambda: _attempt(registration, payload, controller, track))
    except Exception as e:
        settled.error = e
    settled.duration_ms = (time.perf_counter() - started) * 1000.0
    settled.attempts = retry.attempts
    return settled


def _fold(context: RunContext, settled: _Settled, *, accept_result: bool) -> None:
    registration = settled.registration
    outcome = context.outcome_for(registration)
    outcome.invoked = True
    outcome.duration_ms = settled.duration_ms
    outcome.attempts = settled.attempts

    if settled.error is not None:
        outcome.status = "failed"
        outcome.error = settled.error
        context.record_error(registration.id, settled.error)
        logger.warning(
            "handler.failed",
            action=context.action,
            handler_id=registration.id,
            attempts=settled.attempts,
            error=repr(settled.error),
        )
        return

    outcome.status = "completed"
    outcome.result = settled.value
    if accept_result and settled.value is not None:
        context.results.append(settled.value)


def _interrupted(context: RunContext) -> bool:
    """Abort the run if its token was cancelled or its deadline passed."""
    token = context.cancellation_token
    if token is not None and token.cancelled:
        context.mark_aborted(token.reason)
        return True
    if context.deadline is not None and context.deadline.is_expired():
        context.mark_aborted(_timeout_reason(context.deadline))
        return True
    return False


def _timeout_reason(deadline: Deadline) -> str:
    return f"Result timeout of {deadline.timeout_ms:g}ms exceeded"


def _remaining(context: RunContext) -> float | None:
    if context.deadline is None:
        return None
    return max(context.deadline.remaining(), 0.0)


# =============================================================================
# STRATEGIES
# =============================================================================


async def execute_sequential(context: RunContext, track: TaskTracker) -> None:
    """Run handlers one after another in snapshot order.

    Each handler sees the payload as modified by the ones before it.  After
    a handler calls ``jump_to_priority(p)`` every following handler ranked
    strictly above ``p`` is skipped.
    """
    handlers = context.handlers
    i = 0
    while i < len(handlers):
        if context.stopped or _interrupted(context):
            break

        registration = handlers[i]
        context.current_index = i
        payload = context.payload

        if not _admit(context, registration, payload):
            i += 1
            continue

        controller = PipelineController(context, registration)
        settled = await _settle(registration, payload, controller, track)
        _fold(context, settled, accept_result=not context.terminated)
        i += 1

        if context.jump_target is not None:
            target = priority_rank(context.jump_target)
            context.jump_target = None
            while i < len(handlers) and handlers[i].rank > target:
                i += 1


async def execute_parallel(context: RunContext, track: TaskTracker) -> None:
    """Launch every runnable handler at once.

    All handlers receive the payload as it was at launch.  Results are
    appended in completion order until a handler aborts or terminates the
    run.  The run waits for the ``blocking`` handlers when there are any,
    otherwise for all of them; handlers still running after that are
    handed to ``track`` and left ``abandoned``.
    """
    payload = context.payload
    closed = False

    async def run_one(registration: HandlerRegistration, controller: PipelineController) -> None:
        settled = await _settle(registration, payload, controller, track)
        if closed:
            return
        _fold(context, settled, accept_result=not context.stopped)

    tasks: dict[asyncio.Future[None], tuple[HandlerRegistration, PipelineController]] = {}
    for registration in context.handlers:
        if not _admit(context, registration, payload):
            continue
        _launched(context, registration)
        controller = PipelineController(context, registration)
        tasks[asyncio.ensure_future(run_one(registration, controller))] = (registration, controller)

    if not tasks:
        return

    wait_for = [task for task, (reg, _) in tasks.items() if reg.config.blocking] or list(tasks)
    done, _ = await asyncio.wait(wait_for, timeout=_remaining(context))
    closed = True

    if len(done) < len(wait_for) and context.deadline is not None:
        context.mark_aborted(_timeout_reason(context.deadline))
    for task, (_, controller) in tasks.items():
        if not task.done():
            controller.detach()
            track(task)


async def execute_race(context: RunContext, track: TaskTracker) -> None:
    """Launch every runnable handler; the first to settle decides the run.

    The winner's value is the only result folded in, or its error is the
    only error recorded.  Every handler's controller writes are staged and
    only the winner's are applied.  Losers keep running (they are not
    cancelled), are detached from the run and reported as ``abandoned``.
    """
    payload = context.payload
    order: dict[asyncio.Future[_Settled], int] = {}
    controllers: dict[asyncio.Future[_Settled], PipelineController] = {}
    for index, registration in enumerate(context.handlers):
        if not _admit(context, registration, payload):
            continue
        _launched(context, registration)
        controller = PipelineController(context, registration, staged=True)
        task = asyncio.ensure_future(_settle(registration, payload, controller, track))
        order[task] = index
        controllers[task] = controller

    if not order:
        return

    done, pending = await asyncio.wait(
        order, timeout=_remaining(context), return_when=asyncio.FIRST_COMPLETED
    )
    for task in pending:
        controllers[task].detach()
        track(task)

    if not done:
        if context.deadline is not None:
            context.mark_aborted(_timeout_reason(context.deadline))
        return

    # several handlers can settle in the same loop iteration; priority order breaks the tie
    winner = min(done, key=order.__getitem__)
    for task in done:
        if task is not winner:
            controllers[task].detach()
    controllers[winner].commit()
    _fold(context, winner.result(), accept_result=True)


STRATEGIES: dict[ExecutionMode, Strategy] = {
    ExecutionMode.SEQUENTIAL: execute_sequential,
    ExecutionMode.PARALLEL: execute_parallel,
    ExecutionMode.RACE: execute_race,
}


def get_strategy(mode: ExecutionMode | str) -> Strategy:
    """Strategy coroutine for ``mode``; unknown modes fail fast."""
    return STRATEGIES[ExecutionMode.coerce(mode)]
