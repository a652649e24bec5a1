"""actionspine execution — typed action pipelines, guards and strategies.

WHY
───
Applications name their side effects ("save", "checkout", "search") and
let any number of independent handlers react to them.  Those handlers need
a deterministic order, a way to stop or short-circuit the chain, timing
guards for bursty callers, and a report of what actually ran.
``actionspine.execution`` provides that in-process, on asyncio.

ARCHITECTURE
────────────
::

    ActionRegister (dispatcher.py — THE public API)
      ├── HandlerRegistry   ─ action → priority-ordered pipeline
      ├── ActionGuard       ─ debounce / throttle per action
      ├── Strategies        ─ sequential | parallel | race
      │     └── PipelineController ─ abort / return_ / modify_payload / jump
      ├── Result processor  ─ first | last | all | merge | custom
      └── EventEmitter      ─ action.* / handler.* lifecycle events

MODULE MAP (recommended reading order)
──────────────────────────────────────
Contracts & Models
  1. models.py        ─ HandlerConfig, DispatchOptions, RunContext, ExecutionResult
  2. registry.py      ─ HandlerRegistry

Running a pipeline
  3. controller.py    ─ PipelineController (the handler's capability object)
  4. strategies.py    ─ execute_sequential / execute_parallel / execute_race
  5. results.py       ─ process_results
  6. dispatcher.py    ─ ActionRegister

Resilience & timing
  7. guard.py         ─ ActionGuard (debounce, throttle)
  8. timeout.py       ─ Deadline, run_with_timeout_async
  9. retry.py         ─ ConstantBackoff, RetryContext
 10. cancellation.py  ─ CancellationToken

Support
 11. filters.py       ─ filter_registrations
 12. events.py        ─ EventEmitter, ActionEvent

Example::

    from actionspine.execution import ActionRegister, HandlerConfig

    register = ActionRegister()

    async def persist(payload, controller):
        if not payload.get("valid"):
            controller.abort("invalid document")
        return {"saved": True}

    register.register("save", persist, HandlerConfig(priority=10))
    report = await register.dispatch_with_result("save", {"valid": True})
    print(report.results)  # [{'saved': True}]
"""

from .cancellation import CancellationToken
from .controller import PipelineController
from .dispatcher import ActionRegister
from .events import ActionEvent, EventEmitter, EventType
from .filters import filter_registrations
from .guard import ActionGuard, GuardState
from .models import (
    ActionStats,
    DispatchOptions,
    ExecutionMetadata,
    ExecutionMode,
    ExecutionResult,
    HandlerConfig,
    HandlerErrorRecord,
    HandlerFilter,
    HandlerOutcome,
    HandlerRegistration,
    ResultOptions,
    ResultStrategy,
    RunContext,
)
from .registry import HandlerRegistry
from .results import process_results
from .retry import ConstantBackoff, NoRetry, RetryContext, RetryStrategy
from .strategies import execute_parallel, execute_race, execute_sequential, get_strategy
from .timeout import Deadline, run_with_timeout_async

__all__ = [
    # Facade
    "ActionRegister",
    # Models
    "ActionStats",
    "DispatchOptions",
    "ExecutionMetadata",
    "ExecutionMode",
    "ExecutionResult",
    "HandlerConfig",
    "HandlerErrorRecord",
    "HandlerFilter",
    "HandlerOutcome",
    "HandlerRegistration",
    "ResultOptions",
    "ResultStrategy",
    "RunContext",
    # Registry
    "HandlerRegistry",
    "filter_registrations",
    # Running
    "PipelineController",
    "execute_sequential",
    "execute_parallel",
    "execute_race",
    "get_strategy",
    "process_results",
    # Resilience & timing
    "ActionGuard",
    "GuardState",
    "CancellationToken",
    "Deadline",
    "run_with_timeout_async",
    "ConstantBackoff",
    "NoRetry",
    "RetryContext",
    "RetryStrategy",
    # Events
    "ActionEvent",
    "EventEmitter",
    "EventType",
]
