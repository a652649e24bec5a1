"""Execution Models — the typed records that flow through a dispatch.

WHY
───
A dispatch touches a lot of optional configuration (priority, guards,
filters, result strategies) and produces a rich report.  Keeping every one
of those shapes as an explicit dataclass with documented defaults keeps the
contract enumerable and testable instead of hiding it in loose dicts.

ARCHITECTURE
────────────
::

    Registration side                Dispatch side
    ─────────────────                ─────────────
    HandlerConfig                    DispatchOptions
      └─► HandlerRegistration          ├── HandlerFilter
                                       └── ResultOptions
                    │
                    ▼
                RunContext  (one per dispatch, mutated via controller)
                    │
                    ▼
    ExecutionResult ── HandlerOutcome[] ── HandlerErrorRecord[]
                    └─ ExecutionMetadata

Related modules:
    registry.py    — owns HandlerRegistration lists
    controller.py  — the only writer of RunContext control fields
    dispatcher.py  — builds RunContext and ExecutionResult

Tags:
    actionspine, execution, models, dataclasses

Doc-Types:
    api-reference
"""

from __future__ import annotations

import math
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from actionspine.core.errors import (
    GuardRejectedError,
    HandlerConfigError,
    ResultStrategyError,
    UnknownExecutionModeError,
)

if TYPE_CHECKING:
    from actionspine.execution.cancellation import CancellationToken
    from actionspine.execution.controller import PipelineController
    from actionspine.execution.timeout import Deadline

Handler = Callable[[Any, "PipelineController"], Any | Awaitable[Any]]
Predicate = Callable[[Any], bool]
Unregister = Callable[[], None]


def utcnow() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(UTC)


def priority_rank(priority: float) -> tuple[int, float]:
    """Total-order sort key for priorities.

    NaN ranks below every number (``-inf`` included) so that sorting and
    jump comparisons never depend on NaN's unordered comparisons.
    """
    if math.isnan(priority):
        return (0, 0.0)
    return (1, float(priority))


class ExecutionMode(str, Enum):
    """How a pipeline's handlers are scheduled."""

    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"
    RACE = "race"

    @classmethod
    def coerce(cls, value: ExecutionMode | str) -> ExecutionMode:
        """Accept a member or its string value; anything else fails fast."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise UnknownExecutionModeError(value) from None


class ResultStrategy(str, Enum):
    """How ``results`` are reduced to the reported ``result``."""

    FIRST = "first"
    LAST = "last"
    ALL = "all"
    MERGE = "merge"
    CUSTOM = "custom"


# =============================================================================
# REGISTRATION
# =============================================================================


@dataclass
class HandlerConfig:
    """Per-handler configuration. Every field is optional.

    Timing values are milliseconds. ``condition`` and ``validation`` receive
    the current payload; a falsy answer skips the handler for that dispatch.
    ``dependencies``, ``conflicts``, ``description``, ``version`` and
    ``metadata`` are descriptive only and surface through stats.
    """

    priority: float = 0
    id: str | None = None
    once: bool = False
    blocking: bool = False
    condition: Predicate | None = None
    validation: Predicate | None = None
    debounce_ms: float | None = None
    throttle_ms: float | None = None
    timeout_ms: float | None = None
    retries: int = 0
    retry_delay_ms: float = 0
    tags: list[str] = field(default_factory=list)
    category: str | None = None
    description: str | None = None
    version: str | None = None
    environment: str | None = None
    feature: str | None = None
    dependencies: list[str] = field(default_factory=list)
    conflicts: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if isinstance(self.priority, bool) or not isinstance(self.priority, (int, float)):
            raise HandlerConfigError(f"priority must be a number, got {self.priority!r}")
        if self.retries < 0:
            raise HandlerConfigError(f"retries must be >= 0, got {self.retries}")
        for name in ("debounce_ms", "throttle_ms", "timeout_ms", "retry_delay_ms"):
            value = getattr(self, name)
            if value is not None and value < 0:
                raise HandlerConfigError(f"{name} must be >= 0, got {value}")
        if self.condition is not None and not callable(self.condition):
            raise HandlerConfigError("condition must be callable")
        if self.validation is not None and not callable(self.validation):
            raise HandlerConfigError("validation must be callable")


@dataclass(eq=False)
class HandlerRegistration:
    """A handler bound into one action's pipeline.

    Compared by identity: unregistering and once-cleanup remove exactly the
    registration object they were given, never a later one reusing its id.
    """

    action: str
    id: str
    handler: Handler
    config: HandlerConfig
    sequence: int
    registered_at: datetime = field(default_factory=utcnow)
    consumed: bool = field(default=False, repr=False)

    @property
    def priority(self) -> float:
        return self.config.priority

    @property
    def rank(self) -> tuple[int, float]:
        return priority_rank(self.config.priority)

    def claim(self) -> bool:
        """Reserve the right to invoke this handler.

        Always succeeds for ordinary handlers. A ``once`` handler can be
        claimed a single time, even across concurrent dispatches whose
        snapshots both contain it.
        """
        if not self.config.once:
            return True
        if self.consumed:
            return False
        self.consumed = True
        return True


# =============================================================================
# DISPATCH OPTIONS
# =============================================================================


@dataclass
class HandlerFilter:
    """Dispatch-time selection over the registry snapshot."""

    tags: list[str] | None = None
    category: str | None = None
    handler_ids: list[str] | None = None
    environment: str | None = None
    feature: str | None = None
    exclude_tags: list[str] | None = None
    exclude_category: str | None = None
    exclude_handler_ids: list[str] | None = None
    custom: Callable[[HandlerConfig], bool] | None = None


@dataclass
class ResultOptions:
    """How the raw ``results`` list is reduced.

    ``timeout_ms`` bounds the whole run: it is checked at handler boundaries
    in sequential mode and abandons unfinished handlers in parallel/race.
    """

    collect: bool = False
    strategy: ResultStrategy | str | None = None
    merger: Callable[[list[Any]], Any] | None = None
    max_results: int | None = None
    timeout_ms: float | None = None

    def validate(self) -> ResultOptions:
        """Normalise ``strategy`` and reject combinations that cannot run."""
        if self.strategy is not None and not isinstance(self.strategy, ResultStrategy):
            try:
                self.strategy = ResultStrategy(self.strategy)
            except ValueError:
                raise ResultStrategyError(f"Unknown result strategy: {self.strategy!r}") from None
        if self.strategy is ResultStrategy.CUSTOM and self.merger is None:
            raise ResultStrategyError("Custom result strategy requires a merger function")
        if self.max_results is not None and self.max_results < 0:
            raise ResultStrategyError(f"max_results must be >= 0, got {self.max_results}")
        if self.timeout_ms is not None and self.timeout_ms < 0:
            raise ResultStrategyError(f"timeout_ms must be >= 0, got {self.timeout_ms}")
        return self


@dataclass
class DispatchOptions:
    """Per-call dispatch options. Every field is optional."""

    execution_mode: ExecutionMode | str | None = None
    debounce_ms: float | None = None
    throttle_ms: float | None = None
    filter: HandlerFilter | None = None
    result: ResultOptions | None = None
    cancellation_token: CancellationToken | None = None

    @classmethod
    def coerce(cls, value: DispatchOptions | Mapping[str, Any] | None) -> DispatchOptions:
        """Build options from ``None``, an instance, or a plain mapping.

        Nested ``filter`` / ``result`` mappings become their dataclasses.
        """
        if value is None:
            return cls()
        if isinstance(value, cls):
            return value
        data = dict(value)
        if isinstance(data.get("filter"), Mapping):
            data["filter"] = HandlerFilter(**data["filter"])
        if isinstance(data.get("result"), Mapping):
            data["result"] = ResultOptions(**data["result"])
        return cls(**data)


# =============================================================================
# RUN STATE
# =============================================================================


@dataclass
class HandlerOutcome:
    """What happened to one snapshot handler during a run.

    Status is one of ``completed``, ``failed``, ``skipped`` or
    ``abandoned`` (launched, but its outcome was not folded into the run).
    ``invoked`` is false for a handler whose condition or validation
    raised: it is ``failed`` without ever having been called.
    """

    id: str
    priority: float
    status: str = "skipped"
    duration_ms: float | None = None
    result: Any = None
    error: BaseException | None = None
    attempts: int = 0
    invoked: bool = False

    @property
    def executed(self) -> bool:
        return self.invoked

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "priority": self.priority,
            "status": self.status,
            "executed": self.executed,
            "duration_ms": self.duration_ms,
            "attempts": self.attempts,
            "error": repr(self.error) if self.error is not None else None,
        }


@dataclass
class HandlerErrorRecord:
    """One captured handler failure."""

    handler_id: str
    error: BaseException
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "handler_id": self.handler_id,
            "error_type": type(self.error).__name__,
            "message": str(self.error),
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class RunContext:
    """Ephemeral state of one dispatch.

    Only the strategies and the :class:`PipelineController` write to it.
    ``aborted`` and ``terminated`` are one-way: once set they stay set.
    """

    action: str
    payload: Any
    handlers: tuple[HandlerRegistration, ...]
    execution_mode: ExecutionMode
    aborted: bool = False
    abort_reason: str | None = None
    terminated: bool = False
    termination_result: Any = None
    last_signal: str | None = None
    current_index: int = 0
    jump_target: float | None = None
    results: list[Any] = field(default_factory=list)
    outcomes: dict[str, HandlerOutcome] = field(default_factory=dict)
    errors: list[HandlerErrorRecord] = field(default_factory=list)
    cancellation_token: CancellationToken | None = None
    deadline: Deadline | None = None
    rejection: GuardRejectedError | None = None

    @property
    def stopped(self) -> bool:
        """True once the run must not invoke further handlers."""
        return self.aborted or self.terminated

    def outcome_for(self, registration: HandlerRegistration) -> HandlerOutcome:
        outcome = self.outcomes.get(registration.id)
        if outcome is None:
            outcome = HandlerOutcome(id=registration.id, priority=registration.priority)
            self.outcomes[registration.id] = outcome
        return outcome

    def mark_aborted(self, reason: str | None) -> None:
        self.aborted = True
        self.abort_reason = reason
        self.last_signal = "abort"

    def mark_terminated(self, value: Any) -> None:
        self.terminated = True
        self.termination_result = value
        self.last_signal = "return"

    def record_error(self, handler_id: str, error: BaseException) -> HandlerErrorRecord:
        record = HandlerErrorRecord(handler_id=handler_id, error=error)
        self.errors.append(record)
        return record


# =============================================================================
# REPORTING
# =============================================================================


@dataclass
class ExecutionMetadata:
    """Aggregate counters and timing for one dispatch."""

    duration_ms: float
    handlers_executed: int
    handlers_skipped: int
    handlers_failed: int
    started_at: datetime
    ended_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "duration_ms": self.duration_ms,
            "handlers_executed": self.handlers_executed,
            "handlers_skipped": self.handlers_skipped,
            "handlers_failed": self.handlers_failed,
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat(),
        }


@dataclass
class ExecutionResult:
    """Report returned by ``dispatch_with_result``.

    ``aborted`` and ``terminated`` are independent: a handler that calls both
    ``abort`` and ``return_`` leaves both set.  ``rejection`` is set when
    debounce or throttle turned the dispatch away.
    """

    action: str
    success: bool
    aborted: bool
    terminated: bool
    execution: ExecutionMetadata
    execution_mode: ExecutionMode
    abort_reason: str | None = None
    termination_result: Any = None
    result: Any = None
    results: list[Any] = field(default_factory=list)
    handlers: list[HandlerOutcome] = field(default_factory=list)
    errors: list[HandlerErrorRecord] = field(default_factory=list)
    rejection: GuardRejectedError | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialise for logging / API responses."""
        return {
            "action": self.action,
            "success": self.success,
            "aborted": self.aborted,
            "abort_reason": self.abort_reason,
            "terminated": self.terminated,
            "execution_mode": self.execution_mode.value,
            "results_count": len(self.results),
            "execution": self.execution.to_dict(),
            "handlers": [h.to_dict() for h in self.handlers],
            "errors": [e.to_dict() for e in self.errors],
            "rejection": self.rejection.to_dict() if self.rejection is not None else None,
        }


@dataclass
class ActionStats:
    """Registry statistics for one action."""

    action: str
    handler_count: int
    handlers_by_priority: list[dict[str, Any]]
    execution_mode: ExecutionMode

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action,
            "handler_count": self.handler_count,
            "handlers_by_priority": self.handlers_by_priority,
            "execution_mode": self.execution_mode.value,
        }
