"""Timeout enforcement for handler invocations and whole runs.

Two tools, both advisory:

- :func:`run_with_timeout_async` races a handler's awaitable against a
  timer.  On expiry it raises :class:`HandlerTimeoutError` but does **not**
  cancel the invocation; the caller decides what to do with the still
  running task.
- :class:`Deadline` tracks a run-wide budget that strategies check at
  handler boundaries.

Examples:
    >>> deadline = Deadline.after_ms(500)
    >>> deadline.is_expired()
    False

    >>> result = await run_with_timeout_async(
    ...     task, 250, handler_id="fetch", on_abandon=background.add
    ... )

Tags:
    timeout, deadline, resilience, execution, actionspine

Doc-Types:
    api-reference
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from actionspine.core.errors import HandlerTimeoutError


@dataclass
class Deadline:
    """Run-wide deadline on the monotonic clock.

    Attributes:
        deadline: Absolute deadline timestamp (monotonic clock)
        timeout_ms: Original budget in milliseconds
        start_time: When the deadline started
    """

    deadline: float
    timeout_ms: float
    start_time: float = field(default_factory=time.monotonic)

    @classmethod
    def after_ms(cls, timeout_ms: float) -> Deadline:
        now = time.monotonic()
        return cls(deadline=now + timeout_ms / 1000.0, timeout_ms=timeout_ms, start_time=now)

    def remaining(self) -> float:
        """Seconds left; negative once expired."""
        return self.deadline - time.monotonic()

    @property
    def elapsed_ms(self) -> float:
        return (time.monotonic() - self.start_time) * 1000.0

    def is_expired(self) -> bool:
        return time.monotonic() >= self.deadline


async def run_with_timeout_async(
    task: asyncio.Future[Any],
    timeout_ms: float,
    *,
    handler_id: str,
    on_abandon: Callable[[asyncio.Future[Any]], None] | None = None,
) -> Any:
    """Await ``task`` for at most ``timeout_ms``.

    Args:
        task: Task or future wrapping the handler invocation
        timeout_ms: Budget in milliseconds
        handler_id: Used in the error message
        on_abandon: Receives the still-running task on expiry

    Returns:
        The task's result

    Raises:
        HandlerTimeoutError: If the task did not settle in time
        Exception: Whatever the task raised
    """
    done, _ = await asyncio.wait({task}, timeout=timeout_ms / 1000.0)
    if task in done:
        return task.result()
    if on_abandon is not None:
        on_abandon(task)
    raise HandlerTimeoutError(handler_id, timeout_ms)
