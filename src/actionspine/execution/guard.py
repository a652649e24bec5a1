"""Action Guard — per-key debounce and throttle timing control.

Manifesto:
Bursty callers (keystrokes, scroll events, retries) can dispatch the same
action dozens of times a second.  The guard sits in front of a dispatch and
decides, per key, whether this call may proceed.

ARCHITECTURE
────────────
::

    ActionGuard
      ├── .debounce(key, ms)  ─ awaitable; True only for the last call in a burst
      ├── .throttle(key, ms)  ─ immediate; True at most once per window
      ├── .clear_guards(key)  ─ cancel timers, release waiters with False
      └── .clear_all()

    GuardState (one per key)
      ├── last_executed_at    ─ monotonic time of the last throttle pass
      ├── is_throttled        ─ a reset timer is pending
      ├── debounce_handle     ─ at most one live debounce timer
      ├── debounce_waiter     ─ the single caller waiting on it
      └── throttle_handle     ─ at most one live throttle reset timer

    Timers are always cancelled and replaced, never layered, so a key never
    holds more than one timer of each kind and no waiter is left pending.

BEST PRACTICES
──────────────
- Debounce for "act when the user stops" (search boxes).
- Throttle for "act at most every N ms" (scroll, resize).
- Call ``clear_all()`` on shutdown to release pending waiters.

Related modules:
    dispatcher.py — consults the guard before building a RunContext

Tags:
    actionspine, execution, guard, debounce, throttle

Doc-Types:
    api-reference
"""

from __future__ import annotations

import asyncio
import math
import time
from collections.abc import Callable
from dataclasses import dataclass

from actionspine.core.logging import get_logger

logger = get_logger(__name__)


@dataclass
class GuardState:
    """Timing state for one guarded key."""

    last_executed_at: float | None = None
    last_debounced_at: float | None = None
    is_throttled: bool = False
    debounce_handle: asyncio.TimerHandle | None = None
    debounce_waiter: asyncio.Future[bool] | None = None
    throttle_handle: asyncio.TimerHandle | None = None

    def release(self) -> None:
        """Cancel every timer and resolve the pending waiter with False."""
        if self.debounce_handle is not None:
            self.debounce_handle.cancel()
            self.debounce_handle = None
        if self.debounce_waiter is not None:
            if not self.debounce_waiter.done():
                self.debounce_waiter.set_result(False)
            self.debounce_waiter = None
        if self.throttle_handle is not None:
            self.throttle_handle.cancel()
            self.throttle_handle = None
        self.is_throttled = False


class ActionGuard:
    """Debounce/throttle gatekeeper keyed by string.

    Parameters
    ----------
    clock : callable
        Monotonic clock in seconds (default ``time.monotonic``).

    Example:
        >>> guard = ActionGuard()
        >>> if await guard.debounce("search", 300):
        ...     run_search()
        >>> if guard.throttle("scroll", 100):
        ...     update_position()
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._guards: dict[str, GuardState] = {}

    def _state(self, key: str) -> GuardState:
        state = self._guards.get(key)
        if state is None:
            state = GuardState()
            self._guards[key] = state
        return state

    # ── Debounce ─────────────────────────────────────────────────────

    async def debounce(self, key: str, ms: float) -> bool:
        """Wait out a debounce window for ``key``.

        Returns:
            True if no other debounce call for ``key`` arrived within ``ms``;
            False as soon as a newer call supersedes this one.
        """
        loop = asyncio.get_running_loop()
        state = self._state(key)

        if state.debounce_handle is not None:
            state.debounce_handle.cancel()
            state.debounce_handle = None
            logger.debug("guard.debounce_superseded", key=key)
        if state.debounce_waiter is not None and not state.debounce_waiter.done():
            state.debounce_waiter.set_result(False)

        waiter: asyncio.Future[bool] = loop.create_future()
        state.debounce_waiter = waiter

        def _fire() -> None:
            if state.debounce_waiter is waiter:
                state.debounce_waiter = None
                state.debounce_handle = None
            state.last_debounced_at = self._clock()
            if not waiter.done():
                waiter.set_result(True)
            logger.debug("guard.debounce_fired", key=key)

        state.debounce_handle = loop.call_later(max(ms, 0) / 1000.0, _fire)
        return await waiter

    # ── Throttle ─────────────────────────────────────────────────────

    def throttle(self, key: str, ms: float) -> bool:
        """Admit at most one call per ``ms`` window for ``key``.

        Returns:
            True (and restarts the window) if ``ms`` has elapsed since the
            last admitted call, False otherwise.
        """
        state = self._state(key)
        now = self._clock()
        if state.last_executed_at is None:
            elapsed_ms = math.inf
        else:
            elapsed_ms = (now - state.last_executed_at) * 1000.0

        if elapsed_ms >= ms:
            state.last_executed_at = now
            state.is_throttled = False
            if state.throttle_handle is not None:
                state.throttle_handle.cancel()
                state.throttle_handle = None
            return True

        if state.is_throttled:
            return False

        state.is_throttled = True
        remaining = (ms - elapsed_ms) / 1000.0
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # no loop: the flag is cleared by the next admitted call instead
            loop = None
        if loop is not None:
            state.throttle_handle = loop.call_later(remaining, self._end_throttle, key, state)

        logger.debug("guard.throttled", key=key, remaining_ms=remaining * 1000.0)
        return False

    def _end_throttle(self, key: str, state: GuardState) -> None:
        state.is_throttled = False
        state.throttle_handle = None
        logger.debug("guard.throttle_ended", key=key)

    # ── Cleanup / inspection ─────────────────────────────────────────

    def clear_guards(self, key: str) -> None:
        """Cancel timers for ``key`` and release its waiter with False."""
        state = self._guards.pop(key, None)
        if state is not None:
            state.release()
            logger.debug("guard.cleared", key=key)

    def clear_all(self) -> None:
        """Cancel every timer and release every waiter with False."""
        for state in self._guards.values():
            state.release()
        count = len(self._guards)
        self._guards.clear()
        logger.debug("guard.cleared_all", keys=count)

    def get_guard_state(self, key: str) -> GuardState | None:
        return self._guards.get(key)

    def get_all_guard_states(self) -> dict[str, GuardState]:
        return dict(self._guards)
