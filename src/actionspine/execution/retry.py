"""Retry strategies for handler invocations.

A handler registered with ``retries=N`` is re-invoked up to N extra times
when it raises.  Timeouts are not retried: the timed-out invocation is still
running and a second copy would double its side effects.

Example:
    >>> ctx = RetryContext(ConstantBackoff(max_retries=2, delay=0.01))
    >>> result = await ctx.run_async(call_handler)
    >>> ctx.attempts
    1
"""

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from actionspine.core.errors import HandlerTimeoutError
from actionspine.execution.models import utcnow


class RetryStrategy(ABC):
    """Abstract base for retry strategies."""

    @abstractmethod
    def next_delay(self, attempt: int) -> float:
        """Delay in seconds before retry number ``attempt`` (0-based)."""
        ...

    @abstractmethod
    def should_retry(self, attempt: int, error: BaseException | None = None) -> bool:
        """Whether another attempt is allowed after ``attempt`` attempts."""
        ...


@dataclass
class ConstantBackoff(RetryStrategy):
    """Fixed delay between attempts."""

    max_retries: int = 0
    delay: float = 0.0

    def next_delay(self, attempt: int) -> float:
        return self.delay

    def should_retry(self, attempt: int, error: BaseException | None = None) -> bool:
        if isinstance(error, HandlerTimeoutError):
            return False
        return attempt <= self.max_retries


@dataclass
class NoRetry(RetryStrategy):
    """Never retry."""

    def next_delay(self, attempt: int) -> float:
        return 0.0

    def should_retry(self, attempt: int, error: BaseException | None = None) -> bool:
        return False


@dataclass
class RetryContext:
    """Context tracking retry state across attempts."""

    strategy: RetryStrategy
    on_retry: Callable[[int, BaseException, float], None] | None = None
    attempt: int = field(default=0, init=False)
    last_error: BaseException | None = field(default=None, init=False)
    errors: list[tuple[int, BaseException, datetime]] = field(default_factory=list, init=False)

    @property
    def attempts(self) -> int:
        """Number of attempts made."""
        return self.attempt

    async def run_async(self, func: Callable[[], Awaitable[Any]]) -> Any:
        """Call ``func`` until it succeeds or the strategy gives up.

        Raises:
            Last exception if all retries exhausted
        """
        while True:
            self.attempt += 1
            try:
                return await func()
            except Exception as e:
                self.last_error = e
                self.errors.append((self.attempt, e, utcnow()))

                if not self.strategy.should_retry(self.attempt, e):
                    raise

                delay = self.strategy.next_delay(self.attempt - 1)

                if self.on_retry:
                    self.on_retry(self.attempt, e, delay)

                await asyncio.sleep(delay)


def strategy_for(retries: int, retry_delay_ms: float) -> RetryStrategy:
    """Retry strategy matching a handler's ``retries`` configuration."""
    if retries <= 0:
        return NoRetry()
    return ConstantBackoff(max_retries=retries, delay=retry_delay_ms / 1000.0)
