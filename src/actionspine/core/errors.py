"""
Structured error types for the actionspine engine.

Every failure the engine can observe is classified into a small typed
hierarchy so that reports, logs, and callers can branch on *what kind* of
failure happened instead of parsing messages.

Manifesto:
    - **Typed Error Hierarchy:** One subclass per failure domain
    - **Rich Context:** Errors carry the action, handler id, and mode
    - **Error Chaining:** The original exception is kept as ``cause``
    - **Never thrown across the facade:** Handler failures are recorded,
      only configuration errors detected before a run are raised

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────┐
        │                     ActionSpineError                        │
        │            (category, context, cause, to_dict)              │
        ├─────────────────────────────────────────────────────────────┤
        │                                                             │
        │  HandlerExecutionError   GuardRejectedError   ConfigError   │
        │  (HANDLER)               (GUARD)              (CONFIG)      │
        │       │                                            │        │
        │  HandlerTimeoutError                   HandlerConfigError   │
        │  (TIMEOUT)                      UnknownExecutionModeError   │
        │                                       ResultStrategyError   │
        │                                                             │
        │  DispatchCancelledError                                     │
        │  (CANCELLED)                                                │
        └─────────────────────────────────────────────────────────────┘

Examples:
    >>> error = HandlerExecutionError("boom").with_context(
    ...     action="save", handler_id="persist"
    ... )
    >>> error.context.handler_id
    'persist'
    >>> error.to_dict()["category"]
    'HANDLER'

Tags:
    error-handling, exception-hierarchy, error-context, actionspine

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """
    Standard error categories for classification and routing.

    Attributes:
        HANDLER: A handler body raised
        TIMEOUT: A handler exceeded its advisory timeout
        GUARD: Debounce or throttle denied the dispatch
        CONFIG: Invalid registration or dispatch configuration
        CANCELLED: The dispatch was cancelled by its token
        INTERNAL: Bugs, unexpected state
    """

    HANDLER = "HANDLER"
    TIMEOUT = "TIMEOUT"
    GUARD = "GUARD"
    CONFIG = "CONFIG"
    CANCELLED = "CANCELLED"
    INTERNAL = "INTERNAL"


@dataclass
class ErrorContext:
    """
    Structured metadata context for errors.

    Instead of ad-hoc dictionaries, errors carry typed fields for the
    metadata every engine error shares. Anything else goes in ``metadata``.

    Attributes:
        action: Name of the action being dispatched
        handler_id: Id of the handler involved, if any
        execution_mode: Execution mode of the run
        metadata: Additional key-value pairs
    """

    action: str | None = None
    handler_id: str | None = None
    execution_mode: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["action", "handler_id", "execution_mode"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class ActionSpineError(Exception):
    """
    Base exception for all actionspine errors.

    Subclasses set ``default_category`` so the category does not have to be
    passed at every raise site.

    Examples:
        >>> error = ActionSpineError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>

        >>> try:
        ...     raise KeyError("missing")
        ... except KeyError as e:
        ...     error = ActionSpineError("lookup failed", cause=e)
        >>> error.cause
        KeyError('missing')
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> ActionSpineError:
        """
        Add context to this error (fluent API).

        Usage:
            raise ConfigError("bad option").with_context(action="save")
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = repr(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# HANDLER ERRORS
# =============================================================================


class HandlerExecutionError(ActionSpineError):
    """A handler raised while the pipeline was running."""

    default_category = ErrorCategory.HANDLER


class HandlerTimeoutError(HandlerExecutionError):
    """
    A handler did not settle within its advisory timeout.

    The invocation is not cancelled; it keeps running in the background and
    its eventual outcome is ignored.
    """

    default_category = ErrorCategory.TIMEOUT

    def __init__(self, handler_id: str, timeout_ms: float, **kwargs: Any):
        self.handler_id = handler_id
        self.timeout_ms = timeout_ms
        super().__init__(
            f"Handler '{handler_id}' timed out after {timeout_ms:g}ms",
            **kwargs,
        )


# =============================================================================
# GUARD / CANCELLATION
# =============================================================================


class GuardRejectedError(ActionSpineError):
    """Debounce or throttle denied a dispatch.

    Not raised by the register: it is attached to the aborted report as
    ``rejection``, with ``reason`` doubling as the report's abort reason.
    """

    default_category = ErrorCategory.GUARD

    def __init__(self, guard: str, key: str, reason: str | None = None, **kwargs: Any):
        self.guard = guard
        self.key = key
        super().__init__(f"{guard.capitalize()} rejected dispatch for '{key}'", **kwargs)
        self.reason = reason or self.message


class DispatchCancelledError(ActionSpineError):
    """The dispatch's cancellation token was triggered."""

    default_category = ErrorCategory.CANCELLED


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================


class ConfigError(ActionSpineError):
    """
    Configuration error.

    Raised before a run starts so that nothing is partially executed.
    """

    default_category = ErrorCategory.CONFIG


class HandlerConfigError(ConfigError):
    """Invalid handler registration."""

    pass


class UnknownExecutionModeError(ConfigError):
    """Execution mode is not one of sequential, parallel, race."""

    def __init__(self, mode: Any, **kwargs: Any):
        self.mode = mode
        super().__init__(f"Unknown execution mode: {mode!r}", **kwargs)


class ResultStrategyError(ConfigError):
    """Result options cannot be honoured (e.g. custom strategy with no merger)."""

    pass


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def categorize_error(error: BaseException) -> ErrorCategory:
    """Get the category of an error."""
    if isinstance(error, ActionSpineError):
        return error.category
    if isinstance(error, TimeoutError):
        return ErrorCategory.TIMEOUT
    return ErrorCategory.HANDLER


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "ActionSpineError",
    "HandlerExecutionError",
    "HandlerTimeoutError",
    "GuardRejectedError",
    "DispatchCancelledError",
    "ConfigError",
    "HandlerConfigError",
    "UnknownExecutionModeError",
    "ResultStrategyError",
    "categorize_error",
]
