"""actionspine core — errors, logging and settings shared by every module.

Architecture::

    errors.py      Structured error hierarchy (ActionSpineError, ConfigError, ...)
    logging.py     structlog configuration + scoped LogContext
    settings.py    ActionSpineSettings (pydantic-settings, ACTIONSPINE_* env vars)
"""

from .errors import (
    ActionSpineError,
    ConfigError,
    DispatchCancelledError,
    ErrorCategory,
    ErrorContext,
    GuardRejectedError,
    HandlerConfigError,
    HandlerExecutionError,
    HandlerTimeoutError,
    ResultStrategyError,
    UnknownExecutionModeError,
    categorize_error,
)
from .logging import LogContext, configure_logging, get_logger
from .settings import ActionSpineSettings, get_settings, reset_settings

__all__ = [
    "ActionSpineError",
    "ConfigError",
    "DispatchCancelledError",
    "ErrorCategory",
    "ErrorContext",
    "GuardRejectedError",
    "HandlerConfigError",
    "HandlerExecutionError",
    "HandlerTimeoutError",
    "ResultStrategyError",
    "UnknownExecutionModeError",
    "categorize_error",
    "LogContext",
    "configure_logging",
    "get_logger",
    "ActionSpineSettings",
    "get_settings",
    "reset_settings",
]
