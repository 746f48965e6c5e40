"""
Structured logging with correlation IDs.

Uses structlog for structured logging with context propagation. Console
output in development, JSON in production (see ObservabilityConfig).

Usage:
    from notably.common.logging import get_logger

    logger = get_logger(__name__, component="store")

    logger.info("Fact written", namespace="tenant-1#users", field_name="row-42")

    # With correlation ID context
    from notably.common.logging import set_correlation_id, clear_correlation_id

    set_correlation_id("request-123")
    logger.info("Snapshot requested")  # Automatically includes correlation_id
    clear_correlation_id()

    # With timing
    with logger.timer("snapshot", namespace="tenant-1#users"):
        store.get_snapshot_at_time("tenant-1#users", at)
"""

import contextvars
import datetime
import logging
import sys
import time
from contextlib import contextmanager
from typing import Any, Optional

import structlog
from structlog.types import EventDict, Processor


# Context variables are thread-safe and async-friendly
_correlation_id_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "correlation_id", default=None
)


# ==============================================================================
# Context Management
# ==============================================================================


def set_correlation_id(correlation_id: str) -> None:
    """
    Set correlation ID for current context.

    The correlation ID is included in every log message emitted from the
    current thread or async task until cleared.

    Args:
        correlation_id: Unique identifier for tracing related operations
    """
    _correlation_id_var.set(correlation_id)


def get_correlation_id() -> Optional[str]:
    """Get current correlation ID from context."""
    return _correlation_id_var.get()


def clear_correlation_id() -> None:
    """Clear correlation ID from current context."""
    _correlation_id_var.set(None)


# ==============================================================================
# Structlog Processors
# ==============================================================================


def add_correlation_id(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Add correlation_id to log events from context."""
    correlation_id = get_correlation_id()
    if correlation_id:
        event_dict["correlation_id"] = correlation_id
    return event_dict


def add_timestamp(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Add ISO 8601 UTC timestamp to log events."""
    event_dict["timestamp"] = datetime.datetime.now(datetime.timezone.utc).isoformat()
    return event_dict


def add_log_level(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Add uppercase log level to event dict."""
    if method_name == "msg":
        level = event_dict.pop("level", "INFO")
    else:
        level = method_name.upper()

    event_dict["level"] = level
    return event_dict


# ==============================================================================
# Logger Configuration
# ==============================================================================


def _stderr_logger_factory(*args: Any) -> structlog.PrintLogger:
    # Resolved per logger so a swapped sys.stderr (CLI runners, pytest) is honored
    return structlog.PrintLogger(file=sys.stderr)


def configure_logging(
    json_output: bool = False,
    log_level: str = "INFO",
) -> None:
    """
    Configure structlog for the application.

    Should be called once at application startup. The CLI calls it with
    values from ObservabilityConfig.

    Args:
        json_output: If True, output JSON logs. If False, use console-friendly format.
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, log_level.upper()),
    )

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        add_correlation_id,
        add_timestamp,
        add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if json_output:
        processors = shared_processors + [
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared_processors + [
            structlog.dev.ConsoleRenderer(
                colors=False,
                exception_formatter=structlog.dev.plain_traceback,
            ),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper())
        ),
        context_class=dict,
        logger_factory=_stderr_logger_factory,
        cache_logger_on_first_use=False,
    )


# ==============================================================================
# Logger Factory
# ==============================================================================


class NotablyLogger:
    """
    Logger with convenience methods on top of a structlog BoundLogger.

    Adds a timing context manager and binds the component name so every
    event can be attributed to the store, query or storage layer.
    """

    def __init__(self, logger: Any, component: Optional[str] = None):
        self._logger = logger
        self._component = component

    def bind(self, **kwargs: Any) -> "NotablyLogger":
        """Return a new logger with additional bound context."""
        return NotablyLogger(self._logger.bind(**kwargs))

    def debug(self, message: str, **kwargs: Any) -> None:
        self._logger.debug(message, **kwargs)

    def info(self, message: str, **kwargs: Any) -> None:
        self._logger.info(message, **kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        self._logger.warning(message, **kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        self._logger.error(message, **kwargs)

    def exception(self, message: str, **kwargs: Any) -> None:
        """Log exception with traceback."""
        self._logger.exception(message, **kwargs)

    @contextmanager
    def timer(self, operation: str, **context: Any):
        """
        Context manager for timing operations.

        Logs completion at DEBUG with duration_ms, or failure at WARNING
        (the exception is re-raised unchanged).

        Example:
            with logger.timer("query_by_field", namespace="ns", field_name="x"):
                engine.query(...)
        """
        start_time = time.perf_counter()

        try:
            yield
        except Exception as e:
            duration_ms = (time.perf_counter() - start_time) * 1000
            self.warning(
                f"Operation failed: {operation}",
                operation=operation,
                duration_ms=duration_ms,
                error=str(e),
                error_type=type(e).__name__,
                **context,
            )
            raise
        else:
            duration_ms = (time.perf_counter() - start_time) * 1000
            self.debug(
                f"Operation completed: {operation}",
                operation=operation,
                duration_ms=duration_ms,
                **context,
            )


def get_logger(
    name: str,
    component: Optional[str] = None,
    **initial_context: Any,
) -> NotablyLogger:
    """
    Get a structured logger for a module.

    Args:
        name: Module name (typically __name__)
        component: Component name (e.g., "store", "query", "storage")
        **initial_context: Additional context to bind to logger

    Returns:
        Configured NotablyLogger instance
    """
    if component:
        initial_context["component"] = component

    # Left unbound so configure_logging still applies to module-level loggers
    base_logger = structlog.get_logger(name, **initial_context)

    return NotablyLogger(base_logger, component)


# ==============================================================================
# Initialize logging on module import
# ==============================================================================

# Console output by default; the CLI reconfigures from ObservabilityConfig
configure_logging(json_output=False, log_level="WARNING")
