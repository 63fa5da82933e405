"""
Structured logging setup for Lysis.

Provides consistent logging across all modules with support for
JSON formatting (production) and pretty printing (development).
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog
from structlog.types import Processor


def setup_logging(
    level: str = "INFO",
    json_format: bool = False,
    log_file: str | None = None,
) -> None:
    """
    Configure logging for the entire application.

    Runs once on import with the defaults; calling it again replaces the
    configuration for every logger, including module-level ones.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: If True, output JSON logs (for production)
        log_file: Optional file path to write logs to

    Example:
        # Development (pretty console output)
        setup_logging(level="DEBUG", json_format=False)

        # Production (JSON for log aggregation)
        setup_logging(level="INFO", json_format=True)
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(
        level=numeric_level,
        format="%(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(numeric_level)
        logging.getLogger().addHandler(file_handler)

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if json_format:
        processors: list[Processor] = [
            *shared_processors,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = [
            *shared_processors,
            structlog.dev.ConsoleRenderer(
                colors=True,
                exception_formatter=structlog.dev.plain_traceback,
            ),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )


def get_logger(name: str) -> structlog.BoundLogger:
    """
    Get a logger for a specific module.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured structlog logger

    Example:
        logger = get_logger(__name__)
        logger.info("Task started", task_id="123", role="worker1")
    """
    return structlog.get_logger(name)


def mask_key(key: str) -> str:
    """Render a credential for logs, keeping only its last 6 characters."""
    if not key:
        return "<none>"
    return f"...{key[-6:]}"


class LogContext:
    """
    Context manager for adding contextual information to logs.

    Example:
        with LogContext(role="worker1", run_id="abc"):
            logger.info("Loop started")  # Includes role and run_id
    """

    def __init__(self, **context: Any):
        self.context = context
        self._token: object | None = None

    def __enter__(self) -> LogContext:
        self._token = structlog.contextvars.bind_contextvars(**self.context)
        return self

    def __exit__(self, *args: Any) -> None:
        if self._token:
            structlog.contextvars.unbind_contextvars(*self.context.keys())


# =============================================================================
# Specialized Loggers
# =============================================================================


class ProviderLogger:
    """Logger specifically for upstream provider calls."""

    def __init__(self, provider_name: str):
        self.logger = get_logger(f"lysis.providers.{provider_name}")
        self.provider_name = provider_name

    def debug(self, message: str, **extra: Any) -> None:
        """Log debug message."""
        self.logger.debug(message, provider=self.provider_name, **extra)

    def warning(self, message: str, **extra: Any) -> None:
        """Log warning message."""
        self.logger.warning(message, provider=self.provider_name, **extra)

    def log_request(self, model: str, turns: int, tools: int, **extra: Any) -> None:
        """Log an API request."""
        self.logger.debug(
            "API request",
            provider=self.provider_name,
            model=model,
            turns=turns,
            tools=tools,
            **extra,
        )

    def log_response(
        self,
        model: str,
        tool_calls: int,
        latency_ms: float,
        **extra: Any,
    ) -> None:
        """Log an API response."""
        self.logger.debug(
            "API response",
            provider=self.provider_name,
            model=model,
            tool_calls=tool_calls,
            latency_ms=round(latency_ms, 2),
            **extra,
        )

    def log_error(self, error: Exception, **extra: Any) -> None:
        """Log a provider error."""
        self.logger.warning(
            "Provider error",
            provider=self.provider_name,
            error_type=type(error).__name__,
            error_message=str(error),
            **extra,
        )


class LoopLogger:
    """Logger specifically for tool-loop runs."""

    def __init__(self, loop_name: str):
        self.logger = get_logger(f"lysis.agents.{loop_name}")
        self.loop_name = loop_name

    def log_start(self, max_loops: int, **extra: Any) -> None:
        """Log loop start."""
        self.logger.info(
            "Tool loop started",
            loop=self.loop_name,
            max_loops=max_loops,
            **extra,
        )

    def log_iteration(self, iteration: int, tool_calls: int, **extra: Any) -> None:
        """Log one model/tool round-trip."""
        self.logger.debug(
            "Tool loop iteration",
            loop=self.loop_name,
            iteration=iteration,
            tool_calls=tool_calls,
            **extra,
        )

    def log_complete(
        self,
        status: str,
        iterations: int,
        duration_seconds: float,
        **extra: Any,
    ) -> None:
        """Log loop completion."""
        self.logger.info(
            "Tool loop finished",
            loop=self.loop_name,
            status=status,
            iterations=iterations,
            duration_seconds=round(duration_seconds, 2),
            **extra,
        )


# Initialize default logging on import
setup_logging()
