"""
Custom exceptions for Lysis.

Provides a hierarchy of exceptions for the orchestration core, so callers
can tell upstream failures, configuration problems, tool failures and
recovery misuse apart.
"""

from __future__ import annotations

from typing import Any


class LysisError(Exception):
    """
    Base exception for all Lysis errors.

    All custom exceptions inherit from this class.
    """

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.cause = cause

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for event payloads."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


# =============================================================================
# Provider Errors
# =============================================================================


class ProviderError(LysisError):
    """
    Upstream generation API errors.

    Raised when the provider call fails (API errors, rate limits,
    authentication failures, etc.).
    """

    def __init__(
        self,
        provider: str,
        message: str,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(f"[{provider}] {message}", details, cause)
        self.provider = provider
        self.status_code = status_code


class ProviderAuthenticationError(ProviderError):
    """Authentication failed for provider."""

    def __init__(self, provider: str, details: dict[str, Any] | None = None):
        super().__init__(
            provider,
            "Authentication failed. Check your API key.",
            status_code=401,
            details=details,
        )


class ProviderRateLimitError(ProviderError):
    """Rate limit or quota exceeded for provider (HTTP 429 / RESOURCE_EXHAUSTED)."""

    def __init__(
        self,
        provider: str,
        retry_after: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        message = "Rate limit exceeded (RESOURCE_EXHAUSTED)."
        if retry_after:
            message += f" Retry after {retry_after} seconds."
        super().__init__(provider, message, status_code=429, details=details)
        self.retry_after = retry_after


class ProviderServerError(ProviderError):
    """Upstream server error (HTTP 5xx)."""

    def __init__(
        self,
        provider: str,
        status_code: int = 503,
        message: str = "Service temporarily unavailable.",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(provider, message, status_code=status_code, details=details)


class ProviderTimeoutError(ProviderError):
    """Request timeout for provider."""

    def __init__(
        self,
        provider: str,
        timeout: float,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(
            provider,
            f"Request timed out after {timeout} seconds.",
            status_code=408,
            details=details,
        )
        self.timeout = timeout


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(LysisError):
    """
    Invalid configuration.

    Raised when configuration is invalid or missing required values.
    """

    def __init__(
        self,
        message: str,
        config_key: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.config_key = config_key


class MissingAPIKeyError(ConfigurationError):
    """No credential is configured for a role."""

    def __init__(self, role: str):
        super().__init__(
            f"No API key configured for {role}. Configure your API keys with 'lysis keys set'.",
            config_key=f"LYSIS_{role.upper()}_KEYS",
        )
        self.role = role


# =============================================================================
# Scheduling / Retry Errors
# =============================================================================


class SchedulerError(LysisError):
    """Scheduler related errors."""

    pass


class SchedulerClosedError(SchedulerError):
    """Scheduler was closed while the task was still queued, or before it was queued."""

    def __init__(self, task_id: str | None = None):
        if task_id is None:
            super().__init__("Scheduler is closed.")
        else:
            super().__init__(f"Scheduler closed before task {task_id} started.")
        self.task_id = task_id


class RetryExhaustedError(LysisError):
    """No attempt could be made for an upstream call."""

    def __init__(self, role: str, attempts: int, key_count: int):
        super().__init__(
            f"Max retries exceeded for {role} after {attempts} attempts "
            f"with {key_count} key(s)."
        )
        self.role = role
        self.attempts = attempts
        self.key_count = key_count


# =============================================================================
# Tool Errors
# =============================================================================


class ToolError(LysisError):
    """Tool dispatch related errors."""

    pass


class UnknownToolError(ToolError):
    """The model requested a tool outside the configured tool set."""

    def __init__(self, name: str, known: list[str] | None = None):
        super().__init__(
            f"Unknown tool '{name}'.",
            details={"known_tools": known} if known else None,
        )
        self.name = name


class ToolArgumentError(ToolError):
    """The model supplied arguments that do not match the tool schema."""

    def __init__(self, name: str, reason: str):
        super().__init__(f"Invalid arguments for '{name}': {reason}")
        self.name = name
        self.reason = reason


class ProcessNotFoundError(ToolError):
    """No running process is registered under the given id."""

    def __init__(self, pid: str):
        super().__init__(f"Process {pid} not found (may have already exited).")
        self.pid = pid


class WorkspacePathError(ToolError):
    """A tool path resolves outside the workspace root."""

    def __init__(self, path: str):
        super().__init__(f"Path '{path}' is outside the workspace.")
        self.path = path


# =============================================================================
# Recovery Errors
# =============================================================================


class RecoveryError(LysisError):
    """Rate-limit recovery protocol misuse."""

    pass


class RecoveryAlreadyConsumedError(RecoveryError):
    """A suspension's resume() was called more than once."""

    def __init__(self, role: str):
        super().__init__(f"Recovery suspension for {role} was already resumed.")
        self.role = role


class NoPendingRecoveryError(RecoveryError):
    """recover() was called for a role with nothing suspended."""

    def __init__(self, role: str):
        super().__init__(f"No suspended operation is waiting for {role}.")
        self.role = role
