"""Utility modules for Lysis."""

from lysis.utils.errors import (
    ConfigurationError,
    LysisError,
    MissingAPIKeyError,
    ProviderError,
    ProviderRateLimitError,
    ProviderServerError,
    RecoveryError,
    ToolError,
)
from lysis.utils.logging import LogContext, get_logger, mask_key, setup_logging

__all__ = [
    # Errors
    "LysisError",
    "ProviderError",
    "ProviderRateLimitError",
    "ProviderServerError",
    "ConfigurationError",
    "MissingAPIKeyError",
    "ToolError",
    "RecoveryError",
    # Logging
    "LogContext",
    "get_logger",
    "mask_key",
    "setup_logging",
]
