"""Upstream generation providers."""

from lysis.providers.base import BaseProvider, accumulate
from lysis.providers.gemini import GeminiProvider

__all__ = ["BaseProvider", "GeminiProvider", "accumulate"]
