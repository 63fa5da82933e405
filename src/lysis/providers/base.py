"""
Abstract base class for upstream generation providers.

A provider turns a credential into a ClientHandle and runs generation
requests on such a handle. It never retries, rotates or queues: those
concerns belong to the scheduler and the retry controller.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable
from typing import Any

from lysis.core.types import ModelRequest, ModelResponse, StreamChunk


class BaseProvider(ABC):
    """
    Abstract base class for providers.

    Example implementation:
        class MyProvider(BaseProvider):
            @property
            def name(self) -> str:
                return "my_provider"

            def create_client(self, api_key: str) -> Any:
                return MyClient(api_key)

            async def complete(self, client, request) -> ModelResponse:
                ...
    """

    def __init__(self, model: str, temperature: float | None = None):
        """
        Initialize the provider.

        Args:
            model: Default model identifier
            temperature: Optional sampling temperature
        """
        self.model = model
        self.temperature = temperature

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider identifier (e.g. "gemini")."""

    @abstractmethod
    def create_client(self, api_key: str) -> Any:
        """
        Build a ClientHandle bound to one credential.

        Args:
            api_key: The credential string

        Returns:
            An opaque handle passed back into complete()/stream()
        """

    @abstractmethod
    async def complete(self, client: Any, request: ModelRequest) -> ModelResponse:
        """
        Execute one generation request.

        Raises:
            ProviderRateLimitError: On HTTP 429 / RESOURCE_EXHAUSTED
            ProviderServerError: On HTTP 5xx
            ProviderError: On any other failure
        """

    @abstractmethod
    def stream(self, client: Any, request: ModelRequest) -> AsyncIterator[StreamChunk]:
        """
        Execute one generation request, yielding chunks as they arrive.

        The last chunk has ``is_final=True`` and carries the accumulated
        provider content in ``raw_content``.
        """

    async def complete_streaming(
        self,
        client: Any,
        request: ModelRequest,
        on_text: Callable[[str], Any] | None = None,
    ) -> ModelResponse:
        """
        Stream a request and accumulate it into a single ModelResponse.

        ``on_text`` receives every text fragment as it arrives.
        """
        return await accumulate(self.stream(client, request), on_text, model=request.model or self.model)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(model={self.model!r})"


async def accumulate(
    chunks: AsyncIterator[StreamChunk],
    on_text: Callable[[str], Any] | None = None,
    model: str = "",
) -> ModelResponse:
    """Fold a chunk stream into one ModelResponse."""
    text_parts: list[str] = []
    response = ModelResponse(model=model)
    async for chunk in chunks:
        if chunk.text:
            text_parts.append(chunk.text)
            if on_text is not None:
                on_text(chunk.text)
        response.tool_calls.extend(chunk.tool_calls)
        if chunk.is_final and chunk.raw_content is not None:
            response.raw_content = chunk.raw_content
    response.text = "".join(text_parts)
    return response
