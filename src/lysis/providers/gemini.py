"""
Google Gemini provider implementation.

Uses the ``google-genai`` SDK, which gives every credential its own
``genai.Client``; the key pool caches one client per key.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator
from typing import Any

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from lysis.core.types import (
    ModelRequest,
    ModelResponse,
    StreamChunk,
    ToolInvocation,
    ToolSpec,
    Turn,
)
from lysis.providers.base import BaseProvider
from lysis.utils.errors import (
    ProviderAuthenticationError,
    ProviderError,
    ProviderRateLimitError,
    ProviderServerError,
    ProviderTimeoutError,
)
from lysis.utils.logging import ProviderLogger


class GeminiProvider(BaseProvider):
    """
    Google Gemini provider.

    Supports:
    - Function calling (tool declarations with Gemini schema types)
    - Streaming responses
    - System prompts via system_instruction
    - Verbatim replay of model content between tool rounds

    Example:
        provider = GeminiProvider(model="gemini-2.5-flash")
        client = provider.create_client(api_key)
        response = await provider.complete(client, ModelRequest(history=[Turn.user("Hi")]))
        print(response.text)
    """

    def __init__(
        self,
        model: str = "gemini-2.5-flash",
        temperature: float | None = None,
        timeout: float = 120.0,
    ):
        super().__init__(model=model, temperature=temperature)
        self.timeout = timeout
        self.logger = ProviderLogger("gemini")

    @property
    def name(self) -> str:
        """Provider identifier."""
        return "gemini"

    def create_client(self, api_key: str) -> genai.Client:
        return genai.Client(
            api_key=api_key,
            http_options=types.HttpOptions(timeout=int(self.timeout * 1000)),
        )

    # =========================================================================
    # Conversion
    # =========================================================================

    def _convert_turn(self, turn: Turn) -> types.Content:
        """
        Convert a Turn to Gemini Content.

        Model turns that still hold the provider's own content are replayed
        verbatim; everything else is rebuilt from the structured fields.
        """
        if turn.raw is not None:
            return turn.raw

        parts: list[types.Part] = []
        if turn.text:
            parts.append(types.Part.from_text(text=turn.text))
        for call in turn.tool_calls:
            parts.append(types.Part(function_call=types.FunctionCall(name=call.name, args=call.args)))
        for result in turn.tool_results:
            parts.append(
                types.Part.from_function_response(
                    name=result.name,
                    response={"result": result.result_text},
                )
            )
        return types.Content(role=turn.role, parts=parts)

    def _convert_tools(self, tools: list[ToolSpec]) -> list[types.Tool]:
        if not tools:
            return []
        declarations = [
            types.FunctionDeclaration(
                name=spec.name,
                description=spec.description,
                parameters=spec.parameters or None,
            )
            for spec in tools
        ]
        return [types.Tool(function_declarations=declarations)]

    def _build_config(self, request: ModelRequest) -> types.GenerateContentConfig:
        tools = self._convert_tools(request.tools)
        return types.GenerateContentConfig(
            system_instruction=request.system_instruction or None,
            tools=tools or None,
            temperature=self.temperature,
        )

    @staticmethod
    def _parts_of(response: Any) -> list[types.Part]:
        candidates = getattr(response, "candidates", None) or []
        if not candidates or candidates[0].content is None:
            return []
        return list(candidates[0].content.parts or [])

    @staticmethod
    def _extract(parts: list[types.Part]) -> tuple[str, list[ToolInvocation]]:
        text_parts: list[str] = []
        calls: list[ToolInvocation] = []
        for part in parts:
            if part.function_call is not None:
                fc = part.function_call
                invocation = ToolInvocation(name=fc.name or "", args=dict(fc.args or {}))
                if fc.id:
                    invocation.id = fc.id
                calls.append(invocation)
            elif part.text and not part.thought:
                text_parts.append(part.text)
        return "".join(text_parts), calls

    def _translate_error(self, error: Exception) -> ProviderError:
        """Map SDK exceptions onto the Lysis provider error hierarchy."""
        if isinstance(error, genai_errors.APIError):
            code = error.code or 0
            status = str(error.status or "")
            if code == 429 or status == "RESOURCE_EXHAUSTED":
                return ProviderRateLimitError("gemini", details={"message": error.message})
            if code >= 500:
                return ProviderServerError("gemini", status_code=code, message=str(error.message or status))
            if code in (401, 403):
                return ProviderAuthenticationError("gemini", details={"message": error.message})
            if code == 400 and "api key" in str(error.message).lower():
                return ProviderAuthenticationError("gemini", details={"message": error.message})
            return ProviderError("gemini", str(error.message or error), status_code=code or None)
        if isinstance(error, (httpx.TimeoutException, asyncio.TimeoutError, TimeoutError)):
            return ProviderTimeoutError("gemini", timeout=self.timeout, details={"message": str(error)})
        return ProviderError("gemini", str(error))

    # =========================================================================
    # Generation
    # =========================================================================

    async def complete(self, client: genai.Client, request: ModelRequest) -> ModelResponse:
        """
        Execute one Gemini generation.

        Raises:
            ProviderRateLimitError: On rate limit exceeded
            ProviderServerError: On 5xx responses
            ProviderAuthenticationError: On authentication failure
            ProviderError: On other API errors
        """
        use_model = request.model or self.model
        contents = [self._convert_turn(t) for t in request.history]
        self.logger.log_request(use_model, len(contents), len(request.tools))

        start_time = time.time()
        try:
            response = await client.aio.models.generate_content(
                model=use_model,
                contents=contents,
                config=self._build_config(request),
            )
        except Exception as e:
            self.logger.log_error(e)
            raise self._translate_error(e) from e

        latency_ms = (time.time() - start_time) * 1000
        parts = self._parts_of(response)
        text, calls = self._extract(parts)

        usage: dict[str, int] = {}
        if response.usage_metadata is not None:
            usage = {
                "input_tokens": response.usage_metadata.prompt_token_count or 0,
                "output_tokens": response.usage_metadata.candidates_token_count or 0,
            }

        finish_reason = "stop"
        if response.candidates and response.candidates[0].finish_reason:
            finish_raw = str(response.candidates[0].finish_reason).upper()
            if "MAX_TOKENS" in finish_raw:
                finish_reason = "max_tokens"
            elif "SAFETY" in finish_raw:
                finish_reason = "safety"

        self.logger.log_response(use_model, len(calls), latency_ms)
        raw = response.candidates[0].content if response.candidates else None
        return ModelResponse(
            text=text,
            tool_calls=calls,
            model=use_model,
            finish_reason=finish_reason,
            latency_ms=latency_ms,
            usage=usage,
            raw_content=raw,
        )

    async def stream(self, client: genai.Client, request: ModelRequest) -> AsyncIterator[StreamChunk]:
        """
        Stream one Gemini generation.

        Yields:
            StreamChunk objects as they arrive; the final chunk carries the
            accumulated model Content for replay.
        """
        use_model = request.model or self.model
        contents = [self._convert_turn(t) for t in request.history]
        self.logger.log_request(use_model, len(contents), len(request.tools), stream=True)

        collected: list[types.Part] = []
        chunk_index = 0
        try:
            response_stream = await client.aio.models.generate_content_stream(
                model=use_model,
                contents=contents,
                config=self._build_config(request),
            )
            async for chunk in response_stream:
                parts = self._parts_of(chunk)
                collected.extend(parts)
                text, calls = self._extract(parts)
                if text or calls:
                    yield StreamChunk(text=text, tool_calls=calls, chunk_index=chunk_index)
                    chunk_index += 1
        except Exception as e:
            self.logger.log_error(e)
            raise self._translate_error(e) from e

        yield StreamChunk(
            is_final=True,
            chunk_index=chunk_index,
            raw_content=types.Content(role="model", parts=collected) if collected else None,
        )
