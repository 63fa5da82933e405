"""
Integration test fixtures for Lysis.

Provides fully wired Lysis instances over a provider that routes each
request to a per-configuration script (manager, worker1, worker2).
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from typing import Any, Union

import pytest

from lysis.agents.prompts import (
    MANAGER_SYSTEM_INSTRUCTION,
    WORKER1_SYSTEM_INSTRUCTION,
    WORKER2_SYSTEM_INSTRUCTION,
)
from lysis.core.config import (
    AgentConfig,
    KeysConfig,
    LysisConfig,
    RetryConfig,
    SchedulerConfig,
)
from lysis.core.orchestrator import Lysis
from lysis.core.types import ModelRequest, ModelResponse, StreamChunk
from lysis.keys.store import MemoryStore
from lysis.providers.base import BaseProvider
from lysis.workspace.filesystem import MemoryFileSystem

ROUTES = {
    MANAGER_SYSTEM_INSTRUCTION: "manager",
    WORKER1_SYSTEM_INSTRUCTION: "worker1",
    WORKER2_SYSTEM_INSTRUCTION: "worker2",
}

# A route is a list of replies (consumed in order) or a callable
# ``(client, request) -> ModelResponse`` answering every request.
Route = Union[list[Any], Callable[[Any, ModelRequest], ModelResponse]]


class RoutingProvider(BaseProvider):
    """
    Mock provider for integration testing.

    Dispatches on the request's system instruction so interleaved manager
    and worker calls each get their own script.
    """

    def __init__(self, routes: dict[str, Route] | None = None, delay: float = 0.0):
        super().__init__(model="mock-model")
        self.routes: dict[str, Route] = dict(routes or {})
        self.delay = delay
        self.calls: list[tuple[str, Any, ModelRequest]] = []

    @property
    def name(self) -> str:
        return "mock"

    def create_client(self, api_key: str) -> Any:
        return api_key

    def requests_for(self, route: str) -> list[ModelRequest]:
        return [request for name, _, request in self.calls if name == route]

    def clients_for(self, route: str) -> list[Any]:
        return [client for name, client, _ in self.calls if name == route]

    async def _answer(self, client: Any, request: ModelRequest) -> ModelResponse:
        route = ROUTES.get(request.system_instruction or "", "unknown")
        self.calls.append((route, client, request))
        if self.delay:
            await asyncio.sleep(self.delay)

        script = self.routes.get(route, [])
        if callable(script):
            item: Any = script(client, request)
        else:
            item = script.pop(0) if script else ModelResponse(text="Done.")
        if isinstance(item, BaseException):
            raise item
        return item

    async def complete(self, client: Any, request: ModelRequest) -> ModelResponse:
        return await self._answer(client, request)

    async def stream(self, client: Any, request: ModelRequest) -> AsyncIterator[StreamChunk]:
        response = await self._answer(client, request)
        if response.text:
            yield StreamChunk(text=response.text)
        yield StreamChunk(tool_calls=list(response.tool_calls), is_final=True, chunk_index=1)


def integration_config(**overrides: Any) -> LysisConfig:
    """Configuration without throttling, waiting or debouncing."""
    config = LysisConfig(
        scheduler=SchedulerConfig(min_delay=0.0, spacing=0.0),
        retry=RetryConfig(max_retries=3, rotation_delay=0.0, backoff_base=0.0, backoff_cap=0.0),
        agent=AgentConfig(response_timeout=30.0, runtime_error_debounce=0.0, mock_command_delay=0.0),
        keys=KeysConfig(agent="agent-1,agent-2", worker1="worker1-1", worker2="worker2-1"),
    )
    for section, values in overrides.items():
        for key, value in values.items():
            setattr(getattr(config, section), key, value)
    return config


@pytest.fixture
def memory_fs() -> MemoryFileSystem:
    return MemoryFileSystem()


@pytest.fixture
def make_app(memory_fs: MemoryFileSystem, fake_runner) -> Callable[..., tuple[Lysis, RoutingProvider]]:
    """Factory building a Lysis instance over a RoutingProvider."""

    def factory(
        routes: dict[str, Route] | None = None,
        delay: float = 0.0,
        **overrides: Any,
    ) -> tuple[Lysis, RoutingProvider]:
        provider = RoutingProvider(routes, delay=delay)
        app = Lysis(
            integration_config(**overrides),
            provider=provider,
            key_store=MemoryStore(),
            filesystem=memory_fs,
            process_runner=fake_runner,
        )
        return app, provider

    return factory
