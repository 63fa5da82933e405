"""
Pytest configuration and fixtures for Lysis tests.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from typing import Any

import pytest

from lysis.core.gateway import UpstreamGateway
from lysis.core.scheduler import Scheduler
from lysis.core.types import ModelRequest, ModelResponse, StreamChunk, ToolInvocation
from lysis.keys.pool import KeyPool
from lysis.keys.retry import RetryController, RetryPolicy
from lysis.keys.store import MemoryStore
from lysis.providers.base import BaseProvider
from lysis.utils.logging import setup_logging

# =============================================================================
# Scripted Responses
# =============================================================================


def text_reply(text: str) -> ModelResponse:
    """A model reply without tool calls."""
    return ModelResponse(text=text, model="mock-model")


def tool_reply(name: str, text: str = "", **args: Any) -> ModelResponse:
    """A model reply requesting one tool call."""
    return ModelResponse(
        text=text,
        tool_calls=[ToolInvocation(name=name, args=args)],
        model="mock-model",
    )


Script = list[Any]  # ModelResponse | BaseException | Callable[[Any, ModelRequest], ...]


def _play(script: Script, client: Any, request: ModelRequest) -> ModelResponse:
    item = script.pop(0) if script else text_reply("Done.")
    if callable(item) and not isinstance(item, BaseException):
        item = item(client, request)
    if isinstance(item, BaseException):
        raise item
    return item


class ScriptedProvider(BaseProvider):
    """
    Provider replaying scripted replies.

    Each script entry is a ModelResponse, an exception to raise, or a
    callable ``(client, request)`` returning either. An exhausted script
    answers "Done.".
    """

    def __init__(self, script: Script | None = None, model: str = "mock-model"):
        super().__init__(model=model)
        self.script: Script = list(script or [])
        self.calls: list[tuple[Any, ModelRequest]] = []
        self.streamed = 0

    @property
    def name(self) -> str:
        return "mock"

    def create_client(self, api_key: str) -> Any:
        return api_key

    def _next(self, client: Any, request: ModelRequest) -> ModelResponse:
        self.calls.append((client, request))
        return _play(self.script, client, request)

    @property
    def clients(self) -> list[Any]:
        return [client for client, _ in self.calls]

    async def complete(self, client: Any, request: ModelRequest) -> ModelResponse:
        return self._next(client, request)

    async def stream(self, client: Any, request: ModelRequest) -> AsyncIterator[StreamChunk]:
        self.streamed += 1
        response = self._next(client, request)
        words = response.text.split(" ")
        for i, word in enumerate(words):
            yield StreamChunk(text=word if i == 0 else f" {word}", chunk_index=i)
        yield StreamChunk(tool_calls=list(response.tool_calls), is_final=True, chunk_index=len(words))


class ScriptedModel:
    """Stand-in ModelCall for driving a ToolLoop directly."""

    def __init__(self, *script: Any):
        self.script: Script = list(script)
        self.requests: list[ModelRequest] = []

    async def __call__(self, request: ModelRequest) -> ModelResponse:
        self.requests.append(request)
        return _play(self.script, None, request)


# =============================================================================
# Process Fakes
# =============================================================================


class FakeHandle:
    """ProcessHandle replaying fixed output chunks."""

    def __init__(self, pid: str, chunks: list[str] | None = None, code: int = 0, exits: bool = True):
        self._pid = pid
        self._chunks = list(chunks or [])
        self.code = code
        self.exited = asyncio.Event()
        self.inputs: list[str] = []
        self.killed = False
        if exits:
            self.exited.set()

    @property
    def pid(self) -> str:
        return self._pid

    async def output(self) -> AsyncIterator[str]:
        for chunk in self._chunks:
            yield chunk

    async def wait(self) -> int:
        await self.exited.wait()
        return self.code

    async def write(self, text: str) -> None:
        self.inputs.append(text)

    def kill(self) -> None:
        self.killed = True
        self.code = -9
        self.exited.set()


class FakeRunner:
    """ProcessRunner handing out FakeHandles with increasing pids."""

    def __init__(self) -> None:
        self.commands: list[str] = []
        self.handles: list[FakeHandle] = []
        self._planned: list[dict[str, Any]] = []
        self._next_pid = 100

    def plan(self, chunks: list[str] | None = None, code: int = 0, exits: bool = True) -> None:
        """Configure the next spawned process."""
        self._planned.append({"chunks": chunks, "code": code, "exits": exits})

    async def spawn(self, command: str) -> FakeHandle:
        options = self._planned.pop(0) if self._planned else {}
        handle = FakeHandle(str(self._next_pid), **options)
        self._next_pid += 1
        self.commands.append(command)
        self.handles.append(handle)
        return handle


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def memory_store() -> MemoryStore:
    """Provide an empty in-memory key store."""
    return MemoryStore()


@pytest.fixture
def key_pool(memory_store: MemoryStore) -> KeyPool:
    """Provide a pool with one or two keys per role."""
    pool = KeyPool(memory_store)
    pool.save_keys(agent="agent-1,agent-2", worker1="worker1-1", worker2="worker2-1")
    return pool


@pytest.fixture
def zero_policy() -> RetryPolicy:
    """Retry policy without any waiting."""
    return RetryPolicy(rotation_delay=0.0, backoff_base=0.0, backoff_cap=0.0)


@pytest.fixture
def retry_controller(key_pool: KeyPool, zero_policy: RetryPolicy) -> RetryController:
    return RetryController(key_pool, zero_policy)


@pytest.fixture
def scheduler() -> Scheduler:
    """Scheduler without throttling."""
    return Scheduler(min_delay=0.0, spacing=0.0)


@pytest.fixture
def provider() -> ScriptedProvider:
    return ScriptedProvider()


@pytest.fixture
def gateway(
    provider: ScriptedProvider,
    scheduler: Scheduler,
    retry_controller: RetryController,
) -> UpstreamGateway:
    return UpstreamGateway(provider, scheduler, retry_controller, max_retries=3)


@pytest.fixture
def scripted_model() -> Callable[..., ScriptedModel]:
    """Factory for ScriptedModel instances."""
    return ScriptedModel


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def replies() -> Any:
    """Reply builders: ``replies.text(...)`` and ``replies.tool(name, **args)``."""

    class Replies:
        text = staticmethod(text_reply)
        tool = staticmethod(tool_reply)

    return Replies


@pytest.fixture
def restore_logging() -> Any:
    """Put the default logging configuration back after the test."""
    yield
    setup_logging()
