"""
Upstream gateway: the only path from Lysis to the generation API.

Every model call becomes its own scheduler task, and inside that task
the retry controller picks a credential and applies rotation/backoff:

    Scheduler.enqueue -> RetryController.execute_with_retry -> provider call

Scheduling per model call (not per conversation) lets the manager and
worker loops interleave while the API still sees one request at a time.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

from lysis.core.scheduler import Scheduler
from lysis.core.types import ModelRequest, ModelResponse, Priority, Role
from lysis.keys.retry import RetryController
from lysis.providers.base import BaseProvider
from lysis.utils.logging import get_logger

logger = get_logger(__name__)

ModelCall = Callable[[ModelRequest], Awaitable[ModelResponse]]
TextListener = Callable[[str], Any]


class UpstreamGateway:
    """
    Funnels generation requests through the shared scheduler and key pool.

    Usage:
        gateway = UpstreamGateway(provider, scheduler, retry, max_retries=3)
        call = gateway.bind(Role.WORKER1, Priority.WORKER)
        response = await call(request)
    """

    def __init__(
        self,
        provider: BaseProvider,
        scheduler: Scheduler,
        retry: RetryController,
        max_retries: int = 3,
    ) -> None:
        self._provider = provider
        self._scheduler = scheduler
        self._retry = retry
        self._max_retries = max_retries

    @property
    def provider(self) -> BaseProvider:
        return self._provider

    @property
    def scheduler(self) -> Scheduler:
        return self._scheduler

    async def generate(
        self,
        role: Role,
        request: ModelRequest,
        priority: int = Priority.WORKER,
        on_text: TextListener | None = None,
    ) -> ModelResponse:
        """
        Run one generation for a role.

        With ``on_text`` the response is streamed. Fragments are held per
        attempt and forwarded once that attempt succeeds, so a retried
        attempt never repeats text; otherwise a single call is made.

        Raises:
            RecoverySuspension: When the role's keys are rate limited out
        """
        provider = self._provider

        async def attempt(client: Any) -> ModelResponse:
            if on_text is None:
                return await provider.complete(client, request)
            fragments: list[str] = []
            response = await provider.complete_streaming(client, request, fragments.append)
            for fragment in fragments:
                on_text(fragment)
            return response

        async def run() -> ModelResponse:
            return await self._retry.execute_with_retry(attempt, self._max_retries, role)

        logger.debug("Queueing model call", role=role.value, priority=int(priority), turns=len(request.history))
        return await self._scheduler.enqueue(run, priority)

    def bind(
        self,
        role: Role,
        priority: int = Priority.WORKER,
        on_text: TextListener | None = None,
    ) -> ModelCall:
        """Fix role, priority and text listener into a ModelCall."""

        async def call(request: ModelRequest) -> ModelResponse:
            return await self.generate(role, request, priority, on_text)

        return call
