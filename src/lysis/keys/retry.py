"""
Rotate-and-retry controller for upstream calls.

Wraps one upstream operation with the key pool:
- rate limit with several keys: rotate to the next key after a short delay
- server error (5xx): exponential backoff on the same key
- rate limit with attempts exhausted: raise RecoverySuspension
- anything else: propagate unchanged

Every key gets up to two tries: attempts = min(max_retries, 2 * key_count).
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from lysis.core.types import Role
from lysis.keys.pool import KeyPool
from lysis.keys.recovery import RecoverySuspension
from lysis.utils.errors import RetryExhaustedError
from lysis.utils.logging import get_logger, mask_key

logger = get_logger(__name__)

T = TypeVar("T")

Operation = Callable[[Any], Awaitable[T]]


class ErrorClass(str, Enum):
    """Retry classification of an upstream failure."""

    RATE_LIMIT = "rate_limit"  # 429 / RESOURCE_EXHAUSTED
    SERVER = "server"  # 5xx
    FATAL = "fatal"  # everything else


def _status_of(error: BaseException) -> int | None:
    for attr in ("status_code", "code", "status"):
        value = getattr(error, attr, None)
        if isinstance(value, int):
            return value
    return None


def classify_error(error: BaseException | None) -> ErrorClass:
    """
    Classify an exception for the retry policy.

    Looks at numeric ``status_code``/``code``/``status`` attributes first,
    then at the message for ``429`` or ``RESOURCE_EXHAUSTED``.
    """
    if error is None or isinstance(error, RecoverySuspension):
        return ErrorClass.FATAL

    status = _status_of(error)
    text = str(error)
    if status == 429 or "429" in text or "RESOURCE_EXHAUSTED" in text:
        return ErrorClass.RATE_LIMIT
    if status is not None and status >= 500:
        return ErrorClass.SERVER
    return ErrorClass.FATAL


def _is_transient(error: BaseException) -> bool:
    return classify_error(error) is not ErrorClass.FATAL


@dataclass
class RetryPolicy:
    """
    Delays used between attempts.

    Attributes:
        rotation_delay: Seconds to wait after rotating keys
        backoff_base: Base seconds for server-error backoff
        backoff_cap: Backoff ceiling as a multiple of backoff_base
    """

    rotation_delay: float = 0.5
    backoff_base: float = 1.0
    backoff_cap: float = 5.0


class RetryController:
    """
    Owns all retry, backoff and rotation policy for upstream calls.

    Usage:
        controller = RetryController(pool)
        reply = await controller.execute_with_retry(
            lambda client: provider.complete(client, request),
            max_retries=4,
            role=Role.WORKER1,
        )
    """

    def __init__(self, pool: KeyPool, policy: RetryPolicy | None = None) -> None:
        self._pool = pool
        self._policy = policy or RetryPolicy()

    @property
    def pool(self) -> KeyPool:
        return self._pool

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    async def execute_with_retry(
        self,
        operation: Operation[T],
        max_retries: int = 3,
        role: Role | str = Role.AGENT,
    ) -> T:
        """
        Run ``operation(client)`` with rotation and backoff.

        Args:
            operation: Coroutine function receiving the ClientHandle
            max_retries: Upper bound on attempts
            role: Role whose key pool is used

        Returns:
            The operation's result

        Raises:
            RecoverySuspension: If rate limiting outlasted every attempt
            RetryExhaustedError: If no attempt is allowed at all
            Exception: Any non-retryable error, unchanged
        """
        role = Role(role)
        key_count = len(self._pool.keys_for(role))
        max_attempts = min(max_retries, 2 * key_count)
        if max_attempts < 1:
            raise RetryExhaustedError(role.value, 0, key_count)

        self._pool.prefer_emergency(role)
        retrying = AsyncRetrying(
            stop=stop_after_attempt(max_attempts),
            retry=retry_if_exception(_is_transient),
            wait=self._wait_strategy(key_count),
            before_sleep=self._before_sleep(role, key_count, max_attempts),
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    client = self._pool.client_for(role)
                    return await operation(client)
        except Exception as e:
            if classify_error(e) is ErrorClass.RATE_LIMIT:
                logger.error(
                    "Rate limit exhausted",
                    role=role.value,
                    attempts=max_attempts,
                    keys=key_count,
                )
                raise RecoverySuspension(
                    role,
                    e,
                    resume=lambda: self.execute_with_retry(operation, max_retries, role),
                ) from e
            raise
        raise AssertionError("unreachable")  # pragma: no cover

    def _wait_strategy(self, key_count: int) -> Callable[[RetryCallState], float]:
        backoff = wait_exponential(
            multiplier=self._policy.backoff_base,
            max=self._policy.backoff_base * self._policy.backoff_cap,
        )

        def compute(retry_state: RetryCallState) -> float:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            if classify_error(error) is ErrorClass.RATE_LIMIT and key_count > 1:
                return self._policy.rotation_delay
            return backoff(retry_state)

        return compute

    def _before_sleep(
        self, role: Role, key_count: int, max_attempts: int,
    ) -> Callable[[RetryCallState], None]:
        def hook(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            if classify_error(error) is ErrorClass.RATE_LIMIT and key_count > 1:
                logger.warning(
                    "Rate limit hit, switching to next API key",
                    role=role.value,
                    key=mask_key(self._pool.active_key(role)),
                    attempt=retry_state.attempt_number,
                )
                self._pool.rotate(role)
            else:
                logger.warning(
                    "Upstream call failed, retrying",
                    role=role.value,
                    attempt=retry_state.attempt_number,
                    max_attempts=max_attempts,
                    error_message=str(error),
                )

        return hook

    def __repr__(self) -> str:
        return f"RetryController(pool={self._pool!r}, policy={self._policy!r})"
