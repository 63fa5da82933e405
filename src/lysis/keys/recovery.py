"""
Rate-limit recovery suspension.

Raised instead of a plain error when every rotation and retry strategy
for a role is exhausted by rate limiting. It carries a one-shot
continuation: once a human installs an emergency key, ``resume()``
re-enters the suspended operation from the top.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

from lysis.core.types import Role
from lysis.utils.errors import LysisError, RecoveryAlreadyConsumedError

Continuation = Callable[[], Awaitable[Any]]


class RecoverySuspension(LysisError):
    """
    A paused operation awaiting an out-of-band credential.

    Attributes:
        role: Role whose key pool is exhausted
        triggering_error: Last rate-limit error seen
        consumed: Whether resume() has been called

    Example:
        try:
            await retry.execute_with_retry(op, role=Role.AGENT)
        except RecoverySuspension as suspension:
            pool.set_emergency_key(suspension.role, key_from_user)
            await suspension.resume()
    """

    def __init__(
        self,
        role: Role | str,
        triggering_error: BaseException,
        resume: Continuation | None = None,
    ):
        role = Role(role)
        super().__init__(
            f"Rate limit exceeded for {role.value}. Add more API keys or supply "
            "a temporary emergency key to continue.",
            details={"role": role.value},
        )
        self.role = role
        self.triggering_error = triggering_error
        self._resume = resume
        self._consumed = False

    @property
    def consumed(self) -> bool:
        return self._consumed

    @property
    def can_resume(self) -> bool:
        return self._resume is not None and not self._consumed

    def rebind(self, resume: Continuation) -> RecoverySuspension:
        """
        Return a fresh suspension for the same exhaustion with a new continuation.

        Used by an outer boundary to restart its whole operation rather
        than only the inner upstream call.
        """
        bound = RecoverySuspension(self.role, self.triggering_error, resume)
        bound.__cause__ = self
        return bound

    async def resume(self) -> Any:
        """
        Re-run the suspended operation. Callable exactly once.

        Raises:
            RecoveryAlreadyConsumedError: On a second call
            ValueError: If no continuation is bound
        """
        if self._consumed:
            raise RecoveryAlreadyConsumedError(self.role.value)
        if self._resume is None:
            raise ValueError("No continuation bound to this suspension")
        self._consumed = True
        return await self._resume()

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.__class__.__name__,
            "role": self.role.value,
            "message": self.message,
            "triggering_error": str(self.triggering_error),
        }
