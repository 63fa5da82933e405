"""
Event bus for Lysis.

Carries observable application signals (rate-limit exhaustion, failures,
worker lifecycle, runtime errors) from the orchestration core to whatever
surrounds it: a CLI, a UI, tests.

Use Cases:
    - RATE_LIMIT_EXHAUSTED: prompt for an emergency key, then resume
    - TASK_FAILED: labeled failure notification
    - RUNTIME_ERROR: debounced auto-repair request for the manager
"""

from __future__ import annotations

import asyncio
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Union

from lysis.utils.logging import get_logger

logger = get_logger(__name__)

# Type definitions
SyncListener = Callable[["Event"], None]
AsyncListener = Callable[["Event"], Awaitable[None]]
Listener = Union[SyncListener, AsyncListener]


class EventType(str, Enum):
    """Types of events emitted by Lysis."""
    RATE_LIMIT_EXHAUSTED = "rate_limit_exhausted"
    TASK_FAILED = "task_failed"
    PROJECT_MODE_CHANGED = "project_mode_changed"
    WORKER_STARTED = "worker_started"
    WORKER_FINISHED = "worker_finished"
    STATUS_UPDATE = "status_update"
    RUNTIME_ERROR = "runtime_error"
    AGENT_TIMEOUT = "agent_timeout"
    KEYS_UPDATED = "keys_updated"

    def __str__(self) -> str:
        return self.value


@dataclass
class Event:
    """
    A single emitted event.

    Attributes:
        type: The kind of event
        payload: Event data (e.g. ``role`` and ``message``)
        timestamp: When the event was created
        event_id: Unique identifier
    """
    type: EventType
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)
    event_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])

    def get(self, key: str, default: Any = None) -> Any:
        return self.payload.get(key, default)

    def to_dict(self) -> dict[str, Any]:
        """Convert event to dictionary for serialization."""
        return {
            "type": self.type.value,
            "payload": {k: v if isinstance(v, (str, int, float, bool)) else str(v)
                        for k, v in self.payload.items()},
            "timestamp": self.timestamp.isoformat(),
            "event_id": self.event_id,
        }


@dataclass
class Subscription:
    """Represents a registered listener with priority and metadata."""
    callback: Listener
    priority: int = 100
    name: str = ""
    enabled: bool = True

    def __post_init__(self) -> None:
        if not self.name:
            self.name = getattr(self.callback, "__name__", f"listener_{id(self.callback)}")

    def __hash__(self) -> int:
        return hash(id(self.callback))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Subscription):
            return NotImplemented
        return id(self.callback) == id(other.callback)


@dataclass
class EmitResult:
    """Result from delivering one event."""
    event: Event
    delivered: int = 0
    failed: int = 0
    execution_time_ms: float = 0.0
    errors: list[dict[str, Any]] = field(default_factory=list)

    @property
    def had_errors(self) -> bool:
        return len(self.errors) > 0


class EventBus:
    """
    Publish/subscribe bus with error isolation.

    Features: listener priorities, sync/async callbacks, a failing
    listener never affects the emitter or other listeners, per-type
    history for late inspection.

    Example:
        bus = EventBus()
        bus.subscribe(EventType.RATE_LIMIT_EXHAUSTED, on_exhausted)
        await bus.emit(EventType.RATE_LIMIT_EXHAUSTED, role="agent", message="...")
    """

    def __init__(self, name: str = "default", history_size: int = 100) -> None:
        self._name = name
        self._listeners: dict[EventType, list[Subscription]] = {et: [] for et in EventType}
        self._history: list[Event] = []
        self._history_size = history_size
        self._logger = get_logger(f"lysis.events.{name}")
        self._emit_count = 0

    @property
    def name(self) -> str:
        return self._name

    @property
    def history(self) -> list[Event]:
        return list(self._history)

    def events_of(self, event_type: EventType) -> list[Event]:
        """Past events of one type, oldest first."""
        return [e for e in self._history if e.type is event_type]

    def subscribe(
        self, event_type: EventType, callback: Listener,
        priority: int = 100, name: str | None = None,
    ) -> Subscription:
        """
        Register a listener for an event type.

        Args:
            event_type: The type of event to listen for
            callback: The callback function (sync or async)
            priority: Delivery priority (default 100, lower = earlier)
            name: Optional human-readable name

        Returns:
            Subscription instance

        Raises:
            ValueError: If callback is not callable
        """
        if not callable(callback):
            raise ValueError(f"Callback must be callable, got {type(callback)}")

        sub = Subscription(callback=callback, priority=priority, name=name or "")
        self._listeners[event_type].append(sub)
        self._listeners[event_type].sort(key=lambda s: s.priority)
        self._logger.debug("Listener subscribed", event_type=event_type.value, name=sub.name)
        return sub

    def unsubscribe(self, event_type: EventType, callback: Listener) -> int:
        """Remove a listener. Returns count removed."""
        original = len(self._listeners[event_type])
        self._listeners[event_type] = [
            s for s in self._listeners[event_type] if s.callback is not callback
        ]
        return original - len(self._listeners[event_type])

    def listener_count(self, event_type: EventType) -> int:
        return len([s for s in self._listeners[event_type] if s.enabled])

    async def emit(self, event_type: EventType, **payload: Any) -> EmitResult:
        """
        Deliver an event to every enabled listener, in priority order.

        Listener errors are logged and collected, never raised.
        """
        start_time = time.time()
        event = Event(type=event_type, payload=payload)
        self._remember(event)
        self._emit_count += 1
        result = EmitResult(event=event)

        for sub in [s for s in self._listeners[event_type] if s.enabled]:
            try:
                outcome = sub.callback(event)
                if asyncio.iscoroutine(outcome):
                    await outcome
                result.delivered += 1
            except Exception as e:
                result.failed += 1
                result.errors.append({"listener": sub.name, "error_type": type(e).__name__, "message": str(e)})
                self._logger.warning("Listener failed", listener=sub.name, error_message=str(e), exc_info=True)

        result.execution_time_ms = (time.time() - start_time) * 1000
        return result

    def _remember(self, event: Event) -> None:
        self._history.append(event)
        if len(self._history) > self._history_size:
            del self._history[: len(self._history) - self._history_size]


class DebouncedChannel:
    """
    Debounced event channel with a single in-flight guard.

    The first offer arms a timer; offers made while the timer is armed are
    dropped. When the timer fires the first payload is emitted and the
    channel re-opens.

    Example:
        channel = DebouncedChannel(bus, EventType.RUNTIME_ERROR, delay=5.0)
        channel.offer(output="Failed to compile", role="worker1")
    """

    def __init__(self, bus: EventBus, event_type: EventType, delay: float = 5.0) -> None:
        self._bus = bus
        self._event_type = event_type
        self._delay = delay
        self._in_flight = False
        self._pending: asyncio.Task[None] | None = None

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def offer(self, **payload: Any) -> bool:
        """Offer a payload. Returns False when it was dropped by the guard."""
        if self._in_flight:
            return False
        self._in_flight = True
        self._pending = asyncio.get_running_loop().create_task(self._fire(payload))
        return True

    async def _fire(self, payload: dict[str, Any]) -> None:
        try:
            await asyncio.sleep(self._delay)
            await self._bus.emit(self._event_type, **payload)
        finally:
            self._in_flight = False

    async def drain(self) -> None:
        """Wait for an armed emission to complete."""
        if self._pending is not None:
            await self._pending

    def cancel(self) -> None:
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        self._in_flight = False
