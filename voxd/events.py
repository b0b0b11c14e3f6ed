"""Daemon events and the ordered broadcast channel that carries them.

Every subscriber gets its own bounded queue. ``publish`` appends the event to
all queues in one pass on the event loop thread, so every subscriber sees the
same creation order. A slow subscriber never blocks publishers: when its queue
is full the oldest event is dropped and counted.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional, Union

from .errors import ErrorKind

if TYPE_CHECKING:
    from .controller import ControllerState

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 256


@dataclass(frozen=True)
class Downloading:
    """Model is being downloaded."""
    model: str
    bytes: int
    total: int


@dataclass(frozen=True)
class Loading:
    """Model is being loaded into memory."""
    model: str


@dataclass(frozen=True)
class Ready:
    """Engine is ready."""


InitEvent = Union[Downloading, Loading, Ready]


@dataclass(frozen=True)
class StateChange:
    state: "ControllerState"

    def to_dict(self) -> dict:
        return {"type": "state_change", "state": self.state.value}


@dataclass(frozen=True)
class Transcription:
    text: str

    def to_dict(self) -> dict:
        return {"type": "transcription", "text": self.text}


@dataclass(frozen=True)
class InitProgress:
    progress: InitEvent

    def to_dict(self) -> dict:
        progress = self.progress
        if isinstance(progress, Downloading):
            detail = {
                "stage": "downloading",
                "model": progress.model,
                "bytes": progress.bytes,
                "total": progress.total,
            }
        elif isinstance(progress, Loading):
            detail = {"stage": "loading", "model": progress.model}
        else:
            detail = {"stage": "ready"}
        return {"type": "init_progress", **detail}


@dataclass(frozen=True)
class DaemonError:
    kind: ErrorKind
    message: str
    model_name: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "type": "error",
            "kind": self.kind.value,
            "message": self.message,
            "model_name": self.model_name,
        }


Event = Union[StateChange, Transcription, InitProgress, DaemonError]


class Subscription:
    """One subscriber's view of the bus. Iterate it with ``async for``."""

    def __init__(self, bus: "EventBus", capacity: int):
        self._bus = bus
        self._queue: deque[Event] = deque(maxlen=capacity)
        self._wakeup = asyncio.Event()
        self._closed = False
        self.dropped = 0

    def _push(self, event: Event) -> None:
        if len(self._queue) == self._queue.maxlen:
            self.dropped += 1
            logger.warning(
                f"Event subscriber lagging, dropped oldest event ({self.dropped} total)"
            )
        self._queue.append(event)
        self._wakeup.set()

    def get_nowait(self) -> Optional[Event]:
        """Pop the next queued event, or None."""
        if self._queue:
            return self._queue.popleft()
        return None

    async def get(self) -> Optional[Event]:
        """Wait for the next event. Returns None once closed and drained."""
        while not self._queue:
            if self._closed:
                return None
            self._wakeup.clear()
            await self._wakeup.wait()
        return self._queue.popleft()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._bus._unsubscribe(self)
        self._wakeup.set()

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        return len(self._queue)

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> Event:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event


class EventBus:
    """Bounded multi-subscriber broadcast with drop-oldest overflow."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if capacity < 1:
            raise ValueError(f"Event capacity must be positive, got {capacity}")
        self.capacity = capacity
        self._subscribers: list[Subscription] = []

    def subscribe(self) -> Subscription:
        subscription = Subscription(self, self.capacity)
        self._subscribers.append(subscription)
        return subscription

    def _unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscribers:
            self._subscribers.remove(subscription)

    def publish(self, event: Event) -> int:
        """Deliver ``event`` to every current subscriber; returns how many."""
        subscribers = list(self._subscribers)
        for subscription in subscribers:
            subscription._push(event)
        return len(subscribers)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def close(self) -> None:
        """Close every subscription, ending their iterators."""
        for subscription in list(self._subscribers):
            subscription.close()
