"""
In-process event bus with best-effort broadcast.

The coordinator and poller only call `publish()`.  Receivers are either
plain callbacks (`add_listener`) or async iterators obtained from
`subscribe()` (used by the SSE endpoint).  Delivery is fire-and-forget:
a failing listener is logged and skipped, a slow subscriber drops events
once its queue is full.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from esg_pipeline.core.logging import get_logger

logger = get_logger(__name__)


@dataclass
class Event:
    """A single broadcast event."""

    channel: str
    payload: dict[str, Any]
    emitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "channel": self.channel,
            "payload": self.payload,
            "emitted_at": self.emitted_at.isoformat(),
        }


class EventBus:
    """Broadcast events to listeners and streaming subscribers."""

    _QUEUE_SIZE = 100

    def __init__(self) -> None:
        self._listeners: list[Callable[[Event], None]] = []
        self._queues: list[asyncio.Queue[Event]] = []

    def add_listener(self, listener: Callable[[Event], None]) -> None:
        self._listeners.append(listener)

    def publish(self, channel: str, payload: dict[str, Any]) -> None:
        event = Event(channel=channel, payload=payload)

        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as exc:
                logger.warning("Event listener failed", channel=channel, error=str(exc))

        for queue in list(self._queues):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning("Event subscriber queue full, dropping event", channel=channel)

    async def subscribe(self, channels: set[str] | None = None) -> AsyncIterator[Event]:
        """Yield events as they are published, optionally filtered by channel."""
        queue: asyncio.Queue[Event] = asyncio.Queue(maxsize=self._QUEUE_SIZE)
        self._queues.append(queue)
        try:
            while True:
                event = await queue.get()
                if channels is None or event.channel in channels:
                    yield event
        finally:
            self._queues.remove(queue)

    @property
    def subscriber_count(self) -> int:
        return len(self._queues) + len(self._listeners)


event_bus = EventBus()
