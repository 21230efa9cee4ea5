"""In-process fan-out of live health updates to websocket subscribers."""

from __future__ import annotations

import asyncio
from typing import Protocol

import structlog

from .models import HealthUpdate


logger = structlog.get_logger(__name__)


class HealthUpdatePublisher(Protocol):
    def publish(self, update: HealthUpdate) -> None: ...


class LiveUpdateHub:
    """Each subscriber gets its own bounded queue; a slow subscriber loses its oldest events."""

    def __init__(self, max_queue_size: int = 100):
        self.max_queue_size = max_queue_size
        self._subscribers: set[asyncio.Queue[HealthUpdate]] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> asyncio.Queue[HealthUpdate]:
        queue: asyncio.Queue[HealthUpdate] = asyncio.Queue(maxsize=self.max_queue_size)
        self._subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[HealthUpdate]) -> None:
        self._subscribers.discard(queue)

    def publish(self, update: HealthUpdate) -> None:
        for queue in list(self._subscribers):
            if queue.full():
                try:
                    queue.get_nowait()
                except asyncio.QueueEmpty:
                    pass
            queue.put_nowait(update)
        logger.debug("Published health update", service_id=update.service_id, subscribers=len(self._subscribers))
