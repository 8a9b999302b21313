"""
Event Bus

Post-commit domain events (``media.uploaded``, ``media.deleted``,
``event.deleted`` ...) fanned out to in-process listeners such as a live feed.
Publishing never waits for a listener: each subscriber owns a bounded
asyncio.Queue and a full queue drops the event for that subscriber only.
"""

import asyncio
import logging
from datetime import datetime, timezone

logger = logging.getLogger(__name__)


class EventBus:
    def __init__(self, max_queue_size: int = 100) -> None:
        self._queues: list[asyncio.Queue] = []
        self._max_queue_size = max_queue_size

    def subscribe(self) -> asyncio.Queue:
        """Register a listener queue; call ``unsubscribe`` when done reading."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._max_queue_size)
        self._queues.append(queue)
        logger.debug("Event subscriber added (total: %d)", len(self._queues))
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        try:
            self._queues.remove(queue)
        except ValueError:
            pass  # Already removed

    def emit(self, event_type: str, data: dict) -> int:
        """
        Deliver to every listener without blocking.

        Returns:
            Number of queues that received the event.
        """
        payload = {
            "type": event_type,
            "data": data,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        delivered = 0
        for queue in list(self._queues):
            try:
                queue.put_nowait(payload)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning("Event queue full, dropping '%s' for slow consumer", event_type)
        return delivered

    def subscriber_count(self) -> int:
        return len(self._queues)
