import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Protocol

from streamwatch.config import settings
from streamwatch.models import EventKind

logger = logging.getLogger(__name__)


class Subscriber(Protocol):
    """Anything with an async send_text, e.g. a FastAPI WebSocket."""

    async def send_text(self, data: str) -> None: ...


@dataclass
class _Subscription:
    queue: asyncio.Queue
    task: asyncio.Task
    dropped: int = 0


class EventEmitter:
    """
    Best-effort fan-out of stream events.

    publish() never waits on a subscriber: each subscriber has its own bounded
    queue drained by its own task. A full queue drops the event for that
    subscriber only, and a subscriber whose send fails is removed.
    """

    def __init__(self, queue_size: int = settings.EVENT_QUEUE_SIZE):
        self.queue_size = queue_size
        self._subscriptions: Dict[Subscriber, _Subscription] = {}

    def subscribe(self, subscriber: Subscriber):
        """Register a subscriber. Must be called from the event loop."""
        if subscriber in self._subscriptions:
            return
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        task = asyncio.create_task(self._pump(subscriber, queue))
        self._subscriptions[subscriber] = _Subscription(queue=queue, task=task)
        logger.info(f"Subscriber connected. Total: {len(self._subscriptions)}")

    async def unsubscribe(self, subscriber: Subscriber):
        """Remove a subscriber and stop its delivery task."""
        subscription = self._subscriptions.pop(subscriber, None)
        if subscription is None:
            return
        subscription.task.cancel()
        try:
            await subscription.task
        except asyncio.CancelledError:
            pass
        logger.info(f"Subscriber disconnected. Total: {len(self._subscriptions)}")

    def publish(self, kind: EventKind, data: Dict[str, Any]) -> int:
        """
        Queue an event for every subscriber.

        Returns:
            Number of subscribers the event was queued for
        """
        message = json.dumps({
            "type": f"stream:{EventKind(kind).value}",
            "data": data,
            "timestamp": datetime.now(timezone.utc).isoformat()
        }, default=str)

        delivered = 0
        for subscription in self._subscriptions.values():
            try:
                subscription.queue.put_nowait(message)
                delivered += 1
            except asyncio.QueueFull:
                subscription.dropped += 1
                logger.debug(f"Dropped {kind} event for slow subscriber ({subscription.dropped} dropped)")
        return delivered

    async def _pump(self, subscriber: Subscriber, queue: asyncio.Queue):
        while True:
            message = await queue.get()
            try:
                await subscriber.send_text(message)
            except Exception as e:
                logger.error(f"Error sending to subscriber: {e}")
                # The pump is ending, so drop the entry rather than awaiting our own task
                self._subscriptions.pop(subscriber, None)
                return

    async def close(self):
        for subscriber in list(self._subscriptions):
            await self.unsubscribe(subscriber)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)


# Global instance
event_emitter = EventEmitter()
