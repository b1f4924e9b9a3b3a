"""
A simple, in-memory, async-friendly Event Bus.

This provides a lightweight pub/sub mechanism for decoupling the NUT
session and the device pollers from whoever consumes their updates.
"""

import asyncio
import logging
from collections import defaultdict
from typing import Any, Awaitable, Callable, Dict, List, Set

logger = logging.getLogger(__name__)

# Type hint for an async callback that takes one argument
EventCallback = Callable[[Any], Awaitable[None]]

TOPIC_SESSION_READY = "session.ready"
TOPIC_SESSION_CLOSED = "session.closed"
TOPIC_SESSION_ERROR = "session.error"
TOPIC_DEVICES_LISTED = "devices.listed"
TOPIC_DEVICE_UPDATED = "device.updated"
TOPIC_DEVICE_FAULT = "device.fault"


class EventBus:
    """
    A simple asynchronous event bus for pub/sub interactions.
    """
    def __init__(self):
        self._subscribers: Dict[str, List[EventCallback]] = defaultdict(list)
        self._lock = asyncio.Lock()
        self._pending: Set[asyncio.Task] = set()

    async def subscribe(self, topic: str, callback: EventCallback):
        """
        Subscribes a callback to a specific topic.

        Args:
            topic: The topic to subscribe to (e.g., "device.updated").
            callback: An async function to be called when an event is published.
        """
        async with self._lock:
            logger.debug(f"New subscription to topic: {topic}")
            self._subscribers[topic].append(callback)

    async def publish(self, topic: str, data: Any):
        """
        Publishes an event to all subscribers of a topic.

        Args:
            topic: The topic to publish the event to.
            data: The data payload of the event.
        """
        if topic in self._subscribers:
            logger.debug(f"Publishing event to topic '{topic}' for {len(self._subscribers[topic])} subscribers.")
            # Create tasks for all callbacks to run concurrently
            tasks = [
                asyncio.create_task(callback(data))
                for callback in self._subscribers[topic]
            ]
            results = await asyncio.gather(*tasks, return_exceptions=True)
            for result in results:
                if isinstance(result, Exception):
                    logger.error(f"Subscriber for topic '{topic}' failed: {result!r}")

    def publish_nowait(self, topic: str, data: Any) -> None:
        """
        Schedules a publish without waiting for subscribers.

        Used from code that subscribers may call back into.
        """
        if topic not in self._subscribers:
            return
        task = asyncio.create_task(self.publish(topic, data))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self):
        """Wait for every publish scheduled with publish_nowait to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
