"""
Server-Sent Events transport for the notification hub.

One NotificationStream per connected client:
1. Subscribes to the hub when iteration starts
2. Buffers deliveries in a bounded queue (oldest dropped on overflow)
3. Yields SSE frames: "connected" first, then notifications, with a
   heartbeat on a fixed interval regardless of traffic
4. Unsubscribes and drops its buffer when the client goes away
"""

import asyncio
import json
import logging
import time
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional

from src.notifications.models import Notification
from src.notifications.service import NotificationService


logger = logging.getLogger(__name__)

DEFAULT_HEARTBEAT_SECONDS = 30.0
DEFAULT_BUFFER_SIZE = 100


def format_sse(payload: Dict[str, Any]) -> str:
    """Frame a payload as one SSE data message."""
    return f"data: {json.dumps(payload, default=str)}\n\n"


class NotificationStream:
    """
    Bridges hub callbacks (any thread) to one async SSE consumer.

    Must be created on the event loop that will consume it.
    """

    def __init__(
        self,
        service: NotificationService,
        heartbeat_seconds: float = DEFAULT_HEARTBEAT_SECONDS,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
    ):
        self._service = service
        self._heartbeat_seconds = heartbeat_seconds
        self._loop = asyncio.get_running_loop()
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=buffer_size)
        self._closed = False
        self.dropped = 0
        self._unsubscribe: Optional[Callable[[], None]] = None

    def open(self):
        """Start receiving notifications. Called by events() if needed."""
        if self._unsubscribe is None and not self._closed:
            self._unsubscribe = self._service.subscribe(self._on_notification)

    @property
    def closed(self) -> bool:
        return self._closed

    def _on_notification(self, notification: Notification):
        if self._closed:
            return
        payload = {"type": "notification", "data": notification.to_dict()}
        # Always hop through the loop so deliveries keep add() order
        try:
            self._loop.call_soon_threadsafe(self._enqueue, payload)
        except RuntimeError:
            logger.warning("Event loop closed, dropping notification stream")
            self.close()

    def _enqueue(self, payload: Dict[str, Any]):
        if self._closed:
            return
        if self._queue.full():
            self._queue.get_nowait()
            self.dropped += 1
            logger.warning(f"Notification stream buffer full, dropped oldest ({self.dropped} total)")
        self._queue.put_nowait(payload)

    def close(self):
        """Unsubscribe and release the buffer. Safe to call repeatedly."""
        if self._closed:
            return
        self._closed = True
        if self._unsubscribe is not None:
            self._unsubscribe()
        while not self._queue.empty():
            self._queue.get_nowait()
        logger.info("Notification stream closed")

    async def events(
        self,
        is_disconnected: Optional[Callable[[], Awaitable[bool]]] = None,
    ) -> AsyncIterator[str]:
        """
        Yield SSE frames until the client disconnects or the consumer
        stops iterating.
        """
        self.open()
        try:
            yield format_sse({
                "type": "connected",
                "message": "Successfully connected to notification stream",
            })

            next_heartbeat = self._loop.time() + self._heartbeat_seconds

            while not self._closed:
                if is_disconnected is not None and await is_disconnected():
                    logger.info("Notification stream client disconnected")
                    break

                timeout = max(0.0, next_heartbeat - self._loop.time())
                try:
                    payload = await asyncio.wait_for(self._queue.get(), timeout=timeout)
                except asyncio.TimeoutError:
                    next_heartbeat += self._heartbeat_seconds
                    payload = {"type": "heartbeat", "timestamp": int(time.time() * 1000)}

                yield format_sse(payload)
        finally:
            self.close()
