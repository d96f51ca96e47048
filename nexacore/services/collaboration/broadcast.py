"""
Broadcast boundary between the session manager and the live transport.

The core publishes messages here and never waits for delivery. A transport
(WebSocket fanout, SSE, a Redis pub/sub bridge) either drains the queue or
registers a subscriber callback.
"""

import asyncio
import inspect
from collections import deque
from collections.abc import Awaitable, Callable

from nexacore.infrastructure.observability.logging import get_logger
from nexacore.models.domain.collaboration_domain import CollaborationMessage

logger = get_logger(__name__)

Subscriber = Callable[[str, CollaborationMessage], Awaitable[None] | None]


class BroadcastQueue:
    """Bounded fire-and-forget message queue with optional push subscribers."""

    def __init__(self, max_size: int = 1000):
        self.max_size = max_size
        self._messages: deque[tuple[str, CollaborationMessage]] = deque()
        self._subscribers: list[Subscriber] = []
        self._tasks: set[asyncio.Task] = set()
        self.dropped = 0
        self._overflowing = False

    def subscribe(self, callback: Subscriber) -> None:
        self._subscribers.append(callback)

    def unsubscribe(self, callback: Subscriber) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def publish(self, room_id: str, message: CollaborationMessage) -> None:
        """Queue a message for the room. Never raises into the caller."""
        if len(self._messages) >= self.max_size:
            self._messages.popleft()
            self.dropped += 1
            # One warning per overflow burst; a drain ends the burst
            if not self._overflowing:
                self._overflowing = True
                logger.warning(
                    "Broadcast queue full, dropping oldest messages",
                    room_id=room_id,
                    max_size=self.max_size,
                    dropped_total=self.dropped,
                )

        self._messages.append((room_id, message))

        for callback in list(self._subscribers):
            self._notify(callback, room_id, message)

    def drain(self, room_id: str | None = None) -> list[CollaborationMessage]:
        """Remove and return queued messages, optionally only those for one room."""
        self._overflowing = False
        if room_id is None:
            drained = [message for _, message in self._messages]
            self._messages.clear()
            return drained

        drained = []
        kept = deque()
        for target, message in self._messages:
            if target == room_id:
                drained.append(message)
            else:
                kept.append((target, message))
        self._messages = kept
        return drained

    def pending(self) -> int:
        return len(self._messages)

    def _notify(self, callback: Subscriber, room_id: str, message: CollaborationMessage) -> None:
        try:
            result = callback(room_id, message)
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._tasks.add(task)
                task.add_done_callback(self._on_delivery_done)
        except Exception as e:
            logger.warning(
                "Broadcast subscriber failed",
                room_id=room_id,
                message_type=message.type,
                error=str(e),
                error_type=type(e).__name__,
            )

    def _on_delivery_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning(
                "Broadcast delivery failed",
                error=str(error),
                error_type=type(error).__name__,
            )
