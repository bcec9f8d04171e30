"""Per-bot notification fan-out.

Admin front ends subscribe to a bot and receive log lines, status changes,
executed commands and triggered events as they happen. Publishing never
blocks the gateway loop: a subscriber whose queue is full misses the
notification.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from enum import Enum
from typing import Any

from botyard.logging import get_logger
from botyard.models import utcnow

log = get_logger("notifications")


class NotificationType(str, Enum):
    """Kinds of notification pushed to subscribers."""

    LOG = "bot:log"
    STATUS = "bot:status"
    COMMAND = "bot:command"
    EVENT = "bot:event"


class NotificationHub:
    """Fan notifications out to per-bot subscriber queues."""

    def __init__(self, queue_size: int = 100) -> None:
        self.queue_size = queue_size
        self._subscribers: dict[str, set[asyncio.Queue[dict[str, Any]]]] = defaultdict(set)

    def subscribe(self, bot_id: str) -> asyncio.Queue[dict[str, Any]]:
        """Register a new subscriber queue for a bot."""
        queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=self.queue_size)
        self._subscribers[bot_id].add(queue)
        log.debug("subscriber_added", bot_id=bot_id, count=len(self._subscribers[bot_id]))
        return queue

    def unsubscribe(self, bot_id: str, queue: asyncio.Queue[dict[str, Any]]) -> None:
        """Remove a subscriber queue. Unknown queues are ignored."""
        queues = self._subscribers.get(bot_id)
        if not queues:
            return
        queues.discard(queue)
        if not queues:
            del self._subscribers[bot_id]

    def subscriber_count(self, bot_id: str) -> int:
        return len(self._subscribers.get(bot_id, ()))

    def publish(
        self,
        bot_id: str,
        type: NotificationType | str,
        **payload: Any,
    ) -> dict[str, Any]:
        """Deliver a notification to every subscriber of a bot.

        Args:
            bot_id: Bot the notification is about.
            type: Notification type.
            **payload: Type-specific fields.

        Returns:
            The notification as delivered.
        """
        notification = {
            "type": NotificationType(type).value,
            "botId": bot_id,
            "timestamp": utcnow().isoformat(),
            **payload,
        }

        for queue in list(self._subscribers.get(bot_id, ())):
            try:
                queue.put_nowait(notification)
            except asyncio.QueueFull:
                log.warning(
                    "notification_dropped",
                    bot_id=bot_id,
                    type=notification["type"],
                )

        return notification
