"""Live notification channel for one bot.

Clients connect to ``/api/bots/{bot_id}/ws`` and receive every log,
status, command and event notification for that bot as JSON messages.
Anything the client sends is ignored; closing the socket unsubscribes.
"""

import asyncio
from typing import TYPE_CHECKING

import structlog
from fastapi import APIRouter, Depends, WebSocket

from botyard.api.deps import get_hub

if TYPE_CHECKING:
    from botyard.notifications import NotificationHub

log = structlog.get_logger()

router = APIRouter(prefix="/api/bots", tags=["notifications"])


@router.websocket("/{bot_id}/ws")
async def bot_notifications(
    websocket: WebSocket,
    bot_id: str,
    hub: "NotificationHub" = Depends(get_hub),
) -> None:
    await websocket.accept()
    queue = hub.subscribe(bot_id)
    log.info("notification_subscriber_connected", bot_id=bot_id)

    receiver = asyncio.create_task(websocket.receive())
    getter: asyncio.Task | None = None
    try:
        while True:
            getter = asyncio.create_task(queue.get())
            done, _ = await asyncio.wait({receiver, getter}, return_when=asyncio.FIRST_COMPLETED)

            if getter in done:
                await websocket.send_json(getter.result())
            if receiver in done:
                if receiver.result()["type"] == "websocket.disconnect":
                    break
                receiver = asyncio.create_task(websocket.receive())
    finally:
        for task in (receiver, getter):
            if task is not None and not task.done():
                task.cancel()
        hub.unsubscribe(bot_id, queue)
        log.info("notification_subscriber_disconnected", bot_id=bot_id)
