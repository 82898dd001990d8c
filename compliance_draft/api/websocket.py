"""
WebSocket support for real-time builder notifications.

Each connected client first receives the notifications currently on screen,
then every new one as JSON:
    { "level": "loading", "message": "Saving...",  "toast_id": null, "ts": "..." }
    { "level": "success", "message": "Saved",      "toast_id": null, "ts": "..." }
    { "level": "error",   "message": "...", "toast_id": "builder-save-error", "ts": "..." }
"""

from __future__ import annotations

import asyncio
import logging

from fastapi import WebSocket, WebSocketDisconnect

from compliance_draft.services.notifier import Notifier

logger = logging.getLogger(__name__)


async def stream_notifications(ws: WebSocket, notifier: Notifier) -> None:
    queue = notifier.subscribe()
    try:
        await ws.accept()
        logger.debug("Notification client connected")
        for note in notifier.active:
            await ws.send_json(note.model_dump(mode="json"))

        receiver = asyncio.ensure_future(_drain_client(ws))
        while not receiver.done():
            getter = asyncio.ensure_future(queue.get())
            done, _ = await asyncio.wait({getter, receiver}, return_when=asyncio.FIRST_COMPLETED)
            if getter not in done:
                getter.cancel()
                break
            await ws.send_json(getter.result().model_dump(mode="json"))
        receiver.cancel()
    except WebSocketDisconnect:
        pass
    finally:
        notifier.unsubscribe(queue)
        logger.debug("Notification client disconnected")


async def _drain_client(ws: WebSocket) -> None:
    """Read (and ignore) client messages until the socket closes."""
    try:
        while True:
            await ws.receive_text()
    except WebSocketDisconnect:
        return
