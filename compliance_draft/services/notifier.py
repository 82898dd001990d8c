"""
Notifier — user-facing notifications (toasts) raised by the builder session.

Notifications carrying a ``toast_id`` replace the previous one with the same
id, so a failing autosave shows one error instead of a stack of them.
Subscribers (e.g. a WebSocket) receive every emitted notification through an
``asyncio.Queue``.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field

from compliance_draft.models.enums import NotificationLevel

logger = logging.getLogger(__name__)


class Notification(BaseModel):
    level: NotificationLevel
    message: str
    toast_id: Optional[str] = None
    ts: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


class Notifier:
    """In-process notification feed."""

    def __init__(self) -> None:
        self._active: list[Notification] = []
        self.history: list[Notification] = []
        self._subscribers: list[asyncio.Queue] = []

    # ── Subscribers ──────────────────────────────────────

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    # ── Emitting ─────────────────────────────────────────

    def emit(self, level: NotificationLevel, message: str, toast_id: Optional[str] = None) -> Notification:
        note = Notification(level=level, message=message, toast_id=toast_id)
        if toast_id is not None:
            self._active = [n for n in self._active if n.toast_id != toast_id]
        self._active.append(note)
        self.history.append(note)

        for queue in self._subscribers:
            queue.put_nowait(note)
        return note

    def success(self, message: str, toast_id: Optional[str] = None) -> Notification:
        logger.info(f"✓ {message}")
        return self.emit(NotificationLevel.SUCCESS, message, toast_id)

    def error(self, message: str, toast_id: Optional[str] = None) -> Notification:
        logger.warning(f"✗ {message}")
        return self.emit(NotificationLevel.ERROR, message, toast_id)

    def loading(self, message: str, toast_id: Optional[str] = None) -> Notification:
        logger.info(f"… {message}")
        return self.emit(NotificationLevel.LOADING, message, toast_id)

    # ── Queries ──────────────────────────────────────────

    @property
    def active(self) -> list[Notification]:
        """Notifications currently on screen (deduplicated by toast id)."""
        return list(self._active)

    def errors(self) -> list[Notification]:
        return [n for n in self.history if n.level == NotificationLevel.ERROR]

    def dismiss(self, toast_id: str) -> None:
        self._active = [n for n in self._active if n.toast_id != toast_id]

    def clear(self) -> None:
        self._active.clear()
        self.history.clear()
