"""
Autosave Scheduler — debounces bursts of edits into one deferred save.

Runs on the event loop via ``call_later``; there is no background thread.
The timer callback and the page-teardown flush both go through ``fire()``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from compliance_draft.core.dirty_tracker import DirtyTracker

logger = logging.getLogger(__name__)


class AutosaveScheduler:
    """Pure debounce: every ``arm()`` restarts the window."""

    def __init__(
        self,
        tracker: DirtyTracker,
        save: Callable[[], Awaitable[Any]],
        delay_ms: int = 350,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> None:
        self.tracker = tracker
        self.delay = delay_ms / 1000.0
        self._save = save
        self._loop = loop
        self._handle: Optional[asyncio.TimerHandle] = None
        self._tasks: set[asyncio.Task] = set()
        self.fire_count = 0

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def arm(self) -> None:
        self.cancel()
        loop = self._loop or asyncio.get_running_loop()
        self._handle = loop.call_later(self.delay, self._on_timer)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def fire(self) -> Optional[asyncio.Task]:
        """Start a save now if the draft is dirty; returns the save task."""
        self.cancel()
        if self.tracker.is_clean():
            logger.debug("Autosave skipped: draft is clean")
            return None

        self.fire_count += 1
        loop = self._loop or asyncio.get_running_loop()
        task = loop.create_task(self._save())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for every save started by this scheduler (used on shutdown)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    def _on_timer(self) -> None:
        self._handle = None
        self.fire()
