"""
Lifecycle Hooks — flush unsaved edits when the page is hidden or closing.

Best effort only: the host may tear the page down before the request
finishes.  Both hooks go through ``AutosaveScheduler.fire()``, the same path
the debounce timer uses.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from compliance_draft.core.dirty_tracker import DirtyTracker
from compliance_draft.core.draft_store import DraftStore
from compliance_draft.core.scheduler import AutosaveScheduler

logger = logging.getLogger(__name__)


class LifecycleHooks:
    def __init__(self, store: DraftStore, tracker: DirtyTracker, scheduler: AutosaveScheduler) -> None:
        self.store = store
        self.tracker = tracker
        self.scheduler = scheduler

    def _flush(self, reason: str) -> Optional[asyncio.Task]:
        if not self.store.can_edit or self.tracker.is_clean():
            return None
        logger.info(f"Flushing unsaved edits ({reason})")
        return self.scheduler.fire()

    def on_before_unload(self) -> bool:
        """
        Start a silent save if dirty.  Returns True when the host should ask
        the user to confirm leaving (there were unsaved edits).
        """
        return self._flush("before unload") is not None

    def on_visibility_change(self, hidden: bool) -> Optional[asyncio.Task]:
        if not hidden:
            return None
        return self._flush("page hidden")
