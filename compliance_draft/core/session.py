"""
Builder Session — wires the draft store, dirty tracker, scheduler, sync
engine and lifecycle hooks for one builder screen.

View layers use:
  - ``store``                     → all draft mutations
  - ``current_draft`` / ``is_saving`` / ``is_dirty``
  - ``trigger_manual_save()``     → save with progress feedback
  - ``trigger_save_and_reload()`` → save, then re-hydrate from the backend
  - ``lifecycle``                 → page hidden / before unload
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from compliance_draft.config import Settings, get_settings
from compliance_draft.core.dirty_tracker import DirtyTracker
from compliance_draft.core.draft_store import DraftStore, EditGate
from compliance_draft.core.lifecycle import LifecycleHooks
from compliance_draft.core.scheduler import AutosaveScheduler
from compliance_draft.core.sync_engine import SyncEngine, SyncOptions
from compliance_draft.models.schemas import Section
from compliance_draft.services.builder_api import BuilderApi
from compliance_draft.services.notifier import Notifier

logger = logging.getLogger(__name__)


class BuilderSession:
    def __init__(
        self,
        api: BuilderApi,
        notifier: Optional[Notifier] = None,
        settings: Optional[Settings] = None,
        can_edit: EditGate = True,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.api = api
        self.notifier = notifier or Notifier()
        self.loading = False

        self.tracker = DirtyTracker()
        self.store = DraftStore(
            default_item=self.settings.default_section_item,
            can_edit=can_edit,
            on_change=self._on_change,
            trial_mode=self.settings.trial_mode,
            max_sections=self.settings.trial_max_sections,
            max_questions=self.settings.trial_max_questions,
        )
        self.engine = SyncEngine(
            self.store,
            self.tracker,
            api,
            self.notifier,
            max_files_per_slot=self.settings.max_files_per_slot,
        )
        self.scheduler = AutosaveScheduler(
            self.tracker,
            self._autosave,
            delay_ms=self.settings.autosave_debounce_ms,
            loop=loop,
        )
        self.engine.rearm = self.scheduler.arm
        self.lifecycle = LifecycleHooks(self.store, self.tracker, self.scheduler)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, **kwargs) -> BuilderSession:
        """Build a session against the mock backend or the REST API."""
        settings = settings or get_settings()
        if settings.mock_mode:
            from compliance_draft.persistence.memory_backend import InMemoryBuilderApi

            logger.info("[MOCK] Using in-memory builder backend")
            api: BuilderApi = InMemoryBuilderApi()
        else:
            from compliance_draft.services.builder_api import HttpBuilderApi

            api = HttpBuilderApi(
                base_url=settings.api_base_url,
                timeout=settings.api_timeout_seconds,
                token=settings.api_token,
            )
        return cls(api, settings=settings, **kwargs)

    # ── Wiring ───────────────────────────────────────────

    def _on_change(self) -> None:
        if self.loading:
            return
        self.tracker.mark_dirty()
        self.scheduler.arm()

    async def _autosave(self) -> bool:
        return await self.engine.sync(SyncOptions.background())

    # ── View-facing state ────────────────────────────────

    @property
    def current_draft(self) -> list[Section]:
        return self.store.sections

    @property
    def is_saving(self) -> bool:
        return self.engine.is_saving

    @property
    def is_dirty(self) -> bool:
        return not self.tracker.is_clean()

    # ── Actions ──────────────────────────────────────────

    async def load(self) -> bool:
        self.loading = True
        try:
            return await self.engine.hydrate()
        finally:
            self.loading = False

    async def trigger_manual_save(self) -> bool:
        return await self.engine.sync(SyncOptions(silent=False, reload=False, announce_busy=True))

    async def trigger_save_and_reload(self) -> bool:
        return await self.engine.sync(SyncOptions(silent=False, reload=True, announce_busy=True))

    async def close(self) -> None:
        """Stop the debounce timer and wait for saves already started."""
        self.scheduler.cancel()
        await self.scheduler.drain()
        await self.api.aclose()
