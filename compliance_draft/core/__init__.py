"""Core — draft store, dirty tracker, autosave scheduler, sync engine, lifecycle, session."""

from compliance_draft.core.dirty_tracker import DirtyTracker
from compliance_draft.core.draft_store import DraftStore
from compliance_draft.core.errors import DraftError, DraftLimitError, EditNotAllowedError, UnknownEntityError
from compliance_draft.core.lifecycle import LifecycleHooks
from compliance_draft.core.scheduler import AutosaveScheduler
from compliance_draft.core.session import BuilderSession
from compliance_draft.core.sync_engine import SyncEngine, SyncOptions

__all__ = [
    "AutosaveScheduler",
    "BuilderSession",
    "DirtyTracker",
    "DraftError",
    "DraftLimitError",
    "DraftStore",
    "EditNotAllowedError",
    "LifecycleHooks",
    "SyncEngine",
    "SyncOptions",
    "UnknownEntityError",
]
