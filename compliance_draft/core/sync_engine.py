"""
Sync Engine — persists the draft tree to the backend, one pass at a time.

A pass:
  1. captures the change counter and a deep copy of the draft,
  2. upserts sections then their questions in order (temporary ids are
     created, permanent ids are updated only when their payload changed),
  3. uploads locally selected files once the owner has a permanent id,
  4. reorders and deletes against the baseline recorded at the last
     successful load/pass,
  5. on success rewrites temporary ids in the live draft (or reloads it).

Only one pass runs at a time; a second ``sync()`` call joins the running
pass.  Every failure is caught here and turned into one notification.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from pydantic import BaseModel, ConfigDict, Field

from compliance_draft.core.dirty_tracker import DirtyTracker
from compliance_draft.core.draft_store import DraftStore
from compliance_draft.models.enums import AttachmentCategory, EntityState
from compliance_draft.models.identifiers import is_temp_id
from compliance_draft.models.mapping import build_question_payload, build_section_payload, section_from_remote
from compliance_draft.models.schemas import LocalFile, Question, Section
from compliance_draft.services.builder_api import BuilderApi, BuilderApiError
from compliance_draft.services.notifier import Notifier
from compliance_draft.utils.errors import get_user_error_message
from compliance_draft.utils.hashing import payload_fingerprint

logger = logging.getLogger(__name__)

SAVE_ERROR_TOAST = "builder-save-error"
LOAD_ERROR_TOAST = "builder-load-error"
SAVE_PROGRESS_TOAST = "builder-save-progress"


class SyncOptions(BaseModel):
    """How a pass reports itself and what it does after success."""
    model_config = ConfigDict(frozen=True)

    silent: bool = False          # no success notification
    reload: bool = True           # re-hydrate from the backend after success
    announce_busy: bool = True    # flip ``is_saving`` while running

    @classmethod
    def background(cls) -> SyncOptions:
        return cls(silent=True, reload=False, announce_busy=False)


class PersistedBaseline(BaseModel):
    """What the backend is known to hold after the last successful load/pass."""
    section_order: list[str] = Field(default_factory=list)
    question_order: dict[str, list[str]] = Field(default_factory=dict)
    section_fingerprints: dict[str, str] = Field(default_factory=dict)
    question_fingerprints: dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_sections(cls, sections: list[Section]) -> PersistedBaseline:
        baseline = cls()
        for section in sections:
            baseline.section_order.append(section.id)
            baseline.section_fingerprints[section.id] = _fingerprint_section(section)
            baseline.question_order[section.id] = [q.id for q in section.questions]
            for question in section.questions:
                baseline.question_fingerprints[question.id] = _fingerprint_question(question, section.id)
        return baseline


class UploadLedger:
    """Remembers which local files were already uploaded to which owner/slot."""

    def __init__(self) -> None:
        self._scopes: dict[str, set[str]] = {}

    def was_uploaded(self, scope: str, file: LocalFile) -> bool:
        return file.upload_key in self._scopes.get(scope, set())

    def mark_uploaded(self, scope: str, file: LocalFile) -> None:
        self._scopes.setdefault(scope, set()).add(file.upload_key)

    def clear(self) -> None:
        self._scopes.clear()


def _fingerprint_section(section: Section) -> str:
    return payload_fingerprint(build_section_payload(section).model_dump(mode="json"))


def _fingerprint_question(question: Question, section_id: str) -> str:
    return payload_fingerprint(build_question_payload(question, section_id).model_dump(mode="json"))


class SyncEngine:
    """Single-flight persistence of a ``DraftStore`` through a ``BuilderApi``."""

    def __init__(
        self,
        store: DraftStore,
        tracker: DirtyTracker,
        api: BuilderApi,
        notifier: Notifier,
        max_files_per_slot: int = 5,
    ) -> None:
        self.store = store
        self.tracker = tracker
        self.api = api
        self.notifier = notifier
        self.max_files_per_slot = max_files_per_slot
        # set by the session once the scheduler exists
        self.rearm: Optional[Callable[[], None]] = None

        self.baseline = PersistedBaseline()
        self.uploads = UploadLedger()
        self.is_saving = False
        self.pass_count = 0

        self._current: Optional[asyncio.Task] = None
        # every temp id resolved by a committed pass
        self.resolved: dict[str, str] = {}
        # temp id -> permanent id for entities created by a pass that later
        # failed; the next pass updates them instead of creating duplicates
        self._carried_sections: dict[str, str] = {}
        self._carried_questions: dict[str, str] = {}
        self._carried_parents: dict[str, str] = {}
        self._syncing: set[str] = set()
        self._deleted: set[str] = set()

    # ── Public API ───────────────────────────────────────

    @property
    def in_flight(self) -> bool:
        return self._current is not None and not self._current.done()

    async def sync(self, opts: Optional[SyncOptions] = None) -> bool:
        """Run (or join) a pass; returns True on success."""
        opts = opts or SyncOptions()
        if not self.store.can_edit:
            self.notifier.error("Only editors can save the builder")
            return False

        if self.in_flight:
            logger.debug("Sync requested while a pass is running; joining it")
            # a background pass does not flag itself busy; the joiner does
            busy_while_joined = opts.announce_busy and not self.is_saving
            if busy_while_joined:
                self.is_saving = True
            try:
                await asyncio.shield(self._current)
            finally:
                if busy_while_joined:
                    self.is_saving = False
            # the joined pass captured older data; run once more if edits remain
            if not self.tracker.is_clean():
                return await self.sync(opts)
            return True

        self._current = asyncio.get_running_loop().create_task(self._run(opts))
        return await asyncio.shield(self._current)

    async def hydrate(self, unless_changed_since: Optional[int] = None) -> bool:
        """
        Replace the draft with the backend's current tree.

        With ``unless_changed_since`` the fetched tree is discarded (and False
        returned) when the change counter moved past it while fetching.
        """
        try:
            remote = await self.api.list_sections()
        except Exception as e:
            logger.error(f"Failed to load builder: {e}")
            self.notifier.error(
                get_user_error_message(e, "Could not load the builder"), toast_id=LOAD_ERROR_TOAST
            )
            return False

        if unless_changed_since is not None and self.tracker.change_counter != unless_changed_since:
            logger.info("Discarding reload: the draft changed while it was fetched")
            return False

        sections = [section_from_remote(s) for s in sorted(remote, key=lambda s: s.order)]
        self.store.replace_all(sections)
        self.baseline = PersistedBaseline.from_sections(sections)
        self._carried_sections.clear()
        self._carried_questions.clear()
        self._carried_parents.clear()

        if not sections:
            self.tracker.reset()
            self.uploads.clear()
        logger.info(
            f"Hydrated builder: {len(sections)} sections, "
            f"{sum(len(s.questions) for s in sections)} questions"
        )
        return True

    def entity_state(self, entity_id: str) -> EntityState:
        if entity_id in self._deleted:
            return EntityState.DELETED
        if entity_id in self._syncing:
            return EntityState.SYNCING
        if entity_id in self._pending_delete_ids():
            return EntityState.PENDING_DELETE
        if is_temp_id(entity_id):
            if self.resolve_id(entity_id) != entity_id:
                return EntityState.PERSISTED
            return EntityState.LOCAL_ONLY
        return EntityState.PERSISTED

    def resolve_id(self, entity_id: str) -> str:
        """Permanent id for ``entity_id`` if one is known, else the id itself."""
        for mapping in (self.resolved, self._carried_sections, self._carried_questions):
            if entity_id in mapping:
                return mapping[entity_id]
        return entity_id

    # ── Pass ─────────────────────────────────────────────

    async def _run(self, opts: SyncOptions) -> bool:
        start_counter = self.tracker.change_counter
        snapshot = self.store.snapshot()
        self.pass_count += 1
        pass_no = self.pass_count

        if opts.announce_busy:
            self.is_saving = True
            if not opts.silent:
                self.notifier.loading("Saving builder...", toast_id=SAVE_PROGRESS_TOAST)
        self._syncing = {
            entity_id
            for s in snapshot
            for entity_id in [s.id, *(q.id for q in s.questions)]
            if is_temp_id(entity_id)
        }
        logger.info(
            f"▶ Sync pass #{pass_no} started at change {start_counter} "
            f"({len(snapshot)} sections, {len(self._syncing)} unsaved entities)"
        )

        succeeded = False
        try:
            section_map, question_map, next_baseline = await self._push(snapshot)
            succeeded = True
        except Exception as e:
            logger.error(f"✗ Sync pass #{pass_no} failed: {e}")
            self.notifier.error(
                get_user_error_message(e, "Failed to save the builder"), toast_id=SAVE_ERROR_TOAST
            )
        finally:
            self._syncing = set()
            if opts.announce_busy:
                self.is_saving = False
                self.notifier.dismiss(SAVE_PROGRESS_TOAST)

        try:
            if succeeded:
                await self._commit(opts, start_counter, section_map, question_map, next_baseline)
                logger.info(f"✔ Sync pass #{pass_no} committed (change {start_counter})")
            return succeeded
        finally:
            self._current = None
            if self.tracker.change_counter > start_counter and self.rearm is not None:
                logger.debug("Edits arrived during the pass; re-arming autosave")
                self.rearm()

    async def _push(
        self, snapshot: list[Section]
    ) -> tuple[dict[str, str], dict[str, str], PersistedBaseline]:
        section_map = dict(self._carried_sections)
        question_map = dict(self._carried_questions)
        next_baseline = PersistedBaseline()

        for section in snapshot:
            payload = build_section_payload(section)
            fingerprint = _fingerprint_section(section)
            section_id = section_map.get(section.id, section.id)

            if is_temp_id(section_id):
                section_id = await self.api.create_section(payload)
                section_map[section.id] = section_id
                self._carried_sections[section.id] = section_id
                logger.debug(f"Created section {section.id} → {section_id}")
            elif self.baseline.section_fingerprints.get(section_id) != fingerprint:
                await self.api.update_section(section_id, payload)

            next_baseline.section_order.append(section_id)
            next_baseline.section_fingerprints[section_id] = fingerprint

            if section.has_rule:
                await self._upload_many(
                    f"sec:{section_id}:{AttachmentCategory.RULE.value}",
                    section.rule_files,
                    lambda f, sid=section_id: self.api.upload_section_rule(sid, f, None),
                )

            question_ids = await self._push_questions(section, section_id, question_map, next_baseline)
            next_baseline.question_order[section_id] = question_ids

            if question_ids and question_ids != self.baseline.question_order.get(section_id):
                await self.api.reorder_questions(section_id, question_ids)

            keep = set(question_ids)
            for question_id in self._known_question_ids(section_id):
                if question_id not in keep:
                    await self._delete(self.api.delete_question, question_id)

        section_order = next_baseline.section_order
        if section_order and section_order != self.baseline.section_order:
            await self.api.reorder_sections(section_order)

        # questions of a deleted section are removed by the backend
        keep_sections = set(section_order)
        for section_id in self._known_section_ids():
            if section_id not in keep_sections:
                await self._delete(self.api.delete_section, section_id)

        return section_map, question_map, next_baseline

    async def _push_questions(
        self,
        section: Section,
        section_id: str,
        question_map: dict[str, str],
        next_baseline: PersistedBaseline,
    ) -> list[str]:
        question_ids: list[str] = []
        for question in section.questions:
            question_id = question_map.get(question.id, question.id)
            if is_temp_id(question_id):
                question_id = await self.api.create_question(section_id, question.text or "")
                question_map[question.id] = question_id
                self._carried_questions[question.id] = question_id
                self._carried_parents[question_id] = section_id
                logger.debug(f"Created question {question.id} → {question_id}")

            fingerprint = _fingerprint_question(question, section_id)
            if self.baseline.question_fingerprints.get(question_id) != fingerprint:
                await self.api.update_question(question_id, build_question_payload(question, section_id))
            next_baseline.question_fingerprints[question_id] = fingerprint
            question_ids.append(question_id)

            await self._upload_question_files(question_id, question)
        return question_ids

    async def _upload_question_files(self, question_id: str, question: Question) -> None:
        test = question.test
        slots = [
            (AttachmentCategory.ANSWER, question.answer_files, None),
            (AttachmentCategory.DEFICIENCY, question.deficiency_files, None),
            (AttachmentCategory.TEST_REQUEST, test.request.files, test.request.reference),
            (AttachmentCategory.TEST_RESPONSE, test.response.files, test.response.reference),
            (AttachmentCategory.TEST_SAMPLE, test.sample.files, test.sample.reference),
            (AttachmentCategory.TEST_EVIDENCE, test.evidence.files, test.evidence.reference),
        ]
        for category, files, reference in slots:
            await self._upload_many(
                f"q:{question_id}:{category.value}",
                files,
                lambda f, c=category, r=reference: self.api.upload_attachment(question_id, f, c, r or None),
            )

    async def _upload_many(
        self,
        scope: str,
        files: list[LocalFile],
        upload: Callable[[LocalFile], Awaitable[None]],
    ) -> None:
        for file in files[: self.max_files_per_slot]:
            if self.uploads.was_uploaded(scope, file):
                continue
            await upload(file)
            self.uploads.mark_uploaded(scope, file)
            logger.debug(f"Uploaded {file.name} to {scope}")

    async def _delete(self, call: Callable[[str], Awaitable[None]], entity_id: str) -> None:
        try:
            await call(entity_id)
        except BuilderApiError as e:
            if e.status_code != 404:
                raise
            logger.warning(f"{entity_id} was already gone on the backend")
        self._deleted.add(entity_id)
        logger.debug(f"Deleted {entity_id} remotely")

    # ── Commit ───────────────────────────────────────────

    async def _commit(
        self,
        opts: SyncOptions,
        start_counter: int,
        section_map: dict[str, str],
        question_map: dict[str, str],
        next_baseline: PersistedBaseline,
    ) -> None:
        if not opts.silent:
            self.notifier.success("Builder saved")
        self.notifier.dismiss(SAVE_ERROR_TOAST)

        self.tracker.mark_saved(start_counter)
        self.resolved.update(section_map)
        self.resolved.update(question_map)

        edited_meanwhile = self.tracker.change_counter != start_counter
        if opts.reload and not edited_meanwhile:
            if await self.hydrate(unless_changed_since=start_counter):
                return
        elif opts.reload:
            logger.info("Skipping reload: the draft changed during the pass")

        rewritten = self.store.remap_ids(section_map, question_map)
        if rewritten:
            logger.debug(f"Rewrote {rewritten} temporary ids in the live draft")
        self.baseline = next_baseline
        self._carried_sections.clear()
        self._carried_questions.clear()
        self._carried_parents.clear()

    # ── Reconciliation helpers ───────────────────────────

    def _known_section_ids(self) -> list[str]:
        known = list(self.baseline.section_order)
        known += [sid for sid in self._carried_sections.values() if sid not in known]
        return [sid for sid in known if sid not in self._deleted]

    def _known_question_ids(self, section_id: str) -> list[str]:
        known = list(self.baseline.question_order.get(section_id, []))
        known += [
            qid
            for qid, parent in self._carried_parents.items()
            if parent == section_id and qid not in known
        ]
        return [qid for qid in known if qid not in self._deleted]

    def _pending_delete_ids(self) -> set[str]:
        live: set[str] = set()
        for section in self.store.sections:
            live.add(self._carried_sections.get(section.id, section.id))
            for question in section.questions:
                live.add(self._carried_questions.get(question.id, question.id))

        pending = {sid for sid in self._known_section_ids() if sid not in live}
        for section_id in self._known_section_ids():
            if section_id in pending:
                continue  # cascaded with the section
            pending |= {qid for qid in self._known_question_ids(section_id) if qid not in live}
        return pending
