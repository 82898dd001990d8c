"""
Draft Store — the live, editable tree of sections and questions.

Design rules:
  1. Every user mutation goes through this class and acts on the live
     ``sections`` list, never on a copy held by a caller.
  2. Every user mutation ends in ``_changed()``, which fires the
     ``on_change`` hook (dirty-marking + autosave arming).
  3. ``remap_ids`` and ``replace_all`` are sync-engine operations, not
     user edits: they never fire ``on_change``.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional, Union

from pydantic import BaseModel

from compliance_draft.core.errors import DraftLimitError, EditNotAllowedError, UnknownEntityError
from compliance_draft.models.mapping import make_empty_question, make_empty_section
from compliance_draft.models.schemas import ControlTest, DraftProgress, Question, Section

logger = logging.getLogger(__name__)

EditGate = Union[bool, Callable[[], bool]]

_SECTION_FIELDS = {"item", "custom_label", "has_rule", "rule_files", "description"}
_QUESTION_FIELDS = {
    "text",
    "applicable",
    "citation",
    "criticality",
    "answer",
    "answer_text",
    "answer_files",
    "deficiency_text",
    "deficiency_files",
    "recommendation_text",
}
_TEST_FIELDS = {"status", "description"}
_SLOT_NAMES = {"request", "response", "sample", "evidence"}
_ACTION_PLAN_FIELDS = {
    "origin",
    "owner",
    "description",
    "finding_date",
    "original_deadline",
    "current_deadline",
    "comments",
}


def _check_fields(fields: dict[str, Any], allowed: set[str], kind: str) -> None:
    unknown = set(fields) - allowed
    if unknown:
        raise ValueError(f"Unknown {kind} field(s): {', '.join(sorted(unknown))}")


def _assign(model: BaseModel, fields: dict[str, Any]) -> None:
    for name, value in fields.items():
        setattr(model, name, value)


def _apply_test_patch(
    test: ControlTest,
    fields: dict[str, Any],
    slots: dict[str, dict[str, Any]],
    action_plan: dict[str, Any],
) -> None:
    _assign(test, fields)
    for slot_name, patch in slots.items():
        _assign(getattr(test, slot_name), patch)
    _assign(test.action_plan, action_plan)


class DraftStore:
    """Single owned mutable aggregate behind the builder screen."""

    def __init__(
        self,
        default_item: str,
        can_edit: EditGate = True,
        on_change: Optional[Callable[[], None]] = None,
        trial_mode: bool = False,
        max_sections: int = 3,
        max_questions: int = 3,
    ) -> None:
        self.default_item = default_item
        self._can_edit = can_edit
        self.on_change = on_change
        self.trial_mode = trial_mode
        self.max_sections = max_sections
        self.max_questions = max_questions

        self.sections: list[Section] = []
        self.active_section_id: str = ""
        self.expanded_question_ids: set[str] = set()

    # ── Gates ────────────────────────────────────────────

    @property
    def can_edit(self) -> bool:
        gate = self._can_edit
        return bool(gate() if callable(gate) else gate)

    @property
    def can_add_section(self) -> bool:
        return self.can_edit and (not self.trial_mode or len(self.sections) < self.max_sections)

    @property
    def can_add_question(self) -> bool:
        return self.can_edit and (not self.trial_mode or self.question_count < self.max_questions)

    def _require_edit(self) -> None:
        if not self.can_edit:
            raise EditNotAllowedError("Editing is not allowed for this user")

    def _changed(self) -> None:
        if self.on_change is not None:
            self.on_change()

    # ── Lookups ──────────────────────────────────────────

    @property
    def question_count(self) -> int:
        return sum(len(s.questions) for s in self.sections)

    @property
    def active_section(self) -> Optional[Section]:
        return self.find_section(self.active_section_id)

    def find_section(self, section_id: str) -> Optional[Section]:
        for section in self.sections:
            if section.id == section_id:
                return section
        return None

    def get_section(self, section_id: Optional[str] = None) -> Section:
        target = section_id if section_id is not None else self.active_section_id
        section = self.find_section(target)
        if section is None:
            raise UnknownEntityError("section", target)
        return section

    def find_question(self, question_id: str) -> Optional[tuple[Section, Question]]:
        for section in self.sections:
            for question in section.questions:
                if question.id == question_id:
                    return section, question
        return None

    def get_question(self, question_id: str) -> tuple[Section, Question]:
        found = self.find_question(question_id)
        if found is None:
            raise UnknownEntityError("question", question_id)
        return found

    # ── Section mutations ────────────────────────────────

    def add_section(self, item: Optional[str] = None) -> Section:
        self._require_edit()
        if not self.can_add_section:
            raise DraftLimitError(f"Trial mode allows at most {self.max_sections} sections")
        section = make_empty_section(item or self.default_item)
        self.sections.append(section)
        self.active_section_id = section.id
        self._changed()
        return section

    def update_section(self, fields: dict[str, Any], section_id: Optional[str] = None) -> Section:
        self._require_edit()
        _check_fields(fields, _SECTION_FIELDS, "section")
        section = self.get_section(section_id)
        # validate the whole patch on a copy so a bad field leaves the draft untouched
        _assign(section.model_copy(deep=True), fields)
        _assign(section, fields)
        self._changed()
        return section

    def delete_section(self, section_id: str) -> None:
        """
        Remove a section locally.  The builder always keeps at least one
        section: deleting the last one replaces it with a fresh empty one.
        """
        self._require_edit()
        section = self.get_section(section_id)
        self.sections.remove(section)
        for question in section.questions:
            self.expanded_question_ids.discard(question.id)

        if not self.sections:
            fresh = make_empty_section(self.default_item)
            self.sections.append(fresh)
            self.active_section_id = fresh.id
        elif self.active_section_id == section_id:
            self.active_section_id = self.sections[0].id

        logger.debug(f"Deleted section {section_id} locally")
        self._changed()

    # ── Question mutations ───────────────────────────────

    def add_question(self, section_id: Optional[str] = None) -> Question:
        self._require_edit()
        if not self.can_add_question:
            raise DraftLimitError(f"Trial mode allows at most {self.max_questions} questions")
        section = self.get_section(section_id)
        question = make_empty_question()
        section.questions.append(question)
        self.expanded_question_ids.add(question.id)
        self._changed()
        return question

    def update_question(self, question_id: str, fields: dict[str, Any]) -> Question:
        """Patch content fields; any content change resets ``answered``."""
        self._require_edit()
        _check_fields(fields, _QUESTION_FIELDS, "question")
        _, question = self.get_question(question_id)
        _assign(question.model_copy(deep=True), fields)
        _assign(question, fields)
        question.answered = False
        self._changed()
        return question

    def update_question_test(
        self,
        question_id: str,
        fields: Optional[dict[str, Any]] = None,
        slots: Optional[dict[str, dict[str, Any]]] = None,
        action_plan: Optional[dict[str, Any]] = None,
    ) -> Question:
        """
        Patch the nested control-test record.

        ``slots`` maps a slot name (request/response/sample/evidence) to
        ``{"files": [...], "reference": "..."}`` patches.
        """
        self._require_edit()
        fields = fields or {}
        slots = slots or {}
        action_plan = action_plan or {}
        _check_fields(fields, _TEST_FIELDS, "test")
        _check_fields(slots, _SLOT_NAMES, "test slot")
        _check_fields(action_plan, _ACTION_PLAN_FIELDS, "action plan")
        for patch in slots.values():
            _check_fields(patch, {"files", "reference"}, "slot")

        _, question = self.get_question(question_id)
        _apply_test_patch(question.test.model_copy(deep=True), fields, slots, action_plan)
        _apply_test_patch(question.test, fields, slots, action_plan)
        question.answered = False
        self._changed()
        return question

    def mark_question_answered(self, question_id: str) -> bool:
        """Flag an applicable question as answered; not-applicable ones are left alone."""
        self._require_edit()
        _, question = self.get_question(question_id)
        if not question.applicable:
            return False
        question.answered = True
        self._changed()
        return True

    def delete_question(self, question_id: str) -> None:
        self._require_edit()
        section, question = self.get_question(question_id)
        section.questions.remove(question)
        self.expanded_question_ids.discard(question_id)
        self._changed()

    def move_question(self, question_id: str, direction: int) -> bool:
        """Move one step up (-1) or down (+1) within its section."""
        self._require_edit()
        if direction not in (-1, 1):
            raise ValueError("direction must be -1 or 1")
        section, question = self.get_question(question_id)
        idx = section.questions.index(question)
        target = idx + direction
        if target < 0 or target >= len(section.questions):
            return False
        section.questions.insert(target, section.questions.pop(idx))
        self._changed()
        return True

    def move_question_to(self, question_id: str, position: int) -> bool:
        """Move to a 1-based position, clamped to the section bounds."""
        self._require_edit()
        section, question = self.get_question(question_id)
        idx = section.questions.index(question)
        target = min(max(position - 1, 0), len(section.questions) - 1)
        if target == idx:
            return False
        section.questions.insert(target, section.questions.pop(idx))
        self._changed()
        return True

    # ── UI selection state (not persisted, not dirtying) ─

    def set_active_section(self, section_id: str) -> None:
        self.get_section(section_id)
        self.active_section_id = section_id

    def toggle_question_expanded(self, question_id: str) -> bool:
        if question_id in self.expanded_question_ids:
            self.expanded_question_ids.discard(question_id)
            return False
        self.expanded_question_ids.add(question_id)
        return True

    # ── Sync-engine operations ───────────────────────────

    def snapshot(self) -> list[Section]:
        """Deep copy of the tree; later edits never leak into it."""
        return [section.model_copy(deep=True) for section in self.sections]

    def replace_all(self, sections: list[Section]) -> None:
        """Swap in a freshly hydrated tree, keeping selection where still valid."""
        self.sections = list(sections)
        if self.sections:
            if self.find_section(self.active_section_id) is None:
                self.active_section_id = self.sections[0].id
        else:
            self.active_section_id = ""
        valid = {q.id for s in self.sections for q in s.questions}
        self.expanded_question_ids = {qid for qid in self.expanded_question_ids if qid in valid}

    def remap_ids(self, section_map: dict[str, str], question_map: dict[str, str]) -> int:
        """
        Replace temporary ids with permanent ones in place, including the
        active-section pointer and expanded set.  No other field is touched.
        Returns the number of ids rewritten.
        """
        rewritten = 0
        for section in self.sections:
            if section.id in section_map:
                section.id = section_map[section.id]
                rewritten += 1
            for question in section.questions:
                if question.id in question_map:
                    question.id = question_map[question.id]
                    rewritten += 1

        self.active_section_id = section_map.get(self.active_section_id, self.active_section_id)
        self.expanded_question_ids = {
            question_map.get(qid, qid) for qid in self.expanded_question_ids
        }
        return rewritten

    # ── Derived ──────────────────────────────────────────

    def progress(self) -> DraftProgress:
        questions = [q for s in self.sections for q in s.questions]
        applicable = [q for q in questions if q.applicable]
        answered = sum(1 for q in applicable if q.answered)
        return DraftProgress(
            total_questions=len(questions),
            total_applicable=len(applicable),
            total_answered=answered,
            total_pending=len(applicable) - answered,
            percent=round(100.0 * answered / len(applicable), 1) if applicable else 0.0,
        )
