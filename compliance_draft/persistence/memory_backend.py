"""
In-memory builder backend — stands in for the REST API in mock mode and tests.

Behaves like the real backend where the sync engine can observe it: issues
permanent ids, keeps section/question order, cascades section deletes and
rejects unknown ids.  Every call is recorded in ``calls``; tests can inject
failures (``fail_next``) and hold a method open to simulate latency
(``hold`` / ``release``).
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections import defaultdict
from typing import Any, NamedTuple, Optional

from compliance_draft.models.enums import AttachmentCategory
from compliance_draft.models.schemas import (
    LocalFile,
    QuestionPayload,
    RemoteAttachment,
    RemoteQuestion,
    RemoteSection,
    SectionPayload,
)
from compliance_draft.services.builder_api import BuilderApi, BuilderApiError

logger = logging.getLogger(__name__)

_TEST_REF_CATEGORIES = {
    "request_ref": AttachmentCategory.TEST_REQUEST,
    "test_response_ref": AttachmentCategory.TEST_RESPONSE,
    "sample_ref": AttachmentCategory.TEST_SAMPLE,
    "evidence_ref": AttachmentCategory.TEST_EVIDENCE,
}


class ApiCall(NamedTuple):
    method: str
    args: tuple[Any, ...]


class InMemoryBuilderApi(BuilderApi):
    """Mock backend holding sections in a dict keyed by permanent id."""

    def __init__(self) -> None:
        self._sections: dict[str, RemoteSection] = {}
        self._ids = itertools.count(1)
        self.calls: list[ApiCall] = []
        self._failures: dict[str, list[BuilderApiError]] = defaultdict(list)
        self._holds: dict[str, asyncio.Event] = {}

    # ── Test controls ────────────────────────────────────

    def fail_next(self, method: str, error: Optional[BuilderApiError] = None) -> None:
        """Make the next call to ``method`` raise ``error``."""
        self._failures[method].append(error or BuilderApiError("Network Error"))

    def hold(self, method: str) -> None:
        """Block calls to ``method`` until ``release(method)``."""
        self._holds[method] = asyncio.Event()

    def release(self, method: str) -> None:
        gate = self._holds.pop(method, None)
        if gate is not None:
            gate.set()

    def calls_to(self, method: str) -> list[ApiCall]:
        return [c for c in self.calls if c.method == method]

    def call_names(self) -> list[str]:
        return [c.method for c in self.calls]

    async def wait_for_call(self, method: str, count: int = 1) -> None:
        while len(self.calls_to(method)) < count:
            await asyncio.sleep(0.001)

    def seed(self, sections: list[RemoteSection]) -> None:
        """Load an initial server-side state (ids are kept as given)."""
        for idx, section in enumerate(sections):
            section = section.model_copy(deep=True)
            section.order = idx
            for q_idx, question in enumerate(section.questions):
                question.order = q_idx
                question.section_id = section.id
            self._sections[section.id] = section

    async def _enter(self, method: str, *args: Any) -> None:
        self.calls.append(ApiCall(method, args))
        logger.debug(f"[MOCK API] {method}{args}")
        gate = self._holds.get(method)
        if gate is not None:
            await gate.wait()
        else:
            await asyncio.sleep(0)
        if self._failures[method]:
            raise self._failures[method].pop(0)

    def _next_id(self, kind: str) -> str:
        return f"{kind}-{next(self._ids)}"

    def _section(self, section_id: str) -> RemoteSection:
        section = self._sections.get(section_id)
        if section is None:
            raise BuilderApiError("Section not found", 404, {"error": "Section not found"})
        return section

    def _question(self, question_id: str) -> tuple[RemoteSection, RemoteQuestion]:
        for section in self._sections.values():
            for question in section.questions:
                if question.id == question_id:
                    return section, question
        raise BuilderApiError("Question not found", 404, {"error": "Question not found"})

    # ── Sections ─────────────────────────────────────────

    async def create_section(self, payload: SectionPayload) -> str:
        await self._enter("create_section", payload)
        section_id = self._next_id("section")
        self._sections[section_id] = RemoteSection(
            id=section_id,
            order=len(self._sections),
            **payload.model_dump(),
        )
        return section_id

    async def update_section(self, section_id: str, payload: SectionPayload) -> None:
        await self._enter("update_section", section_id, payload)
        section = self._section(section_id)
        for name, value in payload.model_dump().items():
            setattr(section, name, value)

    async def delete_section(self, section_id: str) -> None:
        await self._enter("delete_section", section_id)
        self._section(section_id)
        # questions and attachments go with it
        del self._sections[section_id]

    async def reorder_sections(self, section_ids: list[str]) -> None:
        await self._enter("reorder_sections", list(section_ids))
        for idx, section_id in enumerate(section_ids):
            self._section(section_id).order = idx

    # ── Questions ────────────────────────────────────────

    async def create_question(self, section_id: str, text: str) -> str:
        await self._enter("create_question", section_id, text)
        section = self._section(section_id)
        question_id = self._next_id("question")
        section.questions.append(
            RemoteQuestion(
                id=question_id,
                section_id=section_id,
                order=len(section.questions),
                text=text,
            )
        )
        return question_id

    async def update_question(self, question_id: str, payload: QuestionPayload) -> None:
        await self._enter("update_question", question_id, payload)
        _, question = self._question(question_id)
        data = payload.model_dump()
        data.pop("section_id")
        data.pop("template_ref")
        for field, category in _TEST_REF_CATEGORIES.items():
            reference = data.pop(field)
            for att in question.attachments:
                if att.category == category:
                    att.reference_text = reference
        for name, value in data.items():
            setattr(question, name, value)

    async def delete_question(self, question_id: str) -> None:
        await self._enter("delete_question", question_id)
        section, question = self._question(question_id)
        section.questions.remove(question)

    async def reorder_questions(self, section_id: str, question_ids: list[str]) -> None:
        await self._enter("reorder_questions", section_id, list(question_ids))
        section = self._section(section_id)
        by_id = {q.id: q for q in section.questions}
        missing = [qid for qid in question_ids if qid not in by_id]
        if missing:
            raise BuilderApiError(
                "Question not in section", 400, {"error": f"Unknown question(s): {', '.join(missing)}"}
            )
        for idx, question_id in enumerate(question_ids):
            by_id[question_id].order = idx

    # ── Attachments ──────────────────────────────────────

    async def upload_attachment(
        self,
        question_id: str,
        file: LocalFile,
        category: AttachmentCategory,
        reference_text: Optional[str] = None,
    ) -> None:
        await self._enter("upload_attachment", question_id, file.name, category, reference_text)
        _, question = self._question(question_id)
        question.attachments.append(
            RemoteAttachment(
                id=self._next_id("attachment"),
                question_id=question_id,
                category=category,
                reference_text=reference_text,
                filename=file.name,
                original_name=file.name,
                mime_type=file.content_type,
                size=file.size,
            )
        )

    async def upload_section_rule(
        self,
        section_id: str,
        file: LocalFile,
        reference_text: Optional[str] = None,
    ) -> None:
        await self._enter("upload_section_rule", section_id, file.name, reference_text)
        section = self._section(section_id)
        section.attachments.append(
            RemoteAttachment(
                id=self._next_id("attachment"),
                section_id=section_id,
                category=AttachmentCategory.RULE,
                reference_text=reference_text,
                filename=file.name,
                original_name=file.name,
                mime_type=file.content_type,
                size=file.size,
            )
        )

    # ── Hydrate ──────────────────────────────────────────

    async def list_sections(self) -> list[RemoteSection]:
        await self._enter("list_sections")
        ordered = sorted(self._sections.values(), key=lambda s: s.order)
        return [s.model_copy(deep=True) for s in ordered]
