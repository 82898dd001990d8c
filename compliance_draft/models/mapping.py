"""
Conversions between the draft tree and the backend's shapes.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, TypeVar

from .enums import AnswerChoice, AttachmentCategory, ControlTestStatus
from .identifiers import new_question_id, new_section_id
from .schemas import (
    ActionPlan,
    ControlTest,
    EvidenceSlot,
    Question,
    QuestionPayload,
    RemoteQuestion,
    RemoteSection,
    Section,
    SectionPayload,
)

E = TypeVar("E", bound=Enum)

_DATE_ONLY = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def make_empty_section(item: str) -> Section:
    return Section(id=new_section_id(), item=item)


def make_empty_question() -> Question:
    return Question(id=new_question_id())


def to_iso_datetime_or_none(value: str) -> Optional[str]:
    """
    Normalize a date input to an ISO-8601 UTC datetime.

    ``YYYY-MM-DD`` becomes midnight UTC.  Blank or unparseable input maps to
    None so the backend clears the field instead of rejecting the request.
    """
    trimmed = (value or "").strip()
    if not trimmed:
        return None
    iso_like = f"{trimmed}T00:00:00+00:00" if _DATE_ONLY.match(trimmed) else trimmed
    try:
        parsed = datetime.fromisoformat(iso_like.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    parsed = parsed.astimezone(timezone.utc)
    return parsed.strftime("%Y-%m-%dT%H:%M:%S.") + f"{parsed.microsecond // 1000:03d}Z"


def _coerce(enum_cls: type[E], value: Optional[str], default: E) -> E:
    try:
        return enum_cls(value or "")
    except ValueError:
        return default


def _date_part(value: Optional[str]) -> str:
    return (value or "")[:10]


def question_from_remote(remote: RemoteQuestion) -> Question:
    def reference(category: AttachmentCategory) -> str:
        for att in remote.attachments:
            if att.category == category:
                return att.reference_text or ""
        return ""

    return Question(
        id=remote.id,
        text=remote.text,
        applicable=remote.applicable,
        answered=remote.answered,
        citation=remote.citation or "",
        criticality=remote.criticality,
        answer=_coerce(AnswerChoice, remote.answer, AnswerChoice.UNSET),
        answer_text=remote.answer_text or "",
        deficiency_text=remote.deficiency_text or "",
        recommendation_text=remote.recommendation_text or "",
        test=ControlTest(
            status=_coerce(ControlTestStatus, remote.test_status, ControlTestStatus.NOT_SET),
            description=remote.test_description or "",
            request=EvidenceSlot(reference=reference(AttachmentCategory.TEST_REQUEST)),
            response=EvidenceSlot(reference=reference(AttachmentCategory.TEST_RESPONSE)),
            sample=EvidenceSlot(reference=reference(AttachmentCategory.TEST_SAMPLE)),
            evidence=EvidenceSlot(reference=reference(AttachmentCategory.TEST_EVIDENCE)),
            action_plan=ActionPlan(
                origin=remote.action_origin or "",
                owner=remote.action_owner or "",
                description=remote.action_description or "",
                finding_date=_date_part(remote.action_finding_date),
                original_deadline=_date_part(remote.action_original_deadline),
                current_deadline=_date_part(remote.action_current_deadline),
                comments=remote.action_comments or "",
            ),
        ),
    )


def section_from_remote(remote: RemoteSection) -> Section:
    """Map a hydrated section; remote ``order`` is only used for sorting here."""
    ordered = sorted(remote.questions, key=lambda q: q.order)
    return Section(
        id=remote.id,
        item=remote.item,
        custom_label=remote.custom_label or "",
        has_rule=remote.has_rule,
        description=remote.description or "",
        questions=[question_from_remote(q) for q in ordered],
    )


def build_section_payload(section: Section) -> SectionPayload:
    return SectionPayload(
        item=section.item,
        custom_label=section.custom_label or None,
        has_rule=section.has_rule,
        rule_reference=None,
        description=section.description or None,
    )


def build_question_payload(question: Question, section_id: str) -> QuestionPayload:
    test = question.test
    plan = test.action_plan
    return QuestionPayload(
        section_id=section_id,
        text=question.text,
        applicable=question.applicable,
        answered=question.answered,
        template_ref=None,
        citation=question.citation or None,
        criticality=question.criticality,
        answer=question.answer.value or None,
        answer_text=question.answer_text or None,
        deficiency_text=question.deficiency_text or None,
        recommendation_text=question.recommendation_text or None,
        test_status=test.status.value or None,
        test_description=test.description or None,
        request_ref=test.request.reference or None,
        test_response_ref=test.response.reference or None,
        sample_ref=test.sample.reference or None,
        evidence_ref=test.evidence.reference or None,
        action_origin=plan.origin or None,
        action_owner=plan.owner or None,
        action_description=plan.description or None,
        action_finding_date=to_iso_datetime_or_none(plan.finding_date),
        action_original_deadline=to_iso_datetime_or_none(plan.original_deadline),
        action_current_deadline=to_iso_datetime_or_none(plan.current_deadline),
        action_comments=plan.comments or None,
    )
