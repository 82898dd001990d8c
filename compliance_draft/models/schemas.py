"""
Data schemas for the builder draft and for the backend's wire shapes.

Draft models are what the editor mutates.  Remote models mirror what
``list_sections()`` returns, and the payload models are the request bodies
sent on create/update.  Wire field names are kept as aliases so the same
models serialize straight into the REST API's JSON.
"""

from __future__ import annotations

from typing import Optional
from pydantic import BaseModel, ConfigDict, Field

from .enums import AnswerChoice, AttachmentCategory, ControlTestStatus, Criticality


# ── Local files ──────────────────────────────────────────


class LocalFile(BaseModel):
    """A file picked by the user but not necessarily uploaded yet."""
    name: str
    size: int = 0
    last_modified: float = 0.0
    content_type: str = "application/octet-stream"
    content: bytes = Field(default=b"", exclude=True)

    @property
    def upload_key(self) -> str:
        return f"{self.name}:{self.size}:{self.last_modified}"


# ── Draft tree ───────────────────────────────────────────


class _DraftModel(BaseModel):
    model_config = ConfigDict(validate_assignment=True)


class ActionPlan(_DraftModel):
    """Corrective-action metadata attached to a failed control test."""
    origin: str = ""
    owner: str = ""
    description: str = ""
    finding_date: str = ""        # YYYY-MM-DD
    original_deadline: str = ""   # YYYY-MM-DD
    current_deadline: str = ""    # YYYY-MM-DD
    comments: str = ""


class EvidenceSlot(_DraftModel):
    files: list[LocalFile] = Field(default_factory=list)
    reference: str = ""


class ControlTest(_DraftModel):
    status: ControlTestStatus = ControlTestStatus.NOT_SET
    description: str = ""
    request: EvidenceSlot = Field(default_factory=EvidenceSlot)
    response: EvidenceSlot = Field(default_factory=EvidenceSlot)
    sample: EvidenceSlot = Field(default_factory=EvidenceSlot)
    evidence: EvidenceSlot = Field(default_factory=EvidenceSlot)
    action_plan: ActionPlan = Field(default_factory=ActionPlan)


class Question(_DraftModel):
    id: str
    text: str = ""
    applicable: bool = True
    answered: bool = False
    citation: str = ""
    criticality: Criticality = Criticality.MEDIUM
    answer: AnswerChoice = AnswerChoice.UNSET
    answer_text: str = ""
    answer_files: list[LocalFile] = Field(default_factory=list)
    deficiency_text: str = ""
    deficiency_files: list[LocalFile] = Field(default_factory=list)
    recommendation_text: str = ""
    test: ControlTest = Field(default_factory=ControlTest)


class Section(_DraftModel):
    id: str
    item: str
    custom_label: str = ""
    has_rule: bool = False
    rule_files: list[LocalFile] = Field(default_factory=list)
    description: str = ""
    questions: list[Question] = Field(default_factory=list)

    @property
    def label(self) -> str:
        return self.custom_label or self.item


class DraftProgress(BaseModel):
    total_questions: int = 0
    total_applicable: int = 0
    total_answered: int = 0
    total_pending: int = 0
    percent: float = 0.0


# ── Remote shapes (hydrate) ──────────────────────────────


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class RemoteAttachment(_WireModel):
    id: str
    section_id: Optional[str] = Field(default=None, alias="sectionId")
    question_id: Optional[str] = Field(default=None, alias="questionId")
    category: AttachmentCategory
    reference_text: Optional[str] = Field(default=None, alias="referenceText")
    filename: str = ""
    original_name: str = Field(default="", alias="originalName")
    mime_type: str = Field(default="", alias="mimeType")
    size: int = 0


class RemoteQuestion(_WireModel):
    id: str
    section_id: str = Field(alias="sectionId")
    order: int = 0
    text: str = Field(default="", alias="texto")
    applicable: bool = Field(default=True, alias="aplicavel")
    answered: bool = Field(default=False, alias="respondida")
    citation: Optional[str] = Field(default=None, alias="capitulacao")
    criticality: Criticality = Field(default=Criticality.MEDIUM, alias="criticidade")
    answer: Optional[str] = Field(default=None, alias="resposta")
    answer_text: Optional[str] = Field(default=None, alias="respostaTexto")
    deficiency_text: Optional[str] = Field(default=None, alias="deficienciaTexto")
    recommendation_text: Optional[str] = Field(default=None, alias="recomendacaoTexto")
    test_status: Optional[str] = Field(default=None, alias="testStatus")
    test_description: Optional[str] = Field(default=None, alias="testDescription")
    action_origin: Optional[str] = Field(default=None, alias="actionOrigem")
    action_owner: Optional[str] = Field(default=None, alias="actionResponsavel")
    action_description: Optional[str] = Field(default=None, alias="actionDescricao")
    action_finding_date: Optional[str] = Field(default=None, alias="actionDataApontamento")
    action_original_deadline: Optional[str] = Field(default=None, alias="actionPrazoOriginal")
    action_current_deadline: Optional[str] = Field(default=None, alias="actionPrazoAtual")
    action_comments: Optional[str] = Field(default=None, alias="actionComentarios")
    attachments: list[RemoteAttachment] = Field(default_factory=list)


class RemoteSection(_WireModel):
    id: str
    item: str
    custom_label: Optional[str] = Field(default=None, alias="customLabel")
    has_rule: bool = Field(default=False, alias="hasNorma")
    rule_reference: Optional[str] = Field(default=None, alias="normaReferencia")
    description: Optional[str] = Field(default=None, alias="descricao")
    order: int = 0
    questions: list[RemoteQuestion] = Field(default_factory=list)
    attachments: list[RemoteAttachment] = Field(default_factory=list)


# ── Request payloads ─────────────────────────────────────


class SectionPayload(_WireModel):
    item: str
    custom_label: Optional[str] = Field(default=None, alias="customLabel")
    has_rule: bool = Field(default=False, alias="hasNorma")
    rule_reference: Optional[str] = Field(default=None, alias="normaReferencia")
    description: Optional[str] = Field(default=None, alias="descricao")


class QuestionPayload(_WireModel):
    section_id: str = Field(alias="sectionId")
    text: str = Field(default="", alias="texto")
    applicable: bool = Field(default=True, alias="aplicavel")
    answered: bool = Field(default=False, alias="respondida")
    template_ref: Optional[str] = Field(default=None, alias="templateRef")
    citation: Optional[str] = Field(default=None, alias="capitulacao")
    criticality: Criticality = Field(default=Criticality.MEDIUM, alias="criticidade")
    answer: Optional[str] = Field(default=None, alias="resposta")
    answer_text: Optional[str] = Field(default=None, alias="respostaTexto")
    deficiency_text: Optional[str] = Field(default=None, alias="deficienciaTexto")
    recommendation_text: Optional[str] = Field(default=None, alias="recomendacaoTexto")
    test_status: Optional[str] = Field(default=None, alias="testStatus")
    test_description: Optional[str] = Field(default=None, alias="testDescription")
    request_ref: Optional[str] = Field(default=None, alias="requisicaoRef")
    test_response_ref: Optional[str] = Field(default=None, alias="respostaTesteRef")
    sample_ref: Optional[str] = Field(default=None, alias="amostraRef")
    evidence_ref: Optional[str] = Field(default=None, alias="evidenciasRef")
    action_origin: Optional[str] = Field(default=None, alias="actionOrigem")
    action_owner: Optional[str] = Field(default=None, alias="actionResponsavel")
    action_description: Optional[str] = Field(default=None, alias="actionDescricao")
    action_finding_date: Optional[str] = Field(default=None, alias="actionDataApontamento")
    action_original_deadline: Optional[str] = Field(default=None, alias="actionPrazoOriginal")
    action_current_deadline: Optional[str] = Field(default=None, alias="actionPrazoAtual")
    action_comments: Optional[str] = Field(default=None, alias="actionComentarios")
