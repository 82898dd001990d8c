"""
API routes — thin HTTP layer over a ``BuilderSession``.

Routes:
  GET    /health                                   → API health check
  GET    /api/builder/draft                        → Current draft tree + selection
  GET    /api/builder/status                       → Saving / dirty flags and notifications
  GET    /api/builder/items                        → Section categories offered by the builder
  POST   /api/builder/load                         → Re-hydrate from the backend
  POST   /api/builder/sections                     → Add a section
  PATCH  /api/builder/sections/{section_id}        → Update section fields
  DELETE /api/builder/sections/{section_id}        → Delete a section locally
  POST   /api/builder/sections/{section_id}/active → Select a section
  POST   /api/builder/sections/{section_id}/rule-files   → Attach a rule file
  POST   /api/builder/sections/{section_id}/questions    → Add a question
  PATCH  /api/builder/questions/{question_id}      → Update question fields
  PATCH  /api/builder/questions/{question_id}/test → Update the control test
  POST   /api/builder/questions/{question_id}/files/{slot} → Attach a file
  POST   /api/builder/questions/{question_id}/answered     → Mark answered
  POST   /api/builder/questions/{question_id}/move → Move up/down or to a position
  DELETE /api/builder/questions/{question_id}      → Delete a question locally
  POST   /api/builder/save                         → Manual save
  POST   /api/builder/save-and-reload              → Save then re-hydrate
  POST   /api/builder/lifecycle/hidden             → Page hidden
  POST   /api/builder/lifecycle/unload             → Page about to close
  WS     /api/builder/ws                           → Notification feed
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Optional, TypeVar

from fastapi import APIRouter, File, HTTPException, Request, UploadFile, WebSocket
from pydantic import BaseModel, ValidationError

from compliance_draft.api.websocket import stream_notifications
from compliance_draft.core.errors import DraftLimitError, EditNotAllowedError, UnknownEntityError
from compliance_draft.core.session import BuilderSession
from compliance_draft.models.enums import SECTION_ITEMS
from compliance_draft.models.schemas import DraftProgress, LocalFile, Question, Section
from compliance_draft.services.notifier import Notification

logger = logging.getLogger(__name__)

T = TypeVar("T")

# ── Routers ──────────────────────────────────────────────
health_router = APIRouter()
builder_router = APIRouter()

_QUESTION_FILE_SLOTS = {
    "answer": ("answer_files", None),
    "deficiency": ("deficiency_files", None),
    "test-request": (None, "request"),
    "test-response": (None, "response"),
    "test-sample": (None, "sample"),
    "test-evidence": (None, "evidence"),
}


# ── Request / response schemas ───────────────────────────
class DraftResponse(BaseModel):
    sections: list[Section]
    active_section_id: str
    expanded_question_ids: list[str]
    progress: DraftProgress


class StatusResponse(BaseModel):
    is_saving: bool
    is_dirty: bool
    change_counter: int
    last_saved_counter: int
    autosave_pending: bool
    notifications: list[Notification] = []


class SaveResponse(BaseModel):
    ok: bool
    is_dirty: bool


class AddSectionRequest(BaseModel):
    item: Optional[str] = None


class ControlTestPatch(BaseModel):
    fields: dict[str, Any] = {}
    slots: dict[str, dict[str, Any]] = {}
    action_plan: dict[str, Any] = {}


class MoveRequest(BaseModel):
    direction: Optional[int] = None
    position: Optional[int] = None


class UnloadResponse(BaseModel):
    confirm_leave: bool


# ── Helpers ──────────────────────────────────────────────

def _session(request: Request) -> BuilderSession:
    return request.app.state.session


def _mutate(fn: Callable[[], T]) -> T:
    """Run a draft mutation, mapping draft errors to HTTP errors."""
    try:
        return fn()
    except EditNotAllowedError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except UnknownEntityError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except DraftLimitError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except (ValueError, ValidationError) as e:
        raise HTTPException(status_code=422, detail=str(e))


async def _read_local_file(upload: UploadFile) -> LocalFile:
    content = await upload.read()
    return LocalFile(
        name=upload.filename or "upload.bin",
        size=len(content),
        last_modified=time.time(),
        content_type=upload.content_type or "application/octet-stream",
        content=content,
    )


def _draft_response(session: BuilderSession) -> DraftResponse:
    store = session.store
    return DraftResponse(
        sections=store.sections,
        active_section_id=store.active_section_id,
        expanded_question_ids=sorted(store.expanded_question_ids),
        progress=store.progress(),
    )


# ── Health ───────────────────────────────────────────────

@health_router.get("/health")
async def health_check():
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


# ── Draft state ──────────────────────────────────────────

@builder_router.get("/draft", response_model=DraftResponse)
async def get_draft(request: Request):
    return _draft_response(_session(request))


@builder_router.get("/status", response_model=StatusResponse)
async def get_status(request: Request):
    session = _session(request)
    return StatusResponse(
        is_saving=session.is_saving,
        is_dirty=session.is_dirty,
        change_counter=session.tracker.change_counter,
        last_saved_counter=session.tracker.last_saved_counter,
        autosave_pending=session.scheduler.pending,
        notifications=session.notifier.active,
    )


@builder_router.get("/items")
async def list_section_items():
    return {"items": list(SECTION_ITEMS)}


@builder_router.post("/load", response_model=DraftResponse)
async def load_draft(request: Request):
    session = _session(request)
    if not await session.load():
        raise HTTPException(status_code=502, detail="Could not load the builder")
    return _draft_response(session)


# ── Sections ─────────────────────────────────────────────

@builder_router.post("/sections", response_model=Section)
async def add_section(request: Request, body: AddSectionRequest):
    session = _session(request)
    return _mutate(lambda: session.store.add_section(body.item))


@builder_router.patch("/sections/{section_id}", response_model=Section)
async def update_section(request: Request, section_id: str, fields: dict[str, Any]):
    session = _session(request)
    return _mutate(lambda: session.store.update_section(fields, section_id))


@builder_router.delete("/sections/{section_id}", response_model=DraftResponse)
async def delete_section(request: Request, section_id: str):
    session = _session(request)
    _mutate(lambda: session.store.delete_section(section_id))
    return _draft_response(session)


@builder_router.post("/sections/{section_id}/active", response_model=DraftResponse)
async def select_section(request: Request, section_id: str):
    session = _session(request)
    _mutate(lambda: session.store.set_active_section(section_id))
    return _draft_response(session)


@builder_router.post("/sections/{section_id}/rule-files", response_model=Section)
async def attach_rule_file(request: Request, section_id: str, file: UploadFile = File(...)):
    session = _session(request)
    local = await _read_local_file(file)

    def attach() -> Section:
        section = session.store.get_section(section_id)
        return session.store.update_section(
            {"has_rule": True, "rule_files": [*section.rule_files, local]}, section_id
        )

    return _mutate(attach)


@builder_router.post("/sections/{section_id}/questions", response_model=Question)
async def add_question(request: Request, section_id: str):
    session = _session(request)
    return _mutate(lambda: session.store.add_question(section_id))


# ── Questions ────────────────────────────────────────────

@builder_router.patch("/questions/{question_id}", response_model=Question)
async def update_question(request: Request, question_id: str, fields: dict[str, Any]):
    session = _session(request)
    return _mutate(lambda: session.store.update_question(question_id, fields))


@builder_router.patch("/questions/{question_id}/test", response_model=Question)
async def update_question_test(request: Request, question_id: str, body: ControlTestPatch):
    session = _session(request)
    return _mutate(
        lambda: session.store.update_question_test(
            question_id, fields=body.fields, slots=body.slots, action_plan=body.action_plan
        )
    )


@builder_router.post("/questions/{question_id}/files/{slot}", response_model=Question)
async def attach_question_file(
    request: Request, question_id: str, slot: str, file: UploadFile = File(...)
):
    if slot not in _QUESTION_FILE_SLOTS:
        raise HTTPException(status_code=404, detail=f"Unknown file slot '{slot}'")
    session = _session(request)
    local = await _read_local_file(file)
    field_name, test_slot = _QUESTION_FILE_SLOTS[slot]

    def attach() -> Question:
        _, question = session.store.get_question(question_id)
        if field_name is not None:
            files = [*getattr(question, field_name), local]
            return session.store.update_question(question_id, {field_name: files})
        files = [*getattr(question.test, test_slot).files, local]
        return session.store.update_question_test(question_id, slots={test_slot: {"files": files}})

    return _mutate(attach)


@builder_router.post("/questions/{question_id}/answered", response_model=Question)
async def mark_answered(request: Request, question_id: str):
    session = _session(request)
    _mutate(lambda: session.store.mark_question_answered(question_id))
    _, question = _mutate(lambda: session.store.get_question(question_id))
    return question


@builder_router.post("/questions/{question_id}/move", response_model=DraftResponse)
async def move_question(request: Request, question_id: str, body: MoveRequest):
    session = _session(request)
    if body.position is not None:
        _mutate(lambda: session.store.move_question_to(question_id, body.position))
    elif body.direction is not None:
        _mutate(lambda: session.store.move_question(question_id, body.direction))
    else:
        raise HTTPException(status_code=422, detail="Provide either direction or position")
    return _draft_response(session)


@builder_router.delete("/questions/{question_id}", response_model=DraftResponse)
async def delete_question(request: Request, question_id: str):
    session = _session(request)
    _mutate(lambda: session.store.delete_question(question_id))
    return _draft_response(session)


# ── Saving ───────────────────────────────────────────────

@builder_router.post("/save", response_model=SaveResponse)
async def save(request: Request):
    session = _session(request)
    ok = await session.trigger_manual_save()
    return SaveResponse(ok=ok, is_dirty=session.is_dirty)


@builder_router.post("/save-and-reload", response_model=SaveResponse)
async def save_and_reload(request: Request):
    session = _session(request)
    ok = await session.trigger_save_and_reload()
    return SaveResponse(ok=ok, is_dirty=session.is_dirty)


# ── Page lifecycle ───────────────────────────────────────

@builder_router.post("/lifecycle/hidden", response_model=StatusResponse)
async def page_hidden(request: Request):
    session = _session(request)
    session.lifecycle.on_visibility_change(hidden=True)
    return await get_status(request)


@builder_router.post("/lifecycle/unload", response_model=UnloadResponse)
async def page_unload(request: Request):
    session = _session(request)
    return UnloadResponse(confirm_leave=session.lifecycle.on_before_unload())


# ── WebSocket notification feed ──────────────────────────

@builder_router.websocket("/ws")
async def ws_notifications(websocket: WebSocket):
    """Receives JSON notifications: {level, message, toast_id, ts}."""
    session: BuilderSession = websocket.app.state.session
    await stream_notifications(websocket, session.notifier)
