"""
Compliance Form Builder — Main Entry Point

Run a scripted editing session against the in-memory backend (CLI):
    python -m compliance_draft

Run as an API server (for the frontend):
    python -m compliance_draft --serve
    # or: uvicorn compliance_draft.api:app --reload --port 8000

Or import and run programmatically:
    from compliance_draft.main import run
    sections = run()
"""

from __future__ import annotations

import asyncio
import logging
import sys
from datetime import datetime, timezone

from compliance_draft.config import get_settings
from compliance_draft.core.session import BuilderSession
from compliance_draft.models.enums import AnswerChoice, Criticality
from compliance_draft.models.schemas import LocalFile, Section
from compliance_draft.persistence.memory_backend import InMemoryBuilderApi
from compliance_draft.utils.logger import setup_logging


def run() -> list[Section]:
    """Drive a short editing session through autosave and return the saved tree."""
    settings = get_settings()
    setup_logging(settings.log_level)
    logger = logging.getLogger(__name__)

    logger.info("=" * 60)
    logger.info("  COMPLIANCE FORM BUILDER — DRAFT SYNC DEMO")
    logger.info(f"  Mode: MOCK | Started: {datetime.now(timezone.utc).isoformat()}")
    logger.info("=" * 60)

    return asyncio.run(_demo_session())


async def _demo_session() -> list[Section]:
    logger = logging.getLogger(__name__)
    api = InMemoryBuilderApi()
    session = BuilderSession(api)
    await session.load()

    store = session.store
    section = store.add_section()
    store.update_section({"description": "Política institucional de PLD/FT"}, section.id)

    first = store.add_question(section.id)
    store.update_question(
        first.id,
        {
            "text": "A política foi aprovada pela diretoria?",
            "criticality": Criticality.HIGH,
            "answer": AnswerChoice.YES,
            "answer_files": [LocalFile(name="ata-aprovacao.pdf", size=2048, last_modified=1.0)],
        },
    )
    store.mark_question_answered(first.id)

    second = store.add_question(section.id)
    store.update_question(second.id, {"text": "A política é revisada anualmente?"})

    # let the debounce window close and the background pass finish
    await asyncio.sleep(session.scheduler.delay * 2)
    await session.scheduler.drain()

    store.move_question(second.id, -1)
    await session.trigger_save_and_reload()

    _print_summary(session, api)
    sections = session.current_draft
    await session.close()
    logger.info("")
    return sections


def _print_summary(session: BuilderSession, api: InMemoryBuilderApi) -> None:
    """Print a human-readable summary of the saved draft."""
    logger = logging.getLogger(__name__)
    progress = session.store.progress()

    logger.info("")
    logger.info("-" * 60)
    logger.info("  SESSION SUMMARY")
    logger.info("-" * 60)
    logger.info(f"  Sections:       {len(session.current_draft)}")
    logger.info(f"  Questions:      {progress.total_questions}")
    logger.info(f"  Answered:       {progress.total_answered}/{progress.total_applicable}")
    logger.info(f"  Dirty:          {session.is_dirty}")
    logger.info(f"  Sync passes:    {session.engine.pass_count}")
    logger.info(f"  Backend calls:  {len(api.calls)}")
    logger.info("-" * 60)

    for section in session.current_draft:
        logger.info(f"  [{section.id}] {section.label}")
        for idx, question in enumerate(section.questions, start=1):
            logger.info(f"    {idx}. [{question.id}] {question.text}")

    errors = session.notifier.errors()
    if errors:
        logger.info(f"\n  Errors: {len(errors)}")
        for note in errors:
            logger.info(f"    {note.ts} | {note.message}")


def serve(host: str = "0.0.0.0", port: int = 8000) -> None:
    """Start the FastAPI server (for frontend communication)."""
    import uvicorn

    setup_logging(get_settings().log_level)
    logger = logging.getLogger(__name__)
    logger.info(f"Starting API server on {host}:{port}")
    uvicorn.run("compliance_draft.api:app", host=host, port=port, reload=True)


if __name__ == "__main__":
    if "--serve" in sys.argv:
        serve()
    else:
        run()
