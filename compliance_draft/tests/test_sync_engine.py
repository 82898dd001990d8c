"""
Tests: Sync passes against the in-memory backend.

Run with:
    pytest compliance_draft/tests/test_sync_engine.py -v
"""

import asyncio

from compliance_draft.config import Settings
from compliance_draft.core.session import BuilderSession
from compliance_draft.core.sync_engine import LOAD_ERROR_TOAST, SAVE_ERROR_TOAST, SyncOptions
from compliance_draft.models.enums import EntityState
from compliance_draft.models.schemas import LocalFile, RemoteQuestion, RemoteSection
from compliance_draft.persistence.memory_backend import InMemoryBuilderApi
from compliance_draft.services.builder_api import BuilderApiError


def _settings(**overrides) -> Settings:
    return Settings(autosave_debounce_ms=30, _env_file=None, **overrides)


def _seeded_api() -> InMemoryBuilderApi:
    api = InMemoryBuilderApi()
    api.seed(
        [
            RemoteSection(
                id="section-a",
                item="Política (PI)",
                questions=[
                    RemoteQuestion(id="question-a1", section_id="section-a", text="Existe política?"),
                    RemoteQuestion(id="question-a2", section_id="section-a", text="É revisada?"),
                ],
            ),
            RemoteSection(
                id="section-b",
                item="Auditoria (AUD)",
                questions=[
                    RemoteQuestion(id="question-b1", section_id="section-b", text="Há auditoria?"),
                ],
            ),
        ]
    )
    return api


async def _loaded_session(api: InMemoryBuilderApi, **kwargs) -> BuilderSession:
    session = BuilderSession(api, settings=_settings(), **kwargs)
    await session.load()
    api.calls.clear()
    return session


async def _settle(session: BuilderSession) -> None:
    """Let pending debounce timers fire and their saves finish."""
    await asyncio.sleep(0.1)
    await session.scheduler.drain()


class TestCreateAndSave:
    def test_manual_save_creates_and_rewrites_ids(self):
        async def scenario():
            api = InMemoryBuilderApi()
            session = await _loaded_session(api)
            section = session.store.add_section()
            question = session.store.add_question(section.id)
            session.store.update_question(question.id, {"text": "Há política aprovada?"})
            ok = await session.trigger_manual_save()
            await session.close()
            return ok, session, api, section.id, question.id

        ok, session, api, temp_section, temp_question = asyncio.run(scenario())
        assert ok
        assert api.call_names()[:2] == ["create_section", "create_question"]
        section = session.store.sections[0]
        assert section.id == "section-1"
        assert section.questions[0].id == "question-2"
        assert section.questions[0].text == "Há política aprovada?"
        assert session.store.active_section_id == "section-1"
        assert session.store.expanded_question_ids == {"question-2"}
        assert session.engine.resolve_id(temp_section) == "section-1"
        assert session.engine.resolve_id(temp_question) == "question-2"
        assert not session.is_dirty
        assert session.notifier.active[-1].message == "Builder saved"

    def test_update_payload_uses_permanent_section_id(self):
        async def scenario():
            api = InMemoryBuilderApi()
            session = await _loaded_session(api)
            section = session.store.add_section()
            session.store.add_question(section.id)
            await session.trigger_manual_save()
            await session.close()
            return api

        api = asyncio.run(scenario())
        (question_id, payload) = api.calls_to("update_question")[0].args
        assert question_id == "question-2"
        assert payload.section_id == "section-1"

    def test_unchanged_payloads_are_not_resent(self):
        async def scenario():
            api = _seeded_api()
            session = await _loaded_session(api)
            session.store.update_question("question-a1", {"text": "Existe política formal?"})
            await session.trigger_manual_save()
            return api, session

        api, session = asyncio.run(scenario())
        updates = api.calls_to("update_question")
        assert [c.args[0] for c in updates] == ["question-a1"]
        assert api.calls_to("update_section") == []
        assert api.calls_to("reorder_sections") == []
        assert api.calls_to("reorder_questions") == []

    def test_reorder_sent_only_when_order_changes(self):
        async def scenario():
            api = _seeded_api()
            session = await _loaded_session(api)
            session.store.move_question("question-a2", -1)
            await session.trigger_manual_save()
            return api

        api = asyncio.run(scenario())
        reorders = api.calls_to("reorder_questions")
        assert len(reorders) == 1
        assert reorders[0].args == ("section-a", ["question-a2", "question-a1"])


class TestAutosave:
    def test_edits_autosave_after_debounce(self):
        async def scenario():
            api = InMemoryBuilderApi()
            session = await _loaded_session(api)
            section = session.store.add_section()
            session.store.add_question(section.id)
            assert session.is_dirty
            await _settle(session)
            await session.close()
            return session, api

        session, api = asyncio.run(scenario())
        assert not session.is_dirty
        assert len(api.calls_to("create_section")) == 1
        # background passes stay quiet on success
        assert session.notifier.history == []

    def test_edit_during_pass_is_not_lost(self):
        async def scenario():
            api = InMemoryBuilderApi()
            session = await _loaded_session(api)
            section = session.store.add_section()
            question = session.store.add_question(section.id)
            session.store.update_question(question.id, {"text": "first"})

            api.hold("update_question")
            save = asyncio.ensure_future(session.trigger_manual_save())
            await api.wait_for_call("update_question")
            session.store.update_question(question.id, {"text": "second"})
            api.release("update_question")
            ok = await save
            dirty_after_first_pass = session.is_dirty

            await _settle(session)
            await session.close()
            return ok, dirty_after_first_pass, session, api

        ok, dirty_after_first_pass, session, api = asyncio.run(scenario())
        assert ok
        assert dirty_after_first_pass
        assert not session.is_dirty
        assert len(api.calls_to("create_question")) == 1
        last_update = api.calls_to("update_question")[-1]
        assert last_update.args[0] == "question-2"
        assert last_update.args[1].text == "second"
        assert session.store.sections[0].questions[0].text == "second"

    def test_concurrent_saves_share_one_pass(self):
        async def scenario():
            api = InMemoryBuilderApi()
            session = await _loaded_session(api)
            section = session.store.add_section()
            session.store.add_question(section.id)

            api.hold("create_section")
            first = asyncio.ensure_future(session.trigger_manual_save())
            await api.wait_for_call("create_section")
            second = asyncio.ensure_future(session.trigger_manual_save())
            await asyncio.sleep(0.02)
            assert session.is_saving
            api.release("create_section")
            results = await asyncio.gather(first, second)
            await _settle(session)
            await session.close()
            return results, session, api

        results, session, api = asyncio.run(scenario())
        assert results == [True, True]
        assert len(api.calls_to("create_section")) == 1
        assert len(api.calls_to("create_question")) == 1
        assert session.engine.pass_count == 1
        assert not session.is_saving


    def test_manual_save_joining_autosave_shows_busy(self):
        async def scenario():
            api = InMemoryBuilderApi()
            session = await _loaded_session(api)
            session.store.add_section()

            api.hold("create_section")
            autosave = asyncio.ensure_future(session.engine.sync(SyncOptions.background()))
            await api.wait_for_call("create_section")
            busy_during_autosave = session.is_saving
            manual = asyncio.ensure_future(session.trigger_manual_save())
            await asyncio.sleep(0.01)
            busy_while_joined = session.is_saving
            api.release("create_section")
            ok = await manual
            await autosave
            await session.close()
            return busy_during_autosave, busy_while_joined, ok, session, api

        busy_during_autosave, busy_while_joined, ok, session, api = asyncio.run(scenario())
        assert not busy_during_autosave
        assert busy_while_joined
        assert ok
        assert not session.is_saving
        assert len(api.calls_to("create_section")) == 1


class TestDeletion:
    def test_deleted_question_removed_remotely(self):
        async def scenario():
            api = _seeded_api()
            session = await _loaded_session(api)
            session.store.delete_question("question-a1")
            assert session.engine.entity_state("question-a1") == EntityState.PENDING_DELETE
            await session.trigger_manual_save()
            return session, api

        session, api = asyncio.run(scenario())
        assert [c.args[0] for c in api.calls_to("delete_question")] == ["question-a1"]
        assert session.engine.entity_state("question-a1") == EntityState.DELETED

    def test_deleted_section_cascades(self):
        async def scenario():
            api = _seeded_api()
            session = await _loaded_session(api)
            session.store.delete_section("section-a")
            await session.trigger_manual_save()
            return api

        api = asyncio.run(scenario())
        assert [c.args[0] for c in api.calls_to("delete_section")] == ["section-a"]
        assert api.calls_to("delete_question") == []

    def test_deleting_last_section_replaces_it(self):
        async def scenario():
            api = InMemoryBuilderApi()
            api.seed([RemoteSection(id="section-a", item="Política (PI)")])
            session = await _loaded_session(api)
            session.store.delete_section("section-a")
            await session.trigger_manual_save()
            remote = await api.list_sections()
            return remote

        remote = asyncio.run(scenario())
        assert [s.id for s in remote] == ["section-1"]

    def test_delete_of_missing_entity_is_tolerated(self):
        async def scenario():
            api = _seeded_api()
            session = await _loaded_session(api)
            session.store.delete_section("section-b")
            api.fail_next("delete_section", BuilderApiError("Section not found", 404))
            ok = await session.trigger_manual_save()
            return ok, session

        ok, session = asyncio.run(scenario())
        assert ok
        assert session.engine.entity_state("section-b") == EntityState.DELETED
        assert not session.is_dirty

    def test_never_persisted_entities_not_deleted_remotely(self):
        async def scenario():
            api = InMemoryBuilderApi()
            session = await _loaded_session(api)
            session.store.add_section()
            keep = session.store.add_section()
            session.store.delete_section(session.store.sections[0].id)
            await session.trigger_manual_save()
            return api, keep

        api, keep = asyncio.run(scenario())
        assert len(api.calls_to("create_section")) == 1
        assert api.calls_to("delete_section") == []


class TestFailures:
    def test_failed_pass_keeps_draft_dirty_and_retries_without_duplicates(self):
        async def scenario():
            api = InMemoryBuilderApi()
            session = await _loaded_session(api)
            section = session.store.add_section()
            session.store.add_question(section.id)
            api.fail_next("create_question")
            first = await session.trigger_manual_save()
            errors = session.notifier.errors()
            dirty = session.is_dirty
            second = await session.trigger_manual_save()
            return first, second, errors, dirty, session, api

        first, second, errors, dirty, session, api = asyncio.run(scenario())
        assert first is False
        assert dirty
        assert errors[-1].message == "Network Error"
        assert errors[-1].toast_id == SAVE_ERROR_TOAST
        assert second is True
        assert len(api.calls_to("create_section")) == 1
        assert len(api.calls_to("create_question")) == 2
        assert not session.is_dirty
        assert all(n.toast_id != SAVE_ERROR_TOAST for n in session.notifier.active)

    def test_repeated_failures_show_one_toast(self):
        async def scenario():
            api = InMemoryBuilderApi()
            session = await _loaded_session(api)
            session.store.add_section()
            api.fail_next("create_section")
            api.fail_next("create_section")
            await session.trigger_manual_save()
            await session.trigger_manual_save()
            return session

        session = asyncio.run(scenario())
        assert len(session.notifier.errors()) == 2
        assert len([n for n in session.notifier.active if n.toast_id == SAVE_ERROR_TOAST]) == 1

    def test_sensitive_backend_error_is_masked(self):
        async def scenario():
            api = InMemoryBuilderApi()
            session = await _loaded_session(api)
            session.store.add_section()
            api.fail_next(
                "create_section",
                BuilderApiError(
                    "failed",
                    500,
                    {"error": "Invalid `prisma.section.create()` invocation in /app/src/routes.ts"},
                ),
            )
            await session.trigger_manual_save()
            return session

        session = asyncio.run(scenario())
        assert session.notifier.errors()[-1].message == "Internal server error"

    def test_load_failure_notifies(self):
        async def scenario():
            api = InMemoryBuilderApi()
            api.fail_next("list_sections")
            session = BuilderSession(api, settings=_settings())
            ok = await session.load()
            return ok, session

        ok, session = asyncio.run(scenario())
        assert ok is False
        assert session.notifier.errors()[-1].toast_id == LOAD_ERROR_TOAST

    def test_read_only_user_cannot_save(self):
        async def scenario():
            api = _seeded_api()
            session = await _loaded_session(api, can_edit=False)
            ok = await session.trigger_manual_save()
            return ok, session, api

        ok, session, api = asyncio.run(scenario())
        assert ok is False
        assert api.calls == []
        assert session.notifier.errors()


class TestUploads:
    def test_files_uploaded_once(self):
        async def scenario():
            api = InMemoryBuilderApi()
            session = await _loaded_session(api)
            section = session.store.add_section()
            question = session.store.add_question(section.id)
            session.store.update_question(
                question.id,
                {"answer_files": [LocalFile(name="ata.pdf", size=10, last_modified=1.0)]},
            )
            await session.trigger_manual_save()
            session.store.update_question(question.id, {"answer_text": "Sim, em 2024"})
            await session.trigger_manual_save()
            return api

        api = asyncio.run(scenario())
        uploads = api.calls_to("upload_attachment")
        assert len(uploads) == 1
        assert uploads[0].args[0] == "question-2"

    def test_slot_capped_at_max_files(self):
        async def scenario():
            api = InMemoryBuilderApi()
            session = await _loaded_session(api)
            section = session.store.add_section()
            files = [LocalFile(name=f"norma-{i}.pdf", size=i, last_modified=1.0) for i in range(7)]
            session.store.update_section({"has_rule": True, "rule_files": files}, section.id)
            await session.trigger_manual_save()
            return api

        api = asyncio.run(scenario())
        assert len(api.calls_to("upload_section_rule")) == 5

    def test_test_evidence_carries_reference(self):
        async def scenario():
            api = InMemoryBuilderApi()
            session = await _loaded_session(api)
            section = session.store.add_section()
            question = session.store.add_question(section.id)
            session.store.update_question_test(
                question.id,
                slots={
                    "evidence": {
                        "files": [LocalFile(name="print.png", size=5, last_modified=2.0)],
                        "reference": "EV-7",
                    }
                },
            )
            await session.trigger_manual_save()
            return api

        api = asyncio.run(scenario())
        (_, file_name, category, reference) = api.calls_to("upload_attachment")[0].args
        assert file_name == "print.png"
        assert category.value == "TESTE_EVIDENCIAS"
        assert reference == "EV-7"


class TestEntityStates:
    def test_lifecycle_of_a_new_section(self):
        async def scenario():
            api = InMemoryBuilderApi()
            session = await _loaded_session(api)
            section = session.store.add_section()
            states = [session.engine.entity_state(section.id)]

            api.hold("create_section")
            save = asyncio.ensure_future(session.trigger_manual_save())
            await api.wait_for_call("create_section")
            states.append(session.engine.entity_state(section.id))
            api.release("create_section")
            await save
            states.append(session.engine.entity_state(section.id))
            states.append(session.engine.entity_state("section-1"))
            return states

        states = asyncio.run(scenario())
        assert states == [
            EntityState.LOCAL_ONLY,
            EntityState.SYNCING,
            EntityState.PERSISTED,
            EntityState.PERSISTED,
        ]


class TestSaveAndReload:
    def test_reload_replaces_tree(self):
        async def scenario():
            api = _seeded_api()
            session = await _loaded_session(api)
            session.store.update_section({"custom_label": "PI - revisão"}, "section-a")
            ok = await session.trigger_save_and_reload()
            return ok, session, api

        ok, session, api = asyncio.run(scenario())
        assert ok
        assert api.call_names()[-1] == "list_sections"
        assert session.store.sections[0].label == "PI - revisão"
        assert not session.is_dirty

    def test_reload_skipped_when_edited_mid_flight(self):
        async def scenario():
            api = _seeded_api()
            session = await _loaded_session(api)
            session.store.update_question("question-a1", {"text": "v1"})
            api.hold("update_question")
            save = asyncio.ensure_future(session.trigger_save_and_reload())
            await api.wait_for_call("update_question")
            session.store.update_question("question-b1", {"text": "local only"})
            api.release("update_question")
            await save
            reloaded = "list_sections" in api.call_names()
            text = session.store.get_question("question-b1")[1].text
            await session.close()
            return reloaded, text

        reloaded, text = asyncio.run(scenario())
        assert not reloaded
        assert text == "local only"

    def test_edit_while_reload_is_fetching_is_kept(self):
        async def scenario():
            api = _seeded_api()
            session = await _loaded_session(api)
            session.store.update_section({"custom_label": "PI - revisão"}, "section-a")
            api.hold("list_sections")
            save = asyncio.ensure_future(session.trigger_save_and_reload())
            await api.wait_for_call("list_sections")
            session.store.update_question("question-a1", {"text": "typed during reload"})
            api.release("list_sections")
            ok = await save
            dirty_after_pass = session.is_dirty

            await _settle(session)
            await session.close()
            return ok, dirty_after_pass, session, api

        ok, dirty_after_pass, session, api = asyncio.run(scenario())
        assert ok
        assert dirty_after_pass
        assert session.store.get_question("question-a1")[1].text == "typed during reload"
        last_update = api.calls_to("update_question")[-1]
        assert last_update.args[0] == "question-a1"
        assert last_update.args[1].text == "typed during reload"
        assert not session.is_dirty

    def test_empty_reload_resets_tracker(self):
        async def scenario():
            api = InMemoryBuilderApi()
            session = await _loaded_session(api)
            session.tracker.mark_dirty()
            session.tracker.mark_saved(1)
            await session.load()
            return session

        session = asyncio.run(scenario())
        assert session.tracker.change_counter == 0
        assert session.store.sections == []


class TestScenarios:
    def test_new_section_with_two_questions_autosaves_in_order(self):
        async def scenario():
            api = InMemoryBuilderApi()
            session = await _loaded_session(api)
            section = session.store.add_section()
            session.store.add_question(section.id)
            session.store.add_question(section.id)
            await _settle(session)
            await session.close()
            return session, api

        session, api = asyncio.run(scenario())
        names = [n for n in api.call_names() if n != "reorder_sections"]
        assert names == [
            "create_section",
            "create_question",
            "update_question",
            "create_question",
            "update_question",
            "reorder_questions",
        ]
        section = session.store.sections[0]
        assert section.id == "section-1"
        assert [q.id for q in section.questions] == ["question-2", "question-3"]
        assert api.calls_to("reorder_questions")[0].args == ("section-1", ["question-2", "question-3"])

    def test_rejected_update_is_retried_on_next_cycle(self):
        async def scenario():
            api = InMemoryBuilderApi()
            session = await _loaded_session(api)
            section = session.store.add_section()
            question = session.store.add_question(section.id)
            session.store.update_question(question.id, {"text": "Há política?"})
            api.fail_next(
                "update_question",
                BuilderApiError("PATCH failed", 400, {"error": "Criticidade inválida"}),
            )
            await _settle(session)
            message = session.notifier.errors()[-1].message
            saved_after_failure = session.tracker.last_saved_counter

            session.store.update_question(question.id, {"citation": "Circular 3.978, art. 2"})
            await _settle(session)
            await session.close()
            return message, saved_after_failure, session, api

        message, saved_after_failure, session, api = asyncio.run(scenario())
        assert message == "Criticidade inválida"
        assert saved_after_failure == 0
        assert len(api.calls_to("create_section")) == 1
        assert len(api.calls_to("create_question")) == 1
        updates = api.calls_to("update_question")
        assert [c.args[0] for c in updates] == ["question-2", "question-2"]
        assert updates[-1].args[1].text == "Há política?"
        assert not session.is_dirty
