import asyncio

import pytest

from curriculum_sync.domain.exceptions import (
    CompletionFailedError,
    SessionNotActiveError,
    TransportError,
)
from curriculum_sync.domain.schemas import Course, Lesson, Module, Quiz, Stage, Walkthrough
from curriculum_sync.domain.types import CompletionEventKind, ContentType, EntityKind
from curriculum_sync.services.curriculum.completion_propagator import CompletionPropagator
from curriculum_sync.services.curriculum.optimistic_executor import OptimisticMutationExecutor
from curriculum_sync.services.curriculum.store import CurriculumStore


def _propagator(store, remote, accounts, sink) -> CompletionPropagator:
    return CompletionPropagator(store, OptimisticMutationExecutor(store, remote), accounts, sink)


def _single_module_course(store) -> None:
    store.install_many(
        [
            Course(id="c1", title="Course"),
            Stage(id="s1", course_id="c1", title="Stage", xp_reward=30),
            Module(id="m1", stage_id="s1", title="Module", xp_reward=15),
            Quiz(
                id="A",
                course_id="c1",
                module_id="m1",
                title="A",
                xp_reward=10,
                dowd_bucks_reward=2,
            ),
            Lesson(id="B", course_id="c1", module_id="m1", title="B", order=1),
            Walkthrough(id="C", course_id="c1", module_id="m1", title="C", order=2),
        ]
    )


def test_completing_twice_records_and_notifies_once(store, remote, accounts, sink) -> None:
    async def _run() -> None:
        _single_module_course(store)
        propagator = _propagator(store, remote, accounts, sink)

        first = await propagator.complete_leaf("A", ContentType.QUIZ, "user-1")
        second = await propagator.complete_leaf("A", ContentType.QUIZ, "user-1")

        assert first.recorded is True
        assert second.recorded is False
        assert len(remote.tables["content_completion"]) == 1
        assert sink.kinds().count("content_completed") == 1
        assert accounts.awards == [("user-1", 10, 2)]

    asyncio.run(_run())


def test_concurrent_duplicate_completion_writes_one_record(store, remote, accounts, sink) -> None:
    async def _run() -> None:
        _single_module_course(store)
        propagator = _propagator(store, remote, accounts, sink)
        release = asyncio.Event()
        original_upsert = remote.upsert

        async def _slow_upsert(table, rows, on_conflict="id"):
            await release.wait()
            return await original_upsert(table, rows, on_conflict=on_conflict)

        remote.upsert = _slow_upsert
        first = asyncio.ensure_future(propagator.complete_leaf("A", ContentType.QUIZ))
        await asyncio.sleep(0)
        second = await propagator.complete_leaf("A", ContentType.QUIZ)
        release.set()
        outcome = await first

        assert outcome.recorded is True
        assert second.recorded is False
        assert len(remote.tables["content_completion"]) == 1

    asyncio.run(_run())


def test_module_and_stage_complete_only_with_last_leaf(store, remote, accounts, sink) -> None:
    async def _run() -> None:
        _single_module_course(store)
        propagator = _propagator(store, remote, accounts, sink)

        a = await propagator.complete_leaf("A", ContentType.QUIZ)
        b = await propagator.complete_leaf("B", ContentType.LESSON)
        assert a.event_kinds == [CompletionEventKind.CONTENT_COMPLETED]
        assert b.event_kinds == [CompletionEventKind.CONTENT_COMPLETED]

        c = await propagator.complete_leaf("C", ContentType.WALKTHROUGH)

        assert c.event_kinds == [
            CompletionEventKind.CONTENT_COMPLETED,
            CompletionEventKind.MODULE_COMPLETED,
            CompletionEventKind.STAGE_COMPLETED,
            CompletionEventKind.COURSE_COMPLETED,
        ]
        assert sink.kinds().count("module_completed") == 1
        assert sink.kinds().count("stage_completed") == 1
        assert ("user-1", 15, 0) in accounts.awards
        assert ("user-1", 30, 0) in accounts.awards

    asyncio.run(_run())


def test_stage_waits_for_every_module(course_tree, remote, accounts, sink) -> None:
    async def _run() -> None:
        propagator = _propagator(course_tree, remote, accounts, sink)

        await propagator.complete_leaf("q1", ContentType.QUIZ)
        outcome = await propagator.complete_leaf("l1", ContentType.LESSON)

        assert CompletionEventKind.MODULE_COMPLETED in outcome.event_kinds
        assert CompletionEventKind.STAGE_COMPLETED not in outcome.event_kinds
        assert propagator.is_module_complete("m1") is True
        assert propagator.is_stage_complete("s1") is False

        outcome = await propagator.complete_leaf("w1", ContentType.WALKTHROUGH)
        assert CompletionEventKind.STAGE_COMPLETED in outcome.event_kinds

    asyncio.run(_run())


def test_empty_module_is_never_complete(course_tree, remote, accounts, sink) -> None:
    async def _run() -> None:
        course_tree.install(Module(id="m3", stage_id="s1", title="Empty", order=2))
        propagator = _propagator(course_tree, remote, accounts, sink)

        for leaf_id, content_type in (
            ("q1", ContentType.QUIZ),
            ("l1", ContentType.LESSON),
            ("w1", ContentType.WALKTHROUGH),
        ):
            outcome = await propagator.complete_leaf(leaf_id, content_type)

        assert propagator.is_module_complete("m3") is False
        assert propagator.is_stage_complete("s1") is False
        assert CompletionEventKind.STAGE_COMPLETED not in outcome.event_kinds
        assert CompletionEventKind.COURSE_COMPLETED not in outcome.event_kinds

    asyncio.run(_run())


def test_course_without_stages_is_never_complete(store, remote, accounts, sink) -> None:
    async def _run() -> None:
        store.install_many(
            [Course(id="c1", title="Loose"), Lesson(id="l0", course_id="c1", title="Only")]
        )
        propagator = _propagator(store, remote, accounts, sink)

        outcome = await propagator.complete_leaf("l0", ContentType.LESSON)

        assert outcome.event_kinds == [CompletionEventKind.CONTENT_COMPLETED]
        assert propagator.is_course_complete("c1") is False

    asyncio.run(_run())


def test_failed_record_write_leaves_leaf_incomplete(store, remote, accounts, sink) -> None:
    async def _run() -> None:
        _single_module_course(store)
        remote.fail_next("upsert", "content_completion", TransportError("timeout"))
        propagator = _propagator(store, remote, accounts, sink)

        with pytest.raises(CompletionFailedError):
            await propagator.complete_leaf("A", ContentType.QUIZ)

        assert store.is_completed(ContentType.QUIZ, "A") is False
        assert sink.events == []
        assert accounts.awards == []

        retried = await propagator.complete_leaf("A", ContentType.QUIZ)
        assert retried.recorded is True

    asyncio.run(_run())


def test_record_upsert_targets_the_completion_key(store, remote, accounts, sink) -> None:
    async def _run() -> None:
        _single_module_course(store)
        propagator = _propagator(store, remote, accounts, sink)

        await propagator.complete_leaf("B", ContentType.LESSON)

        row = remote.tables["content_completion"][0]
        assert row["student_id"] == "user-1"
        assert row["content_id"] == "B"
        assert row["content_type"] == "lesson"

    asyncio.run(_run())


def test_collaborator_failures_do_not_fail_the_completion(store, remote, accounts, sink) -> None:
    async def _run() -> None:
        _single_module_course(store)
        accounts.fail = True
        sink.fail = True
        propagator = _propagator(store, remote, accounts, sink)

        outcome = await propagator.complete_leaf("A", ContentType.QUIZ)

        assert outcome.recorded is True
        assert store.is_completed(ContentType.QUIZ, "A") is True

    asyncio.run(_run())


def test_completion_requires_session_user(remote, accounts, sink) -> None:
    async def _run() -> None:
        store = CurriculumStore()
        propagator = _propagator(store, remote, accounts, sink)

        with pytest.raises(SessionNotActiveError):
            await propagator.complete_leaf("A", ContentType.QUIZ)

        store.bind("user-1")
        _single_module_course(store)
        with pytest.raises(ValueError):
            await propagator.complete_leaf("A", ContentType.QUIZ, user_id="someone-else")

    asyncio.run(_run())


def test_predicates_follow_store_changes(course_tree, remote, accounts, sink) -> None:
    propagator = _propagator(course_tree, remote, accounts, sink)
    course_tree.mark_completed(ContentType.QUIZ, "q1")
    course_tree.mark_completed(ContentType.LESSON, "l1")
    assert propagator.is_module_complete("m1") is True

    course_tree.install(Quiz(id="q2", course_id="c1", module_id="m1", title="New", order=2))

    assert propagator.is_module_complete("m1") is False
    assert course_tree.get(EntityKind.QUIZ, "q2") is not None
