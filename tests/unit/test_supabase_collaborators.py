import asyncio

import pytest

from curriculum_sync.cli import build_tree, inspect_columns
from curriculum_sync.domain.exceptions import RemoteStoreError, TransportError
from curriculum_sync.domain.types import CompletionEventKind, ContentType
from curriculum_sync.infrastructure.supabase.collaborators import (
    SupabaseNotificationSink,
    SupabaseUserAccountService,
)


def test_award_points_increments_profile_counters(remote) -> None:
    async def _run() -> None:
        remote.seed("profiles", {"id": "u1", "xp": 100, "balance": None})
        service = SupabaseUserAccountService(remote)

        await service.award_points("u1", 15, 3)

        assert remote.tables["profiles"][0]["xp"] == 115
        assert remote.tables["profiles"][0]["balance"] == 3

    asyncio.run(_run())


def test_award_points_for_unknown_profile_raises(remote) -> None:
    async def _run() -> None:
        service = SupabaseUserAccountService(remote)
        with pytest.raises(RemoteStoreError):
            await service.award_points("ghost", 5, 0)

    asyncio.run(_run())


def test_notification_sink_persists_hierarchy_events_only(remote) -> None:
    async def _run() -> None:
        sink = SupabaseNotificationSink(remote)
        payload = {"user_id": "u1", "entity_id": "m1", "title": "Loops"}

        await sink.emit(CompletionEventKind.CONTENT_COMPLETED, payload)
        await sink.emit(CompletionEventKind.MODULE_COMPLETED, payload)

        rows = remote.tables["notifications"]
        assert len(rows) == 1
        assert rows[0]["type"] == "module_completed"
        assert rows[0]["link"] == "m1"
        assert rows[0]["message"] == "You completed Loops"

    asyncio.run(_run())


def test_notification_persist_failure_is_swallowed(remote) -> None:
    async def _run() -> None:
        remote.fail_next("insert", "notifications", TransportError("offline"))
        sink = SupabaseNotificationSink(remote)

        await sink.emit(CompletionEventKind.STAGE_COMPLETED, {"user_id": "u1", "entity_id": "s1"})

    asyncio.run(_run())


def test_inspect_columns_reports_missing_columns(remote) -> None:
    async def _run() -> None:
        remote.missing_columns["stages"].add("dowd_bucks_reward")

        report = await inspect_columns(remote, "stages", ["title", "dowd_bucks_reward"])

        assert report == {"title": True, "dowd_bucks_reward": False}

    asyncio.run(_run())


def test_build_tree_nests_content_and_marks_completion(course_tree) -> None:
    course_tree.mark_completed(ContentType.QUIZ, "q1")

    tree = build_tree(course_tree)

    course = tree["courses"][0]
    assert [item["id"] for item in course["content"]] == ["l0"]
    module = course["stages"][0]["modules"][0]
    assert [(item["id"], item["completed"]) for item in module["content"]] == [
        ("q1", True),
        ("l1", False),
    ]
    assert tree["counts"]["completed"] == 1
