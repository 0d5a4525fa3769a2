import asyncio

import pytest

from curriculum_sync.domain.exceptions import (
    ConstraintViolationError,
    EntityNotFoundError,
    MutationFailedError,
    SchemaDriftError,
    TransportError,
)
from curriculum_sync.domain.schemas import Course
from curriculum_sync.domain.types import EntityKind, MutationKind, WriteMode
from curriculum_sync.infrastructure.mappers.persistence_mapper import CurriculumMapper
from curriculum_sync.services.curriculum.optimistic_executor import OptimisticMutationExecutor


def test_create_installs_before_remote_confirms(store, remote) -> None:
    async def _run() -> None:
        executor = OptimisticMutationExecutor(store, remote, max_attempts=5)
        seen_during_write = []

        original_insert = remote.insert

        async def _insert(table, rows):
            seen_during_write.append(store.get(EntityKind.COURSE, "c1") is not None)
            return await original_insert(table, rows)

        remote.insert = _insert
        await executor.create(Course(id="c1", title="Python"))

        assert seen_during_write == [True]
        assert remote.tables["courses"][0]["title"] == "Python"

    asyncio.run(_run())


def test_update_self_heals_schema_drift_by_stripping_optional_columns(course_tree, remote) -> None:
    async def _run() -> None:
        remote.missing_columns["stages"].update({"xp_reward", "dowd_bucks_reward"})
        executor = OptimisticMutationExecutor(course_tree, remote, max_attempts=5)

        updated = await executor.update(EntityKind.STAGE, "s1", {"title": "Renamed", "xp_reward": 80})

        attempts = remote.calls_for("update", "stages")
        assert len(attempts) == 3
        final_patch = attempts[-1]["patch"]
        assert final_patch["title"] == "Renamed"
        assert "xp_reward" not in final_patch
        assert "dowd_bucks_reward" not in final_patch
        assert "description" in final_patch
        assert updated.xp_reward == 80
        assert course_tree.get(EntityKind.STAGE, "s1").title == "Renamed"

    asyncio.run(_run())


def test_drift_on_required_column_rolls_back_update(course_tree, remote) -> None:
    async def _run() -> None:
        remote.missing_columns["stages"].add("title")
        executor = OptimisticMutationExecutor(course_tree, remote, max_attempts=5)

        with pytest.raises(MutationFailedError) as excinfo:
            await executor.update(EntityKind.STAGE, "s1", {"title": "Renamed"})

        assert isinstance(excinfo.value.__cause__, SchemaDriftError)
        assert len(remote.calls_for("update", "stages")) == 1
        assert course_tree.get(EntityKind.STAGE, "s1").title == "Foundations"

    asyncio.run(_run())


def test_drift_retry_stops_after_max_attempts(store, remote) -> None:
    async def _run() -> None:
        remote.missing_columns["courses"].update({"description", "color", "folder_id", "created_at"})
        executor = OptimisticMutationExecutor(store, remote, max_attempts=2)

        with pytest.raises(MutationFailedError):
            await executor.create(Course(id="c1", title="Python"))

        assert len(remote.calls_for("insert", "courses")) == 2
        assert store.courses == []

    asyncio.run(_run())


def test_failed_insert_leaves_course_collection_unchanged(store, remote) -> None:
    async def _run() -> None:
        store.install(Course(id="c0", title="Existing"))
        before = list(store.courses)
        remote.fail_next(
            "insert", "courses", ConstraintViolationError("duplicate key", table="courses", code="23505")
        )
        executor = OptimisticMutationExecutor(store, remote)

        with pytest.raises(MutationFailedError) as excinfo:
            await executor.create(Course(id="c1", title="Python"))

        assert store.courses == before
        assert "duplicate key" in excinfo.value.user_message

    asyncio.run(_run())


def test_failed_update_restores_previous_value(course_tree, remote) -> None:
    async def _run() -> None:
        remote.fail_next(
            "update", "modules", ConstraintViolationError("permission denied", code="42501")
        )
        executor = OptimisticMutationExecutor(course_tree, remote)

        with pytest.raises(MutationFailedError):
            await executor.update(EntityKind.MODULE, "m1", {"title": "Changed"})

        assert course_tree.get(EntityKind.MODULE, "m1").title == "Variables"

    asyncio.run(_run())


def test_apply_rejects_duplicate_create_and_unknown_update(course_tree, remote) -> None:
    async def _run() -> None:
        executor = OptimisticMutationExecutor(course_tree, remote)

        with pytest.raises(ValueError):
            await executor.apply(Course(id="c1", title="Dup"), MutationKind.CREATE)
        with pytest.raises(EntityNotFoundError):
            await executor.apply(Course(id="nope", title="Ghost"), MutationKind.UPDATE)

        assert remote.calls == []

    asyncio.run(_run())


def test_send_upserts_batch_and_returns_final_rows(store, remote) -> None:
    async def _run() -> None:
        remote.missing_columns["courses"].add("color")
        executor = OptimisticMutationExecutor(store, remote)
        rows = [
            CurriculumMapper.to_remote(Course(id=f"c{i}", title=f"C{i}", order=i), EntityKind.COURSE)
            for i in range(3)
        ]

        persisted = await executor.send(EntityKind.COURSE, rows, WriteMode.UPSERT)

        assert all("color" not in row.values for row in persisted)
        assert len(remote.calls_for("upsert", "courses")) == 2
        assert [r["order_index"] for r in remote.tables["courses"]] == [0, 1, 2]

    asyncio.run(_run())


def test_failure_after_session_end_does_not_refill_cleared_store(course_tree, remote) -> None:
    async def _run() -> None:
        executor = OptimisticMutationExecutor(course_tree, remote)

        async def update_after_logout(table, patch, filters):
            course_tree.clear()
            raise TransportError("connection reset")

        remote.update = update_after_logout

        with pytest.raises(MutationFailedError):
            await executor.update(EntityKind.STAGE, "s1", {"title": "Renamed"})

        assert course_tree.is_active is False
        assert course_tree.stages == []

    asyncio.run(_run())
