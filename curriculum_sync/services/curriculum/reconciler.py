"""
Full-tree reconciliation.

A remote change notification on any curriculum table schedules a reload of
the whole tree, which replaces the store wholesale. Reload always wins over
optimistic values that were never echoed back.
"""

import asyncio
from collections import defaultdict
from typing import Any, Dict, List, Optional

import structlog
from pydantic import ValidationError

from curriculum_sync.domain.exceptions import RemoteStoreError
from curriculum_sync.domain.interfaces import IRemoteStore, ISubscription, RemoteRowData
from curriculum_sync.domain.schemas import CurriculumEntity, ProjectBrief, Task
from curriculum_sync.domain.types import EntityKind
from curriculum_sync.infrastructure.mappers.persistence_mapper import CurriculumMapper
from curriculum_sync.infrastructure.observability.event_logging import compact_error, emit_event
from curriculum_sync.services.curriculum.store import CurriculumSnapshot, CurriculumStore

logger = structlog.get_logger(__name__)

TREE_KINDS = (
    EntityKind.FOLDER,
    EntityKind.COURSE,
    EntityKind.STAGE,
    EntityKind.MODULE,
    EntityKind.QUIZ,
    EntityKind.LESSON,
    EntityKind.WALKTHROUGH,
)
WATCHED_KINDS = TREE_KINDS + (EntityKind.COMPLETION, EntityKind.PROJECT, EntityKind.TASK)


class CurriculumReconciler:
    def __init__(self, store: CurriculumStore, remote: IRemoteStore, mapper: type = CurriculumMapper):
        self.store = store
        self.remote = remote
        self.mapper = mapper
        self._subscriptions: List[ISubscription] = []
        self._reload_task: Optional[asyncio.Task] = None
        self._pending = False

    @property
    def is_watching(self) -> bool:
        return bool(self._subscriptions)

    def _map_rows(self, kind: EntityKind, rows: List[RemoteRowData]) -> List[Any]:
        mapped = []
        for row in rows:
            try:
                mapped.append(self.mapper.to_domain(row, kind))
            except ValidationError as exc:
                emit_event(
                    logger,
                    "reload_row_skipped",
                    level="warning",
                    entity_kind=kind.value,
                    row_id=row.get("id"),
                    error=compact_error(exc),
                )
        return mapped

    async def load_snapshot(self, user_id: str) -> CurriculumSnapshot:
        completion_filter = {self.mapper.remote_column(EntityKind.COMPLETION, "user_id"): user_id}
        kinds = list(WATCHED_KINDS)
        results = await asyncio.gather(
            *(
                self.remote.select(
                    self.mapper.table_for(kind),
                    completion_filter if kind is EntityKind.COMPLETION else None,
                )
                for kind in kinds
            )
        )
        rows_by_kind: Dict[EntityKind, List[RemoteRowData]] = dict(zip(kinds, results))

        entities: List[CurriculumEntity] = []
        for kind in TREE_KINDS:
            entities.extend(self._map_rows(kind, rows_by_kind[kind]))

        completed = {
            (record.content_type, record.content_id)
            for record in self._map_rows(EntityKind.COMPLETION, rows_by_kind[EntityKind.COMPLETION])
        }

        tasks_by_project: Dict[str, List[Task]] = defaultdict(list)
        for task in self._map_rows(EntityKind.TASK, rows_by_kind[EntityKind.TASK]):
            if task.project_id:
                tasks_by_project[task.project_id].append(task)
        projects: List[ProjectBrief] = []
        for project in self._map_rows(EntityKind.PROJECT, rows_by_kind[EntityKind.PROJECT]):
            tasks = sorted(tasks_by_project.get(project.id, []), key=lambda t: (t.order, t.id))
            projects.append(project.model_copy(update={"tasks": tasks}))

        return CurriculumSnapshot(entities=entities, completed=completed, projects=projects)

    async def reload(self) -> bool:
        """
        Replace the store with the remote tree. Failures are logged and leave
        the store untouched; returns whether the store was replaced.
        """
        user_id = self.store.user_id
        if user_id is None:
            return False
        generation = self.store.generation

        try:
            snapshot = await self.load_snapshot(user_id)
        except RemoteStoreError as exc:
            emit_event(
                logger,
                "curriculum_reload_failed",
                level="error",
                error_kind=exc.kind.value,
                error=compact_error(exc),
            )
            return False

        if not self.store.is_current(generation):
            emit_event(logger, "curriculum_reload_discarded", level="debug", reason="session_changed")
            return False

        self.store.replace_all(snapshot)
        emit_event(logger, "curriculum_reloaded", **self.store.counts())
        return True

    def request_reload(self) -> asyncio.Task:
        """
        Coalesce reload requests: at most one reload runs, and any number of
        requests made while it runs collapse into a single rerun.
        """
        self._pending = True
        if self._reload_task is None or self._reload_task.done():
            self._reload_task = asyncio.ensure_future(self._drain())
        return self._reload_task

    async def _drain(self) -> None:
        while self._pending:
            self._pending = False
            await self.reload()

    def _on_change(self, payload: Dict[str, Any]) -> None:
        emit_event(
            logger,
            "remote_change_received",
            level="debug",
            table=payload.get("table"),
            change=payload.get("eventType") or payload.get("type"),
        )
        self.request_reload()

    async def start(self) -> None:
        if self._subscriptions:
            return
        for kind in WATCHED_KINDS:
            table = self.mapper.table_for(kind)
            try:
                self._subscriptions.append(await self.remote.subscribe(table, self._on_change))
            except RemoteStoreError as exc:
                emit_event(
                    logger,
                    "change_subscription_failed",
                    level="warning",
                    table=table,
                    error=compact_error(exc),
                )

    async def stop(self) -> None:
        subscriptions, self._subscriptions = self._subscriptions, []
        for subscription in subscriptions:
            await subscription.unsubscribe()
        self._pending = False
        task, self._reload_task = self._reload_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
