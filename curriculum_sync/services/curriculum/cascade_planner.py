from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

import structlog

from curriculum_sync.domain.exceptions import CascadeDeleteError, RemoteStoreError
from curriculum_sync.domain.interfaces import IRemoteStore
from curriculum_sync.domain.schemas import Course, CurriculumEntity, LeafContent, Module, Stage
from curriculum_sync.domain.types import CONTAINER_KINDS, ContentType, EntityKind, LEAF_KINDS
from curriculum_sync.infrastructure.mappers.persistence_mapper import (
    CALENDAR_EVENTS_TABLE,
    CurriculumMapper,
)
from curriculum_sync.infrastructure.observability.event_logging import compact_error, emit_event
from curriculum_sync.services.curriculum.store import (
    CompletionKey,
    CurriculumSnapshot,
    CurriculumStore,
)

logger = structlog.get_logger(__name__)


@dataclass
class CascadePlan:
    """
    Everything a destructive operation removes, captured before the first change.
    """

    root_kind: EntityKind
    root_id: str
    course: Optional[Course] = None
    stages: List[Stage] = field(default_factory=list)
    modules: List[Module] = field(default_factory=list)
    leaves: List[LeafContent] = field(default_factory=list)
    completed: Set[CompletionKey] = field(default_factory=set)

    @property
    def leaf_ids(self) -> List[str]:
        return [leaf.id for leaf in self.leaves]

    def leaf_ids_by_type(self) -> Dict[ContentType, List[str]]:
        grouped: Dict[ContentType, List[str]] = {ct: [] for ct in ContentType}
        for leaf in self.leaves:
            grouped[leaf.content_type].append(leaf.id)
        return grouped

    def entities(self) -> List[CurriculumEntity]:
        items: List[CurriculumEntity] = []
        if self.course is not None:
            items.append(self.course)
        items.extend(self.stages)
        items.extend(self.modules)
        items.extend(self.leaves)
        return items

    def snapshot(self) -> CurriculumSnapshot:
        return CurriculumSnapshot(entities=self.entities(), completed=set(self.completed))


class CascadePlanner:
    """
    Deletes containers (course, stage, module) and leaves together with their
    dependents, in dependency order: completion records and calendar links
    (best effort), leaf rows by type, modules, stages, course. A failure on
    any row delete restores the whole captured subtree into the store.
    """

    def __init__(self, store: CurriculumStore, remote: IRemoteStore, mapper: type = CurriculumMapper):
        self.store = store
        self.remote = remote
        self.mapper = mapper

    def plan(self, kind: EntityKind, entity_id: str) -> CascadePlan:
        root = self.store.require(kind, entity_id)
        plan = CascadePlan(root_kind=kind, root_id=entity_id)

        if kind is EntityKind.COURSE:
            plan.course = root
            plan.stages = self.store.stages_for_course(entity_id)
        elif kind is EntityKind.STAGE:
            plan.stages = [root]
        elif kind is EntityKind.MODULE:
            plan.modules = [root]
        elif kind in LEAF_KINDS:
            plan.leaves = [root]
        else:
            raise ValueError(f"{kind.value} cannot be cascade-deleted")

        for stage in plan.stages:
            plan.modules.extend(self.store.modules_for_stage(stage.id))

        seen = {(leaf.content_type, leaf.id) for leaf in plan.leaves}
        candidates: List[LeafContent] = []
        for module in plan.modules:
            candidates.extend(self.store.leaves_for_module(module.id))
        if kind is EntityKind.COURSE:
            candidates.extend(self.store.leaves_for_course(entity_id))
        for leaf in candidates:
            key = (leaf.content_type, leaf.id)
            if key not in seen:
                seen.add(key)
                plan.leaves.append(leaf)

        plan.completed = {
            (leaf.content_type, leaf.id)
            for leaf in plan.leaves
            if self.store.is_completed(leaf.content_type, leaf.id)
        }
        return plan

    async def delete_container(self, container_id: str, kind: EntityKind) -> CascadePlan:
        if kind not in CONTAINER_KINDS:
            raise ValueError(f"{kind.value} is not a container kind")
        return await self.execute(self.plan(kind, container_id))

    async def delete_leaf(self, content_type: ContentType, leaf_id: str) -> CascadePlan:
        return await self.execute(self.plan(content_type.entity_kind, leaf_id))

    async def execute(self, plan: CascadePlan) -> CascadePlan:
        generation = self.store.generation
        self._remove_locally(plan)
        emit_event(
            logger,
            "cascade_delete_started",
            root_kind=plan.root_kind.value,
            root_id=plan.root_id,
            stages=len(plan.stages),
            modules=len(plan.modules),
            leaves=len(plan.leaves),
        )

        leaf_ids = plan.leaf_ids
        if leaf_ids:
            await self._best_effort(
                plan,
                "completion_records",
                self.mapper.table_for(EntityKind.COMPLETION),
                {"content_id": leaf_ids},
            )
            await self._best_effort(
                plan, "calendar_events", CALENDAR_EVENTS_TABLE, {"related_id": leaf_ids}
            )

        steps = []
        for content_type, ids in plan.leaf_ids_by_type().items():
            steps.append((content_type.entity_kind, ids))
        steps.append((EntityKind.MODULE, [m.id for m in plan.modules]))
        steps.append((EntityKind.STAGE, [s.id for s in plan.stages]))
        if plan.course is not None:
            steps.append((EntityKind.COURSE, [plan.course.id]))

        for kind, ids in steps:
            if not ids:
                continue
            table = self.mapper.table_for(kind)
            try:
                await self.remote.delete(table, {"id": ids})
            except RemoteStoreError as exc:
                if self.store.is_current(generation):
                    self.store.restore(plan.snapshot())
                emit_event(
                    logger,
                    "cascade_delete_rolled_back",
                    level="error",
                    root_kind=plan.root_kind.value,
                    root_id=plan.root_id,
                    step=table,
                    error_kind=exc.kind.value,
                    error=compact_error(exc),
                )
                raise CascadeDeleteError(plan.root_kind, plan.root_id, table, exc) from exc

        emit_event(
            logger,
            "cascade_delete_completed",
            root_kind=plan.root_kind.value,
            root_id=plan.root_id,
        )
        return plan

    async def delete_folder(self, folder_id: str) -> None:
        """
        Folders are weak groupings: member courses are unlinked, never deleted.
        """
        folder = self.store.require(EntityKind.FOLDER, folder_id)
        members = self.store.courses_in_folder(folder_id)

        generation = self.store.generation
        self.store.remove(EntityKind.FOLDER, folder_id)
        self.store.install_many(c.model_copy(update={"folder_id": None}) for c in members)

        step = "unlink_courses"
        try:
            if members:
                await self.remote.update(
                    self.mapper.table_for(EntityKind.COURSE),
                    {"folder_id": None},
                    {"folder_id": folder_id},
                )
            step = "folder"
            await self.remote.delete(self.mapper.table_for(EntityKind.FOLDER), {"id": folder_id})
        except RemoteStoreError as exc:
            if self.store.is_current(generation):
                self.store.restore(CurriculumSnapshot(entities=[folder, *members]))
            emit_event(
                logger,
                "folder_delete_rolled_back",
                level="error",
                folder_id=folder_id,
                step=step,
                error=compact_error(exc),
            )
            raise CascadeDeleteError(EntityKind.FOLDER, folder_id, step, exc) from exc

        emit_event(logger, "folder_deleted", folder_id=folder_id, unlinked_courses=len(members))

    def _remove_locally(self, plan: CascadePlan) -> None:
        for leaf in plan.leaves:
            self.store.remove(leaf.kind, leaf.id)
            self.store.unmark_completed(leaf.content_type, leaf.id)
        for module in plan.modules:
            self.store.remove(EntityKind.MODULE, module.id)
        for stage in plan.stages:
            self.store.remove(EntityKind.STAGE, stage.id)
        if plan.course is not None:
            self.store.remove(EntityKind.COURSE, plan.course.id)

    async def _best_effort(self, plan: CascadePlan, step: str, table: str, filters) -> None:
        try:
            await self.remote.delete(table, filters)
        except RemoteStoreError as exc:
            emit_event(
                logger,
                "cascade_cleanup_step_failed",
                level="warning",
                root_kind=plan.root_kind.value,
                root_id=plan.root_id,
                step=step,
                error=compact_error(exc),
            )
