"""
Curriculum Session - application facade over the sync engine.

Wires one session-scoped store into every engine component and exposes the
mutators authoring and learner UIs call. Creates refuse orphans (the parent
must be loaded) and append at the next dense position of their scope.
"""

import uuid
from typing import Any, Dict, List, Optional, Sequence

import structlog

from curriculum_sync.core.settings import settings
from curriculum_sync.domain.exceptions import SessionNotActiveError
from curriculum_sync.domain.interfaces import (
    IAggregateSaver,
    INotificationSink,
    IRemoteStore,
    IUserAccountService,
)
from curriculum_sync.domain.schemas import (
    LEAF_MODELS,
    Course,
    CurriculumEntity,
    Folder,
    LeafContent,
    Module,
    ProjectBrief,
    Stage,
    Task,
)
from curriculum_sync.domain.types import ContentType, Direction, EntityKind, MutationKind
from curriculum_sync.infrastructure.mappers.persistence_mapper import CurriculumMapper
from curriculum_sync.infrastructure.observability.context_vars import (
    bind_context,
    set_session_context,
)
from curriculum_sync.infrastructure.observability.event_logging import emit_event
from curriculum_sync.services.curriculum.cascade_planner import CascadePlan, CascadePlanner
from curriculum_sync.services.curriculum.completion_propagator import (
    CompletionOutcome,
    CompletionPropagator,
)
from curriculum_sync.services.curriculum.optimistic_executor import OptimisticMutationExecutor
from curriculum_sync.services.curriculum.progress_service import (
    ProgressService,
    ProgressStats,
    RoadmapEntry,
)
from curriculum_sync.services.curriculum.project_service import ProjectService
from curriculum_sync.services.curriculum.reconciler import CurriculumReconciler
from curriculum_sync.services.curriculum.sibling_orderer import SiblingOrderer
from curriculum_sync.services.curriculum.store import CurriculumStore

logger = structlog.get_logger(__name__)


def _new_id() -> str:
    return str(uuid.uuid4())


class CurriculumSession:
    def __init__(
        self,
        remote: IRemoteStore,
        saver: IAggregateSaver,
        accounts: IUserAccountService,
        sink: INotificationSink,
        store: Optional[CurriculumStore] = None,
        mapper: type = CurriculumMapper,
        watch_changes: Optional[bool] = None,
    ):
        self.store = store or CurriculumStore()
        self.remote = remote
        self.watch_changes = settings.RECONCILE_ON_CHANGE if watch_changes is None else watch_changes
        self.session_id: Optional[str] = None

        self.executor = OptimisticMutationExecutor(self.store, remote, mapper)
        self.planner = CascadePlanner(self.store, remote, mapper)
        self.orderer = SiblingOrderer(self.store, self.executor)
        self.propagator = CompletionPropagator(self.store, self.executor, accounts, sink)
        self.progress = ProgressService(self.store, remote, mapper)
        self.reconciler = CurriculumReconciler(self.store, remote, mapper)
        self.projects = ProjectService(self.store, saver, remote, mapper)

    # --- lifecycle ---

    @property
    def is_active(self) -> bool:
        return self.store.is_active

    async def start(self, user_id: str, load: bool = True) -> None:
        if not user_id:
            raise ValueError("user_id is required to start a session")
        if self.store.is_active and self.store.user_id != user_id:
            await self.end()

        self.store.bind(user_id)
        self.session_id = _new_id()
        set_session_context(self.session_id, user_id)
        bind_context(session_id=self.session_id, user_id=user_id)
        emit_event(logger, "curriculum_session_started", user_id=user_id)

        if load:
            await self.reconciler.reload()
        if self.watch_changes:
            await self.reconciler.start()

    async def end(self) -> None:
        if not self.store.is_active:
            return
        await self.reconciler.stop()
        user_id = self.store.user_id
        self.store.clear()
        emit_event(logger, "curriculum_session_ended", user_id=user_id)
        self.session_id = None
        set_session_context(None, None)

    async def reload(self) -> bool:
        self._require_active()
        return await self.reconciler.reload()

    def _require_active(self) -> None:
        if not self.store.is_active:
            raise SessionNotActiveError("start a curriculum session before mutating the curriculum")

    # --- shared mutation plumbing ---

    def _require_parent(self, entity: CurriculumEntity) -> None:
        if isinstance(entity, Course):
            if entity.folder_id:
                self.store.require(EntityKind.FOLDER, entity.folder_id)
        elif isinstance(entity, Stage):
            self.store.require(EntityKind.COURSE, entity.course_id)
        elif isinstance(entity, Module):
            self.store.require(EntityKind.STAGE, entity.stage_id)
        elif isinstance(entity, LeafContent):
            self.store.require(EntityKind.COURSE, entity.course_id)
            if entity.module_id:
                module = self.store.require(EntityKind.MODULE, entity.module_id)
                stage = self.store.require(EntityKind.STAGE, module.stage_id)
                if stage.course_id != entity.course_id:
                    raise ValueError(
                        f"module {module.id} does not belong to course {entity.course_id}"
                    )

    async def _create(self, model: type, fields: Dict[str, Any]) -> CurriculumEntity:
        self._require_active()
        data = dict(fields)
        data["id"] = data.get("id") or _new_id()
        draft = model.model_validate({**data, "order": 0})
        self._require_parent(draft)
        if "order" not in fields:
            data["order"] = self.orderer.next_order(draft.kind, draft.parent_key)
        entity = model.model_validate(data)
        return await self.executor.apply(entity, MutationKind.CREATE)

    async def _update(self, kind: EntityKind, entity_id: str, changes: Dict[str, Any]) -> CurriculumEntity:
        self._require_active()
        current = self.store.require(kind, entity_id)
        preview = self.executor.merge_changes(kind, entity_id, changes)
        self._require_parent(preview)
        if preview.parent_key != current.parent_key and "order" not in changes:
            changes = {**changes, "order": self.orderer.next_order(kind, preview.parent_key)}
        return await self.executor.update(kind, entity_id, changes)

    async def _reorder(self, kind: EntityKind, entity_id: str, direction: Direction) -> bool:
        self._require_active()
        return await self.orderer.reorder(kind, entity_id, Direction(direction))

    # --- folders ---

    async def add_folder(self, title: str, **fields: Any) -> Folder:
        return await self._create(Folder, {"title": title, **fields})

    async def update_folder(self, folder_id: str, **changes: Any) -> Folder:
        return await self._update(EntityKind.FOLDER, folder_id, changes)

    async def delete_folder(self, folder_id: str) -> None:
        self._require_active()
        await self.planner.delete_folder(folder_id)

    async def reorder_folder(self, folder_id: str, direction: Direction) -> bool:
        return await self._reorder(EntityKind.FOLDER, folder_id, direction)

    # --- courses ---

    async def add_course(self, title: str, folder_id: Optional[str] = None, **fields: Any) -> Course:
        return await self._create(Course, {"title": title, "folder_id": folder_id, **fields})

    async def update_course(self, course_id: str, **changes: Any) -> Course:
        return await self._update(EntityKind.COURSE, course_id, changes)

    async def move_course_to_folder(self, course_id: str, folder_id: Optional[str]) -> Course:
        return await self._update(EntityKind.COURSE, course_id, {"folder_id": folder_id})

    async def delete_course(self, course_id: str) -> CascadePlan:
        self._require_active()
        return await self.planner.delete_container(course_id, EntityKind.COURSE)

    async def reorder_course(self, course_id: str, direction: Direction) -> bool:
        return await self._reorder(EntityKind.COURSE, course_id, direction)

    # --- stages ---

    async def add_stage(self, course_id: str, title: str, **fields: Any) -> Stage:
        return await self._create(Stage, {"course_id": course_id, "title": title, **fields})

    async def update_stage(self, stage_id: str, **changes: Any) -> Stage:
        return await self._update(EntityKind.STAGE, stage_id, changes)

    async def delete_stage(self, stage_id: str) -> CascadePlan:
        self._require_active()
        return await self.planner.delete_container(stage_id, EntityKind.STAGE)

    async def reorder_stage(self, stage_id: str, direction: Direction) -> bool:
        return await self._reorder(EntityKind.STAGE, stage_id, direction)

    # --- modules ---

    async def add_module(self, stage_id: str, title: str, **fields: Any) -> Module:
        return await self._create(Module, {"stage_id": stage_id, "title": title, **fields})

    async def update_module(self, module_id: str, **changes: Any) -> Module:
        return await self._update(EntityKind.MODULE, module_id, changes)

    async def delete_module(self, module_id: str) -> CascadePlan:
        self._require_active()
        return await self.planner.delete_container(module_id, EntityKind.MODULE)

    async def reorder_module(self, module_id: str, direction: Direction) -> bool:
        return await self._reorder(EntityKind.MODULE, module_id, direction)

    # --- leaf content ---

    async def add_content(
        self,
        content_type: ContentType,
        course_id: str,
        title: str,
        module_id: Optional[str] = None,
        **fields: Any,
    ) -> LeafContent:
        model = LEAF_MODELS[ContentType(content_type)]
        return await self._create(
            model, {"course_id": course_id, "module_id": module_id, "title": title, **fields}
        )

    async def update_content(
        self, content_type: ContentType, content_id: str, **changes: Any
    ) -> LeafContent:
        return await self._update(ContentType(content_type).entity_kind, content_id, changes)

    async def delete_content(self, content_type: ContentType, content_id: str) -> CascadePlan:
        self._require_active()
        return await self.planner.delete_leaf(ContentType(content_type), content_id)

    async def reorder_content(
        self, content_type: ContentType, content_id: str, direction: Direction
    ) -> bool:
        return await self._reorder(ContentType(content_type).entity_kind, content_id, direction)

    # --- learner progress ---

    async def complete_content(self, content_type: ContentType, content_id: str) -> CompletionOutcome:
        self._require_active()
        return await self.propagator.complete_leaf(content_id, ContentType(content_type))

    async def reset_progress(self, kind: EntityKind, scope_id: str) -> int:
        self._require_active()
        return await self.progress.reset_progress(kind, scope_id)

    def progress_stats(self, kind: EntityKind, scope_id: str) -> ProgressStats:
        return self.progress.progress_stats(kind, scope_id)

    def roadmap(self, course_id: str, module_id: Optional[str] = None) -> List[RoadmapEntry]:
        if module_id:
            return self.progress.roadmap_entries((EntityKind.MODULE, module_id))
        return self.progress.roadmap_entries((EntityKind.COURSE, course_id))

    # --- projects ---

    async def save_project(self, project: ProjectBrief) -> ProjectBrief:
        self._require_active()
        return await self.projects.save_project(project)

    async def replace_project_tasks(self, project_id: str, tasks: Sequence[Task]) -> ProjectBrief:
        self._require_active()
        return await self.projects.replace_tasks(project_id, tasks)

    async def delete_project(self, project_id: str) -> None:
        self._require_active()
        await self.projects.delete_project(project_id)
