from typing import List, Optional, Sequence

import structlog

from curriculum_sync.domain.exceptions import EntityNotFoundError, MutationFailedError, RemoteStoreError
from curriculum_sync.domain.interfaces import IAggregateSaver, IRemoteStore
from curriculum_sync.domain.schemas import ProjectBrief, Task
from curriculum_sync.domain.types import EntityKind
from curriculum_sync.infrastructure.mappers.persistence_mapper import CurriculumMapper
from curriculum_sync.infrastructure.observability.event_logging import compact_error, emit_event
from curriculum_sync.services.curriculum.store import CurriculumStore

logger = structlog.get_logger(__name__)


class ProjectService:
    """
    Projects are saved as one aggregate: the header and the complete task list
    go through the atomic saver together, and the task list is always
    replaced, never diffed.
    """

    def __init__(
        self,
        store: CurriculumStore,
        saver: IAggregateSaver,
        remote: IRemoteStore,
        mapper: type = CurriculumMapper,
    ):
        self.store = store
        self.saver = saver
        self.remote = remote
        self.mapper = mapper

    def require(self, project_id: str) -> ProjectBrief:
        project = self.store.get_project(project_id)
        if project is None:
            raise EntityNotFoundError(EntityKind.PROJECT, project_id)
        return project

    async def save_project(self, project: ProjectBrief) -> ProjectBrief:
        project = _with_owned_tasks(project, project.id)
        previous = self.store.get_project(project.id)
        generation = self.store.generation
        self.store.install_project(project)

        header = self.mapper.to_remote(project, EntityKind.PROJECT).values
        task_rows = [self.mapper.to_remote(task, EntityKind.TASK).values for task in project.tasks]
        try:
            saved_id = await self.saver.save_aggregate_atomically(header, task_rows)
        except RemoteStoreError as exc:
            if self.store.is_current(generation):
                self._revert(project.id, previous)
            emit_event(
                logger,
                "project_save_rolled_back",
                level="error",
                project_id=project.id,
                tasks=len(project.tasks),
                error=compact_error(exc),
            )
            raise MutationFailedError(EntityKind.PROJECT, project.id, exc) from exc

        if saved_id and saved_id != project.id:
            draft_id = project.id
            project = _with_owned_tasks(project.model_copy(update={"id": saved_id}), saved_id)
            if self.store.is_current(generation):
                self.store.remove_project(draft_id)
                self.store.install_project(project)

        emit_event(logger, "project_saved", project_id=project.id, tasks=len(project.tasks))
        return project

    async def replace_tasks(self, project_id: str, tasks: Sequence[Task]) -> ProjectBrief:
        current = self.require(project_id)
        return await self.save_project(current.model_copy(update={"tasks": list(tasks)}))

    async def delete_project(self, project_id: str) -> None:
        previous = self.require(project_id)
        generation = self.store.generation
        self.store.remove_project(project_id)

        step = "tasks"
        try:
            await self.remote.delete(
                self.mapper.table_for(EntityKind.TASK), {"project_id": project_id}
            )
            step = "project"
            await self.remote.delete(self.mapper.table_for(EntityKind.PROJECT), {"id": project_id})
        except RemoteStoreError as exc:
            if self.store.is_current(generation):
                self.store.install_project(previous)
            emit_event(
                logger,
                "project_delete_rolled_back",
                level="error",
                project_id=project_id,
                step=step,
                error=compact_error(exc),
            )
            raise MutationFailedError(EntityKind.PROJECT, project_id, exc) from exc

        emit_event(logger, "project_deleted", project_id=project_id)

    def _revert(self, project_id: str, previous: Optional[ProjectBrief]) -> None:
        if previous is None:
            self.store.remove_project(project_id)
        else:
            self.store.install_project(previous)


def _with_owned_tasks(project: ProjectBrief, project_id: str) -> ProjectBrief:
    tasks: List[Task] = [
        task.model_copy(update={"project_id": project_id, "order": index})
        for index, task in enumerate(project.tasks)
    ]
    return project.model_copy(update={"tasks": tasks})
