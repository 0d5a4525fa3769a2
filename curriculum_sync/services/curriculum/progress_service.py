from dataclasses import dataclass
from typing import List

import structlog

from curriculum_sync.domain.exceptions import (
    MutationFailedError,
    RemoteStoreError,
    SessionNotActiveError,
)
from curriculum_sync.domain.interfaces import IRemoteStore
from curriculum_sync.domain.schemas import LeafContent, ParentKey
from curriculum_sync.domain.types import EntityKind, LEAF_KINDS
from curriculum_sync.infrastructure.mappers.persistence_mapper import CurriculumMapper
from curriculum_sync.infrastructure.observability.event_logging import compact_error, emit_event
from curriculum_sync.services.curriculum.store import CurriculumStore

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ProgressStats:
    total_items: int
    completed_items: int
    percentage_complete: int
    xp_earned: int
    dowd_bucks_earned: int


@dataclass(frozen=True)
class RoadmapEntry:
    item: LeafContent
    completed: bool
    locked: bool


class ProgressService:
    """
    Learner-facing progress views, always derived from the store, plus the
    bulk reset of the session user's completion records for a scope.
    """

    def __init__(self, store: CurriculumStore, remote: IRemoteStore, mapper: type = CurriculumMapper):
        self.store = store
        self.remote = remote
        self.mapper = mapper

    def leaves_in_scope(self, kind: EntityKind, scope_id: str) -> List[LeafContent]:
        if kind is EntityKind.COURSE:
            self.store.require(kind, scope_id)
            return self.store.leaves_for_course(scope_id)
        if kind is EntityKind.STAGE:
            self.store.require(kind, scope_id)
            leaves: List[LeafContent] = []
            for module in self.store.modules_for_stage(scope_id):
                leaves.extend(self.store.leaves_for_module(module.id))
            return leaves
        if kind is EntityKind.MODULE:
            self.store.require(kind, scope_id)
            return self.store.leaves_for_module(scope_id)
        if kind in LEAF_KINDS:
            return [self.store.require(kind, scope_id)]
        raise ValueError(f"{kind.value} has no learner progress")

    def progress_stats(self, kind: EntityKind, scope_id: str) -> ProgressStats:
        leaves = self.leaves_in_scope(kind, scope_id)
        done = [leaf for leaf in leaves if self.store.is_completed(leaf.content_type, leaf.id)]
        total = len(leaves)
        percentage = round(len(done) * 100 / total) if total else 0
        return ProgressStats(
            total_items=total,
            completed_items=len(done),
            percentage_complete=percentage,
            xp_earned=sum(leaf.xp_reward for leaf in done),
            dowd_bucks_earned=sum(leaf.dowd_bucks_reward for leaf in done),
        )

    def roadmap_entries(self, parent_key: ParentKey) -> List[RoadmapEntry]:
        """
        Combined leaf roadmap under one module or course. Each item stays
        locked until the item before it is completed; the first is always open.
        """
        entries: List[RoadmapEntry] = []
        previous_done = True
        for item in self.store.roadmap(parent_key):
            done = self.store.is_completed(item.content_type, item.id)
            entries.append(RoadmapEntry(item=item, completed=done, locked=not previous_done))
            previous_done = done
        return entries

    async def reset_progress(self, kind: EntityKind, scope_id: str) -> int:
        """
        Deletes the session user's completion records under the scope.
        Returns how many completions were cleared.
        """
        if not self.store.is_active:
            raise SessionNotActiveError("no learner session is active")

        completed = [
            leaf
            for leaf in self.leaves_in_scope(kind, scope_id)
            if self.store.is_completed(leaf.content_type, leaf.id)
        ]
        if not completed:
            return 0

        generation = self.store.generation
        for leaf in completed:
            self.store.unmark_completed(leaf.content_type, leaf.id)

        try:
            await self.remote.delete(
                self.mapper.table_for(EntityKind.COMPLETION),
                {
                    self.mapper.remote_column(EntityKind.COMPLETION, "user_id"): self.store.user_id,
                    "content_id": [leaf.id for leaf in completed],
                },
            )
        except RemoteStoreError as exc:
            if self.store.is_current(generation):
                for leaf in completed:
                    self.store.mark_completed(leaf.content_type, leaf.id)
            emit_event(
                logger,
                "progress_reset_rolled_back",
                level="error",
                scope_kind=kind.value,
                scope_id=scope_id,
                error=compact_error(exc),
            )
            raise MutationFailedError(kind, scope_id, exc) from exc

        emit_event(
            logger,
            "progress_reset",
            scope_kind=kind.value,
            scope_id=scope_id,
            cleared=len(completed),
        )
        return len(completed)
