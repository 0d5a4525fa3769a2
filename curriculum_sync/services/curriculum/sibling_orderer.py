import asyncio
from typing import Dict, List, Optional, Tuple

import structlog

from curriculum_sync.core.settings import settings
from curriculum_sync.domain.exceptions import RemoteStoreError, ReorderFailedError
from curriculum_sync.domain.schemas import CurriculumEntity, ParentKey
from curriculum_sync.domain.types import Direction, EntityKind, WriteMode
from curriculum_sync.infrastructure.observability.event_logging import compact_error, emit_event
from curriculum_sync.services.curriculum.optimistic_executor import OptimisticMutationExecutor
from curriculum_sync.services.curriculum.store import CurriculumSnapshot, CurriculumStore

logger = structlog.get_logger(__name__)

ScopeKey = Tuple[EntityKind, ParentKey]


def _scope_sort_key(entity: CurriculumEntity) -> Tuple[int, str]:
    return (entity.order, entity.id)


class SiblingOrderer:
    """
    Moves one entity up or down among the entities sharing its parent and its
    concrete kind, then renumbers that scope densely (0..n-1).

    The renumbered scope is installed in one step and persisted as a single
    batched upsert of the rows whose order changed. A remote failure restores
    every sibling, not only the moved one.
    """

    def __init__(
        self,
        store: CurriculumStore,
        executor: OptimisticMutationExecutor,
        serialize: Optional[bool] = None,
    ):
        self.store = store
        self.executor = executor
        self.serialize = settings.SERIALIZE_SIBLING_REORDERS if serialize is None else serialize
        self._locks: Dict[ScopeKey, asyncio.Lock] = {}

    def scope_of(self, entity: CurriculumEntity) -> ScopeKey:
        return (entity.kind, entity.parent_key)

    def siblings(self, kind: EntityKind, parent_key: ParentKey) -> List[CurriculumEntity]:
        return sorted(self.store.siblings(kind, parent_key), key=_scope_sort_key)

    def next_order(self, kind: EntityKind, parent_key: ParentKey) -> int:
        """Append position for a new entity in the given scope."""
        members = self.store.siblings(kind, parent_key)
        if not members:
            return 0
        return max(member.order for member in members) + 1

    def _lock_for(self, scope: ScopeKey) -> asyncio.Lock:
        lock = self._locks.get(scope)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[scope] = lock
        return lock

    async def reorder(self, kind: EntityKind, entity_id: str, direction: Direction) -> bool:
        """
        Returns False when the move would leave the scope bounds. That is a
        successful no-op, not an error.
        """
        target = self.store.require(kind, entity_id)
        scope = self.scope_of(target)
        if not self.serialize:
            return await self._reorder(kind, entity_id, direction)
        async with self._lock_for(scope):
            return await self._reorder(kind, entity_id, direction)

    async def _reorder(self, kind: EntityKind, entity_id: str, direction: Direction) -> bool:
        # Re-read inside the lock: a previous reorder may have renumbered the scope.
        target = self.store.require(kind, entity_id)
        members = self.siblings(kind, target.parent_key)
        index = next(i for i, member in enumerate(members) if member.id == entity_id)
        new_index = index - 1 if direction is Direction.UP else index + 1

        if new_index < 0 or new_index >= len(members):
            emit_event(
                logger,
                "sibling_reorder_noop",
                level="debug",
                entity_kind=kind.value,
                entity_id=entity_id,
                direction=direction.value,
                siblings=len(members),
            )
            return False

        snapshot = CurriculumSnapshot(entities=list(members))
        moved = members.pop(index)
        members.insert(new_index, moved)

        renumbered: List[CurriculumEntity] = []
        changed: List[CurriculumEntity] = []
        for position, member in enumerate(members):
            if member.order != position:
                member = member.model_copy(update={"order": position})
                changed.append(member)
            renumbered.append(member)

        generation = self.store.generation
        self.store.install_many(renumbered)
        if not changed:
            return True

        rows = [self.executor.mapper.to_remote(member, kind) for member in changed]
        try:
            await self.executor.send(kind, rows, WriteMode.UPSERT)
        except RemoteStoreError as exc:
            if self.store.is_current(generation):
                self.store.restore(snapshot)
            emit_event(
                logger,
                "sibling_reorder_rolled_back",
                level="error",
                entity_kind=kind.value,
                entity_id=entity_id,
                direction=direction.value,
                scope_size=len(members),
                error_kind=exc.kind.value,
                error=compact_error(exc),
            )
            raise ReorderFailedError(kind, entity_id, exc) from exc

        emit_event(
            logger,
            "sibling_reorder_persisted",
            entity_kind=kind.value,
            entity_id=entity_id,
            direction=direction.value,
            changed=len(changed),
        )
        return True
