from typing import Any, List, Mapping, Optional, Sequence

import structlog

from curriculum_sync.core.settings import settings
from curriculum_sync.domain.exceptions import (
    EntityNotFoundError,
    MutationFailedError,
    RemoteStoreError,
    SchemaDriftError,
)
from curriculum_sync.domain.interfaces import IRemoteStore
from curriculum_sync.domain.schemas import CurriculumEntity
from curriculum_sync.domain.types import EntityKind, MutationKind, WriteMode
from curriculum_sync.infrastructure.mappers.persistence_mapper import CurriculumMapper, RemoteRow
from curriculum_sync.infrastructure.observability.event_logging import compact_error, emit_event
from curriculum_sync.services.curriculum.store import CurriculumStore

logger = structlog.get_logger(__name__)


class OptimisticMutationExecutor:
    """
    Applies one create/update to the store immediately, then confirms it remotely.

    Schema drift (the remote lacks a column the payload names) is healed by
    stripping that optional column and retrying, up to `max_attempts` writes in
    total. Any other failure, or exhausting the attempts, reverts the store to
    the entity's pre-mutation value and raises MutationFailedError.
    """

    def __init__(
        self,
        store: CurriculumStore,
        remote: IRemoteStore,
        mapper: type = CurriculumMapper,
        max_attempts: Optional[int] = None,
    ):
        self.store = store
        self.remote = remote
        self.mapper = mapper
        self.max_attempts = max(1, int(max_attempts or settings.MUTATION_MAX_ATTEMPTS))

    async def apply(self, entity: CurriculumEntity, mutation: MutationKind) -> CurriculumEntity:
        kind = entity.kind
        previous = self.store.get(kind, entity.id)
        if mutation is MutationKind.CREATE and previous is not None:
            raise ValueError(f"{kind.value} {entity.id} already exists")
        if mutation is MutationKind.UPDATE and previous is None:
            raise EntityNotFoundError(kind, entity.id)

        generation = self.store.generation
        self.store.install(entity)

        mode = WriteMode.INSERT if mutation is MutationKind.CREATE else WriteMode.UPDATE
        try:
            await self.send(kind, [self.mapper.to_remote(entity, kind)], mode)
        except RemoteStoreError as exc:
            if self.store.is_current(generation):
                self._revert(kind, entity.id, previous)
            emit_event(
                logger,
                "optimistic_mutation_rolled_back",
                level="error",
                entity_kind=kind.value,
                entity_id=entity.id,
                mutation=mutation.value,
                error_kind=exc.kind.value,
                error=compact_error(exc),
            )
            raise MutationFailedError(kind, entity.id, exc) from exc

        emit_event(
            logger,
            "optimistic_mutation_confirmed",
            level="debug",
            entity_kind=kind.value,
            entity_id=entity.id,
            mutation=mutation.value,
        )
        return entity

    async def create(self, entity: CurriculumEntity) -> CurriculumEntity:
        return await self.apply(entity, MutationKind.CREATE)

    def merge_changes(
        self, kind: EntityKind, entity_id: str, changes: Mapping[str, Any]
    ) -> CurriculumEntity:
        """Validated copy of the stored entity with `changes` applied; the store is untouched."""
        current = self.store.require(kind, entity_id)
        if "id" in changes and changes["id"] != entity_id:
            raise ValueError("entity id cannot be changed by an update")
        return type(current).model_validate({**current.model_dump(), **dict(changes)})

    async def update(
        self, kind: EntityKind, entity_id: str, changes: Mapping[str, Any]
    ) -> CurriculumEntity:
        return await self.apply(self.merge_changes(kind, entity_id, changes), MutationKind.UPDATE)

    async def send(
        self,
        kind: EntityKind,
        rows: Sequence[RemoteRow],
        mode: WriteMode,
        on_conflict: str = "id",
    ) -> List[RemoteRow]:
        """
        Drift-tolerant remote write shared by every component. Returns the rows
        as finally persisted (minus any stripped columns).
        """
        pending = list(rows)
        for attempt in range(1, self.max_attempts + 1):
            try:
                await self._write(kind, pending, mode, on_conflict)
                return pending
            except SchemaDriftError as exc:
                strippable = any(row.can_strip(exc.column) for row in pending)
                if not strippable or attempt >= self.max_attempts:
                    emit_event(
                        logger,
                        "schema_drift_unrecoverable",
                        level="error",
                        entity_kind=kind.value,
                        column=exc.column,
                        attempt=attempt,
                        max_attempts=self.max_attempts,
                    )
                    raise
                pending = [
                    row.strip(exc.column) if row.can_strip(exc.column) else row for row in pending
                ]
                emit_event(
                    logger,
                    "schema_drift_column_stripped",
                    level="warning",
                    entity_kind=kind.value,
                    column=exc.column,
                    attempt=attempt,
                )
        return pending

    async def _write(
        self, kind: EntityKind, rows: Sequence[RemoteRow], mode: WriteMode, on_conflict: str
    ) -> None:
        table = self.mapper.table_for(kind)
        if mode is WriteMode.INSERT:
            await self.remote.insert(table, [row.values for row in rows])
        elif mode is WriteMode.UPSERT:
            await self.remote.upsert(table, [row.values for row in rows], on_conflict=on_conflict)
        else:
            for row in rows:
                patch = {k: v for k, v in row.values.items() if k != "id"}
                await self.remote.update(table, patch, {"id": row.values["id"]})

    def _revert(
        self, kind: EntityKind, entity_id: str, previous: Optional[CurriculumEntity]
    ) -> None:
        if previous is None:
            self.store.remove(kind, entity_id)
        else:
            self.store.install(previous)
