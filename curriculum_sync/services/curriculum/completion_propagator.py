"""
Completion Propagator

Marks one leaf complete for the session user and re-derives module, stage and
course completion from the store. Nothing above the leaf level is ever
persisted: every check is a fresh scan of the current collections and the
completion sets, so the answer always matches what the learner sees.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set, Tuple

import structlog

from curriculum_sync.domain.exceptions import (
    CompletionFailedError,
    RemoteStoreError,
    SessionNotActiveError,
)
from curriculum_sync.domain.interfaces import INotificationSink, IUserAccountService
from curriculum_sync.domain.schemas import CompletionRecord, LeafContent
from curriculum_sync.domain.types import CompletionEventKind, ContentType, EntityKind, WriteMode
from curriculum_sync.infrastructure.observability.event_logging import compact_error, emit_event
from curriculum_sync.services.curriculum.optimistic_executor import OptimisticMutationExecutor
from curriculum_sync.services.curriculum.store import CurriculumStore

logger = structlog.get_logger(__name__)

COMPLETION_CONFLICT_COLUMNS = "student_id,content_type,content_id"


@dataclass
class CompletionEvent:
    kind: CompletionEventKind
    entity_id: str
    title: str = ""


@dataclass
class CompletionOutcome:
    leaf_id: str
    content_type: ContentType
    recorded: bool
    events: List[CompletionEvent] = field(default_factory=list)

    @property
    def event_kinds(self) -> List[CompletionEventKind]:
        return [event.kind for event in self.events]


class CompletionPropagator:
    def __init__(
        self,
        store: CurriculumStore,
        executor: OptimisticMutationExecutor,
        accounts: IUserAccountService,
        sink: INotificationSink,
    ):
        self.store = store
        self.executor = executor
        self.accounts = accounts
        self.sink = sink
        self._in_flight: Set[Tuple[str, ContentType, str]] = set()

    # --- derived predicates ---

    def is_module_complete(self, module_id: str) -> bool:
        leaves = self.store.leaves_for_module(module_id)
        if not leaves:
            return False
        return all(self.store.is_completed(leaf.content_type, leaf.id) for leaf in leaves)

    def is_stage_complete(self, stage_id: str) -> bool:
        modules = self.store.modules_for_stage(stage_id)
        if not modules:
            return False
        return all(self.is_module_complete(module.id) for module in modules)

    def is_course_complete(self, course_id: str) -> bool:
        stages = self.store.stages_for_course(course_id)
        if not stages:
            return False
        return all(self.is_stage_complete(stage.id) for stage in stages)

    # --- completion ---

    async def complete_leaf(
        self, leaf_id: str, content_type: ContentType, user_id: Optional[str] = None
    ) -> CompletionOutcome:
        """
        Idempotent: an existing completion, or one already being written for
        the same leaf, makes this call a no-op with `recorded=False`.
        """
        user = self._resolve_user(user_id)
        leaf: LeafContent = self.store.require(content_type.entity_kind, leaf_id)
        key = (user, content_type, leaf_id)

        if self.store.is_completed(content_type, leaf_id) or key in self._in_flight:
            emit_event(
                logger,
                "completion_already_recorded",
                level="debug",
                content_type=content_type.value,
                leaf_id=leaf_id,
            )
            return CompletionOutcome(leaf_id=leaf_id, content_type=content_type, recorded=False)

        generation = self.store.generation
        self._in_flight.add(key)
        try:
            await self._write_record(user, leaf)
        finally:
            self._in_flight.discard(key)

        outcome = CompletionOutcome(leaf_id=leaf_id, content_type=content_type, recorded=True)
        if not self.store.is_current(generation):
            # The record is stored remotely; the session that asked for it is gone.
            emit_event(
                logger,
                "completion_session_ended",
                level="warning",
                content_type=content_type.value,
                leaf_id=leaf_id,
            )
            return outcome

        self.store.mark_completed(content_type, leaf_id)
        await self._award(user, leaf.xp_reward, leaf.dowd_bucks_reward, leaf.kind, leaf_id)
        await self._notify(
            outcome,
            user,
            CompletionEvent(CompletionEventKind.CONTENT_COMPLETED, leaf_id, leaf.title),
            course_id=leaf.course_id,
            content_type=content_type.value,
        )

        module = self.store.get(EntityKind.MODULE, leaf.module_id) if leaf.module_id else None
        if module is not None and self.is_module_complete(module.id):
            await self._award(
                user, module.xp_reward, module.dowd_bucks_reward, EntityKind.MODULE, module.id
            )
            await self._notify(
                outcome,
                user,
                CompletionEvent(CompletionEventKind.MODULE_COMPLETED, module.id, module.title),
                course_id=leaf.course_id,
            )

            stage = self.store.stage_of_module(leaf.module_id)
            if stage is not None and self.is_stage_complete(stage.id):
                await self._award(
                    user, stage.xp_reward, stage.dowd_bucks_reward, EntityKind.STAGE, stage.id
                )
                await self._notify(
                    outcome,
                    user,
                    CompletionEvent(CompletionEventKind.STAGE_COMPLETED, stage.id, stage.title),
                    course_id=leaf.course_id,
                )

        course = self.store.get(EntityKind.COURSE, leaf.course_id)
        if course is not None and self.is_course_complete(course.id):
            await self._notify(
                outcome,
                user,
                CompletionEvent(CompletionEventKind.COURSE_COMPLETED, course.id, course.title),
                course_id=course.id,
            )

        emit_event(
            logger,
            "completion_recorded",
            content_type=content_type.value,
            leaf_id=leaf_id,
            events=[kind.value for kind in outcome.event_kinds],
        )
        return outcome

    def _resolve_user(self, user_id: Optional[str]) -> str:
        if not self.store.is_active:
            raise SessionNotActiveError("no learner session is active")
        if user_id is not None and user_id != self.store.user_id:
            raise ValueError("completions can only be recorded for the session user")
        return self.store.user_id

    async def _write_record(self, user_id: str, leaf: LeafContent) -> None:
        record = CompletionRecord(
            user_id=user_id,
            content_id=leaf.id,
            content_type=leaf.content_type,
            completed_at=datetime.now(timezone.utc).isoformat(),
            xp_awarded=leaf.xp_reward,
            dowd_bucks_awarded=leaf.dowd_bucks_reward,
        )
        row = self.executor.mapper.to_remote(record, EntityKind.COMPLETION)
        try:
            await self.executor.send(
                EntityKind.COMPLETION,
                [row],
                WriteMode.UPSERT,
                on_conflict=COMPLETION_CONFLICT_COLUMNS,
            )
        except RemoteStoreError as exc:
            emit_event(
                logger,
                "completion_record_failed",
                level="error",
                content_type=leaf.content_type.value,
                leaf_id=leaf.id,
                error_kind=exc.kind.value,
                error=compact_error(exc),
            )
            raise CompletionFailedError(leaf.kind, leaf.id, exc) from exc

    async def _award(
        self, user_id: str, xp: int, currency: int, source_kind: EntityKind, source_id: str
    ) -> None:
        if xp <= 0 and currency <= 0:
            return
        try:
            await self.accounts.award_points(user_id, xp, currency)
        except Exception as exc:
            emit_event(
                logger,
                "reward_award_failed",
                level="warning",
                source_kind=source_kind.value,
                source_id=source_id,
                xp=xp,
                currency=currency,
                error=compact_error(exc),
            )

    async def _notify(
        self,
        outcome: CompletionOutcome,
        user_id: str,
        event: CompletionEvent,
        **extra: Any,
    ) -> None:
        outcome.events.append(event)
        payload: Dict[str, Any] = {
            "user_id": user_id,
            "entity_id": event.entity_id,
            "title": event.title,
            **extra,
        }
        try:
            await self.sink.emit(event.kind, payload)
        except Exception as exc:
            emit_event(
                logger,
                "completion_notification_failed",
                level="warning",
                event_kind=event.kind.value,
                entity_id=event.entity_id,
                error=compact_error(exc),
            )
