from datetime import datetime, timezone
from typing import Any, Dict, Optional, Sequence

import structlog

from curriculum_sync.core.settings import settings
from curriculum_sync.domain.exceptions import RemoteStoreError
from curriculum_sync.domain.interfaces import (
    IAggregateSaver,
    INotificationSink,
    IRemoteStore,
    IUserAccountService,
)
from curriculum_sync.domain.types import CompletionEventKind
from curriculum_sync.infrastructure.mappers.persistence_mapper import (
    NOTIFICATIONS_TABLE,
    PROFILES_TABLE,
)
from curriculum_sync.infrastructure.observability.event_logging import compact_error, emit_event
from curriculum_sync.infrastructure.supabase.client import get_async_supabase_client
from curriculum_sync.infrastructure.supabase.errors import classify_remote_error

logger = structlog.get_logger(__name__)


class SupabaseAggregateSaver(IAggregateSaver):
    """
    Calls the server-side RPC that replaces a project and its task list in one transaction.
    """

    def __init__(self, client: Any = None, rpc_name: Optional[str] = None):
        self._client = client
        self.rpc_name = rpc_name or settings.AGGREGATE_SAVE_RPC

    async def get_client(self):
        if self._client is None:
            self._client = await get_async_supabase_client()
        return self._client

    async def save_aggregate_atomically(
        self, header: Dict[str, Any], child_rows: Sequence[Dict[str, Any]]
    ) -> str:
        try:
            client = await self.get_client()
            response = await client.rpc(
                self.rpc_name, {"p_project": dict(header), "p_tasks": list(child_rows)}
            ).execute()
        except Exception as exc:
            raise classify_remote_error(exc, table=self.rpc_name) from exc

        data = getattr(response, "data", None)
        if isinstance(data, list) and data:
            data = data[0]
        if isinstance(data, dict):
            data = data.get("id") or data.get(self.rpc_name)
        return str(data or header.get("id"))


class SupabaseUserAccountService(IUserAccountService):
    """
    Awards XP and DowdBucks by incrementing the learner's profile counters.
    """

    def __init__(self, remote: IRemoteStore):
        self.remote = remote

    async def award_points(self, user_id: str, xp: int, currency: int) -> None:
        if xp <= 0 and currency <= 0:
            return
        rows = await self.remote.select(
            PROFILES_TABLE, {"id": user_id}, columns="id,xp,balance", limit=1
        )
        if not rows:
            raise RemoteStoreError(f"profile {user_id} not found", table=PROFILES_TABLE)
        current = rows[0]
        await self.remote.update(
            PROFILES_TABLE,
            {
                "xp": int(current.get("xp") or 0) + int(xp),
                "balance": int(current.get("balance") or 0) + int(currency),
            },
            {"id": user_id},
        )
        emit_event(logger, "points_awarded", user_id=user_id, xp=xp, currency=currency)


_TITLES = {
    CompletionEventKind.CONTENT_COMPLETED: "Content completed",
    CompletionEventKind.MODULE_COMPLETED: "Module completed!",
    CompletionEventKind.STAGE_COMPLETED: "Stage completed!",
    CompletionEventKind.COURSE_COMPLETED: "Course completed!",
}


class SupabaseNotificationSink(INotificationSink):
    """
    Logs every completion event; hierarchy-level completions are also persisted
    as user-facing rows in the notifications table.
    """

    def __init__(self, remote: IRemoteStore, persist_content_events: bool = False):
        self.remote = remote
        self.persist_content_events = persist_content_events

    async def emit(self, event_kind: CompletionEventKind, payload: Dict[str, Any]) -> None:
        emit_event(logger, f"celebration_{event_kind.value}", **payload)
        if event_kind is CompletionEventKind.CONTENT_COMPLETED and not self.persist_content_events:
            return

        user_id = payload.get("user_id")
        if not user_id:
            return
        title = payload.get("title") or ""
        row = {
            "user_id": user_id,
            "title": _TITLES[event_kind],
            "message": f"You completed {title}".strip(),
            "type": event_kind.value,
            "link": payload.get("entity_id"),
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        try:
            await self.remote.insert(NOTIFICATIONS_TABLE, [row])
        except RemoteStoreError as exc:
            emit_event(
                logger,
                "notification_persist_failed",
                level="warning",
                event_kind=event_kind.value,
                error=compact_error(exc),
            )
