import asyncio
import inspect
from typing import Any, Callable, List, Optional, Sequence, Set

import structlog
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from curriculum_sync.core.settings import settings
from curriculum_sync.domain.exceptions import TransportError
from curriculum_sync.domain.interfaces import (
    ChangeCallback,
    Filters,
    IRemoteStore,
    ISubscription,
    RemoteRowData,
)
from curriculum_sync.infrastructure.observability.event_logging import compact_error, emit_event
from curriculum_sync.infrastructure.supabase.client import (
    get_async_supabase_client,
    reset_async_supabase_client,
)
from curriculum_sync.infrastructure.supabase.errors import classify_remote_error

logger = structlog.get_logger(__name__)


def apply_filters(query: Any, filters: Optional[Filters]) -> Any:
    for column, value in (filters or {}).items():
        if isinstance(value, (list, tuple, set, frozenset)):
            query = query.in_(column, list(value))
        elif value is None:
            query = query.is_(column, "null")
        else:
            query = query.eq(column, value)
    return query


class SupabaseSubscription(ISubscription):
    def __init__(self, client: Any, channel: Any, table: str):
        self._client = client
        self._channel = channel
        self.table = table

    async def unsubscribe(self) -> None:
        try:
            await self._client.remove_channel(self._channel)
        except Exception as exc:
            emit_event(
                logger,
                "realtime_unsubscribe_failed",
                level="warning",
                table=self.table,
                error=compact_error(exc),
            )


class SupabaseRemoteStore(IRemoteStore):
    """
    IRemoteStore over the async Supabase client.

    Transport failures are retried with exponential backoff; every other
    failure is classified once and raised as a RemoteStoreError subclass.
    """

    def __init__(
        self,
        client: Any = None,
        max_transport_retries: Optional[int] = None,
        base_delay_seconds: Optional[float] = None,
    ):
        self._client = client
        self._owns_client = client is None
        self.max_transport_retries = (
            settings.REMOTE_TRANSPORT_MAX_RETRIES
            if max_transport_retries is None
            else max(0, int(max_transport_retries))
        )
        self.base_delay_seconds = (
            settings.REMOTE_TRANSPORT_BASE_DELAY_SECONDS
            if base_delay_seconds is None
            else max(0.0, float(base_delay_seconds))
        )
        self._callback_tasks: Set[asyncio.Task] = set()

    async def get_client(self):
        if self._client is None:
            self._client = await get_async_supabase_client()
        return self._client

    async def _execute(self, table: str, operation: str, build: Callable[[Any], Any]) -> Any:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_transport_retries + 1),
            wait=wait_exponential(multiplier=self.base_delay_seconds, max=3.0),
            retry=retry_if_exception_type(TransportError),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                try:
                    client = await self.get_client()
                    return await build(client).execute()
                except Exception as exc:
                    classified = classify_remote_error(exc, table=table)
                    if isinstance(classified, TransportError):
                        emit_event(
                            logger,
                            "remote_transport_error",
                            level="warning",
                            table=table,
                            operation=operation,
                            attempt=attempt.retry_state.attempt_number,
                            max_attempts=self.max_transport_retries + 1,
                            error=compact_error(exc),
                        )
                        if self._owns_client:
                            reset_async_supabase_client()
                            self._client = None
                    if classified is exc:
                        raise
                    raise classified from exc
        return None

    async def select(
        self,
        table: str,
        filters: Optional[Filters] = None,
        columns: str = "*",
        limit: Optional[int] = None,
    ) -> List[RemoteRowData]:
        def build(client):
            query = apply_filters(client.table(table).select(columns), filters)
            if limit is not None:
                query = query.limit(limit)
            return query

        response = await self._execute(table, "select", build)
        data = getattr(response, "data", None)
        return data if isinstance(data, list) else []

    async def insert(self, table: str, rows: Sequence[RemoteRowData]) -> List[RemoteRowData]:
        if not rows:
            return []
        response = await self._execute(
            table, "insert", lambda client: client.table(table).insert(list(rows))
        )
        data = getattr(response, "data", None)
        return data if isinstance(data, list) else []

    async def update(self, table: str, patch: RemoteRowData, filters: Filters) -> None:
        await self._execute(
            table,
            "update",
            lambda client: apply_filters(client.table(table).update(dict(patch)), filters),
        )

    async def upsert(
        self, table: str, rows: Sequence[RemoteRowData], on_conflict: str = "id"
    ) -> None:
        if not rows:
            return
        await self._execute(
            table,
            "upsert",
            lambda client: client.table(table).upsert(list(rows), on_conflict=on_conflict),
        )

    async def delete(self, table: str, filters: Filters) -> None:
        if not filters:
            raise ValueError(f"refusing unfiltered delete on {table}")
        await self._execute(
            table,
            "delete",
            lambda client: apply_filters(client.table(table).delete(), filters),
        )

    async def subscribe(self, table: str, on_change: ChangeCallback) -> ISubscription:
        def _callback(payload: Any) -> None:
            result = on_change(payload if isinstance(payload, dict) else {"payload": payload})
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._callback_tasks.add(task)
                task.add_done_callback(self._callback_tasks.discard)

        try:
            client = await self.get_client()
            channel = client.channel(f"{settings.REALTIME_CHANNEL_PREFIX}-{table}")
            channel.on_postgres_changes(event="*", schema="public", table=table, callback=_callback)
            await channel.subscribe()
        except Exception as exc:
            raise TransportError(f"realtime subscribe failed: {exc}", table=table) from exc

        emit_event(logger, "realtime_subscribed", table=table)
        return SupabaseSubscription(client, channel, table)
