"""
Curriculum Container - curriculum-sync Infrastructure Layer

Centralizes construction of the Supabase-backed collaborators and of
curriculum sessions wired to them.
"""

from typing import Any, Optional

from curriculum_sync.application.curriculum_session import CurriculumSession
from curriculum_sync.infrastructure.supabase.collaborators import (
    SupabaseAggregateSaver,
    SupabaseNotificationSink,
    SupabaseUserAccountService,
)
from curriculum_sync.infrastructure.supabase.remote_store import SupabaseRemoteStore


class CurriculumContainer:
    """
    IoC Container for the curriculum sync engine.
    """

    def __init__(self, client: Any = None):
        # Lazy initialization of collaborators
        self._client = client
        self._remote_store = None
        self._aggregate_saver = None
        self._account_service = None
        self._notification_sink = None

    @property
    def remote_store(self) -> SupabaseRemoteStore:
        if self._remote_store is None:
            self._remote_store = SupabaseRemoteStore(client=self._client)
        return self._remote_store

    @property
    def aggregate_saver(self) -> SupabaseAggregateSaver:
        if self._aggregate_saver is None:
            self._aggregate_saver = SupabaseAggregateSaver(client=self._client)
        return self._aggregate_saver

    @property
    def account_service(self) -> SupabaseUserAccountService:
        if self._account_service is None:
            self._account_service = SupabaseUserAccountService(self.remote_store)
        return self._account_service

    @property
    def notification_sink(self) -> SupabaseNotificationSink:
        if self._notification_sink is None:
            self._notification_sink = SupabaseNotificationSink(self.remote_store)
        return self._notification_sink

    def build_session(self, watch_changes: Optional[bool] = None) -> CurriculumSession:
        return CurriculumSession(
            remote=self.remote_store,
            saver=self.aggregate_saver,
            accounts=self.account_service,
            sink=self.notification_sink,
            watch_changes=watch_changes,
        )
