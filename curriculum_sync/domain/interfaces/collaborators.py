from abc import ABC, abstractmethod
from typing import Any, Dict, Sequence

from curriculum_sync.domain.types import CompletionEventKind


class IAggregateSaver(ABC):
    """
    Persists a container row and its full child list as one atomic unit.
    """

    @abstractmethod
    async def save_aggregate_atomically(
        self, header: Dict[str, Any], child_rows: Sequence[Dict[str, Any]]
    ) -> str:
        pass


class IUserAccountService(ABC):
    @abstractmethod
    async def award_points(self, user_id: str, xp: int, currency: int) -> None:
        pass


class INotificationSink(ABC):
    """
    Fire-and-forget sink for completion events and user-facing notifications.
    """

    @abstractmethod
    async def emit(self, event_kind: CompletionEventKind, payload: Dict[str, Any]) -> None:
        pass
