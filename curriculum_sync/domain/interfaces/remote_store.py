from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Union

RemoteRowData = Dict[str, Any]
# column -> value; list/tuple/set/frozenset values mean membership ("in").
Filters = Mapping[str, Any]
ChangeCallback = Callable[[Dict[str, Any]], Union[None, Awaitable[None]]]


class ISubscription(ABC):
    @abstractmethod
    async def unsubscribe(self) -> None:
        pass


class IRemoteStore(ABC):
    """
    Table-oriented remote store. Every method raises a RemoteStoreError subclass on failure.
    """

    @abstractmethod
    async def select(
        self,
        table: str,
        filters: Optional[Filters] = None,
        columns: str = "*",
        limit: Optional[int] = None,
    ) -> List[RemoteRowData]:
        pass

    @abstractmethod
    async def insert(self, table: str, rows: Sequence[RemoteRowData]) -> List[RemoteRowData]:
        pass

    @abstractmethod
    async def update(self, table: str, patch: RemoteRowData, filters: Filters) -> None:
        pass

    @abstractmethod
    async def upsert(
        self, table: str, rows: Sequence[RemoteRowData], on_conflict: str = "id"
    ) -> None:
        pass

    @abstractmethod
    async def delete(self, table: str, filters: Filters) -> None:
        pass

    @abstractmethod
    async def subscribe(self, table: str, on_change: ChangeCallback) -> ISubscription:
        pass
