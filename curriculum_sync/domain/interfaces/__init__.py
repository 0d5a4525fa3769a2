from curriculum_sync.domain.interfaces.collaborators import (
    IAggregateSaver,
    INotificationSink,
    IUserAccountService,
)
from curriculum_sync.domain.interfaces.remote_store import (
    ChangeCallback,
    Filters,
    IRemoteStore,
    ISubscription,
    RemoteRowData,
)

__all__ = [
    "ChangeCallback",
    "Filters",
    "IAggregateSaver",
    "INotificationSink",
    "IRemoteStore",
    "ISubscription",
    "IUserAccountService",
    "RemoteRowData",
]
