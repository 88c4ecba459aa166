from credhook_core.stores.changes import (
    CHANGE_ADDED,
    CHANGE_MODIFIED,
    CHANGE_REMOVED,
    RecordChange,
)
from credhook_core.stores.interfaces import (
    ChangeFeed,
    ChangeHandler,
    DestinationRegistry,
    DestinationSource,
    ErrorHandler,
    RecordLookup,
    Subscription,
)

__all__ = [
    "CHANGE_ADDED",
    "CHANGE_MODIFIED",
    "CHANGE_REMOVED",
    "ChangeFeed",
    "ChangeHandler",
    "DestinationRegistry",
    "DestinationSource",
    "ErrorHandler",
    "RecordChange",
    "RecordLookup",
    "Subscription",
]
