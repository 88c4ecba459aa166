from __future__ import annotations

from typing import Any, Callable, Protocol, Sequence

from credhook_core.stores.changes import RecordChange
from credhook_core.webhooks.types import (
    EventToggles,
    ThrottleSettings,
    WebhookDestination,
)

ChangeHandler = Callable[[Sequence[RecordChange]], None]
ErrorHandler = Callable[[BaseException], None]


class DestinationSource(Protocol):
    async def load_destinations(self) -> list[WebhookDestination]:
        ...


class DestinationRegistry(DestinationSource, Protocol):
    async def register_destination(
        self,
        *,
        name: str,
        url: str,
        secret: str | None,
        enabled: bool,
        events: EventToggles,
        throttle: ThrottleSettings | None = None,
    ) -> WebhookDestination:
        ...


class RecordLookup(Protocol):
    async def get_record(
        self,
        collection: str,
        record_id: str,
    ) -> dict[str, Any] | None:
        ...


class Subscription(Protocol):
    @property
    def is_active(self) -> bool:
        ...

    def unsubscribe(self) -> None:
        ...


class ChangeFeed(Protocol):
    def subscribe(
        self,
        collection: str,
        on_changes: ChangeHandler,
        on_error: ErrorHandler,
    ) -> Subscription:
        """Start a live subscription.

        ``on_changes`` may be called from a thread owned by the backend; the
        first batch carries every existing record as an addition.
        """
        ...
