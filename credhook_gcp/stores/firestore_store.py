from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Sequence

from google.cloud import firestore

from credhook_core.errors import RecoverableError
from credhook_core.logging import get_logger
from credhook_core.stores.changes import RecordChange
from credhook_core.stores.interfaces import (
    ChangeFeed,
    ChangeHandler,
    DestinationRegistry,
    ErrorHandler,
    RecordLookup,
    Subscription,
)
from credhook_core.webhooks.destinations import (
    destination_from_dict,
    destination_to_dict,
    upgrade_legacy_config,
)
from credhook_core.webhooks.types import (
    EventToggles,
    ThrottleSettings,
    WebhookDestination,
)

logger = get_logger(__name__)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class FirestoreStoreBase:
    def __init__(
        self,
        client: firestore.AsyncClient | None = None,
        *,
        project_id: str | None = None,
        collection_prefix: str = "",
    ) -> None:
        self._client = client or firestore.AsyncClient(project=project_id)
        self._collection_prefix = collection_prefix.strip()

    def _collection(self, name: str) -> firestore.AsyncCollectionReference:
        prefix = self._collection_prefix
        if prefix:
            return self._client.collection(f"{prefix}{name}")
        return self._client.collection(name)


class FirestoreDestinationStore(FirestoreStoreBase, DestinationRegistry):
    """Destinations from ``webhooks``, or the legacy ``settings/webhook`` doc."""

    def __init__(
        self,
        client: firestore.AsyncClient | None = None,
        *,
        project_id: str | None = None,
        collection_prefix: str = "",
        collection_name: str = "webhooks",
        legacy_collection: str = "settings",
        legacy_document: str = "webhook",
    ) -> None:
        super().__init__(
            client,
            project_id=project_id,
            collection_prefix=collection_prefix,
        )
        self._collection_name = collection_name
        self._legacy_collection = legacy_collection
        self._legacy_document = legacy_document

    async def load_destinations(self) -> list[WebhookDestination]:
        try:
            destinations: list[WebhookDestination] = []
            async for doc in self._collection(self._collection_name).stream():
                data = doc.to_dict() or {}
                destinations.append(destination_from_dict(data, doc_id=doc.id))
            if destinations:
                return destinations
            legacy = (
                await self._collection(self._legacy_collection)
                .document(self._legacy_document)
                .get()
            )
        except Exception as exc:
            raise RecoverableError(f"Firestore webhook read failed: {exc}") from exc
        if legacy.exists:
            data = legacy.to_dict() or {}
            logger.info(
                "Using legacy webhook settings",
                extra={"collection": self._legacy_collection},
            )
            return [upgrade_legacy_config(data)]
        return []

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
        now = _now_iso()
        destination = WebhookDestination(
            id=str(uuid.uuid4()),
            name=name,
            url=url.strip(),
            enabled=enabled,
            secret=secret,
            events=events,
            throttle=throttle or ThrottleSettings(),
            extra={"createdAt": now, "updatedAt": now},
        )
        payload = destination_to_dict(destination)
        payload.pop("id", None)
        try:
            await self._collection(self._collection_name).document(destination.id).set(
                payload
            )
        except Exception as exc:
            raise RecoverableError(f"Firestore webhook write failed: {exc}") from exc
        return destination


class FirestoreRecordLookup(FirestoreStoreBase, RecordLookup):
    async def get_record(
        self,
        collection: str,
        record_id: str,
    ) -> dict[str, Any] | None:
        snapshot = await self._collection(collection).document(record_id).get()
        if not snapshot.exists:
            return None
        data = snapshot.to_dict() or {}
        data.setdefault("id", snapshot.id)
        return data


class FirestoreSubscription(Subscription):
    def __init__(self, watch: Any) -> None:
        self._watch = watch
        self._closed = False

    @property
    def is_active(self) -> bool:
        if self._closed:
            return False
        return bool(getattr(self._watch, "is_active", True))

    def unsubscribe(self) -> None:
        self._closed = True
        self._watch.unsubscribe()


class FirestoreChangeFeed(ChangeFeed):
    """Live updates via ``on_snapshot``; callbacks run on the SDK's thread."""

    def __init__(
        self,
        client: firestore.Client | None = None,
        *,
        project_id: str | None = None,
        collection_prefix: str = "",
    ) -> None:
        self._client = client or firestore.Client(project=project_id)
        self._collection_prefix = collection_prefix.strip()

    def subscribe(
        self,
        collection: str,
        on_changes: ChangeHandler,
        on_error: ErrorHandler,
    ) -> Subscription:
        name = f"{self._collection_prefix}{collection}"

        def _callback(_docs: Sequence[Any], changes: Sequence[Any], _read_time: Any) -> None:
            try:
                on_changes([_record_change(change) for change in changes])
            except Exception as exc:
                on_error(exc)

        watch = self._client.collection(name).on_snapshot(_callback)
        return FirestoreSubscription(watch)


def _record_change(change: Any) -> RecordChange:
    document = change.document
    return RecordChange(
        type=str(change.type.name).lower(),
        record_id=document.id,
        data=document.to_dict() or {},
    )
