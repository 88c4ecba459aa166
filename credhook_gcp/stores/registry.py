from __future__ import annotations

from google.cloud import firestore

from credhook_core.config import Config
from credhook_core.stores.interfaces import ChangeFeed, DestinationRegistry, RecordLookup
from credhook_core.webhooks.store import JsonDestinationSource
from credhook_gcp.stores.firestore_store import (
    FirestoreChangeFeed,
    FirestoreDestinationStore,
    FirestoreRecordLookup,
)


def get_destination_source(
    config: Config,
    *,
    client: firestore.AsyncClient | None = None,
) -> DestinationRegistry:
    if config.config_store != "firestore":
        return JsonDestinationSource(config.local_control_root or "")
    return FirestoreDestinationStore(
        client,
        project_id=config.firestore_project,
        collection_prefix=config.collection_prefix,
        collection_name=config.webhooks_collection,
        legacy_collection=config.legacy_settings_collection,
        legacy_document=config.legacy_settings_document,
    )


def get_record_lookup(
    config: Config,
    *,
    client: firestore.AsyncClient | None = None,
) -> RecordLookup:
    return FirestoreRecordLookup(
        client,
        project_id=config.firestore_project,
        collection_prefix=config.collection_prefix,
    )


def get_change_feed(
    config: Config,
    *,
    client: firestore.Client | None = None,
) -> ChangeFeed:
    return FirestoreChangeFeed(
        client,
        project_id=config.firestore_project,
        collection_prefix=config.collection_prefix,
    )
