from __future__ import annotations

import asyncio
import json
import uuid
from datetime import datetime, timezone
from typing import Any, Iterable

import fsspec

from credhook_core.errors import RecoverableError
from credhook_core.storage.paths import join_uri, parent_path
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


def destination_registry_uri(base_uri: str) -> str:
    return join_uri(base_uri, "control", "webhooks.json")


def legacy_settings_uri(base_uri: str) -> str:
    return join_uri(base_uri, "control", "settings_webhook.json")


def load_destinations(base_uri: str) -> list[WebhookDestination]:
    """Read destinations, falling back to the legacy single-webhook file.

    The legacy file is only consulted when the registry holds no
    destinations at all.
    """
    results = _registry_destinations(base_uri)
    if results:
        return results
    legacy = _read_json(legacy_settings_uri(base_uri))
    if isinstance(legacy, dict) and legacy:
        return [upgrade_legacy_config(legacy)]
    return []


def save_destinations(
    base_uri: str,
    destinations: Iterable[WebhookDestination],
) -> str:
    uri = destination_registry_uri(base_uri)
    fs, path = fsspec.core.url_to_fs(uri)
    fs.makedirs(parent_path(path), exist_ok=True)
    payload = {
        "updated_at": datetime.now(timezone.utc).isoformat(),
        "webhooks": [destination_to_dict(item) for item in destinations],
    }
    with fs.open(path, "wb") as handle:
        handle.write(json.dumps(payload, ensure_ascii=True).encode("utf-8"))
    return uri


def register_destination(
    *,
    base_uri: str,
    name: str,
    url: str,
    secret: str | None,
    enabled: bool,
    events: EventToggles,
    throttle: ThrottleSettings | None = None,
) -> WebhookDestination:
    now = datetime.now(timezone.utc).isoformat()
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
    existing = _registry_destinations(base_uri)
    existing.append(destination)
    save_destinations(base_uri, existing)
    return destination


class JsonDestinationSource:
    """Async adapter over the file registry for the dispatcher."""

    def __init__(self, base_uri: str) -> None:
        self.base_uri = base_uri

    async def load_destinations(self) -> list[WebhookDestination]:
        try:
            return await asyncio.to_thread(load_destinations, self.base_uri)
        except (OSError, ValueError) as exc:
            raise RecoverableError(f"Webhook registry unreadable: {exc}") from exc

    async def register_destination(self, **kwargs: Any) -> WebhookDestination:
        return await asyncio.to_thread(
            register_destination, base_uri=self.base_uri, **kwargs
        )


def _registry_destinations(base_uri: str) -> list[WebhookDestination]:
    items = _read_json(destination_registry_uri(base_uri))
    records = items.get("webhooks", []) if isinstance(items, dict) else []
    # Hand-written records may lack an id; the throttle is keyed on it.
    return [
        destination_from_dict(item, doc_id=f"webhook-{index}")
        for index, item in enumerate(records)
        if isinstance(item, dict)
    ]


def _read_json(uri: str) -> Any:
    fs, path = fsspec.core.url_to_fs(uri)
    if not fs.exists(path):
        return None
    with fs.open(path, "rb") as handle:
        return json.loads(handle.read().decode("utf-8"))
