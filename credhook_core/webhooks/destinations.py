from __future__ import annotations

from typing import Any, Mapping

from credhook_core.webhooks.types import (
    EntityToggles,
    EventToggles,
    ThrottleSettings,
    WebhookDestination,
)

LEGACY_DESTINATION_ID = "default"
LEGACY_DESTINATION_NAME = "Default webhook"

_KNOWN_KEYS = frozenset(
    {"id", "name", "url", "enabled", "secret", "events", "throttle"}
)


def destination_from_dict(
    payload: Mapping[str, Any],
    *,
    doc_id: str | None = None,
) -> WebhookDestination:
    """Parse a destination document as written by the admin screen.

    Nested event flags use camelCase (``statusChanged``) and the throttle
    interval is in seconds. Anything missing or of the wrong type parses as
    disabled rather than failing the whole configuration read.
    """
    destination_id = payload.get("id") or doc_id or ""
    secret = payload.get("secret")
    extra = {key: value for key, value in payload.items() if key not in _KNOWN_KEYS}
    return WebhookDestination(
        id=str(destination_id),
        name=str(payload.get("name") or ""),
        url=str(payload.get("url") or "").strip(),
        enabled=payload.get("enabled") is True,
        secret=str(secret) if secret else None,
        events=_events_from_dict(payload.get("events")),
        throttle=_throttle_from_dict(payload.get("throttle")),
        extra=extra or None,
    )


def destination_to_dict(destination: WebhookDestination) -> dict[str, Any]:
    payload: dict[str, Any] = dict(destination.extra or {})
    payload.update(
        {
            "id": destination.id,
            "name": destination.name,
            "url": destination.url,
            "enabled": destination.enabled,
            "secret": destination.secret or "",
            "events": {
                "clients": _toggles_to_dict(destination.events.clients),
                "proposals": _toggles_to_dict(destination.events.proposals),
                "pipeline": {
                    "statusChanged": destination.events.pipeline.status_changed,
                },
            },
            "throttle": {
                "enabled": destination.throttle.enabled,
                "interval": destination.throttle.interval_s,
            },
        }
    )
    return payload


def upgrade_legacy_config(payload: Mapping[str, Any]) -> WebhookDestination:
    """Lift the single-destination settings document into destination shape."""
    upgraded = dict(payload)
    upgraded.setdefault("id", LEGACY_DESTINATION_ID)
    upgraded.setdefault("name", LEGACY_DESTINATION_NAME)
    return destination_from_dict(upgraded)


def _events_from_dict(value: object) -> EventToggles:
    if not isinstance(value, Mapping):
        return EventToggles()
    return EventToggles(
        clients=_toggles_from_dict(value.get("clients")),
        proposals=_toggles_from_dict(value.get("proposals")),
        pipeline=_toggles_from_dict(value.get("pipeline")),
    )


def _toggles_from_dict(value: object) -> EntityToggles:
    if not isinstance(value, Mapping):
        return EntityToggles()
    return EntityToggles(
        created=value.get("created") is True,
        updated=value.get("updated") is True,
        status_changed=value.get("statusChanged") is True,
    )


def _toggles_to_dict(toggles: EntityToggles) -> dict[str, bool]:
    return {
        "created": toggles.created,
        "updated": toggles.updated,
        "statusChanged": toggles.status_changed,
    }


def _throttle_from_dict(value: object) -> ThrottleSettings:
    if not isinstance(value, Mapping):
        return ThrottleSettings()
    interval = _coerce_float(value.get("interval"))
    return ThrottleSettings(
        enabled=value.get("enabled") is True,
        interval_s=max(0.0, interval or 0.0),
    )


def _coerce_float(value: object) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None
