from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

EVENT_CLIENT_CREATED = "client_created"
EVENT_CLIENT_UPDATED = "client_updated"
EVENT_CLIENT_STATUS_CHANGED = "client_status_changed"
EVENT_PROPOSAL_CREATED = "proposal_created"
EVENT_PROPOSAL_UPDATED = "proposal_updated"
EVENT_PROPOSAL_STATUS_CHANGED = "proposal_status_changed"
EVENT_PIPELINE_STATUS_CHANGED = "pipeline_status_changed"

EVENT_KINDS: tuple[str, ...] = (
    EVENT_CLIENT_CREATED,
    EVENT_CLIENT_UPDATED,
    EVENT_CLIENT_STATUS_CHANGED,
    EVENT_PROPOSAL_CREATED,
    EVENT_PROPOSAL_UPDATED,
    EVENT_PROPOSAL_STATUS_CHANGED,
    EVENT_PIPELINE_STATUS_CHANGED,
)

# Event kind -> (entity group, toggle name) inside WebhookDestination.events.
EVENT_TOGGLE_PATHS: dict[str, tuple[str, str]] = {
    EVENT_CLIENT_CREATED: ("clients", "created"),
    EVENT_CLIENT_UPDATED: ("clients", "updated"),
    EVENT_CLIENT_STATUS_CHANGED: ("clients", "status_changed"),
    EVENT_PROPOSAL_CREATED: ("proposals", "created"),
    EVENT_PROPOSAL_UPDATED: ("proposals", "updated"),
    EVENT_PROPOSAL_STATUS_CHANGED: ("proposals", "status_changed"),
    EVENT_PIPELINE_STATUS_CHANGED: ("pipeline", "status_changed"),
}


def is_event_kind(value: object) -> bool:
    return isinstance(value, str) and value in EVENT_TOGGLE_PATHS


@dataclass(frozen=True)
class EntityToggles:
    created: bool = False
    updated: bool = False
    status_changed: bool = False


@dataclass(frozen=True)
class EventToggles:
    clients: EntityToggles = field(default_factory=EntityToggles)
    proposals: EntityToggles = field(default_factory=EntityToggles)
    pipeline: EntityToggles = field(default_factory=EntityToggles)

    def is_enabled(self, event_kind: str) -> bool:
        path = EVENT_TOGGLE_PATHS.get(event_kind)
        if path is None:
            return False
        group, toggle = path
        return bool(getattr(getattr(self, group), toggle))


@dataclass(frozen=True)
class ThrottleSettings:
    enabled: bool = False
    interval_s: float = 0.0


@dataclass(frozen=True)
class WebhookDestination:
    id: str
    name: str
    url: str
    enabled: bool
    secret: str | None
    events: EventToggles = field(default_factory=EventToggles)
    throttle: ThrottleSettings = field(default_factory=ThrottleSettings)
    extra: dict[str, Any] | None = None

    def accepts(self, event_kind: str) -> bool:
        if not self.enabled or not self.url:
            return False
        return self.events.is_enabled(event_kind)


@dataclass(frozen=True)
class DispatchEvent:
    kind: str
    entity_id: str
    payload: dict[str, Any]
    timestamp: str


def event_to_envelope(event: DispatchEvent) -> dict[str, object]:
    return {
        "event": event.kind,
        "timestamp": event.timestamp,
        "data": event.payload,
    }
