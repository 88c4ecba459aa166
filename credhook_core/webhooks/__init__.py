from credhook_core.webhooks.delivery import (
    STATUS_FAILED,
    STATUS_SUCCESS,
    STATUS_THROTTLED,
    DeliveryResult,
    deliver_webhook,
)
from credhook_core.webhooks.destinations import (
    destination_from_dict,
    destination_to_dict,
    upgrade_legacy_config,
)
from credhook_core.webhooks.dispatcher import DispatchReport, WebhookDispatcher
from credhook_core.webhooks.logs import WebhookDeliveryRecord, write_delivery_log
from credhook_core.webhooks.store import (
    JsonDestinationSource,
    load_destinations,
    register_destination,
    save_destinations,
)
from credhook_core.webhooks.throttle import ThrottleRegistry
from credhook_core.webhooks.types import (
    EVENT_KINDS,
    DispatchEvent,
    EntityToggles,
    EventToggles,
    ThrottleSettings,
    WebhookDestination,
    event_to_envelope,
)

__all__ = [
    "EVENT_KINDS",
    "STATUS_FAILED",
    "STATUS_SUCCESS",
    "STATUS_THROTTLED",
    "DeliveryResult",
    "DispatchEvent",
    "DispatchReport",
    "EntityToggles",
    "EventToggles",
    "JsonDestinationSource",
    "ThrottleRegistry",
    "ThrottleSettings",
    "WebhookDeliveryRecord",
    "WebhookDestination",
    "WebhookDispatcher",
    "deliver_webhook",
    "destination_from_dict",
    "destination_to_dict",
    "event_to_envelope",
    "load_destinations",
    "register_destination",
    "save_destinations",
    "upgrade_legacy_config",
    "write_delivery_log",
]
