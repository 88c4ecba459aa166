from __future__ import annotations

import json
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

import httpx

from credhook_core.logging import get_logger
from credhook_core.webhooks.logs import WebhookDeliveryRecord
from credhook_core.webhooks.signer import (
    EVENT_HEADER,
    SECRET_HEADER,
    SIGNATURE_HEADER,
    TIMESTAMP_HEADER,
    sign_payload,
)
from credhook_core.webhooks.types import (
    DispatchEvent,
    WebhookDestination,
    event_to_envelope,
)

STATUS_SUCCESS = "success"
STATUS_FAILED = "failed"
STATUS_THROTTLED = "throttled"

logger = get_logger(__name__)


@dataclass(frozen=True)
class DeliveryResult:
    webhook_id: str
    event: str
    entity_id: str
    status: str
    status_code: int | None
    duration_ms: int
    error: str | None = None

    @property
    def delivered(self) -> bool:
        return self.status == STATUS_SUCCESS

    def to_record(self, delivery_id: str | None = None) -> WebhookDeliveryRecord:
        return WebhookDeliveryRecord(
            delivery_id=delivery_id or str(uuid.uuid4()),
            event=self.event,
            entity_id=self.entity_id,
            webhook_id=self.webhook_id,
            status=self.status,
            status_code=self.status_code,
            error=self.error,
            duration_ms=self.duration_ms,
            delivered_at=datetime.now(timezone.utc).isoformat(),
        )


def build_request_body(event: DispatchEvent) -> bytes:
    return json.dumps(event_to_envelope(event), ensure_ascii=True, default=str).encode(
        "utf-8"
    )


def build_headers(
    destination: WebhookDestination,
    event: DispatchEvent,
    body: bytes,
) -> dict[str, str]:
    headers = {
        "Content-Type": "application/json",
        "User-Agent": "Credhook-Webhooks/1.0",
        EVENT_HEADER: event.kind,
    }
    # Unsigned destinations get no secret header at all, not an empty one.
    if destination.secret:
        headers[SECRET_HEADER] = destination.secret
        headers[TIMESTAMP_HEADER] = event.timestamp
        headers[SIGNATURE_HEADER] = sign_payload(
            destination.secret, event.timestamp, body
        )
    return headers


async def deliver_webhook(
    client: httpx.AsyncClient,
    destination: WebhookDestination,
    event: DispatchEvent,
) -> DeliveryResult:
    """POST one event to one destination, exactly once.

    Every failure is folded into the returned result so that sibling
    deliveries gathered alongside this one are never cancelled.
    """
    body = build_request_body(event)
    headers = build_headers(destination, event, body)
    started = time.monotonic()
    status_code: int | None = None
    error: str | None = None
    try:
        response = await client.post(destination.url, content=body, headers=headers)
        status_code = response.status_code
        if response.is_success:
            status = STATUS_SUCCESS
        else:
            status = STATUS_FAILED
            error = response.reason_phrase or f"HTTP {status_code}"
    except httpx.HTTPError as exc:
        status = STATUS_FAILED
        error = str(exc) or exc.__class__.__name__
    except Exception as exc:  # pragma: no cover
        status = STATUS_FAILED
        error = str(exc) or exc.__class__.__name__

    duration_ms = int((time.monotonic() - started) * 1000)
    extra = {
        "event": event.kind,
        "webhook_id": destination.id,
        "entity_id": event.entity_id,
        "status": status,
        "status_code": status_code,
        "duration_ms": duration_ms,
    }
    if status == STATUS_SUCCESS:
        logger.info("Webhook delivered", extra=extra)
    else:
        logger.warning(
            "Webhook delivery failed",
            extra={**extra, "error_message": error},
        )
    return DeliveryResult(
        webhook_id=destination.id,
        event=event.kind,
        entity_id=event.entity_id,
        status=status,
        status_code=status_code,
        duration_ms=duration_ms,
        error=error,
    )


def throttled_result(
    destination: WebhookDestination,
    event: DispatchEvent,
) -> DeliveryResult:
    return DeliveryResult(
        webhook_id=destination.id,
        event=event.kind,
        entity_id=event.entity_id,
        status=STATUS_THROTTLED,
        status_code=None,
        duration_ms=0,
    )
