from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, Mapping

import httpx

from credhook_core.logging import get_logger
from credhook_core.webhooks.delivery import (
    STATUS_FAILED,
    STATUS_SUCCESS,
    STATUS_THROTTLED,
    DeliveryResult,
    deliver_webhook,
    throttled_result,
)
from credhook_core.webhooks.logs import write_delivery_log
from credhook_core.webhooks.throttle import ThrottleRegistry
from credhook_core.webhooks.types import (
    EVENT_CLIENT_CREATED,
    EVENT_CLIENT_STATUS_CHANGED,
    EVENT_CLIENT_UPDATED,
    EVENT_PIPELINE_STATUS_CHANGED,
    EVENT_PROPOSAL_CREATED,
    EVENT_PROPOSAL_STATUS_CHANGED,
    EVENT_PROPOSAL_UPDATED,
    DispatchEvent,
    WebhookDestination,
    is_event_kind,
)

if TYPE_CHECKING:
    from credhook_core.stores.interfaces import DestinationSource

DEFAULT_CONFIG_TTL_S = 300.0
DEFAULT_TIMEOUT_S = 10.0

logger = get_logger(__name__)


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class DispatchReport:
    event: str
    entity_id: str
    results: tuple[DeliveryResult, ...] = ()
    log_uri: str | None = None

    @property
    def delivered(self) -> bool:
        return any(result.status == STATUS_SUCCESS for result in self.results)

    @property
    def successes(self) -> int:
        return sum(1 for result in self.results if result.status == STATUS_SUCCESS)

    @property
    def failures(self) -> int:
        return sum(1 for result in self.results if result.status == STATUS_FAILED)

    @property
    def throttled(self) -> int:
        return sum(1 for result in self.results if result.status == STATUS_THROTTLED)


class WebhookDispatcher:
    """Fans business events out to the configured webhook destinations.

    Destinations are read through ``source`` and cached for
    ``config_ttl_s``; concurrent callers that miss the cache share a single
    in-flight read. Each eligible destination is throttled and delivered
    independently, and nothing raised by the store or the network escapes
    the public methods: callers only ever get a boolean or a report.
    """

    def __init__(
        self,
        source: DestinationSource,
        client: httpx.AsyncClient | None = None,
        *,
        config_ttl_s: float = DEFAULT_CONFIG_TTL_S,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        clock: Callable[[], float] = time.monotonic,
        now_iso: Callable[[], str] = _utc_now_iso,
        throttle: ThrottleRegistry | None = None,
        log_uri: str | None = None,
    ) -> None:
        self._source = source
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout_s)
        self._config_ttl_s = config_ttl_s
        self._clock = clock
        self._now_iso = now_iso
        self._throttle = throttle or ThrottleRegistry(clock=clock)
        self._log_uri = log_uri
        self._cached: list[WebhookDestination] | None = None
        self._fetched_at: float | None = None
        self._inflight: asyncio.Future[list[WebhookDestination]] | None = None
        self._generation = 0

    @property
    def throttle(self) -> ThrottleRegistry:
        return self._throttle

    def invalidate(self) -> None:
        self._cached = None
        self._fetched_at = None
        self._generation += 1

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def get_destinations(self) -> list[WebhookDestination]:
        if self._cache_valid():
            return list(self._cached or [])
        if self._inflight is None:
            self._inflight = asyncio.ensure_future(self._fetch(self._generation))
        # A cancelled caller leaves the shared read running for the others.
        return list(await asyncio.shield(self._inflight))

    async def eligible_destinations(self, event_kind: str) -> list[WebhookDestination]:
        destinations = await self.get_destinations()
        return [item for item in destinations if item.accepts(event_kind)]

    async def send(
        self,
        event_kind: str,
        payload: Mapping[str, Any],
        entity_id: str,
    ) -> bool:
        report = await self.dispatch(event_kind, payload, entity_id)
        return report.delivered

    async def dispatch(
        self,
        event_kind: str,
        payload: Mapping[str, Any],
        entity_id: str,
    ) -> DispatchReport:
        entity = str(entity_id or "")
        if not is_event_kind(event_kind):
            logger.error(
                "Unknown webhook event kind",
                extra={"event": str(event_kind), "entity_id": entity},
            )
            return DispatchReport(event=str(event_kind), entity_id=entity)
        try:
            return await self._dispatch(event_kind, dict(payload), entity)
        except Exception as exc:
            logger.exception(
                "Webhook dispatch aborted",
                extra={
                    "event": event_kind,
                    "entity_id": entity,
                    "error_message": str(exc),
                },
            )
            return DispatchReport(event=event_kind, entity_id=entity)

    async def send_client_created(self, client: Mapping[str, Any]) -> bool:
        return await self.send(EVENT_CLIENT_CREATED, client, _record_id(client))

    async def send_client_updated(self, client: Mapping[str, Any]) -> bool:
        return await self.send(EVENT_CLIENT_UPDATED, client, _record_id(client))

    async def send_client_status_changed(
        self,
        client: Mapping[str, Any],
        previous_status: str | None,
    ) -> bool:
        return await self.send(
            EVENT_CLIENT_STATUS_CHANGED,
            with_status_change(client, previous_status),
            _record_id(client),
        )

    async def send_proposal_created(self, proposal: Mapping[str, Any]) -> bool:
        return await self.send(EVENT_PROPOSAL_CREATED, proposal, _record_id(proposal))

    async def send_proposal_updated(self, proposal: Mapping[str, Any]) -> bool:
        return await self.send(EVENT_PROPOSAL_UPDATED, proposal, _record_id(proposal))

    async def send_proposal_status_changed(
        self,
        proposal: Mapping[str, Any],
        previous_status: str | None,
    ) -> bool:
        return await self.send(
            EVENT_PROPOSAL_STATUS_CHANGED,
            with_status_change(proposal, previous_status),
            _record_id(proposal),
        )

    async def send_pipeline_status_changed(self, change: Mapping[str, Any]) -> bool:
        return await self.send(
            EVENT_PIPELINE_STATUS_CHANGED,
            change,
            str(change.get("proposalId") or ""),
        )

    async def _dispatch(
        self,
        event_kind: str,
        payload: dict[str, Any],
        entity_id: str,
    ) -> DispatchReport:
        destinations = await self.eligible_destinations(event_kind)
        if not destinations:
            logger.info(
                "No webhook enabled for event",
                extra={"event": event_kind, "entity_id": entity_id},
            )
            return DispatchReport(event=event_kind, entity_id=entity_id)

        event = DispatchEvent(
            kind=event_kind,
            entity_id=entity_id,
            payload=payload,
            timestamp=self._now_iso(),
        )
        results = await asyncio.gather(
            *(self._deliver_one(destination, event) for destination in destinations)
        )
        log_uri = await self._write_log(results)
        return DispatchReport(
            event=event_kind,
            entity_id=entity_id,
            results=tuple(results),
            log_uri=log_uri,
        )

    async def _deliver_one(
        self,
        destination: WebhookDestination,
        event: DispatchEvent,
    ) -> DeliveryResult:
        if not self._throttle.check_and_record(destination, event.kind, event.entity_id):
            logger.info(
                "Webhook throttled",
                extra={
                    "event": event.kind,
                    "webhook_id": destination.id,
                    "entity_id": event.entity_id,
                    "status": STATUS_THROTTLED,
                },
            )
            return throttled_result(destination, event)
        return await deliver_webhook(self._client, destination, event)

    def _cache_valid(self) -> bool:
        if self._cached is None or self._fetched_at is None:
            return False
        return self._clock() - self._fetched_at < self._config_ttl_s

    async def _fetch(self, generation: int) -> list[WebhookDestination]:
        try:
            destinations = list(await self._source.load_destinations())
        except Exception as exc:
            logger.error(
                "Failed to load webhook destinations",
                extra={"error_message": str(exc)},
            )
            return []
        finally:
            self._inflight = None
        if generation == self._generation:
            self._cached = destinations
            self._fetched_at = self._clock()
        logger.debug(
            "Webhook destinations loaded",
            extra={"destinations": len(destinations)},
        )
        return destinations

    async def _write_log(self, results: list[DeliveryResult]) -> str | None:
        records = [
            result.to_record() for result in results if result.status != STATUS_THROTTLED
        ]
        if not self._log_uri or not records:
            return None
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
        run_id = f"webhook-{timestamp}-{uuid.uuid4()}"
        try:
            return await asyncio.to_thread(
                write_delivery_log,
                base_uri=self._log_uri,
                run_id=run_id,
                records=records,
            )
        except Exception as exc:
            logger.warning(
                "Failed to write webhook delivery log",
                extra={"error_message": str(exc)},
            )
            return None


def with_status_change(
    record: Mapping[str, Any],
    previous_status: str | None,
) -> dict[str, Any]:
    data = dict(record)
    data["previousStatus"] = previous_status
    data["newStatus"] = record.get("status")
    return data


def _record_id(record: Mapping[str, Any]) -> str:
    return str(record.get("id") or "")
