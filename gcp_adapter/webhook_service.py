import os
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

from fastapi import FastAPI, Header, HTTPException, Request
from pydantic import BaseModel, Field

from credhook_core.config import Config, get_config
from credhook_core.errors import RecoverableError, ValidationError
from credhook_core.logging import configure_logging, get_logger
from credhook_core.monitor import ChangeMonitor
from credhook_core.stores.interfaces import DestinationRegistry
from credhook_core.webhooks.dispatcher import WebhookDispatcher
from credhook_core.webhooks.types import (
    EntityToggles,
    EventToggles,
    ThrottleSettings,
    WebhookDestination,
    is_event_kind,
)
from credhook_gcp.stores.registry import (
    get_change_feed,
    get_destination_source,
    get_record_lookup,
)

SERVICE_NAME = "credhook-webhooks"

configure_logging(
    service=SERVICE_NAME,
    env=os.getenv("ENV"),
    version=os.getenv("CREDHOOK_VERSION"),
)
logger = get_logger(__name__)


@dataclass
class ServiceRuntime:
    config: Config
    source: DestinationRegistry
    dispatcher: WebhookDispatcher
    monitor: ChangeMonitor | None = None

    async def aclose(self) -> None:
        if self.monitor is not None:
            await self.monitor.close()
        await self.dispatcher.aclose()


def build_runtime(config: Config) -> ServiceRuntime:
    source = get_destination_source(config)
    dispatcher = WebhookDispatcher(
        source,
        config_ttl_s=config.webhook_config_ttl_s,
        timeout_s=config.webhook_timeout_s,
        log_uri=config.webhook_log_uri,
    )
    monitor = None
    if config.monitor_enabled:
        monitor = ChangeMonitor(
            dispatcher,
            get_change_feed(config),
            get_record_lookup(config),
            clients_collection=config.clients_collection,
            proposals_collection=config.proposals_collection,
            banks_collection=config.banks_collection,
            snapshot_max_entries=config.monitor_snapshot_max_entries,
            reconnect_initial_s=config.monitor_reconnect_initial_s,
            reconnect_max_s=config.monitor_reconnect_max_s,
            healthcheck_s=config.monitor_healthcheck_s,
        )
    return ServiceRuntime(
        config=config,
        source=source,
        dispatcher=dispatcher,
        monitor=monitor,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    runtime: ServiceRuntime | None = getattr(app.state, "runtime", None)
    owned = runtime is None
    if runtime is None:
        try:
            runtime = build_runtime(get_config())
        except ValueError as exc:
            logger.error(
                "Webhook service misconfigured",
                extra={"error_message": str(exc)},
            )
        app.state.runtime = runtime
    if runtime is not None and runtime.monitor is not None:
        session = runtime.config.monitor_session()
        if not await runtime.monitor.update_session(session):
            logger.warning(
                "Monitor session is not allowed to watch collections",
                extra={"status": session.role if session else None},
            )
    try:
        yield
    finally:
        if runtime is not None:
            if owned:
                await runtime.aclose()
                app.state.runtime = None
            elif runtime.monitor is not None:
                await runtime.monitor.close()


app = FastAPI(lifespan=lifespan)


class HealthResponse(BaseModel):
    status: str
    service: str
    version: str
    commit: str
    timestamp: str


class EntityTogglesModel(BaseModel):
    created: bool = False
    updated: bool = False
    status_changed: bool = False


class EventTogglesModel(BaseModel):
    clients: EntityTogglesModel = Field(default_factory=EntityTogglesModel)
    proposals: EntityTogglesModel = Field(default_factory=EntityTogglesModel)
    pipeline: EntityTogglesModel = Field(default_factory=EntityTogglesModel)


class ThrottleModel(BaseModel):
    enabled: bool = False
    interval_s: float = 0.0


class WebhookCreateRequest(BaseModel):
    name: str
    url: str
    secret: str | None = None
    enabled: bool = True
    events: EventTogglesModel = Field(default_factory=EventTogglesModel)
    throttle: ThrottleModel | None = None


class WebhookResponse(BaseModel):
    id: str
    name: str
    url: str
    enabled: bool
    has_secret: bool
    events: EventTogglesModel
    throttle: ThrottleModel


class RefreshResponse(BaseModel):
    status: str


class EventRequest(BaseModel):
    event: str
    entity_id: str
    payload: dict[str, Any] = Field(default_factory=dict)


class EventDeliveryResponse(BaseModel):
    event: str
    entity_id: str
    delivered: bool
    deliveries: int
    successes: int
    failures: int
    throttled: int
    log_uri: str | None = None


class CollectionStatus(BaseModel):
    subscribed: bool
    snapshots: int
    processed: int
    reconnects: int


class MonitorResponse(BaseModel):
    enabled: bool
    active: bool
    session_role: str | None = None
    collections: dict[str, CollectionStatus] = Field(default_factory=dict)


def _correlation_id(header_value: str | None) -> str:
    if header_value:
        return header_value
    return str(uuid.uuid4())


@app.middleware("http")
async def add_correlation_id(request: Request, call_next):
    corr = _correlation_id(request.headers.get("x-correlation-id"))
    request.state.correlation_id = corr
    response = await call_next(request)
    response.headers["x-correlation-id"] = corr
    return response


@app.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    version = os.getenv("CREDHOOK_VERSION", "dev")
    commit = os.getenv("GIT_COMMIT", "unknown")
    return HealthResponse(
        status="ok",
        service=SERVICE_NAME,
        version=version,
        commit=commit,
        timestamp=time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
    )


@app.get("/webhooks", response_model=list[WebhookResponse])
async def list_webhooks(request: Request) -> list[WebhookResponse]:
    runtime = _get_runtime(request)
    try:
        destinations = await runtime.source.load_destinations()
    except RecoverableError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return [_webhook_response(item) for item in destinations]


@app.post("/webhooks", response_model=WebhookResponse, status_code=201)
async def create_webhook(
    request: Request,
    payload: WebhookCreateRequest,
) -> WebhookResponse:
    runtime = _get_runtime(request)
    try:
        _validate_url(payload.url)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    throttle = None
    if payload.throttle is not None:
        throttle = ThrottleSettings(
            enabled=payload.throttle.enabled,
            interval_s=max(0.0, payload.throttle.interval_s),
        )
    try:
        destination = await runtime.source.register_destination(
            name=payload.name,
            url=payload.url,
            secret=payload.secret,
            enabled=payload.enabled,
            events=_event_toggles(payload.events),
            throttle=throttle,
        )
    except RecoverableError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    runtime.dispatcher.invalidate()
    logger.info(
        "Webhook registered",
        extra={
            "request_id": str(uuid.uuid4()),
            "correlation_id": request.state.correlation_id,
            "webhook_id": destination.id,
            "status": "created",
        },
    )
    return _webhook_response(destination)


@app.post("/webhooks/refresh", response_model=RefreshResponse)
async def refresh_webhooks(request: Request) -> RefreshResponse:
    runtime = _get_runtime(request)
    runtime.dispatcher.invalidate()
    logger.info(
        "Webhook configuration cache invalidated",
        extra={"correlation_id": request.state.correlation_id},
    )
    return RefreshResponse(status="invalidated")


@app.post("/events", response_model=EventDeliveryResponse, status_code=202)
async def dispatch_event(
    request: Request,
    payload: EventRequest,
    x_request_id: str | None = Header(default=None),
) -> EventDeliveryResponse:
    runtime = _get_runtime(request)
    if not is_event_kind(payload.event):
        raise HTTPException(
            status_code=400,
            detail=f"Unsupported event: {payload.event}",
        )
    started = time.monotonic()
    report = await runtime.dispatcher.dispatch(
        payload.event,
        payload.payload,
        payload.entity_id,
    )
    logger.info(
        "Event dispatched",
        extra={
            "request_id": x_request_id or str(uuid.uuid4()),
            "correlation_id": request.state.correlation_id,
            "event": report.event,
            "entity_id": report.entity_id,
            "status": "completed",
            "duration_ms": int((time.monotonic() - started) * 1000),
        },
    )
    return EventDeliveryResponse(
        event=report.event,
        entity_id=report.entity_id,
        delivered=report.delivered,
        deliveries=len(report.results),
        successes=report.successes,
        failures=report.failures,
        throttled=report.throttled,
        log_uri=report.log_uri,
    )


@app.get("/monitor", response_model=MonitorResponse)
async def monitor_status(request: Request) -> MonitorResponse:
    runtime = _get_runtime(request)
    if runtime.monitor is None:
        return MonitorResponse(enabled=False, active=False)
    status = runtime.monitor.status()
    return MonitorResponse(
        enabled=True,
        active=status["active"],
        session_role=status["session_role"],
        collections={
            name: CollectionStatus(**values)
            for name, values in status["collections"].items()
        },
    )


def _get_runtime(request: Request) -> ServiceRuntime:
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is not None:
        return runtime
    try:
        runtime = build_runtime(get_config())
    except ValueError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    request.app.state.runtime = runtime
    return runtime


def _validate_url(url: str) -> None:
    cleaned = url.strip()
    if not cleaned.startswith(("http://", "https://")):
        raise ValidationError("Webhook url must be an http(s) URL")


def _event_toggles(events: EventTogglesModel) -> EventToggles:
    return EventToggles(
        clients=EntityToggles(**events.clients.model_dump()),
        proposals=EntityToggles(**events.proposals.model_dump()),
        pipeline=EntityToggles(**events.pipeline.model_dump()),
    )


def _webhook_response(destination: WebhookDestination) -> WebhookResponse:
    events = destination.events
    return WebhookResponse(
        id=destination.id,
        name=destination.name,
        url=destination.url,
        enabled=destination.enabled,
        has_secret=bool(destination.secret),
        events=EventTogglesModel(
            clients=EntityTogglesModel(**vars(events.clients)),
            proposals=EntityTogglesModel(**vars(events.proposals)),
            pipeline=EntityTogglesModel(**vars(events.pipeline)),
        ),
        throttle=ThrottleModel(
            enabled=destination.throttle.enabled,
            interval_s=destination.throttle.interval_s,
        ),
    )
