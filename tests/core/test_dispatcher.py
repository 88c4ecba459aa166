from __future__ import annotations

import asyncio
import json
from pathlib import Path

import httpx
import pytest

from credhook_core.errors import RecoverableError
from credhook_core.webhooks.dispatcher import WebhookDispatcher
from credhook_core.webhooks.signer import verify_signature
from credhook_core.webhooks.store import JsonDestinationSource
from credhook_core.webhooks.types import (
    EntityToggles,
    EventToggles,
    ThrottleSettings,
    WebhookDestination,
)

NOW = "2026-01-27T00:00:00+00:00"


class _Clock:
    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class _Source:
    def __init__(self, destinations=None, error: Exception | None = None) -> None:
        self.destinations = list(destinations or [])
        self.error = error
        self.calls = 0
        self.gate: asyncio.Event | None = None

    async def load_destinations(self):
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return list(self.destinations)


class _Recorder:
    def __init__(self, statuses: dict[str, int] | None = None, fail: set[str] | None = None):
        self.statuses = statuses or {}
        self.fail = fail or set()
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)
        if url in self.fail:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(self.statuses.get(url, 200))

    def bodies(self) -> list[dict]:
        return [json.loads(request.content) for request in self.requests]


def _destination(
    dest_id: str = "a",
    url: str = "https://x",
    *,
    enabled: bool = True,
    secret: str | None = "s3cret",
    clients: EntityToggles | None = None,
    proposals: EntityToggles | None = None,
    pipeline: EntityToggles | None = None,
    throttle: ThrottleSettings | None = None,
) -> WebhookDestination:
    return WebhookDestination(
        id=dest_id,
        name=f"Destination {dest_id}",
        url=url,
        enabled=enabled,
        secret=secret,
        events=EventToggles(
            clients=clients or EntityToggles(),
            proposals=proposals or EntityToggles(),
            pipeline=pipeline or EntityToggles(),
        ),
        throttle=throttle or ThrottleSettings(),
    )


ALL_ON = EntityToggles(created=True, updated=True, status_changed=True)


def _dispatcher(source, recorder, clock=None, **kwargs) -> WebhookDispatcher:
    client = httpx.AsyncClient(transport=httpx.MockTransport(recorder))
    return WebhookDispatcher(
        source,
        client,
        clock=clock or _Clock(),
        now_iso=lambda: NOW,
        **kwargs,
    )


@pytest.mark.core
@pytest.mark.asyncio
async def test_client_created_posts_envelope_with_headers():
    recorder = _Recorder()
    source = _Source([_destination(clients=EntityToggles(created=True))])
    dispatcher = _dispatcher(source, recorder)

    delivered = await dispatcher.send_client_created({"id": "c1", "name": "Acme"})

    assert delivered is True
    assert len(recorder.requests) == 1
    request = recorder.requests[0]
    assert str(request.url) == "https://x"
    assert request.method == "POST"
    body = json.loads(request.content)
    assert set(body) == {"event", "timestamp", "data"}
    assert body["event"] == "client_created"
    assert body["timestamp"] == NOW
    assert body["data"] == {"id": "c1", "name": "Acme"}
    assert request.headers["content-type"] == "application/json"
    assert request.headers["x-webhook-secret"] == "s3cret"
    assert request.headers["x-webhook-event"] == "client_created"
    assert request.headers["x-webhook-timestamp"] == NOW
    assert verify_signature(
        "s3cret", request.headers["x-webhook-signature"], request.content
    )
    await dispatcher.aclose()


@pytest.mark.core
@pytest.mark.asyncio
async def test_destination_without_secret_is_unsigned():
    recorder = _Recorder()
    source = _Source([_destination(secret=None, clients=ALL_ON)])
    dispatcher = _dispatcher(source, recorder)

    assert await dispatcher.send_client_updated({"id": "c1"}) is True

    headers = recorder.requests[0].headers
    assert "x-webhook-secret" not in headers
    assert "x-webhook-signature" not in headers


@pytest.mark.core
@pytest.mark.asyncio
async def test_throttle_suppresses_repeat_within_interval():
    recorder = _Recorder()
    clock = _Clock(100.0)
    source = _Source(
        [
            _destination(
                clients=ALL_ON,
                throttle=ThrottleSettings(enabled=True, interval_s=60),
            )
        ]
    )
    dispatcher = _dispatcher(source, recorder, clock=clock)

    assert await dispatcher.send_client_updated({"id": "c1"}) is True
    clock.now += 8
    assert await dispatcher.send_client_updated({"id": "c1"}) is False
    assert len(recorder.requests) == 1

    # Other entities and other kinds have their own keys.
    assert await dispatcher.send_client_updated({"id": "c2"}) is True
    assert await dispatcher.send_client_created({"id": "c1"}) is True
    assert len(recorder.requests) == 3

    clock.now += 60
    assert await dispatcher.send_client_updated({"id": "c1"}) is True
    assert len(recorder.requests) == 4


@pytest.mark.core
@pytest.mark.asyncio
async def test_throttle_counts_failed_attempts():
    recorder = _Recorder(statuses={"https://x": 500})
    clock = _Clock()
    source = _Source(
        [
            _destination(
                clients=ALL_ON,
                throttle=ThrottleSettings(enabled=True, interval_s=30),
            )
        ]
    )
    dispatcher = _dispatcher(source, recorder, clock=clock)

    assert await dispatcher.send_client_updated({"id": "c1"}) is False
    clock.now += 5
    report = await dispatcher.dispatch("client_updated", {"id": "c1"}, "c1")

    assert len(recorder.requests) == 1
    assert report.throttled == 1
    assert report.failures == 0


@pytest.mark.core
@pytest.mark.asyncio
async def test_only_eligible_destination_receives_event():
    recorder = _Recorder()
    source = _Source(
        [
            _destination("a", "https://a", proposals=EntityToggles(created=True)),
            _destination("b", "https://b", proposals=EntityToggles(updated=True)),
            _destination("c", "https://c", enabled=False, proposals=ALL_ON),
            _destination("d", "", proposals=ALL_ON),
        ]
    )
    dispatcher = _dispatcher(source, recorder)

    assert await dispatcher.send_proposal_created({"id": "p1"}) is True

    assert [str(request.url) for request in recorder.requests] == ["https://a"]
    eligible = await dispatcher.eligible_destinations("proposal_updated")
    assert [item.id for item in eligible] == ["b"]


@pytest.mark.core
@pytest.mark.asyncio
async def test_no_destinations_returns_false_without_http():
    recorder = _Recorder()
    dispatcher = _dispatcher(_Source([]), recorder)

    assert await dispatcher.send("client_created", {"id": "c1"}, "c1") is False
    assert recorder.requests == []


@pytest.mark.core
@pytest.mark.asyncio
async def test_unknown_event_kind_returns_false():
    recorder = _Recorder()
    source = _Source([_destination(clients=ALL_ON)])
    dispatcher = _dispatcher(source, recorder)

    assert await dispatcher.send("client_deleted", {"id": "c1"}, "c1") is False
    assert recorder.requests == []
    assert source.calls == 0


@pytest.mark.core
@pytest.mark.asyncio
async def test_failures_are_isolated_per_destination():
    recorder = _Recorder(
        statuses={"https://b": 503},
        fail={"https://c"},
    )
    source = _Source(
        [
            _destination("a", "https://a", clients=ALL_ON),
            _destination("b", "https://b", clients=ALL_ON),
            _destination("c", "https://c", clients=ALL_ON),
        ]
    )
    dispatcher = _dispatcher(source, recorder)

    report = await dispatcher.dispatch("client_updated", {"id": "c1"}, "c1")

    assert report.delivered is True
    assert report.successes == 1
    assert report.failures == 2
    by_id = {result.webhook_id: result for result in report.results}
    assert by_id["b"].status_code == 503
    assert by_id["c"].status_code is None
    assert "connection refused" in (by_id["c"].error or "")


@pytest.mark.core
@pytest.mark.asyncio
async def test_all_failures_return_false():
    recorder = _Recorder(statuses={"https://x": 404})
    dispatcher = _dispatcher(_Source([_destination(clients=ALL_ON)]), recorder)

    assert await dispatcher.send_client_updated({"id": "c1"}) is False
    assert len(recorder.requests) == 1


@pytest.mark.core
@pytest.mark.asyncio
async def test_destinations_cached_until_ttl_expires():
    recorder = _Recorder()
    clock = _Clock()
    source = _Source([_destination(clients=ALL_ON)])
    dispatcher = _dispatcher(source, recorder, clock=clock, config_ttl_s=300)

    await dispatcher.send_client_updated({"id": "c1"})
    clock.now += 299
    await dispatcher.send_client_updated({"id": "c2"})
    assert source.calls == 1

    clock.now += 2
    await dispatcher.send_client_updated({"id": "c3"})
    assert source.calls == 2

    dispatcher.invalidate()
    await dispatcher.send_client_updated({"id": "c4"})
    assert source.calls == 3


@pytest.mark.core
@pytest.mark.asyncio
async def test_empty_configuration_is_cached():
    recorder = _Recorder()
    source = _Source([])
    dispatcher = _dispatcher(source, recorder)

    await dispatcher.send_client_created({"id": "c1"})
    await dispatcher.send_client_created({"id": "c2"})

    assert source.calls == 1


@pytest.mark.core
@pytest.mark.asyncio
async def test_failed_configuration_read_is_not_cached():
    recorder = _Recorder()
    source = _Source(
        [_destination(clients=ALL_ON)],
        error=RecoverableError("firestore unavailable"),
    )
    dispatcher = _dispatcher(source, recorder)

    assert await dispatcher.send_client_created({"id": "c1"}) is False
    assert recorder.requests == []

    source.error = None
    assert await dispatcher.send_client_created({"id": "c1"}) is True
    assert source.calls == 2


@pytest.mark.core
@pytest.mark.asyncio
async def test_concurrent_cache_misses_share_one_read():
    recorder = _Recorder()
    source = _Source([_destination(clients=ALL_ON)])
    source.gate = asyncio.Event()
    dispatcher = _dispatcher(source, recorder)

    first = asyncio.ensure_future(dispatcher.get_destinations())
    second = asyncio.ensure_future(dispatcher.get_destinations())
    await asyncio.sleep(0)
    source.gate.set()
    left, right = await asyncio.gather(first, second)

    assert source.calls == 1
    assert [item.id for item in left] == ["a"]
    assert [item.id for item in right] == ["a"]


@pytest.mark.core
@pytest.mark.asyncio
async def test_status_variants_carry_previous_and_new_status():
    recorder = _Recorder()
    source = _Source([_destination(clients=ALL_ON, proposals=ALL_ON)])
    dispatcher = _dispatcher(source, recorder)
    record = {"id": "c1", "status": "active"}

    await dispatcher.send_client_status_changed(record, "pending")
    await dispatcher.send_proposal_status_changed({"id": "p1", "status": "won"}, None)

    first, second = recorder.bodies()
    assert first["event"] == "client_status_changed"
    assert first["data"]["previousStatus"] == "pending"
    assert first["data"]["newStatus"] == "active"
    assert "previousStatus" not in record
    assert second["event"] == "proposal_status_changed"
    assert second["data"]["previousStatus"] is None
    assert second["data"]["newStatus"] == "won"


@pytest.mark.core
@pytest.mark.asyncio
async def test_pipeline_change_throttles_on_proposal_id():
    recorder = _Recorder()
    source = _Source(
        [
            _destination(
                pipeline=EntityToggles(status_changed=True),
                throttle=ThrottleSettings(enabled=True, interval_s=60),
            )
        ]
    )
    dispatcher = _dispatcher(source, recorder)
    change = {"proposalId": "p1", "previousStatus": "submitted", "newStatus": "credit"}

    assert await dispatcher.send_pipeline_status_changed(change) is True
    assert await dispatcher.send_pipeline_status_changed(change) is False
    assert dispatcher.throttle.last_attempt(("a", "pipeline_status_changed", "p1")) == 0.0
    assert recorder.bodies()[0]["data"]["newStatus"] == "credit"


@pytest.mark.core
@pytest.mark.asyncio
async def test_delivery_log_written_when_configured(tmp_path: Path):
    recorder = _Recorder()
    source = _Source([_destination(clients=ALL_ON)])
    dispatcher = _dispatcher(source, recorder, log_uri=str(tmp_path))

    report = await dispatcher.dispatch("client_created", {"id": "c1"}, "c1")

    assert report.log_uri is not None
    lines = Path(report.log_uri).read_text(encoding="utf-8").splitlines()
    assert len(lines) == 2
    record = json.loads(lines[1])
    assert record["webhook_id"] == "a"
    assert record["status"] == "success"
    assert record["entity_id"] == "c1"


@pytest.mark.core
@pytest.mark.asyncio
async def test_dispatcher_owns_default_client():
    dispatcher = WebhookDispatcher(_Source([]), timeout_s=2)
    assert await dispatcher.send_client_created({"id": "c1"}) is False
    await dispatcher.aclose()


@pytest.mark.core
@pytest.mark.asyncio
async def test_slow_destination_does_not_hold_up_others():
    release = asyncio.Event()
    requests: list[str] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        requests.append(str(request.url))
        if str(request.url) == "https://slow":
            await release.wait()
        return httpx.Response(200)

    source = _Source(
        [
            _destination("slow", "https://slow", clients=ALL_ON),
            _destination("fast", "https://fast", clients=ALL_ON),
        ]
    )
    dispatcher = _dispatcher(source, handler)

    task = asyncio.ensure_future(
        dispatcher.dispatch("client_created", {"id": "c1"}, "c1")
    )
    for _ in range(100):
        if "https://fast" in requests:
            break
        await asyncio.sleep(0)

    assert sorted(requests) == ["https://fast", "https://slow"]
    assert not task.done()
    release.set()
    report = await task
    assert report.successes == 2


@pytest.mark.core
@pytest.mark.asyncio
async def test_id_less_registry_destinations_throttle_separately(tmp_path: Path):
    registry = tmp_path / "control" / "webhooks.json"
    registry.parent.mkdir(parents=True)
    records = [
        {
            "name": name,
            "url": url,
            "enabled": True,
            "events": {"clients": {"updated": True}},
            "throttle": {"enabled": True, "interval": 60},
        }
        for name, url in (("A", "https://a"), ("B", "https://b"))
    ]
    registry.write_text(json.dumps({"webhooks": records}), encoding="utf-8")
    recorder = _Recorder()
    dispatcher = _dispatcher(JsonDestinationSource(str(tmp_path)), recorder)

    report = await dispatcher.dispatch("client_updated", {"id": "c1"}, "c1")

    assert sorted(str(request.url) for request in recorder.requests) == [
        "https://a",
        "https://b",
    ]
    assert report.throttled == 0
