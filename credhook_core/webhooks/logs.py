from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Iterable

import fsspec

from credhook_core.storage.paths import join_uri, parent_path


@dataclass(frozen=True)
class WebhookDeliveryRecord:
    delivery_id: str
    event: str
    entity_id: str
    webhook_id: str
    status: str
    status_code: int | None
    error: str | None
    duration_ms: int
    delivered_at: str


def delivery_log_uri(base_uri: str, run_id: str) -> str:
    return join_uri(base_uri, "audit", "webhooks", f"{run_id}.jsonl")


def write_delivery_log(
    *,
    base_uri: str,
    run_id: str,
    records: Iterable[WebhookDeliveryRecord],
) -> str:
    """Write one dispatch's outcomes as JSON lines, header line first."""
    items = [asdict(record) for record in records]
    header = {
        "run_id": run_id,
        "written_at": datetime.now(timezone.utc).isoformat(),
        "deliveries": len(items),
    }
    lines = [json.dumps(header)] + [json.dumps(item) for item in items]

    uri = delivery_log_uri(base_uri, run_id)
    fs, path = fsspec.core.url_to_fs(uri)
    fs.makedirs(parent_path(path), exist_ok=True)
    with fs.open(path, "wb") as handle:
        handle.write(("\n".join(lines) + "\n").encode("utf-8"))
    return uri
