from credhook_core.monitor.enrichment import enrich_proposal
from credhook_core.monitor.monitor import ChangeMonitor
from credhook_core.monitor.pipeline import pipeline_change_payload
from credhook_core.monitor.redaction import redact_client
from credhook_core.monitor.snapshots import SnapshotCache
from credhook_core.monitor.watcher import CollectionWatcher

__all__ = [
    "ChangeMonitor",
    "CollectionWatcher",
    "SnapshotCache",
    "enrich_proposal",
    "pipeline_change_payload",
    "redact_client",
]
