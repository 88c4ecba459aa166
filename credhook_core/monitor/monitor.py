from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable

from credhook_core.auth.roles import can_monitor
from credhook_core.auth.types import Session
from credhook_core.logging import get_logger
from credhook_core.monitor.enrichment import enrich_proposal
from credhook_core.monitor.pipeline import (
    pipeline_change_payload,
    pipeline_changed,
    status_changed,
)
from credhook_core.monitor.redaction import redact_client
from credhook_core.monitor.snapshots import SnapshotCache
from credhook_core.monitor.watcher import CollectionWatcher
from credhook_core.stores.changes import CHANGE_ADDED, CHANGE_MODIFIED, RecordChange

if TYPE_CHECKING:
    from credhook_core.stores.interfaces import ChangeFeed, RecordLookup
    from credhook_core.webhooks.dispatcher import WebhookDispatcher

logger = get_logger(__name__)


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _extra(collection: str, entity_id: str, **fields: Any) -> dict[str, Any]:
    return {"collection": collection, "entity_id": entity_id, **fields}


class ChangeMonitor:
    """Turns live changes on clients and proposals into webhook events.

    The monitor only runs while its session belongs to a manager or admin.
    Each attach starts from empty snapshots; the first observation of a
    record is a creation, later ones are diffed against the last-seen copy.
    Removals are not reported.
    """

    def __init__(
        self,
        dispatcher: WebhookDispatcher,
        feed: ChangeFeed,
        lookup: RecordLookup,
        *,
        clients_collection: str = "clients",
        proposals_collection: str = "proposals",
        banks_collection: str = "banks",
        snapshot_max_entries: int = 0,
        reconnect_initial_s: float = 1.0,
        reconnect_max_s: float = 60.0,
        healthcheck_s: float = 5.0,
        now_iso: Callable[[], str] = _utc_now_iso,
    ) -> None:
        self._dispatcher = dispatcher
        self._feed = feed
        self._lookup = lookup
        self.clients_collection = clients_collection
        self.proposals_collection = proposals_collection
        self.banks_collection = banks_collection
        self._reconnect_initial_s = reconnect_initial_s
        self._reconnect_max_s = reconnect_max_s
        self._healthcheck_s = healthcheck_s
        self._now_iso = now_iso
        self.clients = SnapshotCache(snapshot_max_entries)
        self.proposals = SnapshotCache(snapshot_max_entries)
        self._session: Session | None = None
        self._watchers: list[CollectionWatcher] = []

    @property
    def active(self) -> bool:
        return bool(self._watchers)

    @property
    def session(self) -> Session | None:
        return self._session

    async def update_session(self, session: Session | None) -> bool:
        """Attach for an authorized session, detach otherwise.

        A different authorized session re-attaches from scratch.
        """
        if not can_monitor(session):
            if self.active:
                logger.info("Monitor session no longer authorized")
            await self.close()
            self._session = session
            return False
        if self.active and session == self._session:
            return True
        await self.close()
        self._session = session
        await self._attach()
        return True

    async def close(self) -> None:
        watchers, self._watchers = self._watchers, []
        for watcher in watchers:
            await watcher.stop()
        if watchers:
            logger.info("Change monitoring stopped")

    async def join(self) -> None:
        """Wait until every queued change has been processed."""
        for watcher in list(self._watchers):
            await watcher.join()

    def status(self) -> dict[str, Any]:
        caches = {
            self.clients_collection: self.clients,
            self.proposals_collection: self.proposals,
        }
        return {
            "active": self.active,
            "session_role": self._session.role if self._session else None,
            "collections": {
                watcher.collection: {
                    "subscribed": watcher.subscribed,
                    "snapshots": len(caches[watcher.collection]),
                    "processed": watcher.processed,
                    "reconnects": watcher.reconnects,
                }
                for watcher in self._watchers
            },
        }

    async def handle_client_change(self, change: RecordChange) -> None:
        if change.type not in (CHANGE_ADDED, CHANGE_MODIFIED):
            logger.debug(
                "Ignoring client removal",
                extra=_extra(self.clients_collection, change.record_id),
            )
            return
        client = redact_client(change.record())
        previous = self.clients.get(change.record_id)

        if change.type == CHANGE_ADDED:
            if previous is None:
                self.clients.put(change.record_id, client)
                logger.info(
                    "Client created",
                    extra=_extra(self.clients_collection, change.record_id),
                )
                await self._dispatcher.send_client_created(client)
                return
            if previous == client:
                return

        if previous is not None and status_changed(previous, client):
            logger.info(
                "Client status changed",
                extra=_extra(
                    self.clients_collection,
                    change.record_id,
                    status=client.get("status"),
                ),
            )
            await self._dispatcher.send_client_status_changed(
                client, previous.get("status") or ""
            )
        await self._dispatcher.send_client_updated(client)
        self.clients.put(change.record_id, client)

    async def handle_proposal_change(self, change: RecordChange) -> None:
        if change.type not in (CHANGE_ADDED, CHANGE_MODIFIED):
            logger.debug(
                "Ignoring proposal removal",
                extra=_extra(self.proposals_collection, change.record_id),
            )
            return
        proposal = await enrich_proposal(
            change.record(),
            self._lookup,
            clients_collection=self.clients_collection,
            banks_collection=self.banks_collection,
        )
        previous = self.proposals.get(change.record_id)

        if change.type == CHANGE_ADDED:
            if previous is None:
                self.proposals.put(change.record_id, proposal)
                logger.info(
                    "Proposal created",
                    extra=_extra(self.proposals_collection, change.record_id),
                )
                await self._dispatcher.send_proposal_created(proposal)
                return
            if previous == proposal:
                return

        if previous is not None:
            if status_changed(previous, proposal):
                logger.info(
                    "Proposal status changed",
                    extra=_extra(
                        self.proposals_collection,
                        change.record_id,
                        status=proposal.get("status"),
                    ),
                )
                await self._dispatcher.send_proposal_status_changed(
                    proposal, previous.get("status") or ""
                )
            if pipeline_changed(previous, proposal):
                logger.info(
                    "Proposal pipeline stage changed",
                    extra=_extra(
                        self.proposals_collection,
                        change.record_id,
                        status=proposal.get("pipelineStatus"),
                    ),
                )
                await self._dispatcher.send_pipeline_status_changed(
                    pipeline_change_payload(
                        proposal,
                        previous.get("pipelineStatus"),
                        actor=self._session,
                        changed_at=self._now_iso(),
                    )
                )
        await self._dispatcher.send_proposal_updated(proposal)
        self.proposals.put(change.record_id, proposal)

    async def _attach(self) -> None:
        self.clients.clear()
        self.proposals.clear()
        watchers = [
            self._watcher(self.clients_collection, self.handle_client_change),
            self._watcher(self.proposals_collection, self.handle_proposal_change),
        ]
        for watcher in watchers:
            await watcher.start()
        self._watchers = watchers
        logger.info(
            "Change monitoring started",
            extra={"status": self._session.role if self._session else None},
        )

    def _watcher(self, collection: str, process) -> CollectionWatcher:
        return CollectionWatcher(
            collection,
            self._feed,
            process,
            reconnect_initial_s=self._reconnect_initial_s,
            reconnect_max_s=self._reconnect_max_s,
            healthcheck_s=self._healthcheck_s,
        )
