from __future__ import annotations

from typing import TYPE_CHECKING, Any

from credhook_core.logging import get_logger

if TYPE_CHECKING:
    from credhook_core.stores.interfaces import RecordLookup

logger = get_logger(__name__)


async def _lookup(
    lookup: RecordLookup,
    collection: str,
    record_id: str,
    entity_id: str,
) -> dict[str, Any] | None:
    try:
        return await lookup.get_record(collection, record_id)
    except Exception as exc:
        logger.warning(
            "Record lookup failed",
            extra={
                "collection": collection,
                "entity_id": entity_id,
                "error_message": str(exc),
            },
        )
        return None


async def enrich_proposal(
    proposal: dict[str, Any],
    lookup: RecordLookup,
    *,
    clients_collection: str = "clients",
    banks_collection: str = "banks",
) -> dict[str, Any]:
    """Add ``clientName``, ``bankName`` and ``bankTradingName`` in place.

    Point-in-time reads; a failed or empty lookup leaves the field as it was.
    """
    entity_id = str(proposal.get("id") or "")
    client_id = proposal.get("clientId")
    if client_id:
        client = await _lookup(lookup, clients_collection, str(client_id), entity_id)
        if client is not None:
            proposal["clientName"] = client.get("name")

    bank_id = proposal.get("bankId")
    if bank_id:
        bank = await _lookup(lookup, banks_collection, str(bank_id), entity_id)
        if bank is not None:
            proposal["bankName"] = bank.get("name")
            proposal["bankTradingName"] = bank.get("tradingName") or ""
    return proposal
