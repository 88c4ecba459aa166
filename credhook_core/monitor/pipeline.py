from __future__ import annotations

from typing import Any

from credhook_core.auth.types import Session


def status_changed(previous: dict[str, Any], current: dict[str, Any]) -> bool:
    return previous.get("status") != current.get("status")


def pipeline_changed(previous: dict[str, Any], current: dict[str, Any]) -> bool:
    return previous.get("pipelineStatus") != current.get("pipelineStatus")


def pipeline_change_payload(
    proposal: dict[str, Any],
    previous_stage: str | None,
    *,
    actor: Session | None,
    changed_at: str,
) -> dict[str, Any]:
    return {
        "proposalId": proposal.get("id"),
        "proposalNumber": proposal.get("number"),
        "clientId": proposal.get("clientId"),
        "clientName": proposal.get("clientName"),
        "previousStatus": previous_stage,
        "newStatus": proposal.get("pipelineStatus"),
        "changedAt": changed_at,
        "changedBy": actor.actor() if actor else {"id": None, "name": None, "role": None},
    }
