from __future__ import annotations

from dataclasses import dataclass
from typing import Any

CHANGE_ADDED = "added"
CHANGE_MODIFIED = "modified"
CHANGE_REMOVED = "removed"


@dataclass(frozen=True)
class RecordChange:
    type: str
    record_id: str
    data: dict[str, Any]

    def record(self) -> dict[str, Any]:
        """Field set with the document id folded in as ``id``."""
        payload = dict(self.data)
        payload["id"] = self.record_id
        return payload
