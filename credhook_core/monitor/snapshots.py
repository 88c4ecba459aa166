from __future__ import annotations

import copy
from collections import OrderedDict
from typing import Any


class SnapshotCache:
    """Last-seen field set per record id for one watched collection.

    ``max_entries`` of 0 keeps every record; otherwise the least recently
    observed record is evicted. An evicted record is treated as unseen on its
    next modification, so its status diff is skipped that once.
    """

    def __init__(self, max_entries: int = 0) -> None:
        self.max_entries = max(0, max_entries)
        self._items: OrderedDict[str, dict[str, Any]] = OrderedDict()

    def get(self, record_id: str) -> dict[str, Any] | None:
        item = self._items.get(record_id)
        if item is None:
            return None
        self._items.move_to_end(record_id)
        return item

    def put(self, record_id: str, record: dict[str, Any]) -> None:
        self._items[record_id] = copy.deepcopy(record)
        self._items.move_to_end(record_id)
        if self.max_entries and len(self._items) > self.max_entries:
            self._items.popitem(last=False)

    def clear(self) -> None:
        self._items.clear()

    def __contains__(self, record_id: object) -> bool:
        return record_id in self._items

    def __len__(self) -> int:
        return len(self._items)
