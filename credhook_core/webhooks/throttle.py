from __future__ import annotations

import time
from typing import Callable

from credhook_core.webhooks.types import WebhookDestination

ThrottleKey = tuple[str, str, str]


def throttle_key(
    destination: WebhookDestination,
    event_kind: str,
    entity_id: str,
) -> ThrottleKey:
    return (destination.id, event_kind, entity_id)


class ThrottleRegistry:
    """Last-attempt times per (destination, event kind, entity).

    Suppressed events are dropped, never queued. ``check_and_record`` is
    synchronous so concurrent sends on one event loop cannot both pass the
    check for the same key.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._last_attempt: dict[ThrottleKey, float] = {}

    def check_and_record(
        self,
        destination: WebhookDestination,
        event_kind: str,
        entity_id: str,
    ) -> bool:
        """Return True when the attempt is allowed, recording it as made."""
        settings = destination.throttle
        if not settings.enabled:
            return True
        key = throttle_key(destination, event_kind, entity_id)
        now = self._clock()
        last = self._last_attempt.get(key)
        if last is not None and now - last < settings.interval_s:
            return False
        self._last_attempt[key] = now
        return True

    def last_attempt(self, key: ThrottleKey) -> float | None:
        return self._last_attempt.get(key)

    def reset(self) -> None:
        self._last_attempt.clear()

    def __len__(self) -> int:
        return len(self._last_attempt)
