from __future__ import annotations

import asyncio
import contextlib
from typing import TYPE_CHECKING, Awaitable, Callable, Sequence

from credhook_core.logging import get_logger
from credhook_core.stores.changes import RecordChange

if TYPE_CHECKING:
    from credhook_core.stores.interfaces import ChangeFeed, Subscription

ChangeProcessor = Callable[[RecordChange], Awaitable[None]]

logger = get_logger(__name__)


class CollectionWatcher:
    """One live subscription plus the worker that drains it in order.

    Feed callbacks may arrive on a backend thread; they only enqueue onto the
    owning event loop. A supervisor resubscribes with exponential backoff
    when the feed reports an error or goes inactive.
    """

    def __init__(
        self,
        collection: str,
        feed: ChangeFeed,
        process: ChangeProcessor,
        *,
        reconnect_initial_s: float = 1.0,
        reconnect_max_s: float = 60.0,
        healthcheck_s: float = 5.0,
    ) -> None:
        self.collection = collection
        self._feed = feed
        self._process = process
        self._reconnect_initial_s = reconnect_initial_s
        self._reconnect_max_s = reconnect_max_s
        self._healthcheck_s = healthcheck_s
        self._loop: asyncio.AbstractEventLoop | None = None
        self._queue: asyncio.Queue[Sequence[RecordChange]] = asyncio.Queue()
        self._failed = asyncio.Event()
        self._subscription: Subscription | None = None
        self._worker: asyncio.Task[None] | None = None
        self._supervisor: asyncio.Task[None] | None = None
        self.reconnects = 0
        self.processed = 0

    @property
    def subscribed(self) -> bool:
        subscription = self._subscription
        return subscription is not None and subscription.is_active

    async def start(self) -> None:
        self._loop = asyncio.get_running_loop()
        self._worker = asyncio.create_task(self._drain())
        if not self._subscribe():
            self._failed.set()
        self._supervisor = asyncio.create_task(self._supervise())

    async def stop(self) -> None:
        for task in (self._supervisor, self._worker):
            if task is None:
                continue
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._supervisor = None
        self._worker = None
        self._unsubscribe()

    async def join(self) -> None:
        await self._queue.join()

    def _subscribe(self) -> bool:
        try:
            self._subscription = self._feed.subscribe(
                self.collection,
                self._on_changes,
                self._on_error,
            )
        except Exception as exc:
            logger.error(
                "Failed to subscribe to collection",
                extra={"collection": self.collection, "error_message": str(exc)},
            )
            self._subscription = None
            return False
        logger.info("Subscribed to collection", extra={"collection": self.collection})
        return True

    def _unsubscribe(self) -> None:
        subscription = self._subscription
        self._subscription = None
        if subscription is None:
            return
        try:
            subscription.unsubscribe()
        except Exception as exc:
            logger.warning(
                "Failed to unsubscribe from collection",
                extra={"collection": self.collection, "error_message": str(exc)},
            )

    def _on_changes(self, changes: Sequence[RecordChange]) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self._queue.put_nowait, list(changes))

    def _on_error(self, exc: BaseException) -> None:
        logger.error(
            "Collection subscription failed",
            extra={"collection": self.collection, "error_message": str(exc)},
        )
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self._failed.set)

    async def _drain(self) -> None:
        while True:
            batch = await self._queue.get()
            try:
                for change in batch:
                    try:
                        await self._process(change)
                    except Exception as exc:
                        logger.exception(
                            "Failed to process record change",
                            extra={
                                "collection": self.collection,
                                "entity_id": change.record_id,
                                "error_message": str(exc),
                            },
                        )
                    self.processed += 1
            finally:
                self._queue.task_done()

    async def _supervise(self) -> None:
        while True:
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._failed.wait(), timeout=self._healthcheck_s)
            if not self._failed.is_set() and self.subscribed:
                continue
            await self._reconnect()

    async def _reconnect(self) -> None:
        self._unsubscribe()
        delay = self._reconnect_initial_s
        attempt = 0
        while True:
            attempt += 1
            logger.warning(
                "Reconnecting collection subscription",
                extra={
                    "collection": self.collection,
                    "attempt": attempt,
                    "backoff_s": delay,
                },
            )
            await asyncio.sleep(delay)
            self._failed.clear()
            if self._subscribe():
                self.reconnects += 1
                return
            delay = min(delay * 2, self._reconnect_max_s)
