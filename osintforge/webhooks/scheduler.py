"""Background loop that re-attempts webhook deliveries once their backoff has elapsed."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable, Optional

from osintforge.base.timeutil import isoformat, utc_now
from osintforge.data.webhook_store import WebhookStore
from osintforge.webhooks.delivery import WebhookDispatcher

logger = logging.getLogger(__name__)


class RetryScheduler:
    """
    Polls for deliveries whose ``next_retry_at`` has passed: ``retrying`` ones
    whose backoff is over, and ``pending`` ones whose in-flight lease expired
    because the attempt holding them never finished.

    Each due delivery is claimed with a compare-and-set that moves it to
    ``pending`` and pushes ``next_retry_at`` out by the dispatcher lease, so a
    delivery is never in flight twice even if two schedulers share the database.
    """

    def __init__(
        self,
        store: WebhookStore,
        dispatcher: WebhookDispatcher,
        poll_interval: float = 5.0,
        batch_size: int = 50,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.poll_interval = poll_interval
        self.batch_size = batch_size
        self.clock = clock
        self._task: Optional[asyncio.Task] = None
        self._stop = asyncio.Event()

    async def run_once(self) -> int:
        """Attempt every delivery that is due now. Returns how many were attempted."""
        now = self.clock()
        stamp = isoformat(now)
        lease_until = isoformat(now + self.dispatcher.lease)
        due = await self.store.due_retries(stamp, self.batch_size)
        claimed = [d for d in due if await self.store.claim(d.id, stamp, lease_until)]
        if not claimed:
            return 0
        results = await asyncio.gather(*(self.dispatcher.retry(d.id) for d in claimed), return_exceptions=True)
        for delivery, result in zip(claimed, results):
            if isinstance(result, BaseException):
                logger.error(f"[RetryScheduler] Retry of delivery {delivery.id} raised: {result}")
        return len(claimed)

    async def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                attempted = await self.run_once()
                if attempted:
                    logger.info(f"[RetryScheduler] Retried {attempted} deliveries")
            except Exception as e:
                logger.error(f"[RetryScheduler] Poll failed: {e}", exc_info=True)
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._stop.clear()
            self._task = asyncio.create_task(self._loop(), name="webhook-retry-scheduler")

    async def stop(self) -> None:
        self._stop.set()
        if self._task is not None:
            await self._task
            self._task = None
