"""
Module events: in-process bus for job lifecycle events.

The job manager publishes; the webhook dispatcher subscribes. Subscribers are
coroutines run as tracked background tasks so that a slow or failing
subscriber (a webhook endpoint timing out, say) never holds up the job state
transition that produced the event.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Set

from osintforge.base.timeutil import now_iso

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    JOB_CREATED = "job.created"
    JOB_STARTED = "job.started"
    JOB_COMPLETED = "job.completed"
    JOB_FAILED = "job.failed"
    INVESTIGATION_CREATED = "investigation.created"
    INVESTIGATION_UPDATED = "investigation.updated"
    INVESTIGATION_DELETED = "investigation.deleted"
    REPORT_GENERATED = "report.generated"
    REPORT_SHARED = "report.shared"
    WEBHOOK_TEST = "webhook.test"


@dataclass(frozen=True)
class DomainEvent:
    type: EventType
    user_id: str
    data: Dict[str, Any]
    timestamp: str = field(default_factory=now_iso)


Subscriber = Callable[[DomainEvent], Awaitable[Any]]


class EventBus:
    def __init__(self):
        self._subscribers: List[Subscriber] = []
        self._pending: Set[asyncio.Task] = set()

    def subscribe(self, callback: Subscriber) -> None:
        self._subscribers.append(callback)

    def emit(self, event: DomainEvent) -> None:
        """Schedule every subscriber for ``event`` and return immediately."""
        for callback in self._subscribers:
            task = asyncio.create_task(self._run(callback, event))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def _run(self, callback: Subscriber, event: DomainEvent) -> None:
        try:
            await callback(event)
        except Exception as e:
            logger.error(f"[EventBus] Subscriber failed for {event.type.value}: {e}", exc_info=True)

    async def drain(self) -> None:
        """Wait for every in-flight subscriber task (used at shutdown and in tests)."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    @property
    def pending(self) -> int:
        return len(self._pending)

    # --- Convenience Methods ---

    def emit_job_event(self, event_type: EventType, job: Any) -> None:
        data: Dict[str, Any] = {
            "job_id": job.id,
            "tool_name": job.tool_name,
            "status": job.status.value,
            "progress": job.progress,
        }
        if event_type is EventType.JOB_COMPLETED:
            data["output"] = job.output
            data["completed_at"] = job.completed_at
        elif event_type is EventType.JOB_FAILED:
            data["error_message"] = job.error_message
            data["completed_at"] = job.completed_at
        elif event_type is EventType.JOB_STARTED:
            data["started_at"] = job.started_at
        else:
            data["created_at"] = job.created_at
        self.emit(DomainEvent(type=event_type, user_id=job.owner_id, data=data))
