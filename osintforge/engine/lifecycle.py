"""
Module lifecycle: the JobManager, sole writer of job state.

    pending --start--> running --complete--> completed
       |                  |-----fail------> failed --retry--> pending
       |                  '-----cancel----> cancelled
       |--fail--> failed
       '--cancel--> cancelled

Every transition is a compare-and-set against the stored status, so a worker
finishing a job the user just cancelled loses cleanly instead of resurrecting
it. Terminal states accept nothing except the explicit failed -> pending retry.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, FrozenSet, Mapping, Optional, Protocol

from osintforge.base.timeutil import now_iso
from osintforge.data.job_store import JobStore
from osintforge.data.models import Job, JobStatus
from osintforge.errors import InvalidTransitionError, NotFoundError
from osintforge.events import EventBus, EventType
from osintforge.ratelimit import IntakeLimiter, RateLimitInfo, UserRole
from osintforge.toolkit.registry import ToolRegistry

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: Dict[JobStatus, FrozenSet[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.RUNNING, JobStatus.FAILED, JobStatus.CANCELLED}),
    JobStatus.RUNNING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}),
    JobStatus.FAILED: frozenset({JobStatus.PENDING}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.CANCELLED: frozenset(),
}


def sources_for(target: JobStatus) -> FrozenSet[JobStatus]:
    """Statuses from which ``target`` is reachable in one step."""
    return frozenset(s for s, targets in ALLOWED_TRANSITIONS.items() if target in targets)


@dataclass
class JobRequest:
    tool_name: str
    input: Mapping[str, Any] = field(default_factory=dict)
    priority: int = 0


@dataclass
class SubmitResult:
    job: Job
    rate_limit: Optional[RateLimitInfo] = None

    def to_response(self) -> Dict[str, Any]:
        return {"id": self.job.id, "status": self.job.status.value, "progress": self.job.progress}


class JobTerminator(Protocol):
    def terminate(self, job_id: str) -> bool: ...


class JobManager:
    def __init__(
        self,
        store: JobStore,
        registry: ToolRegistry,
        bus: EventBus,
        limiter: Optional[IntakeLimiter] = None,
    ):
        self.store = store
        self.registry = registry
        self.bus = bus
        self.limiter = limiter
        self._enqueue: Optional[Callable[[Job], Awaitable[None]]] = None
        self._terminator: Optional[JobTerminator] = None

    def bind_worker(self, enqueue: Callable[[Job], Awaitable[None]], terminator: JobTerminator) -> None:
        self._enqueue = enqueue
        self._terminator = terminator

    # -------- Intake --------

    async def submit(self, owner_id: str, role: UserRole | str, request: JobRequest) -> SubmitResult:
        """
        Validate, rate-limit, persist and enqueue a job.

        Raises:
            ValidationError: unknown tool or input rejected by the tool schema
            RateLimitError: the owner is over one of their budgets
        """
        executor = self.registry.require(request.tool_name)
        params = executor.validate(request.input)

        info = None
        if self.limiter is not None:
            info = await self.limiter.admit(owner_id, role, executor.metadata)

        job = Job(
            owner_id=owner_id,
            tool_name=request.tool_name,
            input=params.model_dump(mode="json", by_alias=True, exclude_none=True),
            priority=request.priority,
        )
        await self.store.create(job)
        logger.info(f"[JobManager] Created job {job.id} ({job.tool_name}) for {owner_id}")
        self.bus.emit_job_event(EventType.JOB_CREATED, job)

        if self._enqueue is not None:
            await self._enqueue(job)
        return SubmitResult(job=job, rate_limit=info)

    async def get(self, job_id: str, owner_id: Optional[str] = None) -> Job:
        job = await self.store.get(job_id)
        if job is None or (owner_id is not None and job.owner_id != owner_id):
            raise NotFoundError(f"Job not found: {job_id}")
        return job

    # -------- Worker-driven transitions --------

    async def start(self, job_id: str) -> Optional[Job]:
        job = await self.store.transition(
            job_id, sources_for(JobStatus.RUNNING), JobStatus.RUNNING, started_at=now_iso()
        )
        if job is None:
            logger.info(f"[JobManager] Job {job_id} no longer pending; skipping")
            return None
        self.bus.emit_job_event(EventType.JOB_STARTED, job)
        return job

    async def record_progress(self, job_id: str, percentage: int) -> bool:
        value = max(0, min(100, int(percentage)))
        return await self.store.update_progress(job_id, value)

    async def complete(self, job_id: str, output: Dict[str, Any]) -> Optional[Job]:
        job = await self.store.transition(
            job_id,
            sources_for(JobStatus.COMPLETED),
            JobStatus.COMPLETED,
            output=output,
            progress=100,
            completed_at=now_iso(),
        )
        if job is None:
            logger.warning(f"[JobManager] Discarding result for job {job_id}: no longer running")
            return None
        logger.info(f"[JobManager] Job {job_id} completed")
        self.bus.emit_job_event(EventType.JOB_COMPLETED, job)
        return job

    async def fail(self, job_id: str, message: str) -> Optional[Job]:
        job = await self.store.transition(
            job_id,
            sources_for(JobStatus.FAILED),
            JobStatus.FAILED,
            error_message=message,
            completed_at=now_iso(),
        )
        if job is None:
            logger.warning(f"[JobManager] Could not mark job {job_id} failed: already terminal")
            return None
        logger.info(f"[JobManager] Job {job_id} failed: {message}")
        self.bus.emit_job_event(EventType.JOB_FAILED, job)
        return job

    # -------- User actions --------

    async def cancel(self, job_id: str, owner_id: Optional[str] = None) -> Job:
        current = await self.get(job_id, owner_id)
        if JobStatus.CANCELLED not in ALLOWED_TRANSITIONS[current.status]:
            raise InvalidTransitionError(
                f"Cannot cancel job in status {current.status.value}",
                details={"job_id": job_id, "status": current.status.value},
            )
        job = await self.store.transition(
            job_id, sources_for(JobStatus.CANCELLED), JobStatus.CANCELLED, completed_at=now_iso()
        )
        if job is None:
            latest = await self.get(job_id)
            raise InvalidTransitionError(
                f"Cannot cancel job in status {latest.status.value}",
                details={"job_id": job_id, "status": latest.status.value},
            )
        # A pending job may have been picked up between the read and the update,
        # so the terminator is always told. The job stays cancelled either way.
        if self._terminator is not None:
            killed = self._terminator.terminate(job_id)
            if not killed and current.status is JobStatus.RUNNING:
                logger.warning(f"[JobManager] No live execution found for cancelled job {job_id}")
        logger.info(f"[JobManager] Job {job_id} cancelled")
        return job

    async def retry(self, job_id: str, owner_id: Optional[str] = None) -> Job:
        await self.get(job_id, owner_id)
        job = await self.store.transition(
            job_id,
            {JobStatus.FAILED},
            JobStatus.PENDING,
            progress=0,
            error_message=None,
            output=None,
            started_at=None,
            completed_at=None,
        )
        if job is None:
            latest = await self.get(job_id)
            raise InvalidTransitionError(
                f"Only failed jobs can be retried (status: {latest.status.value})",
                details={"job_id": job_id, "status": latest.status.value},
            )
        logger.info(f"[JobManager] Job {job_id} re-queued for retry")
        if self._enqueue is not None:
            await self._enqueue(job)
        return job

    async def recover(self) -> int:
        """
        Reconcile jobs left behind by a previous process.

        Running jobs lost their sandbox with the old worker and are failed;
        pending jobs are enqueued again. Returns the number re-enqueued.
        """
        for job in await self.store.list_by_status(JobStatus.RUNNING):
            await self.fail(job.id, "Worker terminated before completion")
        pending = await self.store.list_by_status(JobStatus.PENDING)
        if self._enqueue is not None:
            for job in pending:
                await self._enqueue(job)
        if pending:
            logger.info(f"[JobManager] Re-enqueued {len(pending)} pending jobs")
        return len(pending)
