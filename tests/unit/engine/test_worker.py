"""WorkerPool: execution, failure capture, cancellation and priority order."""
import sys
from dataclasses import replace

import pytest

from osintforge.data.models import JobStatus
from osintforge.engine.lifecycle import JobManager, JobRequest
from osintforge.engine.sandbox import run_process
from osintforge.engine.worker import WorkerPool
from osintforge.errors import SandboxError, SandboxFailure
from osintforge.events import EventBus, EventType
from osintforge.toolkit.registry import build_default_registry
from osintforge.toolkit.tools import USERNAME_SEARCH


class SleepingSandbox:
    """Runs a real child process that never finishes on its own."""

    async def run(self, request, timeout_ms, options=None):
        return await run_process([sys.executable, "-c", "import time; time.sleep(30)"], timeout_ms)


class BrokenExecutor:
    metadata = USERNAME_SEARCH.metadata

    def validate(self, raw):
        return USERNAME_SEARCH.input_model.model_validate(raw)

    async def execute(self, raw, options=None):
        raise RuntimeError("kaboom")


@pytest.fixture
def events():
    return []


@pytest.fixture
def bus(events):
    bus = EventBus()

    async def record(event):
        events.append(event)

    bus.subscribe(record)
    return bus


def _pool(job_store, bus, sandbox, definitions=None, concurrency=2):
    registry = build_default_registry(sandbox, definitions=definitions)
    manager = JobManager(job_store, registry, bus)
    return manager, WorkerPool(manager, registry, concurrency=concurrency)


@pytest.mark.asyncio
async def test_job_runs_to_completion(job_store, bus, events, make_sandbox):
    manager, pool = _pool(job_store, bus, make_sandbox())
    await pool.start(recover=False)
    try:
        job = (await manager.submit("user-1", "user", JobRequest("username-search", {"username": "johndoe"}))).job
        await pool.join()
    finally:
        await pool.stop()

    stored = await job_store.get(job.id)
    assert stored.status is JobStatus.COMPLETED
    assert stored.progress == 100
    assert stored.output["parsed"] == {
        "username": "johndoe",
        "totalSites": 1,
        "foundSites": 1,
        "results": [{"site": "twitter", "url": "https://twitter.com/johndoe", "found": True}],
    }
    assert stored.output["metadata"]["parser"] == "structured"

    await bus.drain()
    assert [e.type for e in events] == [EventType.JOB_CREATED, EventType.JOB_STARTED, EventType.JOB_COMPLETED]


@pytest.mark.asyncio
async def test_tool_failure_marks_job_failed(job_store, bus, events, make_sandbox):
    sandbox = make_sandbox(exc=SandboxError(SandboxFailure.EXIT, "Process exited with code 1. Error: boom", exit_code=1))
    manager, pool = _pool(job_store, bus, sandbox)
    await pool.start(recover=False)
    try:
        job = (await manager.submit("user-1", "user", JobRequest("username-search", {"username": "johndoe"}))).job
        await pool.join()
    finally:
        await pool.stop()

    stored = await job_store.get(job.id)
    assert stored.status is JobStatus.FAILED
    assert stored.error_message == "Execution failed for username-search: Process exited with code 1. Error: boom"
    assert stored.output is None

    await bus.drain()
    failed = [e for e in events if e.type is EventType.JOB_FAILED]
    assert len(failed) == 1
    assert failed[0].data["error_message"] == stored.error_message


@pytest.mark.asyncio
async def test_wall_clock_timeout_fails_job(job_store, bus):
    quick = replace(USERNAME_SEARCH, metadata=replace(USERNAME_SEARCH.metadata, default_timeout_ms=1000))
    manager, pool = _pool(job_store, bus, SleepingSandbox(), definitions=[quick])
    job = (await manager.submit("user-1", "user", JobRequest("username-search", {"username": "johndoe"}))).job

    await pool.process(job.id)

    stored = await job_store.get(job.id)
    assert stored.status is JobStatus.FAILED
    assert stored.error_message == "Execution failed for username-search: Execution timed out after 1000ms"


@pytest.mark.asyncio
async def test_unexpected_error_is_captured(job_store, bus, make_sandbox):
    manager, pool = _pool(job_store, bus, make_sandbox())
    pool.registry.register(BrokenExecutor())
    job = (await manager.submit("user-1", "user", JobRequest("username-search", {"username": "johndoe"}))).job

    await pool.process(job.id)

    stored = await job_store.get(job.id)
    assert stored.status is JobStatus.FAILED
    assert stored.error_message == "Execution failed for username-search: kaboom"


@pytest.mark.asyncio
async def test_cancel_running_job(job_store, bus, events, make_sandbox, poll):
    manager, pool = _pool(job_store, bus, make_sandbox(delay=30))
    await pool.start(recover=False)
    try:
        job = (await manager.submit("user-1", "user", JobRequest("username-search", {"username": "johndoe"}))).job

        async def is_running():
            return job.id in pool.active_jobs

        await poll(is_running)
        cancelled = await manager.cancel(job.id, owner_id="user-1")
        await pool.join()
    finally:
        await pool.stop()

    assert cancelled.status is JobStatus.CANCELLED
    assert pool.active_jobs == []
    stored = await job_store.get(job.id)
    assert stored.status is JobStatus.CANCELLED
    assert stored.output is None

    await bus.drain()
    kinds = [e.type for e in events]
    assert EventType.JOB_COMPLETED not in kinds
    assert EventType.JOB_FAILED not in kinds


@pytest.mark.asyncio
async def test_higher_priority_runs_first(job_store, bus, make_sandbox):
    sandbox = make_sandbox()
    manager, pool = _pool(job_store, bus, sandbox, concurrency=1)
    for username, priority in (("low", 0), ("high", 5), ("mid", 1), ("low2", 0)):
        await manager.submit("user-1", "user", JobRequest("username-search", {"username": username}, priority=priority))

    await pool.start(recover=False)
    try:
        await pool.join()
    finally:
        await pool.stop()

    assert [list(request.command)[2] for request, _ in sandbox.requests] == ["high", "mid", "low", "low2"]


@pytest.mark.asyncio
async def test_start_recovers_orphaned_jobs(job_store, bus, make_sandbox):
    manager, pool = _pool(job_store, bus, make_sandbox())
    orphan = (await manager.submit("user-1", "user", JobRequest("username-search", {"username": "a"}))).job
    await manager.start(orphan.id)

    await pool.start(recover=True)
    try:
        await pool.join()
    finally:
        await pool.stop()

    stored = await job_store.get(orphan.id)
    assert stored.status is JobStatus.FAILED
    assert stored.error_message == "Worker terminated before completion"
