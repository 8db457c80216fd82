"""Pytest configuration for OSINTForge."""
import asyncio
import os
import tempfile
from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional, Tuple

import pytest

from osintforge.data.db import Database
from osintforge.data.job_store import JobStore
from osintforge.data.webhook_store import WebhookStore
from osintforge.engine.sandbox import ProcessResult, SandboxRequest
from osintforge.toolkit.models import STAGE_EXECUTION, STAGE_SANDBOX_INIT, ExecutionOptions


def pytest_configure():
    # Keep config side effects (data dir creation) out of the user's home.
    os.environ.setdefault("OSINT_DATA_DIR", tempfile.mkdtemp(prefix="osintforge-tests-"))
    os.environ.setdefault("OSINT_LOG_FILE", "false")


SHERLOCK_JSON = '{"johndoe":{"twitter":{"status":"Claimed","url_user":"https://twitter.com/johndoe"}}}'


class FakeSandbox:
    """Stands in for SandboxRunner: records requests and replays canned output."""

    def __init__(self, stdout: str = SHERLOCK_JSON, exc: Optional[BaseException] = None, delay: float = 0.0):
        self.stdout = stdout
        self.exc = exc
        self.delay = delay
        self.requests: List[Tuple[SandboxRequest, int]] = []

    async def run(self, request: SandboxRequest, timeout_ms: int, options: Optional[ExecutionOptions] = None) -> ProcessResult:
        self.requests.append((request, timeout_ms))
        options = options or ExecutionOptions()
        options.report(STAGE_SANDBOX_INIT)
        options.report(STAGE_EXECUTION)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.exc is not None:
            raise self.exc
        return ProcessResult(exit_code=0, stdout=self.stdout, stderr="", duration_ms=3)


class FakeClock:
    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


async def wait_until(predicate, timeout: float = 5.0, interval: float = 0.01) -> Any:
    """Poll an async predicate until it returns something truthy."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        value = await predicate()
        if value:
            return value
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(interval)


@pytest.fixture
async def db(tmp_path):
    database = Database(tmp_path / "osintforge-test.db")
    await database.init()
    yield database
    await database.close()


@pytest.fixture
def job_store(db):
    return JobStore(db)


@pytest.fixture
def webhook_store(db):
    return WebhookStore(db)


@pytest.fixture
def fake_sandbox():
    return FakeSandbox()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_sandbox():
    return FakeSandbox


@pytest.fixture
def poll():
    return wait_until


@pytest.fixture
def sherlock_json():
    return SHERLOCK_JSON
