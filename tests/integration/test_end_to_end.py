"""
Full pipeline, in process: submit -> sandbox (faked) -> parse -> persist ->
job.completed webhook signed and delivered.
"""
import json

import httpx
import pytest

from osintforge.base.config import OsintConfig, StorageConfig, WebhookConfig
from osintforge.data.models import DeliveryStatus, JobStatus, Webhook
from osintforge.engine.lifecycle import JobRequest
from osintforge.errors import RateLimitError
from osintforge.ratelimit import MemoryCounterStore
from osintforge.runtime import build_services
from osintforge.webhooks.signing import verify_signature

pytestmark = pytest.mark.integration


@pytest.fixture
def received():
    return []


@pytest.fixture
async def services(tmp_path, make_sandbox, received):
    def handler(request):
        received.append(request)
        return httpx.Response(200, text="thanks")

    config = OsintConfig(
        storage=StorageConfig(base_dir=tmp_path),
        webhook=WebhookConfig(retry_poll_interval=0.05),
    )
    built = build_services(
        config,
        sandbox=make_sandbox(),
        counter_store=MemoryCounterStore(),
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )
    await built.start()
    yield built
    await built.shutdown()


@pytest.mark.asyncio
async def test_completed_job_reaches_subscribed_webhook(services, received):
    webhook = await services.webhooks.create(
        Webhook(owner_id="user-1", url="https://hooks.example.com/osint", secret="s3cr3t", events={"job.completed"})
    )

    result = await services.manager.submit("user-1", "user", JobRequest("username-search", {"username": "johndoe"}))
    assert result.job.status is JobStatus.PENDING
    assert result.rate_limit.limit == 10
    assert result.rate_limit.remaining == 9

    await services.pool.join()
    await services.bus.drain()

    job = await services.manager.get(result.job.id, owner_id="user-1")
    assert job.status is JobStatus.COMPLETED
    assert job.progress == 100
    assert job.started_at is not None and job.completed_at is not None

    (request,) = received
    body = request.content.decode()
    assert verify_signature(body, request.headers["X-Webhook-Signature"], "s3cr3t")
    payload = json.loads(body)
    assert payload["event"] == "job.completed"
    assert payload["webhook_id"] == webhook.id
    assert payload["data"]["job_id"] == job.id
    assert payload["data"]["output"]["parsed"] == {
        "username": "johndoe",
        "totalSites": 1,
        "foundSites": 1,
        "results": [{"site": "twitter", "url": "https://twitter.com/johndoe", "found": True}],
    }

    (delivery,) = await services.webhooks.list_deliveries(webhook.id)
    assert delivery.status is DeliveryStatus.SUCCESS
    stored = await services.webhooks.get(webhook.id)
    assert stored.successful_deliveries == 1


@pytest.mark.asyncio
async def test_tool_budget_is_enforced_across_submissions(services):
    for _ in range(10):
        await services.manager.submit("user-1", "user", JobRequest("username-search", {"username": "johndoe"}))

    with pytest.raises(RateLimitError) as exc_info:
        await services.manager.submit("user-1", "user", JobRequest("username-search", {"username": "johndoe"}))
    assert exc_info.value.info.remaining == 0

    # Another user has their own budget
    await services.manager.submit("user-2", "user", JobRequest("username-search", {"username": "johndoe"}))
    await services.pool.join()
    assert len(await services.jobs.list_for_owner("user-1")) == 10
