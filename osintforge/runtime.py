"""
Service wiring: builds every long-lived component from an OsintConfig and
starts/stops them in dependency order.

Nothing here is a global; the API and the CLI each hold one Services value.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from osintforge.base.config import OsintConfig, get_config
from osintforge.data.db import Database
from osintforge.data.job_store import JobStore
from osintforge.data.webhook_store import WebhookStore
from osintforge.engine.lifecycle import JobManager
from osintforge.engine.sandbox import SandboxRunner
from osintforge.engine.worker import WorkerPool
from osintforge.events import EventBus
from osintforge.ratelimit import (
    CounterStore,
    IntakeLimiter,
    MemoryCounterStore,
    RedisCounterStore,
    SlidingWindowRateLimiter,
)
from osintforge.toolkit.executor import ProcessSandbox
from osintforge.toolkit.registry import ToolRegistry, build_default_registry
from osintforge.webhooks.delivery import WebhookDispatcher
from osintforge.webhooks.scheduler import RetryScheduler

logger = logging.getLogger(__name__)


@dataclass
class Services:
    config: OsintConfig
    database: Database
    jobs: JobStore
    webhooks: WebhookStore
    registry: ToolRegistry
    bus: EventBus
    limiter: SlidingWindowRateLimiter
    manager: JobManager
    pool: WorkerPool
    dispatcher: WebhookDispatcher
    scheduler: RetryScheduler
    http_client: httpx.AsyncClient
    counter_store: CounterStore
    sandbox: ProcessSandbox

    async def start(self) -> None:
        await self.database.init()
        await self.pool.start()
        self.scheduler.start()
        logger.info("[Runtime] Services started")

    async def shutdown(self) -> None:
        await self.scheduler.stop()
        await self.pool.stop()
        if isinstance(self.sandbox, SandboxRunner):
            await self.sandbox.drain()
        await self.bus.drain()
        await self.http_client.aclose()
        if isinstance(self.counter_store, RedisCounterStore):
            await self.counter_store.close()
        await self.database.close()
        logger.info("[Runtime] Services stopped")


def _counter_store(config: OsintConfig) -> CounterStore:
    if config.rate_limit.redis_url:
        logger.info("[Runtime] Rate limiting backed by Redis")
        return RedisCounterStore.from_url(config.rate_limit.redis_url)
    logger.info("[Runtime] Rate limiting in memory (single process)")
    return MemoryCounterStore()


def build_services(
    config: Optional[OsintConfig] = None,
    *,
    sandbox: Optional[ProcessSandbox] = None,
    counter_store: Optional[CounterStore] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    database: Optional[Database] = None,
) -> Services:
    cfg = config or get_config()

    db = database or Database(cfg.storage.db_path)
    jobs = JobStore(db)
    webhooks = WebhookStore(db)

    runner = sandbox or SandboxRunner(cfg.sandbox)
    registry = build_default_registry(runner, cfg.sandbox)

    store = counter_store or _counter_store(cfg)
    limiter = SlidingWindowRateLimiter(store, fail_open=cfg.rate_limit.fail_open)
    intake = IntakeLimiter(limiter, key_prefix=cfg.rate_limit.key_prefix)

    bus = EventBus()
    manager = JobManager(jobs, registry, bus, intake)
    pool = WorkerPool(manager, registry, concurrency=cfg.worker.concurrency)

    client = http_client or httpx.AsyncClient(follow_redirects=False)
    dispatcher = WebhookDispatcher(webhooks, client, cfg.webhook)
    bus.subscribe(dispatcher.handle_event)
    scheduler = RetryScheduler(
        webhooks,
        dispatcher,
        poll_interval=cfg.webhook.retry_poll_interval,
        batch_size=cfg.webhook.retry_batch_size,
    )

    return Services(
        config=cfg,
        database=db,
        jobs=jobs,
        webhooks=webhooks,
        registry=registry,
        bus=bus,
        limiter=limiter,
        manager=manager,
        pool=pool,
        dispatcher=dispatcher,
        scheduler=scheduler,
        http_client=client,
        counter_store=store,
        sandbox=runner,
    )
