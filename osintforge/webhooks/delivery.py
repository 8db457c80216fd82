"""
Module delivery: fan-out of lifecycle events to subscriber endpoints.

For each event the dispatcher finds the owner's active webhooks subscribed to
it, and for each one independently:

  1. builds and signs the payload,
  2. records a delivery (status pending, attempts 0) leased until the
     request timeout plus a grace period has passed,
  3. POSTs it, then records success, a scheduled retry, or terminal failure.

If the process dies between 2 and 3 the lease expires and the retry scheduler
picks the delivery up like any other due retry.

Retry ladder (seconds until the next attempt, indexed by attempts made):
    5, 30, 60, 300, 900
With the default five attempts the endpoint sees gaps of 5s, 30s, 60s and
300s; the 900s rung applies when max_attempts is raised above five.

Webhook counters move only on terminal outcomes: success adds to total and
successful; a final failure adds to total and failed.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional, Sequence

import httpx

from osintforge.base.config import WebhookConfig
from osintforge.base.timeutil import isoformat, utc_now
from osintforge.data.models import DeliveryStatus, Webhook, WebhookDelivery
from osintforge.data.webhook_store import WebhookStore
from osintforge.errors import DeliveryError, ErrorCode, NotFoundError
from osintforge.events import DomainEvent, EventType
from osintforge.webhooks.signing import build_payload, serialize_payload, sign_payload

logger = logging.getLogger(__name__)

DEFAULT_BACKOFF_SECONDS = (5, 30, 60, 300, 900)


def retry_delay(attempts: int, ladder: Sequence[int] = DEFAULT_BACKOFF_SECONDS) -> timedelta:
    """Delay before the next attempt after ``attempts`` failed ones (1-based)."""
    index = min(max(attempts, 1) - 1, len(ladder) - 1)
    return timedelta(seconds=ladder[index])


def truncate_body(text: str, limit: int) -> str:
    return text.encode("utf-8")[:limit].decode("utf-8", errors="ignore")


@dataclass(frozen=True)
class DispatchSummary:
    delivered: int = 0
    failed: int = 0


@dataclass(frozen=True)
class TestDeliveryResult:
    success: bool
    http_status: Optional[int]
    response_time_ms: int
    error_message: Optional[str]
    response_body: Optional[str]
    signature: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "http_status": self.http_status,
            "response_time_ms": self.response_time_ms,
            "error_message": self.error_message,
            "response_body": self.response_body,
            "signature": self.signature,
        }


class WebhookDispatcher:
    def __init__(
        self,
        store: WebhookStore,
        client: httpx.AsyncClient,
        config: Optional[WebhookConfig] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.client = client
        self.config = config or WebhookConfig()
        self.clock = clock

    @property
    def lease(self) -> timedelta:
        """How long an in-flight attempt owns its delivery before it counts as lost."""
        return timedelta(seconds=self.config.timeout_seconds + self.config.lease_grace_seconds)

    async def handle_event(self, event: DomainEvent) -> DispatchSummary:
        """EventBus subscriber entry point."""
        return await self.dispatch(event.type.value, event.user_id, event.data, timestamp=event.timestamp)

    async def dispatch(
        self,
        event_type: str,
        user_id: str,
        data: Dict[str, Any],
        timestamp: Optional[str] = None,
    ) -> DispatchSummary:
        webhooks = await self.store.list_active_for_event(user_id, event_type)
        if not webhooks:
            return DispatchSummary()

        stamp = timestamp or isoformat(self.clock())
        outcomes = await asyncio.gather(
            *(self._deliver_new(w, event_type, stamp, data, user_id) for w in webhooks),
            return_exceptions=True,
        )
        delivered = failed = 0
        for webhook, outcome in zip(webhooks, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(f"[Webhooks] Delivery to {webhook.id} raised: {outcome}")
                failed += 1
            elif outcome.status is DeliveryStatus.SUCCESS:
                delivered += 1
            else:
                failed += 1
        logger.info(f"[Webhooks] {event_type} for {user_id}: {delivered} delivered, {failed} pending/failed")
        return DispatchSummary(delivered=delivered, failed=failed)

    async def _deliver_new(
        self, webhook: Webhook, event_type: str, timestamp: str, data: Dict[str, Any], user_id: str
    ) -> WebhookDelivery:
        payload = build_payload(event_type, timestamp, data, user_id, webhook.id)
        now = self.clock()
        delivery = WebhookDelivery(
            webhook_id=webhook.id,
            event_type=event_type,
            payload=payload,
            max_attempts=self.config.max_attempts,
            next_retry_at=isoformat(now + self.lease),
            created_at=isoformat(now),
        )
        await self.store.create_delivery(delivery)
        return await self.attempt(webhook, delivery)

    def _headers(self, webhook: Webhook, event_type: str, timestamp: str, signature: str) -> Dict[str, str]:
        headers = dict(webhook.headers)
        headers.update({
            "Content-Type": "application/json",
            "User-Agent": self.config.user_agent,
            "X-Webhook-Signature": signature,
            "X-Webhook-Event": event_type,
            "X-Webhook-Timestamp": timestamp,
        })
        return headers

    async def _post(self, webhook: Webhook, payload: Dict[str, Any], timeout: float) -> httpx.Response:
        """Send one signed request. Raises DeliveryError on non-2xx or transport failure."""
        body = serialize_payload(payload)
        signature = sign_payload(body, webhook.secret)
        headers = self._headers(webhook, payload["event"], payload["timestamp"], signature)
        try:
            response = await self.client.post(webhook.url, content=body.encode("utf-8"), headers=headers, timeout=timeout)
        except httpx.HTTPError as exc:
            raise DeliveryError(f"{type(exc).__name__}: {exc}" if str(exc) else type(exc).__name__) from exc
        if not response.is_success:
            raise DeliveryError(
                f"HTTP {response.status_code}: {response.reason_phrase}",
                status_code=response.status_code,
                response_body=response.text,
            )
        return response

    async def attempt(self, webhook: Webhook, delivery: WebhookDelivery) -> WebhookDelivery:
        """Make one delivery attempt and persist its outcome."""
        limit = self.config.max_response_body
        try:
            response = await self._post(webhook, delivery.payload, self.config.timeout_seconds)
        except DeliveryError as exc:
            delivery.attempts += 1
            delivery.http_status = exc.status_code
            delivery.response_body = truncate_body(exc.response_body, limit) if exc.response_body else None
            delivery.error_message = exc.message
            if delivery.attempts >= delivery.max_attempts:
                delivery.status = DeliveryStatus.FAILED
                delivery.next_retry_at = None
                await self.store.save_attempt(delivery)
                await self.store.record_failure(webhook.id, exc.message)
                logger.warning(
                    f"[Webhooks] Delivery {delivery.id} to {webhook.url} failed permanently "
                    f"after {delivery.attempts} attempts: {exc.message}"
                )
            else:
                delay = retry_delay(delivery.attempts, self.config.backoff_seconds)
                delivery.status = DeliveryStatus.RETRYING
                delivery.next_retry_at = isoformat(self.clock() + delay)
                await self.store.save_attempt(delivery)
                logger.info(
                    f"[Webhooks] Delivery {delivery.id} attempt {delivery.attempts} failed "
                    f"({exc.message}); retrying in {int(delay.total_seconds())}s"
                )
            return delivery

        delivered_at = isoformat(self.clock())
        delivery.attempts += 1
        delivery.status = DeliveryStatus.SUCCESS
        delivery.http_status = response.status_code
        delivery.response_body = truncate_body(response.text, limit)
        delivery.error_message = None
        delivery.next_retry_at = None
        delivery.delivered_at = delivered_at
        await self.store.save_attempt(delivery)
        await self.store.record_success(webhook.id, delivered_at)
        logger.info(f"[Webhooks] Delivered {delivery.event_type} to {webhook.url} ({response.status_code})")
        return delivery

    async def retry(self, delivery_id: str) -> Optional[WebhookDelivery]:
        """Re-attempt a claimed delivery. Used by the retry scheduler."""
        delivery = await self.store.get_delivery(delivery_id)
        if delivery is None:
            return None
        webhook = await self.store.get(delivery.webhook_id)
        if webhook is None or not webhook.is_active:
            delivery.status = DeliveryStatus.FAILED
            delivery.next_retry_at = None
            delivery.error_message = "Webhook deleted or deactivated"
            await self.store.save_attempt(delivery)
            return delivery
        return await self.attempt(webhook, delivery)

    async def send_test(self, webhook_id: str, owner_id: Optional[str] = None) -> TestDeliveryResult:
        """Deliver a one-shot ``webhook.test`` event and report what the endpoint said."""
        webhook = await self.store.get(webhook_id)
        if webhook is None or (owner_id is not None and webhook.owner_id != owner_id):
            raise NotFoundError(f"Webhook not found: {webhook_id}", code=ErrorCode.WEBHOOK_NOT_FOUND)

        now = isoformat(self.clock())
        data = {"message": "This is a test webhook delivery", "webhook_id": webhook.id}
        payload = build_payload(EventType.WEBHOOK_TEST.value, now, data, webhook.owner_id, webhook.id)
        signature = sign_payload(serialize_payload(payload), webhook.secret)
        delivery = WebhookDelivery(
            webhook_id=webhook.id,
            event_type=EventType.WEBHOOK_TEST.value,
            payload=payload,
            max_attempts=1,
            created_at=now,
        )
        await self.store.create_delivery(delivery)

        started = time.monotonic()
        http_status = None
        error_message = None
        response_body = None
        try:
            response = await self._post(webhook, payload, self.config.test_timeout_seconds)
        except DeliveryError as exc:
            http_status = exc.status_code
            error_message = exc.message
            response_body = exc.response_body
        else:
            http_status = response.status_code
            response_body = response.text
        elapsed_ms = int((time.monotonic() - started) * 1000)

        success = error_message is None
        delivery.attempts = 1
        delivery.status = DeliveryStatus.SUCCESS if success else DeliveryStatus.FAILED
        delivery.http_status = http_status
        delivery.response_body = truncate_body(response_body, self.config.max_response_body) if response_body else None
        delivery.error_message = error_message
        delivery.delivered_at = isoformat(self.clock()) if success else None
        await self.store.save_attempt(delivery)

        return TestDeliveryResult(
            success=success,
            http_status=http_status,
            response_time_ms=elapsed_ms,
            error_message=error_message,
            response_body=truncate_body(response_body, 200) if response_body else None,
            signature=signature,
        )
