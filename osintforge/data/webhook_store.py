"""Webhook subscriptions and their delivery history."""

from __future__ import annotations

import json
import logging
from typing import List, Optional

from osintforge.data.db import Database
from osintforge.data.models import DeliveryStatus, Webhook, WebhookDelivery

logger = logging.getLogger(__name__)


class WebhookStore:
    def __init__(self, db: Database):
        self.db = db

    # -------- Webhooks --------

    async def create(self, webhook: Webhook) -> Webhook:
        await self.db.execute(
            """
            INSERT INTO webhooks (id, owner_id, url, secret, events, headers, description, is_active,
                                  total_deliveries, successful_deliveries, failed_deliveries,
                                  last_delivery_at, last_error, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                webhook.id,
                webhook.owner_id,
                webhook.url,
                webhook.secret,
                json.dumps(sorted(webhook.events)),
                json.dumps(webhook.headers),
                webhook.description,
                int(webhook.is_active),
                webhook.total_deliveries,
                webhook.successful_deliveries,
                webhook.failed_deliveries,
                webhook.last_delivery_at,
                webhook.last_error,
                webhook.created_at,
            ),
        )
        return webhook

    async def get(self, webhook_id: str) -> Optional[Webhook]:
        row = await self.db.fetch_one("SELECT * FROM webhooks WHERE id = ?", (webhook_id,))
        return Webhook.from_row(row) if row else None

    async def set_active(self, webhook_id: str, active: bool) -> bool:
        updated = await self.db.execute(
            "UPDATE webhooks SET is_active = ? WHERE id = ?", (int(active), webhook_id)
        )
        return updated == 1

    async def delete(self, webhook_id: str) -> bool:
        return await self.db.execute("DELETE FROM webhooks WHERE id = ?", (webhook_id,)) == 1

    async def list_active_for_event(self, owner_id: str, event_type: str) -> List[Webhook]:
        rows = await self.db.fetch_all(
            "SELECT * FROM webhooks WHERE owner_id = ? AND is_active = 1 ORDER BY created_at",
            (owner_id,),
        )
        # events is a JSON array; filtering here keeps the SQL portable
        return [w for w in (Webhook.from_row(r) for r in rows) if w.subscribes_to(event_type)]

    async def record_success(self, webhook_id: str, at: str) -> None:
        await self.db.execute(
            """
            UPDATE webhooks
            SET total_deliveries = total_deliveries + 1,
                successful_deliveries = successful_deliveries + 1,
                last_delivery_at = ?
            WHERE id = ?
            """,
            (at, webhook_id),
        )

    async def record_failure(self, webhook_id: str, error: str) -> None:
        await self.db.execute(
            """
            UPDATE webhooks
            SET total_deliveries = total_deliveries + 1,
                failed_deliveries = failed_deliveries + 1,
                last_error = ?
            WHERE id = ?
            """,
            (error, webhook_id),
        )

    # -------- Deliveries --------

    async def create_delivery(self, delivery: WebhookDelivery) -> WebhookDelivery:
        await self.db.execute(
            """
            INSERT INTO webhook_deliveries (id, webhook_id, event_type, payload, status, http_status,
                                            response_body, error_message, attempts, max_attempts,
                                            next_retry_at, delivered_at, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                delivery.id,
                delivery.webhook_id,
                delivery.event_type,
                json.dumps(delivery.payload),
                delivery.status.value,
                delivery.http_status,
                delivery.response_body,
                delivery.error_message,
                delivery.attempts,
                delivery.max_attempts,
                delivery.next_retry_at,
                delivery.delivered_at,
                delivery.created_at,
            ),
        )
        return delivery

    async def get_delivery(self, delivery_id: str) -> Optional[WebhookDelivery]:
        row = await self.db.fetch_one("SELECT * FROM webhook_deliveries WHERE id = ?", (delivery_id,))
        return WebhookDelivery.from_row(row) if row else None

    async def save_attempt(self, delivery: WebhookDelivery) -> None:
        """Persist the outcome of one attempt. ``attempts`` only ever grows."""
        await self.db.execute(
            """
            UPDATE webhook_deliveries
            SET status = ?, http_status = ?, response_body = ?, error_message = ?,
                attempts = MAX(attempts, ?), next_retry_at = ?, delivered_at = ?
            WHERE id = ?
            """,
            (
                delivery.status.value,
                delivery.http_status,
                delivery.response_body,
                delivery.error_message,
                delivery.attempts,
                delivery.next_retry_at,
                delivery.delivered_at,
                delivery.id,
            ),
        )

    async def due_retries(self, now: str, limit: int = 50) -> List[WebhookDelivery]:
        """
        Deliveries whose ``next_retry_at`` has passed.

        For ``retrying`` rows that is the backoff; for ``pending`` rows it is the
        lease of an attempt that never recorded an outcome.
        """
        rows = await self.db.fetch_all(
            """
            SELECT * FROM webhook_deliveries
            WHERE status IN (?, ?) AND next_retry_at IS NOT NULL AND next_retry_at <= ?
            ORDER BY next_retry_at ASC LIMIT ?
            """,
            (DeliveryStatus.RETRYING.value, DeliveryStatus.PENDING.value, now, limit),
        )
        return [WebhookDelivery.from_row(r) for r in rows]

    async def claim(self, delivery_id: str, now: str, lease_until: str) -> bool:
        """
        Take a due delivery in flight until ``lease_until``. Only one caller can
        win; the lease lets a later poll recover the delivery if this attempt
        never records an outcome.
        """
        updated = await self.db.execute(
            """
            UPDATE webhook_deliveries SET status = ?, next_retry_at = ?
            WHERE id = ? AND status IN (?, ?) AND next_retry_at IS NOT NULL AND next_retry_at <= ?
            """,
            (
                DeliveryStatus.PENDING.value,
                lease_until,
                delivery_id,
                DeliveryStatus.RETRYING.value,
                DeliveryStatus.PENDING.value,
                now,
            ),
        )
        return updated == 1

    async def list_deliveries(self, webhook_id: str, limit: int = 100) -> List[WebhookDelivery]:
        rows = await self.db.fetch_all(
            "SELECT * FROM webhook_deliveries WHERE webhook_id = ? ORDER BY created_at DESC LIMIT ?",
            (webhook_id, limit),
        )
        return [WebhookDelivery.from_row(r) for r in rows]
