"""Persistent record types: jobs, webhooks and webhook deliveries."""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Mapping, Optional

from osintforge.base.timeutil import now_iso


def new_id() -> str:
    return str(uuid.uuid4())


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_JOB_STATES


TERMINAL_JOB_STATES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})


class DeliveryStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    RETRYING = "retrying"


@dataclass
class Job:
    owner_id: str
    tool_name: str
    input: Dict[str, Any]
    id: str = field(default_factory=new_id)
    status: JobStatus = JobStatus.PENDING
    output: Optional[Dict[str, Any]] = None
    progress: int = 0
    error_message: Optional[str] = None
    priority: int = 0
    created_at: str = field(default_factory=now_iso)
    started_at: Optional[str] = None
    completed_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Job":
        return cls(
            id=row["id"],
            owner_id=row["owner_id"],
            tool_name=row["tool_name"],
            status=JobStatus(row["status"]),
            input=json.loads(row["input_data"]),
            output=json.loads(row["output_data"]) if row["output_data"] else None,
            progress=row["progress"],
            error_message=row["error_message"],
            priority=row["priority"],
            created_at=row["created_at"],
            started_at=row["started_at"],
            completed_at=row["completed_at"],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "tool_name": self.tool_name,
            "status": self.status.value,
            "input": self.input,
            "output": self.output,
            "progress": self.progress,
            "error_message": self.error_message,
            "priority": self.priority,
            "created_at": self.created_at,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
        }


@dataclass
class Webhook:
    owner_id: str
    url: str
    secret: str
    events: FrozenSet[str]
    id: str = field(default_factory=new_id)
    is_active: bool = True
    headers: Dict[str, str] = field(default_factory=dict)
    description: Optional[str] = None
    total_deliveries: int = 0
    successful_deliveries: int = 0
    failed_deliveries: int = 0
    last_delivery_at: Optional[str] = None
    last_error: Optional[str] = None
    created_at: str = field(default_factory=now_iso)

    def __post_init__(self):
        if not self.url.startswith(("http://", "https://")):
            raise ValueError(f"Webhook URL must be http(s): {self.url}")
        self.events = frozenset(self.events)
        if not self.events:
            raise ValueError("Webhook must subscribe to at least one event")

    def subscribes_to(self, event_type: str) -> bool:
        return event_type in self.events

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Webhook":
        return cls(
            id=row["id"],
            owner_id=row["owner_id"],
            url=row["url"],
            secret=row["secret"],
            events=frozenset(json.loads(row["events"])),
            headers=json.loads(row["headers"] or "{}"),
            description=row["description"],
            is_active=bool(row["is_active"]),
            total_deliveries=row["total_deliveries"],
            successful_deliveries=row["successful_deliveries"],
            failed_deliveries=row["failed_deliveries"],
            last_delivery_at=row["last_delivery_at"],
            last_error=row["last_error"],
            created_at=row["created_at"],
        )

    def to_dict(self) -> Dict[str, Any]:
        # The secret never leaves the process.
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "url": self.url,
            "events": sorted(self.events),
            "headers": self.headers,
            "description": self.description,
            "is_active": self.is_active,
            "total_deliveries": self.total_deliveries,
            "successful_deliveries": self.successful_deliveries,
            "failed_deliveries": self.failed_deliveries,
            "last_delivery_at": self.last_delivery_at,
            "last_error": self.last_error,
            "created_at": self.created_at,
        }


@dataclass
class WebhookDelivery:
    webhook_id: str
    event_type: str
    payload: Dict[str, Any]
    id: str = field(default_factory=new_id)
    status: DeliveryStatus = DeliveryStatus.PENDING
    http_status: Optional[int] = None
    response_body: Optional[str] = None
    error_message: Optional[str] = None
    attempts: int = 0
    max_attempts: int = 5
    next_retry_at: Optional[str] = None
    delivered_at: Optional[str] = None
    created_at: str = field(default_factory=now_iso)

    @property
    def is_terminal(self) -> bool:
        return self.status in (DeliveryStatus.SUCCESS, DeliveryStatus.FAILED)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "WebhookDelivery":
        return cls(
            id=row["id"],
            webhook_id=row["webhook_id"],
            event_type=row["event_type"],
            payload=json.loads(row["payload"]),
            status=DeliveryStatus(row["status"]),
            http_status=row["http_status"],
            response_body=row["response_body"],
            error_message=row["error_message"],
            attempts=row["attempts"],
            max_attempts=row["max_attempts"],
            next_retry_at=row["next_retry_at"],
            delivered_at=row["delivered_at"],
            created_at=row["created_at"],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "webhook_id": self.webhook_id,
            "event_type": self.event_type,
            "payload": self.payload,
            "status": self.status.value,
            "http_status": self.http_status,
            "response_body": self.response_body,
            "error_message": self.error_message,
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "next_retry_at": self.next_retry_at,
            "delivered_at": self.delivered_at,
            "created_at": self.created_at,
        }
