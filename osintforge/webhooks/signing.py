"""
Webhook payload envelope, serialization and HMAC signing.

The bytes that are signed are the bytes that are sent: the payload is
serialized once, compactly, and both the signature and the HTTP body come from
that single string.

Receivers verify with:
    expected = "sha256=" + hmac_sha256(secret, raw_body).hexdigest()
    hmac.compare_digest(expected, request.headers["X-Webhook-Signature"])
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from typing import Any, Dict

import jsonschema

from osintforge.errors import ErrorCode, OsintError

logger = logging.getLogger(__name__)

SIGNATURE_PREFIX = "sha256="

PAYLOAD_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["event", "timestamp", "data", "user_id", "webhook_id"],
    "properties": {
        "event": {
            "type": "string",
            "pattern": r"^(job|investigation|report|webhook)\.[a-z_]+$",
        },
        "timestamp": {
            "type": "string",
            "pattern": r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z$",
        },
        "data": {"type": "object"},
        "user_id": {"type": "string", "minLength": 1},
        "webhook_id": {"type": "string", "minLength": 1},
    },
    "additionalProperties": False,
}

_validator = jsonschema.Draft7Validator(PAYLOAD_SCHEMA)


def build_payload(event: str, timestamp: str, data: Dict[str, Any], user_id: str, webhook_id: str) -> Dict[str, Any]:
    payload = {
        "event": event,
        "timestamp": timestamp,
        "data": data,
        "user_id": user_id,
        "webhook_id": webhook_id,
    }
    validate_payload(payload)
    return payload


def validate_payload(payload: Dict[str, Any]) -> None:
    errors = sorted(_validator.iter_errors(payload), key=lambda e: list(e.path))
    if errors:
        first = errors[0]
        location = "/".join(str(p) for p in first.path) or "<root>"
        raise OsintError(
            f"Webhook payload invalid at {location}: {first.message}",
            code=ErrorCode.WEBHOOK_PAYLOAD_INVALID,
            details={"errors": [e.message for e in errors]},
        )


def serialize_payload(payload: Dict[str, Any]) -> str:
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False, default=str)


def sign_payload(body: str, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), body.encode("utf-8"), hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_signature(body: str, signature: str, secret: str) -> bool:
    """Constant-time comparison of ``signature`` against the HMAC of ``body``."""
    if not signature:
        return False
    expected = sign_payload(body, secret)
    return hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8"))
