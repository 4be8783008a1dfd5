"""
Signature verification for inbound identity-provider webhooks.

Deliveries carry three headers: a message id, a unix timestamp and one or
more space-separated ``v1,<base64 signature>`` entries. The signature is an
HMAC-SHA256 over ``"{id}.{timestamp}.{raw body}"`` keyed by the base64 part of
the ``whsec_``-prefixed secret.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import time
from typing import Mapping, Optional

import structlog

log = structlog.get_logger()

ID_HEADER = "svix-id"
TIMESTAMP_HEADER = "svix-timestamp"
SIGNATURE_HEADER = "svix-signature"
SECRET_PREFIX = "whsec_"


class WebhookVerificationError(Exception):
    """Raised when a delivery cannot be authenticated."""


def _secret_bytes(secret: str) -> bytes:
    if secret.startswith(SECRET_PREFIX):
        secret = secret[len(SECRET_PREFIX):]
    try:
        return base64.b64decode(secret)
    except (ValueError, TypeError):
        raise WebhookVerificationError("Malformed webhook secret")


def _sign(secret: bytes, msg_id: str, timestamp: str, body: bytes) -> str:
    to_sign = f"{msg_id}.{timestamp}.".encode() + body
    digest = hmac.new(secret, to_sign, hashlib.sha256).digest()
    return base64.b64encode(digest).decode()


def sign_webhook(secret: str, msg_id: str, timestamp: int | str, body: bytes) -> str:
    """Build a signature header value for a payload (used by tests and tooling)."""
    return f"v1,{_sign(_secret_bytes(secret), msg_id, str(timestamp), body)}"


def verify_webhook(
    secret: str,
    headers: Mapping[str, str],
    body: bytes,
    *,
    tolerance_seconds: int = 300,
    now: Optional[float] = None,
) -> None:
    """Raise WebhookVerificationError unless the delivery is authentic and fresh."""
    if not secret:
        raise WebhookVerificationError("Webhook secret is not configured")

    msg_id = headers.get(ID_HEADER)
    timestamp = headers.get(TIMESTAMP_HEADER)
    signature_header = headers.get(SIGNATURE_HEADER)
    if not msg_id or not timestamp or not signature_header:
        raise WebhookVerificationError("Missing webhook headers")

    try:
        sent_at = int(timestamp)
    except ValueError:
        raise WebhookVerificationError("Invalid webhook timestamp")

    current = int(now if now is not None else time.time())
    if abs(current - sent_at) > tolerance_seconds:
        raise WebhookVerificationError("Webhook timestamp outside tolerance")

    expected = _sign(_secret_bytes(secret), msg_id, timestamp, body)
    for entry in signature_header.split(" "):
        version, _, candidate = entry.partition(",")
        if version != "v1":
            continue
        if hmac.compare_digest(candidate, expected):
            return

    raise WebhookVerificationError("No matching signature")
