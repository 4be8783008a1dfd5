"""
Identity provider webhook.

POST /api/v1/webhooks/identity - Signed user/organization/membership events
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, Request
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.database import get_session
from app.core.errors import ServiceError
from app.core.webhooks import WebhookVerificationError, verify_webhook
from app.services import identity_sync
from keystone_shared.schemas.identity_events import IdentityEvent, WebhookAck

log = structlog.get_logger()

router = APIRouter()


class WebhookRejectedError(ServiceError):
    status_code = 400
    code = "invalid_webhook"
    default_detail = "Webhook verification failed"


@router.post("/webhooks/identity", response_model=WebhookAck, tags=["Webhooks"])
async def identity_webhook(
    request: Request,
    session: AsyncSession = Depends(get_session),
):
    """Verify the delivery's signature, then apply it through the identity sync bridge."""
    settings = get_settings()
    body = await request.body()
    try:
        verify_webhook(
            settings.identity_webhook_secret,
            request.headers,
            body,
            tolerance_seconds=settings.webhook_tolerance_seconds,
        )
    except WebhookVerificationError as exc:
        log.warning("webhook.rejected", reason=str(exc))
        raise WebhookRejectedError()

    try:
        event = IdentityEvent.model_validate_json(body)
    except ValidationError:
        log.warning("webhook.malformed_payload")
        raise WebhookRejectedError("Malformed webhook payload")

    processed = await identity_sync.handle_event(session, event)
    log.info("webhook.received", type=event.type, processed=processed)
    return WebhookAck(type=event.type, processed=processed)
