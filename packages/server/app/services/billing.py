"""Read-only view over subscription bookkeeping."""

from __future__ import annotations

import uuid

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.models.base import ensure_utc
from app.models.subscription import Subscription

CURRENT_STATUSES = ("ACTIVE", "TRIALING", "PAST_DUE")


def to_response(sub: Subscription) -> dict:
    return {
        "id": sub.id,
        "provider_subscription_id": sub.provider_subscription_id,
        "status": sub.status,
        "plan_id": sub.plan_id,
        "plan_name": sub.plan_name,
        "price_amount": sub.price_amount,
        "price_currency": sub.price_currency,
        "current_period_start": ensure_utc(sub.current_period_start),
        "current_period_end": ensure_utc(sub.current_period_end),
        "cancel_at_period_end": sub.cancel_at_period_end,
        "trial_end": ensure_utc(sub.trial_end),
    }


async def billing_summary(organization_id: uuid.UUID, session: AsyncSession) -> dict:
    result = await session.execute(
        select(Subscription)
        .where(Subscription.organization_id == organization_id)
        .order_by(Subscription.current_period_end.desc())
    )
    subs = list(result.scalars().all())
    current = next((s for s in subs if s.status in CURRENT_STATUSES), None)
    return {
        "active_subscription": to_response(current) if current else None,
        "subscriptions": [to_response(s) for s in subs],
    }
