"""Subscription bookkeeping schemas (read-only; the payment provider owns the lifecycle)."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional, List

from pydantic import BaseModel


class SubscriptionStatus(str, Enum):
    ACTIVE = "ACTIVE"
    CANCELED = "CANCELED"
    INCOMPLETE = "INCOMPLETE"
    INCOMPLETE_EXPIRED = "INCOMPLETE_EXPIRED"
    PAST_DUE = "PAST_DUE"
    TRIALING = "TRIALING"
    UNPAID = "UNPAID"


class SubscriptionResponse(BaseModel):
    id: uuid.UUID
    provider_subscription_id: str
    status: SubscriptionStatus
    plan_id: str
    plan_name: str
    price_amount: int  # minor units
    price_currency: str
    current_period_start: datetime
    current_period_end: datetime
    cancel_at_period_end: bool = False
    trial_end: Optional[datetime] = None

    model_config = {"from_attributes": True}


class BillingSummaryResponse(BaseModel):
    active_subscription: Optional[SubscriptionResponse] = None
    subscriptions: List[SubscriptionResponse]
