"""Subscription bookkeeping, written by the payment provider integration."""

from datetime import datetime
from typing import Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import JSONType, TimestampMixin, UUIDMixin


class Subscription(UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "subscriptions"

    organization_id: uuid.UUID = Field(foreign_key="organizations.id", nullable=False, index=True)
    provider_subscription_id: str = Field(unique=True, nullable=False)
    status: str = Field(nullable=False)  # ACTIVE | TRIALING | PAST_DUE | CANCELED | ...
    plan_id: str = Field(nullable=False)
    plan_name: str = Field(nullable=False)
    price_amount: int = Field(nullable=False)  # minor units
    price_currency: str = Field(default="usd", nullable=False)
    current_period_start: datetime = Field(nullable=False, sa_type=sa.DateTime(timezone=True))
    current_period_end: datetime = Field(nullable=False, sa_type=sa.DateTime(timezone=True))
    cancel_at_period_end: bool = Field(default=False, nullable=False)
    trial_end: Optional[datetime] = Field(default=None, sa_type=sa.DateTime(timezone=True))
    details: dict = Field(default_factory=dict, sa_type=JSONType, nullable=False)
