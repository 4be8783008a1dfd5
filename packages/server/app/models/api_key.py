"""API key. Only the keyed hash of the secret is stored."""

from datetime import datetime
from typing import Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import JSONType, TimestampMixin, UUIDMixin


class ApiKey(UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "api_keys"

    organization_id: uuid.UUID = Field(foreign_key="organizations.id", nullable=False, index=True)
    user_id: uuid.UUID = Field(foreign_key="users.id", nullable=False, index=True)
    name: str = Field(nullable=False)
    key_hash: str = Field(unique=True, index=True, nullable=False)
    prefix: str = Field(nullable=False)  # first characters of the secret, for display
    permissions: list = Field(default_factory=list, sa_type=JSONType, nullable=False)
    rate_limit: int = Field(default=1000, nullable=False)
    rate_limit_window: int = Field(default=3600, nullable=False)  # seconds
    is_active: bool = Field(default=True, nullable=False)
    expires_at: Optional[datetime] = Field(default=None, sa_type=sa.DateTime(timezone=True))
    last_used_at: Optional[datetime] = Field(default=None, sa_type=sa.DateTime(timezone=True))
