"""Uptime monitor record (configuration only)."""

import uuid

from sqlmodel import Field, SQLModel

from .base import JSONType, TimestampMixin, UUIDMixin


class Monitor(UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "monitors"

    organization_id: uuid.UUID = Field(foreign_key="organizations.id", nullable=False, index=True)
    name: str = Field(nullable=False)
    url: str = Field(nullable=False)
    method: str = Field(default="GET", nullable=False)
    headers: dict = Field(default_factory=dict, sa_type=JSONType, nullable=False)
    expected_status: int = Field(default=200, nullable=False)
    timeout: int = Field(default=30, nullable=False)  # seconds
    interval: int = Field(default=300, nullable=False)  # seconds
    is_active: bool = Field(default=True, nullable=False)
