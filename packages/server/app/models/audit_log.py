"""Audit log entry. Append-only; never updated through normal flows."""

from datetime import datetime
from typing import Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import JSONType, UUIDMixin, utcnow


class AuditLog(UUIDMixin, SQLModel, table=True):
    __tablename__ = "audit_logs"
    __table_args__ = (
        sa.Index("ix_audit_logs_org_created", "organization_id", "created_at"),
    )

    organization_id: uuid.UUID = Field(foreign_key="organizations.id", nullable=False)
    # NULL for system actions (identity sync) and for actors deleted since.
    actor_id: Optional[uuid.UUID] = Field(
        default=None,
        foreign_key="users.id",
        ondelete="SET NULL",
        index=True,
    )
    action: str = Field(nullable=False)
    resource_type: str = Field(nullable=False)
    resource_id: Optional[str] = None
    details: dict = Field(default_factory=dict, sa_type=JSONType, nullable=False)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: datetime = Field(
        default_factory=utcnow,
        nullable=False,
        sa_column_kwargs={"server_default": sa.func.now()},
        sa_type=sa.DateTime(timezone=True),
    )
