"""
Audit recorder.

Writes are best-effort: each entry is inserted inside a savepoint, and a
failure is logged and swallowed so the parent operation still completes.
"""

from __future__ import annotations

import uuid
from typing import Any, Optional

import structlog
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.models.audit_log import AuditLog
from app.models.base import ensure_utc

log = structlog.get_logger()


class RequestContext:
    """Request provenance attached to audit entries."""

    def __init__(self, ip_address: Optional[str] = None, user_agent: Optional[str] = None):
        self.ip_address = ip_address
        self.user_agent = user_agent

    @classmethod
    def from_request(cls, request: Request) -> "RequestContext":
        forwarded = request.headers.get("x-forwarded-for")
        ip = forwarded.split(",")[0].strip() if forwarded else None
        if not ip and request.client:
            ip = request.client.host
        return cls(ip_address=ip, user_agent=request.headers.get("user-agent"))


SYSTEM = RequestContext()


async def record(
    session: AsyncSession,
    organization_id: uuid.UUID,
    actor_id: Optional[uuid.UUID],
    action: str,
    resource_type: str,
    resource_id: Optional[str | uuid.UUID],
    metadata: Optional[dict[str, Any]] = None,
    context: RequestContext = SYSTEM,
) -> Optional[AuditLog]:
    """Append an audit entry. Returns None (after logging) if the write failed."""
    entry = AuditLog(
        organization_id=organization_id,
        actor_id=actor_id,
        action=action,
        resource_type=resource_type,
        resource_id=str(resource_id) if resource_id is not None else None,
        details=metadata or {},
        ip_address=context.ip_address,
        user_agent=context.user_agent,
    )
    try:
        async with session.begin_nested():
            session.add(entry)
            await session.flush()
    except Exception:
        log.exception(
            "audit.write_failed",
            org_id=str(organization_id),
            action=action,
            resource_type=resource_type,
        )
        return None
    return entry


async def list_entries(
    session: AsyncSession,
    organization_id: uuid.UUID,
    *,
    limit: int = 50,
    ascending: bool = False,
) -> list[AuditLog]:
    order = AuditLog.created_at.asc() if ascending else AuditLog.created_at.desc()
    result = await session.execute(
        select(AuditLog)
        .where(AuditLog.organization_id == organization_id)
        .order_by(order, AuditLog.id)
        .limit(limit)
    )
    return list(result.scalars().all())


def to_response(entry: AuditLog) -> dict:
    return {
        "id": entry.id,
        "organization_id": entry.organization_id,
        "actor_id": entry.actor_id,
        "action": entry.action,
        "resource_type": entry.resource_type,
        "resource_id": entry.resource_id,
        "metadata": entry.details,
        "ip_address": entry.ip_address,
        "user_agent": entry.user_agent,
        "created_at": ensure_utc(entry.created_at),
    }
