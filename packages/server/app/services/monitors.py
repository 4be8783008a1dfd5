"""Uptime monitor records. Only configuration is stored; checks run elsewhere."""

from __future__ import annotations

import uuid

import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.auth import OrgAccess
from app.core.errors import NotFoundError
from app.models.base import ensure_utc, utcnow
from app.models.monitor import Monitor
from app.services import audit
from app.services.audit import RequestContext
from keystone_shared.schemas.monitors import MonitorCreateRequest, MonitorUpdateRequest

log = structlog.get_logger()


def to_response(monitor: Monitor) -> dict:
    return {
        "id": monitor.id,
        "organization_id": monitor.organization_id,
        "name": monitor.name,
        "url": monitor.url,
        "method": monitor.method,
        "headers": monitor.headers,
        "expected_status": monitor.expected_status,
        "timeout": monitor.timeout,
        "interval": monitor.interval,
        "is_active": monitor.is_active,
        "created_at": ensure_utc(monitor.created_at),
        "updated_at": ensure_utc(monitor.updated_at),
    }


async def list_monitors(organization_id: uuid.UUID, session: AsyncSession) -> list[Monitor]:
    result = await session.execute(
        select(Monitor).where(Monitor.organization_id == organization_id).order_by(Monitor.name)
    )
    return list(result.scalars().all())


async def _get(organization_id: uuid.UUID, monitor_id: uuid.UUID, session: AsyncSession) -> Monitor:
    result = await session.execute(
        select(Monitor).where(Monitor.id == monitor_id, Monitor.organization_id == organization_id)
    )
    monitor = result.scalar_one_or_none()
    if monitor is None:
        raise NotFoundError("Monitor not found")
    return monitor


async def create_monitor(
    access: OrgAccess,
    req: MonitorCreateRequest,
    session: AsyncSession,
    context: RequestContext = audit.SYSTEM,
) -> Monitor:
    monitor = Monitor(organization_id=access.org_id, **req.model_dump(mode="json"))
    session.add(monitor)
    await session.flush()
    await audit.record(
        session,
        access.org_id,
        access.user_id,
        "monitor.created",
        "monitor",
        monitor.id,
        {"name": monitor.name, "url": monitor.url},
        context,
    )
    log.info("monitor.created", monitor_id=str(monitor.id), org_id=str(access.org_id))
    return monitor


async def update_monitor(
    access: OrgAccess,
    monitor_id: uuid.UUID,
    req: MonitorUpdateRequest,
    session: AsyncSession,
    context: RequestContext = audit.SYSTEM,
) -> Monitor:
    monitor = await _get(access.org_id, monitor_id, session)
    changes = req.model_dump(exclude_unset=True, exclude_none=True, mode="json")
    for field, value in changes.items():
        setattr(monitor, field, value)
    monitor.updated_at = utcnow()
    session.add(monitor)
    await session.flush()
    await audit.record(
        session, access.org_id, access.user_id, "monitor.updated", "monitor", monitor.id, changes, context
    )
    return monitor


async def delete_monitor(
    access: OrgAccess,
    monitor_id: uuid.UUID,
    session: AsyncSession,
    context: RequestContext = audit.SYSTEM,
) -> None:
    monitor = await _get(access.org_id, monitor_id, session)
    await session.delete(monitor)
    await session.flush()
    await audit.record(
        session,
        access.org_id,
        access.user_id,
        "monitor.deleted",
        "monitor",
        monitor_id,
        {"name": monitor.name},
        context,
    )
    log.info("monitor.deleted", monitor_id=str(monitor_id), org_id=str(access.org_id))
