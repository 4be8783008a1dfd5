"""
Uptime monitor endpoints.

GET    /api/v1/orgs/{orgSlug}/monitors
POST   /api/v1/orgs/{orgSlug}/monitors
PATCH  /api/v1/orgs/{orgSlug}/monitors/{monitorId}
DELETE /api/v1/orgs/{orgSlug}/monitors/{monitorId}
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import OrgAccess, require_org_permission
from app.core.database import get_session
from app.services import monitors as monitor_service
from app.services.audit import RequestContext
from keystone_shared.schemas.monitors import (
    MonitorCreateRequest,
    MonitorListResponse,
    MonitorResponse,
    MonitorUpdateRequest,
)
from keystone_shared.schemas.permissions import Permission

router = APIRouter()


@router.get("", response_model=MonitorListResponse)
async def list_monitors(
    access: OrgAccess = Depends(require_org_permission(Permission.MONITORS_READ)),
    session: AsyncSession = Depends(get_session),
):
    items = await monitor_service.list_monitors(access.org_id, session)
    return MonitorListResponse(data=[MonitorResponse(**monitor_service.to_response(m)) for m in items])


@router.post("", response_model=MonitorResponse, status_code=201)
async def create_monitor(
    body: MonitorCreateRequest,
    request: Request,
    access: OrgAccess = Depends(require_org_permission(Permission.MONITORS_WRITE)),
    session: AsyncSession = Depends(get_session),
):
    monitor = await monitor_service.create_monitor(
        access, body, session, RequestContext.from_request(request)
    )
    return MonitorResponse(**monitor_service.to_response(monitor))


@router.patch("/{monitorId}", response_model=MonitorResponse)
async def update_monitor(
    monitorId: uuid.UUID,
    body: MonitorUpdateRequest,
    request: Request,
    access: OrgAccess = Depends(require_org_permission(Permission.MONITORS_WRITE)),
    session: AsyncSession = Depends(get_session),
):
    monitor = await monitor_service.update_monitor(
        access, monitorId, body, session, RequestContext.from_request(request)
    )
    return MonitorResponse(**monitor_service.to_response(monitor))


@router.delete("/{monitorId}", status_code=204)
async def delete_monitor(
    monitorId: uuid.UUID,
    request: Request,
    access: OrgAccess = Depends(require_org_permission(Permission.MONITORS_DELETE)),
    session: AsyncSession = Depends(get_session),
):
    await monitor_service.delete_monitor(access, monitorId, session, RequestContext.from_request(request))
    return Response(status_code=204)
