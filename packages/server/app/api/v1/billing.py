"""
Billing and audit log endpoints (read only).

GET /api/v1/orgs/{orgSlug}/billing       - Subscription summary
GET /api/v1/orgs/{orgSlug}/audit-logs    - Audit entries, newest first
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import OrgAccess, require_org_permission
from app.core.database import get_session
from app.services import audit as audit_service
from app.services import billing as billing_service
from keystone_shared.schemas.audit import AuditLogListResponse, AuditLogResponse
from keystone_shared.schemas.billing import BillingSummaryResponse
from keystone_shared.schemas.permissions import Permission

router = APIRouter()


@router.get("/billing", response_model=BillingSummaryResponse, tags=["Billing"])
async def get_billing(
    access: OrgAccess = Depends(require_org_permission(Permission.ORGANIZATION_BILLING_READ)),
    session: AsyncSession = Depends(get_session),
):
    return BillingSummaryResponse(**await billing_service.billing_summary(access.org_id, session))


@router.get("/audit-logs", response_model=AuditLogListResponse, tags=["Audit"])
async def list_audit_logs(
    limit: int = Query(50, ge=1, le=200),
    access: OrgAccess = Depends(require_org_permission(Permission.AUDIT_LOGS_READ)),
    session: AsyncSession = Depends(get_session),
):
    entries = await audit_service.list_entries(session, access.org_id, limit=limit)
    return AuditLogListResponse(
        data=[AuditLogResponse(**audit_service.to_response(e)) for e in entries]
    )
