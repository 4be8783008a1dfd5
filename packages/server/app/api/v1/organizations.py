"""
Organization API endpoints.

GET    /api/v1/orgs                      - List orgs for authenticated user
POST   /api/v1/orgs                      - Create a new org (creator becomes OWNER)
GET    /api/v1/orgs/{orgSlug}            - Get org details with counts
PATCH  /api/v1/orgs/{orgSlug}            - Update name/description/image (OWNER, ADMIN)
PUT    /api/v1/orgs/{orgSlug}/settings   - Replace or merge the settings bag (OWNER, ADMIN)
DELETE /api/v1/orgs/{orgSlug}            - Delete the org (OWNER, confirmation required)
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import (
    AuthContext,
    OrgAccess,
    get_current_identity,
    require_org_permission,
    require_org_role,
)
from app.core.database import get_session
from app.core.errors import ForbiddenError
from app.core.identity_provider import IdentityProviderClient, get_identity_provider
from app.models.base import ensure_utc
from app.models.organization import Organization
from app.services import organizations as org_service
from app.services import users as user_service
from app.services.audit import RequestContext
from keystone_shared.schemas.common import Role
from keystone_shared.schemas.organizations import (
    OrgCounts,
    OrgCreateRequest,
    OrgDeleteRequest,
    OrgDetailResponse,
    OrgListItem,
    OrgListResponse,
    OrgResponse,
    OrgSettingsUpdateRequest,
    OrgUpdateRequest,
)
from keystone_shared.schemas.permissions import Permission


def _org_payload(org: Organization) -> dict:
    return {
        "id": org.id,
        "name": org.name,
        "slug": org.slug,
        "description": org.description,
        "image_url": org.image_url,
        "settings": org.settings or {},
        "created_at": ensure_utc(org.created_at),
        "updated_at": ensure_utc(org.updated_at),
    }


# ---------------------------------------------------------------------------
# Non-org-scoped routes (no orgSlug in path)
# ---------------------------------------------------------------------------
router_global = APIRouter()


@router_global.get("/orgs", response_model=OrgListResponse, tags=["Organizations"])
async def list_orgs(
    auth: AuthContext = Depends(get_current_identity),
    session: AsyncSession = Depends(get_session),
):
    """List orgs the authenticated user belongs to."""
    items = await user_service.list_user_orgs(auth.user, session)
    if auth.api_key is not None:
        items = [i for i in items if i["id"] == auth.api_key.organization_id]
    return OrgListResponse(data=[OrgListItem(**i) for i in items])


@router_global.post("/orgs", response_model=OrgResponse, status_code=201, tags=["Organizations"])
async def create_org(
    body: OrgCreateRequest,
    request: Request,
    auth: AuthContext = Depends(get_current_identity),
    session: AsyncSession = Depends(get_session),
    provider: IdentityProviderClient = Depends(get_identity_provider),
):
    """Create a new organization. The creator becomes its OWNER."""
    if auth.is_api_key:
        raise ForbiddenError("API keys cannot create organizations")
    org, _ = await org_service.create_org(
        body, auth.user, session, provider, RequestContext.from_request(request)
    )
    return OrgResponse(**_org_payload(org))


# ---------------------------------------------------------------------------
# Org-scoped routes (mounted under /orgs/{orgSlug})
# ---------------------------------------------------------------------------
router_scoped = APIRouter()


@router_scoped.get("", response_model=OrgDetailResponse)
async def get_org(
    access: OrgAccess = Depends(require_org_permission(Permission.ORGANIZATION_READ)),
    session: AsyncSession = Depends(get_session),
):
    """Get org details, the caller's role and resource counts."""
    counts = await org_service.org_counts(access.org_id, session)
    return OrgDetailResponse(
        **_org_payload(access.org),
        role=access.role,
        counts=OrgCounts(**counts),
    )


@router_scoped.patch("", response_model=OrgResponse)
async def update_org(
    body: OrgUpdateRequest,
    request: Request,
    access: OrgAccess = Depends(require_org_role(Role.OWNER, Role.ADMIN)),
    session: AsyncSession = Depends(get_session),
    provider: IdentityProviderClient = Depends(get_identity_provider),
):
    """Update org name, description or image (OWNER, ADMIN)."""
    org = await org_service.update_org(
        access.org, body, access.user_id, session, provider, RequestContext.from_request(request)
    )
    return OrgResponse(**_org_payload(org))


@router_scoped.put("/settings", response_model=OrgResponse)
async def update_org_settings(
    body: OrgSettingsUpdateRequest,
    request: Request,
    access: OrgAccess = Depends(require_org_role(Role.OWNER, Role.ADMIN)),
    session: AsyncSession = Depends(get_session),
):
    """Replace or deep-merge the org settings bag (OWNER, ADMIN)."""
    org = await org_service.update_settings(
        access.org,
        body.settings,
        body.merge,
        access.user_id,
        session,
        RequestContext.from_request(request),
    )
    return OrgResponse(**_org_payload(org))


@router_scoped.delete("", status_code=204)
async def delete_org(
    body: OrgDeleteRequest,
    request: Request,
    access: OrgAccess = Depends(require_org_role(Role.OWNER)),
    session: AsyncSession = Depends(get_session),
    provider: IdentityProviderClient = Depends(get_identity_provider),
):
    """Delete the org and everything in it (OWNER only). Requires confirmation_text="DELETE"."""
    await org_service.delete_org(
        access.org, access.user_id, session, provider, RequestContext.from_request(request)
    )
    return Response(status_code=204)
