"""
Team membership API endpoints.

GET    /api/v1/orgs/{orgSlug}/members                 - List members (OWNER first)
GET    /api/v1/orgs/{orgSlug}/members/pending         - Pending memberships and invitations
POST   /api/v1/orgs/{orgSlug}/members                 - Invite by email
POST   /api/v1/orgs/{orgSlug}/members/accept          - Accept own pending membership
PATCH  /api/v1/orgs/{orgSlug}/members/{memberId}      - Change a member's role
DELETE /api/v1/orgs/{orgSlug}/members/{memberId}      - Remove a member
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import AuthContext, OrgAccess, require_org_member, require_org_permission
from app.core.database import get_session
from app.core.identity_provider import IdentityProviderClient, get_identity_provider
from app.models.organization import Organization
from app.services import members as member_service
from app.services import memberships
from app.services.audit import RequestContext
from keystone_shared.schemas.members import (
    InvitationResponse,
    MemberInviteRequest,
    MemberInviteResponse,
    MemberListResponse,
    MemberResponse,
    MemberRoleUpdateRequest,
    PendingMembersResponse,
)
from keystone_shared.schemas.permissions import Permission

router = APIRouter()

can_read = require_org_permission(Permission.ORGANIZATION_MEMBERS_READ)
can_write = require_org_permission(Permission.ORGANIZATION_MEMBERS_WRITE)


@router.get("", response_model=MemberListResponse)
async def list_members(
    access: OrgAccess = Depends(can_read),
    session: AsyncSession = Depends(get_session),
):
    """List all members, ordered by role rank then join time."""
    rows = await memberships.list_by_organization(session, access.org_id)
    return MemberListResponse(
        data=[MemberResponse(**member_service.member_to_response(m, u)) for m, u in rows]
    )


@router.get("/pending", response_model=PendingMembersResponse)
async def list_pending(
    access: OrgAccess = Depends(can_read),
    session: AsyncSession = Depends(get_session),
):
    """Memberships awaiting acceptance plus invitations for emails with no account yet."""
    rows = await memberships.list_pending(session, access.org_id)
    invitations = await member_service.list_open_invitations(session, access.org_id)
    return PendingMembersResponse(
        memberships=[MemberResponse(**member_service.member_to_response(m, u)) for m, u in rows],
        invitations=[
            InvitationResponse(**member_service.invitation_to_response(i)) for i in invitations
        ],
    )


@router.post("", response_model=MemberInviteResponse, status_code=201)
async def invite_member(
    body: MemberInviteRequest,
    request: Request,
    access: OrgAccess = Depends(can_write),
    session: AsyncSession = Depends(get_session),
    provider: IdentityProviderClient = Depends(get_identity_provider),
):
    """Invite a user by email. OWNER cannot be granted through an invitation."""
    result = await member_service.invite_member(
        access.org,
        access.membership,
        body,
        session,
        provider,
        RequestContext.from_request(request),
    )
    return MemberInviteResponse(**result)


@router.post("/accept", response_model=MemberResponse)
async def accept_invitation(
    request: Request,
    member: tuple[AuthContext, Organization] = Depends(require_org_member),
    session: AsyncSession = Depends(get_session),
):
    """Accept the caller's own pending membership."""
    auth, org = member
    result = await member_service.accept_invitation(
        org, auth.user, session, RequestContext.from_request(request)
    )
    return MemberResponse(**result)


@router.patch("/{memberId}", response_model=MemberResponse)
async def update_member_role(
    memberId: uuid.UUID,
    body: MemberRoleUpdateRequest,
    request: Request,
    access: OrgAccess = Depends(can_write),
    session: AsyncSession = Depends(get_session),
    provider: IdentityProviderClient = Depends(get_identity_provider),
):
    """Change a member's role. Only members ranked below the caller can be changed."""
    result = await member_service.change_member_role(
        access.org,
        access.membership,
        memberId,
        body.role,
        session,
        provider,
        RequestContext.from_request(request),
    )
    return MemberResponse(**result)


@router.delete("/{memberId}", status_code=204)
async def remove_member(
    memberId: uuid.UUID,
    request: Request,
    access: OrgAccess = Depends(can_write),
    session: AsyncSession = Depends(get_session),
    provider: IdentityProviderClient = Depends(get_identity_provider),
):
    """Remove a member. The owner can never be removed."""
    await member_service.remove_member(
        access.org,
        access.membership,
        memberId,
        session,
        provider,
        RequestContext.from_request(request),
    )
    return Response(status_code=204)
