"""Team membership schemas: invitations, role changes, member listings."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional, List

from pydantic import BaseModel, EmailStr, Field, field_validator

from .common import Role


def _reject_owner(role: Role) -> Role:
    if role == Role.OWNER:
        raise ValueError("Ownership cannot be assigned through this action")
    return role


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class MemberInviteRequest(BaseModel):
    """Invite a user to the org by email."""
    email: EmailStr
    role: Role = Role.MEMBER

    @field_validator("role")
    @classmethod
    def role_not_owner(cls, v: Role) -> Role:
        return _reject_owner(v)


class MemberRoleUpdateRequest(BaseModel):
    """Change a member's role. OWNER can never be assigned here."""
    role: Role

    @field_validator("role")
    @classmethod
    def role_not_owner(cls, v: Role) -> Role:
        return _reject_owner(v)


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class MemberResponse(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    image_url: Optional[str] = None
    role: Role
    invited_at: Optional[datetime] = None
    joined_at: Optional[datetime] = None
    created_at: datetime


class InvitationResponse(BaseModel):
    id: uuid.UUID
    email: str
    role: Role
    invited_by: Optional[uuid.UUID] = None
    invited_at: datetime

    model_config = {"from_attributes": True}


class MemberListResponse(BaseModel):
    data: List[MemberResponse]


class PendingMembersResponse(BaseModel):
    """Memberships awaiting acceptance plus invitations for unknown emails."""
    memberships: List[MemberResponse]
    invitations: List[InvitationResponse]


class MemberInviteResponse(BaseModel):
    """Exactly one of member / invitation is set."""
    member: Optional[MemberResponse] = None
    invitation: Optional[InvitationResponse] = None
    message: str = Field(default="Invitation sent.")
