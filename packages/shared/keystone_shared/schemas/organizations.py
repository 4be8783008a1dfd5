"""
Organization-related Pydantic schemas.

Covers: Org CRUD request/response, the org settings bag, and the deletion
confirmation payload.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, HttpUrl

from .common import Role


# ---------------------------------------------------------------------------
# Org Settings
# ---------------------------------------------------------------------------

class OrgSettings(BaseModel):
    """Free-form org settings bag. Known keys are typed, unknown keys are kept."""

    model_config = ConfigDict(extra="allow")

    timezone: str = Field(default="UTC", min_length=1, max_length=64)
    currency: str = Field(
        default="usd",
        pattern=r"^[a-z]{3}$",
        description="ISO 4217 currency code, lowercase",
    )
    features: list[str] = Field(
        default=[],
        description="Feature flags enabled for the org",
    )


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class OrgCreateRequest(BaseModel):
    name: str = Field(..., min_length=2, max_length=100, description="Organization display name")
    slug: str = Field(
        ...,
        min_length=2,
        max_length=50,
        pattern=r"^[a-z0-9-]+$",
        description="URL-safe org identifier, immutable after creation",
    )
    description: Optional[str] = Field(None, max_length=500)


class OrgUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=2, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    image_url: Optional[HttpUrl] = None


class OrgSettingsUpdateRequest(BaseModel):
    settings: dict = Field(..., description="Settings to apply")
    merge: bool = Field(
        True,
        description="Deep-merge into existing settings (JSON Merge Patch) instead of replacing",
    )


class OrgDeleteRequest(BaseModel):
    confirmation_text: Literal["DELETE"]


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class OrgResponse(BaseModel):
    id: uuid.UUID
    name: str
    slug: str
    description: Optional[str] = None
    image_url: Optional[str] = None
    settings: dict
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class OrgCounts(BaseModel):
    members: int = 0
    api_keys: int = 0
    monitors: int = 0
    subscriptions: int = 0
    audit_logs: int = 0


class OrgDetailResponse(OrgResponse):
    role: Role  # the requesting user's role in this org
    counts: OrgCounts


class OrgListItem(BaseModel):
    id: uuid.UUID
    name: str
    slug: str
    image_url: Optional[str] = None
    role: Role
    joined_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class OrgListResponse(BaseModel):
    data: list[OrgListItem]
