"""Identity schemas."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Literal, Optional, List

from pydantic import BaseModel, Field

from .organizations import OrgListItem


class IdentityResponse(BaseModel):
    id: uuid.UUID
    external_id: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    image_url: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class MeResponse(BaseModel):
    user: IdentityResponse
    organizations: List[OrgListItem]
    authenticated_via: str  # session | api_key


class ProfileUpdateRequest(BaseModel):
    first_name: str = Field(min_length=1, max_length=50)
    last_name: str = Field(min_length=1, max_length=50)


class AccountDeleteRequest(BaseModel):
    confirmation_text: Literal["DELETE"]
