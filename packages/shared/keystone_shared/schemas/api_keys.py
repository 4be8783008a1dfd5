"""API key schemas. The plaintext secret only ever appears in ApiKeyCreateResponse."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional, List

from pydantic import BaseModel, Field

from .permissions import Permission


class ApiKeyCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    permissions: List[Permission] = Field(
        min_length=1,
        description="Subset of the issuer's role permissions granted to the key",
    )
    rate_limit: Optional[int] = Field(
        default=None, ge=1, description="Requests allowed per window (default from settings)"
    )
    rate_limit_window: Optional[int] = Field(
        default=None, ge=1, le=86400, description="Window length in seconds"
    )
    expires_at: Optional[datetime] = None


class ApiKeyResponse(BaseModel):
    id: uuid.UUID
    organization_id: uuid.UUID
    user_id: uuid.UUID
    name: str
    prefix: str
    permissions: List[Permission]
    rate_limit: int
    rate_limit_window: int
    is_active: bool
    expires_at: Optional[datetime] = None
    last_used_at: Optional[datetime] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class ApiKeyCreateResponse(BaseModel):
    """Response when issuing a key. The secret is shown ONCE."""
    api_key: ApiKeyResponse
    secret: str


class ApiKeyListResponse(BaseModel):
    data: List[ApiKeyResponse]
