"""
API key endpoints.

GET    /api/v1/orgs/{orgSlug}/api-keys            - List keys (secrets never returned)
POST   /api/v1/orgs/{orgSlug}/api-keys            - Issue a key (secret returned once)
DELETE /api/v1/orgs/{orgSlug}/api-keys/{keyId}    - Revoke (deactivate) a key
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import OrgAccess, require_org_permission
from app.core.database import get_session
from app.services import api_keys as api_key_service
from app.services.audit import RequestContext
from keystone_shared.schemas.api_keys import (
    ApiKeyCreateRequest,
    ApiKeyCreateResponse,
    ApiKeyListResponse,
    ApiKeyResponse,
)
from keystone_shared.schemas.permissions import Permission

router = APIRouter()


@router.get("", response_model=ApiKeyListResponse)
async def list_api_keys(
    access: OrgAccess = Depends(require_org_permission(Permission.API_KEYS_READ)),
    session: AsyncSession = Depends(get_session),
):
    keys = await api_key_service.list_keys(access.org_id, session)
    return ApiKeyListResponse(data=[ApiKeyResponse(**api_key_service.to_response(k)) for k in keys])


@router.post("", response_model=ApiKeyCreateResponse, status_code=201)
async def create_api_key(
    body: ApiKeyCreateRequest,
    request: Request,
    access: OrgAccess = Depends(require_org_permission(Permission.API_KEYS_WRITE)),
    session: AsyncSession = Depends(get_session),
):
    """Issue a key whose permissions are a subset of the caller's. The secret is shown once."""
    api_key, secret = await api_key_service.create_key(
        access, body, session, RequestContext.from_request(request)
    )
    return ApiKeyCreateResponse(
        api_key=ApiKeyResponse(**api_key_service.to_response(api_key)),
        secret=secret,
    )


@router.delete("/{keyId}", response_model=ApiKeyResponse)
async def revoke_api_key(
    keyId: uuid.UUID,
    request: Request,
    access: OrgAccess = Depends(require_org_permission(Permission.API_KEYS_DELETE)),
    session: AsyncSession = Depends(get_session),
):
    """Deactivate a key. It stays listed with is_active=false."""
    api_key = await api_key_service.revoke_key(
        access, keyId, session, RequestContext.from_request(request)
    )
    return ApiKeyResponse(**api_key_service.to_response(api_key))
