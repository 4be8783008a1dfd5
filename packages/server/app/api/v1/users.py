"""
Identity endpoints.

GET    /api/v1/me - Current identity and its organizations
PATCH  /api/v1/me - Update the caller's name
DELETE /api/v1/me - Delete the caller's account
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import AuthContext, get_current_identity
from app.core.database import get_session
from app.core.errors import ForbiddenError
from app.core.identity_provider import IdentityProviderClient, get_identity_provider
from app.services import users as user_service
from app.services.audit import RequestContext
from keystone_shared.schemas.users import (
    AccountDeleteRequest,
    IdentityResponse,
    MeResponse,
    ProfileUpdateRequest,
)

router = APIRouter()


@router.get("/me", response_model=MeResponse, tags=["Users"])
async def get_me(
    auth: AuthContext = Depends(get_current_identity),
    session: AsyncSession = Depends(get_session),
):
    me = await user_service.get_me(auth.user, auth.via, session)
    if auth.api_key is not None:
        me["organizations"] = [
            o for o in me["organizations"] if o["id"] == auth.api_key.organization_id
        ]
    return MeResponse(**me)


@router.patch("/me", response_model=IdentityResponse, tags=["Users"])
async def update_me(
    body: ProfileUpdateRequest,
    request: Request,
    auth: AuthContext = Depends(get_current_identity),
    session: AsyncSession = Depends(get_session),
    provider: IdentityProviderClient = Depends(get_identity_provider),
):
    if auth.is_api_key:
        raise ForbiddenError("API keys cannot change the account profile")
    user = await user_service.update_profile(
        auth.user, body, session, provider, RequestContext.from_request(request)
    )
    return IdentityResponse(**user_service.identity_to_response(user))


@router.delete("/me", status_code=204, tags=["Users"])
async def delete_me(
    body: AccountDeleteRequest,
    request: Request,
    auth: AuthContext = Depends(get_current_identity),
    session: AsyncSession = Depends(get_session),
    provider: IdentityProviderClient = Depends(get_identity_provider),
):
    if auth.is_api_key:
        raise ForbiddenError("API keys cannot delete the account")
    await user_service.delete_account(
        auth.user, session, provider, RequestContext.from_request(request)
    )
    return Response(status_code=204)
