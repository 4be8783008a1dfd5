"""
API v1 Router

All org-scoped endpoints are prefixed with /orgs/{orgSlug}.
"""

from fastapi import APIRouter
from . import api_keys, billing, members, monitors, users, webhooks
from .organizations import router_global as orgs_global_router
from .organizations import router_scoped as orgs_scoped_router

router = APIRouter()

# Identity and organization routes (non-org-scoped: me, list, create)
router.include_router(users.router)
router.include_router(orgs_global_router)

# Organization routes (org-scoped: get, update, settings, delete)
router.include_router(orgs_scoped_router, prefix="/orgs/{orgSlug}", tags=["Organizations"])

# Include resource routers
router.include_router(members.router, prefix="/orgs/{orgSlug}/members", tags=["Members"])
router.include_router(api_keys.router, prefix="/orgs/{orgSlug}/api-keys", tags=["API Keys"])
router.include_router(monitors.router, prefix="/orgs/{orgSlug}/monitors", tags=["Monitors"])
router.include_router(billing.router, prefix="/orgs/{orgSlug}")

# Identity provider webhooks (signature-authenticated)
router.include_router(webhooks.router)


@router.get("/", tags=["API"])
async def api_root():
    """API root - returns version and available endpoints."""
    return {
        "api": "v1",
        "version": "0.1.0",
        "endpoints": [
            "/me",
            "/orgs",
            "/orgs/{orgSlug}",
            "/orgs/{orgSlug}/settings",
            "/orgs/{orgSlug}/members",
            "/orgs/{orgSlug}/api-keys",
            "/orgs/{orgSlug}/monitors",
            "/orgs/{orgSlug}/billing",
            "/orgs/{orgSlug}/audit-logs",
            "/webhooks/identity",
        ],
    }
