"""
Role-permission table.

Permissions are never stored per membership; they are always derived from the
member's current role through ROLE_PERMISSIONS. Each role's set is written out
in full rather than derived from another role's set.
"""

from __future__ import annotations

from enum import Enum

from .common import Role


class Permission(str, Enum):
    ORGANIZATION_READ = "organization:read"
    ORGANIZATION_WRITE = "organization:write"
    ORGANIZATION_DELETE = "organization:delete"
    ORGANIZATION_MEMBERS_READ = "organization:members:read"
    ORGANIZATION_MEMBERS_WRITE = "organization:members:write"
    ORGANIZATION_BILLING_READ = "organization:billing:read"
    ORGANIZATION_BILLING_WRITE = "organization:billing:write"
    ORGANIZATION_SETTINGS_READ = "organization:settings:read"
    ORGANIZATION_SETTINGS_WRITE = "organization:settings:write"
    API_KEYS_READ = "api_keys:read"
    API_KEYS_WRITE = "api_keys:write"
    API_KEYS_DELETE = "api_keys:delete"
    MONITORS_READ = "monitors:read"
    MONITORS_WRITE = "monitors:write"
    MONITORS_DELETE = "monitors:delete"
    ANALYTICS_READ = "analytics:read"
    AUDIT_LOGS_READ = "audit_logs:read"


ROLE_PERMISSIONS: dict[Role, frozenset[Permission]] = {
    Role.OWNER: frozenset({
        Permission.ORGANIZATION_READ,
        Permission.ORGANIZATION_WRITE,
        Permission.ORGANIZATION_DELETE,
        Permission.ORGANIZATION_MEMBERS_READ,
        Permission.ORGANIZATION_MEMBERS_WRITE,
        Permission.ORGANIZATION_BILLING_READ,
        Permission.ORGANIZATION_BILLING_WRITE,
        Permission.ORGANIZATION_SETTINGS_READ,
        Permission.ORGANIZATION_SETTINGS_WRITE,
        Permission.API_KEYS_READ,
        Permission.API_KEYS_WRITE,
        Permission.API_KEYS_DELETE,
        Permission.MONITORS_READ,
        Permission.MONITORS_WRITE,
        Permission.MONITORS_DELETE,
        Permission.ANALYTICS_READ,
        Permission.AUDIT_LOGS_READ,
    }),
    Role.ADMIN: frozenset({
        Permission.ORGANIZATION_READ,
        Permission.ORGANIZATION_WRITE,
        Permission.ORGANIZATION_MEMBERS_READ,
        Permission.ORGANIZATION_MEMBERS_WRITE,
        Permission.ORGANIZATION_BILLING_READ,
        Permission.ORGANIZATION_SETTINGS_READ,
        Permission.ORGANIZATION_SETTINGS_WRITE,
        Permission.API_KEYS_READ,
        Permission.API_KEYS_WRITE,
        Permission.API_KEYS_DELETE,
        Permission.MONITORS_READ,
        Permission.MONITORS_WRITE,
        Permission.MONITORS_DELETE,
        Permission.ANALYTICS_READ,
        Permission.AUDIT_LOGS_READ,
    }),
    Role.MEMBER: frozenset({
        Permission.ORGANIZATION_READ,
        Permission.ORGANIZATION_MEMBERS_READ,
        Permission.API_KEYS_READ,
        Permission.API_KEYS_WRITE,
        Permission.MONITORS_READ,
        Permission.MONITORS_WRITE,
        Permission.MONITORS_DELETE,
        Permission.ANALYTICS_READ,
    }),
    Role.VIEWER: frozenset({
        Permission.ORGANIZATION_READ,
        Permission.ORGANIZATION_MEMBERS_READ,
        Permission.MONITORS_READ,
        Permission.ANALYTICS_READ,
    }),
}


def permissions_for(role: Role | str) -> frozenset[Permission]:
    """Return the permission set granted to a role. Raises ValueError for unknown roles."""
    return ROLE_PERMISSIONS[Role(role)]
