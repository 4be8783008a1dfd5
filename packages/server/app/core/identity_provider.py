"""
Outbound client for the identity provider's backend API.

Keeps the provider's organizations and memberships consistent with changes
made through Keystone. Every call carries a bounded timeout; transport errors,
timeouts and non-2xx responses surface as UpstreamError.
"""

from __future__ import annotations

from typing import Any, Optional

import httpx
import structlog
from fastapi import Request

from app.core.config import Settings, get_settings
from app.core.errors import UpstreamError
from keystone_shared.schemas.common import Role
from keystone_shared.schemas.identity_events import ProviderUser

log = structlog.get_logger()


def provider_role(role: Role | str) -> str:
    """Internal role -> provider role vocabulary (ADMIN -> "org:admin")."""
    return f"org:{Role(role).value.lower()}"


class IdentityProviderClient:
    """Thin async wrapper over the provider REST API.

    When no secret key is configured the client is disabled: lookups return
    None and mirror calls are skipped, so local development works offline.
    """

    def __init__(
        self,
        base_url: str,
        secret_key: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._secret_key = secret_key
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @classmethod
    def from_settings(cls, settings: Settings | None = None, **kwargs) -> "IdentityProviderClient":
        settings = settings or get_settings()
        return cls(
            base_url=settings.identity_provider_api_url,
            secret_key=settings.identity_provider_secret_key,
            timeout=settings.identity_provider_timeout_seconds,
            **kwargs,
        )

    @property
    def enabled(self) -> bool:
        return bool(self._secret_key)

    async def open(self) -> httpx.AsyncClient:
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers={"Authorization": f"Bearer {self._secret_key}"},
            timeout=httpx.Timeout(self._timeout),
            transport=self._transport,
        )
        return self._client

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[dict] = None,
        allow_not_found: bool = False,
    ) -> Optional[dict[str, Any]]:
        client = self._client or await self.open()
        try:
            resp = await client.request(method, path, json=json)
        except httpx.TimeoutException:
            log.warning("identity_provider.timeout", method=method, path=path)
            raise UpstreamError("Identity provider timed out")
        except httpx.HTTPError as exc:
            log.warning("identity_provider.unreachable", method=method, path=path, error=str(exc))
            raise UpstreamError("Identity provider unavailable")

        if resp.status_code == 404 and allow_not_found:
            return None
        if resp.is_error:
            log.warning(
                "identity_provider.error_response",
                method=method,
                path=path,
                status=resp.status_code,
            )
            raise UpstreamError(f"Identity provider returned {resp.status_code}")
        if not resp.content:
            return {}
        return resp.json()

    # --- Users ---

    async def get_user(self, external_id: str) -> Optional[ProviderUser]:
        if not self.enabled:
            return None
        data = await self._request("GET", f"/users/{external_id}", allow_not_found=True)
        return ProviderUser.model_validate(data) if data else None

    async def update_user(self, external_id: str, first_name: str, last_name: str) -> bool:
        if not self.enabled:
            return False
        await self._request(
            "PATCH",
            f"/users/{external_id}",
            json={"first_name": first_name, "last_name": last_name},
        )
        return True

    async def delete_user(self, external_id: str) -> bool:
        if not self.enabled:
            return False
        await self._request("DELETE", f"/users/{external_id}", allow_not_found=True)
        return True

    # --- Organizations ---

    async def find_organization_by_slug(self, slug: str) -> Optional[dict[str, Any]]:
        """The provider accepts either its own id or the slug in this path."""
        if not self.enabled:
            return None
        return await self._request("GET", f"/organizations/{slug}", allow_not_found=True)

    async def create_organization(
        self, name: str, slug: str, created_by: str
    ) -> Optional[dict[str, Any]]:
        if not self.enabled:
            return None
        return await self._request(
            "POST",
            "/organizations",
            json={"name": name, "slug": slug, "created_by": created_by},
        )

    async def update_organization(self, slug: str, name: str) -> bool:
        org = await self.find_organization_by_slug(slug)
        if not org:
            return False
        await self._request("PATCH", f"/organizations/{org['id']}", json={"name": name})
        return True

    async def delete_organization(self, slug: str) -> bool:
        org = await self.find_organization_by_slug(slug)
        if not org:
            return False
        await self._request("DELETE", f"/organizations/{org['id']}", allow_not_found=True)
        return True

    # --- Memberships ---

    async def create_membership(self, slug: str, user_external_id: str, role: Role | str) -> bool:
        org = await self.find_organization_by_slug(slug)
        if not org:
            return False
        await self._request(
            "POST",
            f"/organizations/{org['id']}/memberships",
            json={"user_id": user_external_id, "role": provider_role(role)},
        )
        return True

    async def update_membership(self, slug: str, user_external_id: str, role: Role | str) -> bool:
        org = await self.find_organization_by_slug(slug)
        if not org:
            return False
        await self._request(
            "PATCH",
            f"/organizations/{org['id']}/memberships/{user_external_id}",
            json={"role": provider_role(role)},
        )
        return True

    async def delete_membership(self, slug: str, user_external_id: str) -> bool:
        org = await self.find_organization_by_slug(slug)
        if not org:
            return False
        await self._request(
            "DELETE",
            f"/organizations/{org['id']}/memberships/{user_external_id}",
            allow_not_found=True,
        )
        return True


async def mirror(action: str, call, **context) -> None:
    """Run a best-effort mirror call; failures are logged, never raised."""
    try:
        await call
    except UpstreamError as exc:
        log.warning("identity_provider.mirror_failed", action=action, error=exc.detail, **context)


def get_identity_provider(request: Request) -> IdentityProviderClient:
    """FastAPI dependency: the process-wide client created at startup."""
    return request.app.state.identity_provider
