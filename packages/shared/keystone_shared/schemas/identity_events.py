"""
Identity provider webhook payloads.

Only the fields Keystone reads are modelled; everything else in the provider's
payload is ignored.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class IdentityEventType(str, Enum):
    USER_CREATED = "user.created"
    USER_UPDATED = "user.updated"
    USER_DELETED = "user.deleted"
    ORGANIZATION_CREATED = "organization.created"
    ORGANIZATION_UPDATED = "organization.updated"
    ORGANIZATION_DELETED = "organization.deleted"
    MEMBERSHIP_CREATED = "organizationMembership.created"
    MEMBERSHIP_UPDATED = "organizationMembership.updated"
    MEMBERSHIP_DELETED = "organizationMembership.deleted"


class _ProviderModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


class EmailAddress(_ProviderModel):
    id: Optional[str] = None
    email_address: str


class ProviderUser(_ProviderModel):
    id: str
    email_addresses: list[EmailAddress] = Field(default_factory=list)
    primary_email_address_id: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    image_url: Optional[str] = None

    @property
    def primary_email(self) -> str:
        """Primary email if flagged, else the first address, else empty string."""
        for address in self.email_addresses:
            if address.id and address.id == self.primary_email_address_id:
                return address.email_address
        return self.email_addresses[0].email_address if self.email_addresses else ""


class DeletedObject(_ProviderModel):
    id: Optional[str] = None
    deleted: bool = True
    slug: Optional[str] = None
    name: Optional[str] = None


class ProviderOrganization(_ProviderModel):
    id: Optional[str] = None
    name: Optional[str] = None
    slug: Optional[str] = None
    image_url: Optional[str] = None


class PublicUserData(_ProviderModel):
    user_id: str
    identifier: Optional[str] = None


class ProviderMembership(_ProviderModel):
    id: Optional[str] = None
    role: str = "org:member"
    organization: ProviderOrganization
    public_user_data: PublicUserData


class IdentityEvent(_ProviderModel):
    """Envelope delivered by the identity provider."""
    type: str
    data: dict[str, Any]
    object: Optional[str] = None


class WebhookAck(BaseModel):
    received: bool = True
    type: str
    processed: bool
