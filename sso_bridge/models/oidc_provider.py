"""
OIDC Provider Models

Pydantic models for provisioning an organization's OIDC identity provider,
the role-to-group claim mappings wired onto it, and the locally persisted
record of the integration.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


SSO_GROUPS_CLAIM = "ssoGroups"


class Role(str, Enum):
    """Organization roles that can be granted through an SSO group claim."""
    ADMIN = "Admin"
    MEMBER = "Member"
    VIEWER = "Viewer"


class IntegrationStatus(str, Enum):
    """
    Saga status of an SSO integration.

    A record left in PROVISIONING or TEARING_DOWN means a workflow stopped
    part way and the broker may hold state the record does not describe.
    """
    PROVISIONING = "provisioning"
    ACTIVE = "active"
    TEARING_DOWN = "tearing_down"


class ClaimDescriptor(BaseModel):
    """A single claim the broker must find in the IdP token for a mapper to apply."""
    model_config = ConfigDict(frozen=True)

    key: Literal["ssoGroups"] = SSO_GROUPS_CLAIM
    value: str


class RoleMapping(BaseModel):
    """
    Mapping of an SSO group claim value to an organization role.

    The role is kept as a raw string here; it is checked against Role when
    the mapping is resolved so the error names the offending value.
    """
    role: str
    sso_group: str = Field(..., alias="ssoGroup")

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={"example": {"role": "Admin", "ssoGroup": "platform-admins"}},
    )


class ResolvedMapping(BaseModel):
    """A role mapping resolved to the broker group path and claim it binds."""
    model_config = ConfigDict(frozen=True)

    role: Role
    group_path: str
    claim: ClaimDescriptor

    @property
    def mapper_name(self) -> str:
        """Stable mapper name, used to skip mappers that already exist."""
        return f"{self.claim.key}:{self.role.value.lower()}:{self.group_path}:{self.claim.value}"


class OIDCProviderInput(BaseModel):
    """Everything needed to connect an external OIDC identity provider."""
    name: str = Field(..., min_length=1)
    client_id: str = Field(..., alias="clientID", min_length=1)
    client_secret: str = Field(..., alias="clientSecret", min_length=1)
    discovery_endpoint: str = Field(..., alias="discoveryEndpoint")
    mappers: List[RoleMapping] = Field(default_factory=list)

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "name": "Okta",
                "clientID": "0oa1b2c3d4",
                "clientSecret": "s3cr3t",
                "discoveryEndpoint": "https://idp.example.com/.well-known/openid-configuration",
                "mappers": [
                    {"role": "Admin", "ssoGroup": "platform-admins"},
                    {"role": "Viewer", "ssoGroup": "auditors"},
                ],
            }
        },
    )

    @field_validator("discovery_endpoint")
    @classmethod
    def validate_discovery_endpoint(cls, v):
        """The host is read from the third '/'-separated segment, so a scheme is required."""
        if not v.startswith(("https://", "http://")):
            raise ValueError("discoveryEndpoint must be an http(s) URL")
        if not v.split("/")[2]:
            raise ValueError("discoveryEndpoint must include a host")
        return v


class CreateOIDCProviderRequest(OIDCProviderInput):
    """HTTP request body for connecting an OIDC provider to an organization."""
    organization_slug: str = Field(..., alias="organizationSlug", min_length=1)


class GroupMembership(BaseModel):
    """A broker group a user belongs to."""
    id: str
    path: str


class ProviderHandle(BaseModel):
    """The broker-side identity provider created for an organization."""
    alias: str
    display_name: str
    internal_id: Optional[str] = None


class OidcProviderRecord(BaseModel):
    """
    Local record marking an organization as having an SSO integration.

    At most one record exists per organization.
    """
    organization_id: str
    name: str
    endpoint: str  # discovery host, e.g. "idp.example.com"
    status: IntegrationStatus = IntegrationStatus.PROVISIONING
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "organization_id": "6f0c1f5e-5f4b-4f53-9a4c-0d3a1b2c3d4e",
                "name": "Okta",
                "endpoint": "idp.example.com",
                "status": "active",
                "created_at": "2026-01-05T10:00:00Z",
                "updated_at": "2026-01-05T10:00:02Z",
            }
        }
    )


class ErrorResponse(BaseModel):
    """Error body returned by the HTTP surface."""
    status: int
    detail: str
    step: Optional[str] = None
    organization_id: Optional[str] = None
    inconsistent: bool = False
    failed_users: List[str] = Field(default_factory=list)
    mappers_created: Optional[int] = None
