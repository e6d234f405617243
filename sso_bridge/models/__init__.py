"""
SSO Bridge Models Package

Pydantic models for OIDC provider provisioning and the local integration record.
"""

from .oidc_provider import (
    ClaimDescriptor,
    CreateOIDCProviderRequest,
    ErrorResponse,
    GroupMembership,
    IntegrationStatus,
    OIDCProviderInput,
    OidcProviderRecord,
    ProviderHandle,
    ResolvedMapping,
    Role,
    RoleMapping,
    SSO_GROUPS_CLAIM,
)

__all__ = [
    "ClaimDescriptor",
    "CreateOIDCProviderRequest",
    "ErrorResponse",
    "GroupMembership",
    "IntegrationStatus",
    "OIDCProviderInput",
    "OidcProviderRecord",
    "ProviderHandle",
    "ResolvedMapping",
    "Role",
    "RoleMapping",
    "SSO_GROUPS_CLAIM",
]
