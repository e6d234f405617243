"""
SSO Bridge Services

Business logic for provisioning and tearing down an organization's OIDC
identity provider in Keycloak.
"""

from .deprovisioning import DeprovisioningResult, DeprovisioningStep, DeprovisioningWorkflow
from .keycloak_client import IdentityBroker, KeycloakBrokerClient
from .oidc_provider import OidcProviderService
from .provider_store import JsonProviderStore, ProviderRecordStore
from .provisioning import ProvisioningResult, ProvisioningStep, ProvisioningWorkflow
from .role_mapping import resolve_group_path, resolve_mapping, resolve_mappings
from .workflow import CancellationToken, RetryPolicy

__all__ = [
    "CancellationToken",
    "DeprovisioningResult",
    "DeprovisioningStep",
    "DeprovisioningWorkflow",
    "IdentityBroker",
    "JsonProviderStore",
    "KeycloakBrokerClient",
    "OidcProviderService",
    "ProviderRecordStore",
    "ProvisioningResult",
    "ProvisioningStep",
    "ProvisioningWorkflow",
    "RetryPolicy",
    "resolve_group_path",
    "resolve_mapping",
    "resolve_mappings",
]
