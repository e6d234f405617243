"""
OIDC Provider Service

Entry points used by the request-handling layer to connect, inspect and
disconnect an organization's OIDC identity provider.
"""

import logging
from typing import List, Optional

from ..config import SSOBridgeSettings
from ..models import OIDCProviderInput, OidcProviderRecord
from .deprovisioning import DeprovisioningResult, DeprovisioningWorkflow
from .keycloak_client import IdentityBroker, KeycloakBrokerClient
from .provider_store import JsonProviderStore, ProviderRecordStore
from .provisioning import ProvisioningResult, ProvisioningWorkflow
from .workflow import CancellationToken, RetryPolicy

logger = logging.getLogger(__name__)


class OidcProviderService:
    """
    Creates the provider in the broker, records it locally and wires the
    role mappers; on deletion, cleans up the organization's SSO users, logs
    them out and removes the provider and its record.

    Example usage:
        service = OidcProviderService.from_settings(get_settings())

        result = service.create_oidc_provider("org-1", "acme", provider_input)
        if not result.ok:
            print(result.step, result.error)

        result = service.delete_oidc_provider("org-1", "acme", org_creator_user_id="user-0")
    """

    def __init__(
        self,
        broker: IdentityBroker,
        store: ProviderRecordStore,
        realm: str,
        retry_policy: Optional[RetryPolicy] = None,
        cleanup_max_workers: int = 4,
        workflow_timeout: Optional[float] = None,
    ):
        self.store = store
        self.workflow_timeout = workflow_timeout
        self.provisioning = ProvisioningWorkflow(broker, store, realm, retry_policy=retry_policy)
        self.deprovisioning = DeprovisioningWorkflow(
            broker, store, realm, retry_policy=retry_policy, max_workers=cleanup_max_workers
        )

    @classmethod
    def from_settings(cls, settings: SSOBridgeSettings) -> "OidcProviderService":
        """Build the service with a Keycloak broker and a JSON record store."""
        broker = KeycloakBrokerClient(
            keycloak_url=settings.keycloak_url,
            admin_realm=settings.keycloak_admin_realm,
            client_id=settings.keycloak_client_id,
            client_secret=settings.keycloak_client_secret,
            admin_user=settings.keycloak_admin_user,
            admin_password=settings.keycloak_admin_password,
            timeout=settings.request_timeout_seconds,
        )
        store = JsonProviderStore(data_file=str(settings.provider_store_file))
        retry_policy = RetryPolicy(
            max_tries=settings.retry_max_tries, backoff_factor=settings.retry_backoff_factor
        )
        return cls(
            broker=broker,
            store=store,
            realm=settings.keycloak_realm,
            retry_policy=retry_policy,
            cleanup_max_workers=settings.cleanup_max_workers,
            workflow_timeout=settings.workflow_timeout_seconds,
        )

    def _token(self, cancel_token: Optional[CancellationToken]) -> CancellationToken:
        return cancel_token or CancellationToken(timeout=self.workflow_timeout)

    def create_oidc_provider(
        self,
        organization_id: str,
        organization_slug: str,
        provider_input: OIDCProviderInput,
        cancel_token: Optional[CancellationToken] = None,
    ) -> ProvisioningResult:
        logger.info(f"Creating OIDC provider {provider_input.name} for organization {organization_slug}")
        return self.provisioning.run(
            organization_id, organization_slug, provider_input, cancel_token=self._token(cancel_token)
        )

    def delete_oidc_provider(
        self,
        organization_id: str,
        organization_slug: str,
        org_creator_user_id: str,
        cancel_token: Optional[CancellationToken] = None,
    ) -> DeprovisioningResult:
        logger.info(f"Deleting OIDC provider for organization {organization_slug}")
        return self.deprovisioning.run(
            organization_id, organization_slug, org_creator_user_id, cancel_token=self._token(cancel_token)
        )

    def get_oidc_provider(self, organization_id: str) -> Optional[OidcProviderRecord]:
        return self.store.get(organization_id)

    def list_inconsistent_providers(self) -> List[OidcProviderRecord]:
        """Records whose last workflow did not finish and need manual reconciliation."""
        return self.store.list_inconsistent()
