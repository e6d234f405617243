"""
Provisioning Workflow

Connects an external OIDC identity provider to an organization:

    validate         check the first role mapping and any existing record
    create_provider  register the identity provider with the broker
    insert_record    store the local record (status: provisioning)
    create_mappers   per role mapping: resolve its role, then create its claim mapper
    activate_record  mark the record active

A role is checked right before the mapper made for it. A bad first role
therefore fails at validate with no broker call; a bad later role fails at
create_mappers after the provider, the record and the earlier mappers exist.

There is no transaction spanning the broker and the record store. A failure
after create_provider leaves broker state the record does not fully describe;
the returned error names the step so the divergence can be reconciled, and
re-running the same request resumes instead of duplicating.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ..errors import DuplicateIntegration, ProvisioningError, SSOBridgeError
from ..models import IntegrationStatus, OIDCProviderInput
from .keycloak_client import IdentityBroker
from .provider_store import ProviderRecordStore
from .role_mapping import resolve_mapping
from .workflow import CancellationToken, RetryPolicy

logger = logging.getLogger(__name__)


class ProvisioningStep(str, Enum):
    VALIDATE = "validate"
    CREATE_PROVIDER = "create_provider"
    INSERT_RECORD = "insert_record"
    CREATE_MAPPERS = "create_mappers"
    ACTIVATE_RECORD = "activate_record"


@dataclass
class ProvisioningResult:
    """
    Outcome of a provisioning call. ``error`` is None on success.

    ``mappers_created`` counts mappers added by this call; ``mappers_existing``
    counts mappers a resumed run found already in place.
    """

    organization_id: str
    mappers_created: int = 0
    mappers_existing: int = 0
    error: Optional[ProvisioningError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def step(self) -> Optional[str]:
        return self.error.step if self.error else None


def extract_discovery_host(discovery_endpoint: str) -> str:
    """
    Return the authority of a discovery URL.

    >>> extract_discovery_host("https://idp.example.com/realms/acme")
    'idp.example.com'
    """
    return discovery_endpoint.split("/")[2]


class ProvisioningWorkflow:
    """Creates an organization's SSO integration across the broker and the record store."""

    def __init__(
        self,
        broker: IdentityBroker,
        store: ProviderRecordStore,
        realm: str,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.broker = broker
        self.store = store
        self.realm = realm
        self.retry_policy = retry_policy or RetryPolicy()

    def run(
        self,
        organization_id: str,
        organization_slug: str,
        provider_input: OIDCProviderInput,
        cancel_token: Optional[CancellationToken] = None,
    ) -> ProvisioningResult:
        """
        Provision the organization's OIDC provider.

        Never raises SSOBridgeError; failures are returned in the result.
        """
        cancel_token = cancel_token or CancellationToken()
        result = ProvisioningResult(organization_id=organization_id)
        step = ProvisioningStep.VALIDATE

        try:
            mappings = list(provider_input.mappers)
            first_resolved = resolve_mapping(mappings[0], organization_slug) if mappings else None

            existing = self.store.get(organization_id)
            resuming = False
            if existing is not None:
                if existing.status != IntegrationStatus.PROVISIONING or existing.name != provider_input.name:
                    raise DuplicateIntegration(organization_id)
                logger.info(f"Resuming interrupted provisioning for organization {organization_id}")
                resuming = True

            step = ProvisioningStep.CREATE_PROVIDER
            cancel_token.raise_if_cancelled(step.value)
            self.retry_policy.call(
                "create_provider",
                self.broker.create_provider,
                realm=self.realm,
                alias=organization_slug,
                name=provider_input.name,
                client_id=provider_input.client_id,
                client_secret=provider_input.client_secret,
                discovery_endpoint=provider_input.discovery_endpoint,
            )

            step = ProvisioningStep.INSERT_RECORD
            cancel_token.raise_if_cancelled(step.value)
            if not resuming:
                self.store.insert(
                    organization_id=organization_id,
                    name=provider_input.name,
                    host=extract_discovery_host(provider_input.discovery_endpoint),
                )

            step = ProvisioningStep.CREATE_MAPPERS
            for index, mapping in enumerate(mappings):
                cancel_token.raise_if_cancelled(step.value)
                resolved = first_resolved if index == 0 else resolve_mapping(mapping, organization_slug)
                created = self.retry_policy.call(
                    "create_claim_mapper",
                    self.broker.create_claim_mapper,
                    realm=self.realm,
                    alias=organization_slug,
                    mapper_name=resolved.mapper_name,
                    claim=resolved.claim,
                    group_path=resolved.group_path,
                )
                if created:
                    result.mappers_created += 1
                else:
                    result.mappers_existing += 1

            step = ProvisioningStep.ACTIVATE_RECORD
            self.store.update_status(organization_id, IntegrationStatus.ACTIVE)

        except SSOBridgeError as e:
            result.error = ProvisioningError(step.value, e, mappers_created=result.mappers_created)
            if step == ProvisioningStep.VALIDATE:
                logger.warning(f"Rejected OIDC provider for organization {organization_id}: {e}")
            else:
                logger.error(
                    f"Provisioning OIDC provider for organization {organization_id} failed at "
                    f"{step.value} after {result.mappers_created} mapper(s): {e}"
                )
            return result

        logger.info(
            f"Provisioned OIDC provider {provider_input.name} for organization {organization_id} "
            f"with {result.mappers_created} new and {result.mappers_existing} existing mapper(s)"
        )
        return result
