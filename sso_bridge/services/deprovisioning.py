"""
Deprovisioning Workflow

Unwinds an organization's SSO integration:

    mark_tearing_down  flag the local record (status: tearing_down)
    list_users         users that logged in through the organization's provider
    cleanup_users      per user: leave the org's admin/member groups, then log out
    delete_provider    remove the identity provider from the broker
    delete_record      remove the local record

Each step only starts once the previous one has succeeded. Viewer group
memberships are kept, but every SSO user except the org creator is logged
out. Users cleaned before a failure are not restored.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from ..errors import (
    DeprovisioningError,
    PartialTeardownFailure,
    SSOBridgeError,
    UserCleanupFailure,
    WorkflowCancelled,
)
from ..models import GroupMembership, IntegrationStatus
from .keycloak_client import IdentityBroker
from .provider_store import ProviderRecordStore
from .workflow import CancellationToken, RetryPolicy

logger = logging.getLogger(__name__)

VIEWER_GROUP_MARKER = "viewer"


class DeprovisioningStep(str, Enum):
    MARK_TEARING_DOWN = "mark_tearing_down"
    LIST_USERS = "list_users"
    CLEANUP_USERS = "cleanup_users"
    DELETE_PROVIDER = "delete_provider"
    DELETE_RECORD = "delete_record"


@dataclass
class DeprovisioningResult:
    """Outcome of a deprovisioning call. ``error`` is None on success."""

    organization_id: str
    users_cleaned: List[str] = field(default_factory=list)
    error: Optional[DeprovisioningError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def step(self) -> Optional[str]:
        return self.error.step if self.error else None

    @property
    def failed_users(self) -> List[str]:
        if self.error and isinstance(self.error.cause, PartialTeardownFailure):
            return self.error.cause.failed_user_ids
        return []


def is_removable_group(group: GroupMembership, organization_slug: str) -> bool:
    """
    Whether teardown should take the user out of ``group``.

    Groups of other organizations and the organization's viewer group are kept.
    """
    if organization_slug not in group.path:
        return False
    return VIEWER_GROUP_MARKER not in group.path


class DeprovisioningWorkflow:
    """Tears down an organization's SSO integration across the broker and the record store."""

    def __init__(
        self,
        broker: IdentityBroker,
        store: ProviderRecordStore,
        realm: str,
        retry_policy: Optional[RetryPolicy] = None,
        max_workers: int = 4,
    ):
        self.broker = broker
        self.store = store
        self.realm = realm
        self.retry_policy = retry_policy or RetryPolicy()
        self.max_workers = max_workers

    def _cleanup_user(
        self, user_id: str, organization_slug: str, cancel_token: CancellationToken
    ) -> None:
        """Remove one user from the organization's groups, then end their sessions."""
        cancel_token.raise_if_cancelled(f"{DeprovisioningStep.CLEANUP_USERS.value}:{user_id}")

        groups = self.retry_policy.call(
            "list_user_groups", self.broker.list_user_groups, realm=self.realm, user_id=user_id
        )
        for group in groups:
            if not is_removable_group(group, organization_slug):
                continue
            self.retry_policy.call(
                "remove_user_from_group",
                self.broker.remove_user_from_group,
                realm=self.realm,
                user_id=user_id,
                group_id=group.id,
            )
            logger.debug(f"Removed user {user_id} from group {group.path}")

        self.retry_policy.call("logout_user", self.broker.logout_user, realm=self.realm, user_id=user_id)

    def _cleanup_users(
        self,
        user_ids: List[str],
        organization_slug: str,
        cancel_token: CancellationToken,
        result: DeprovisioningResult,
    ) -> None:
        """
        Clean all users on a bounded pool and wait for every one of them.

        Raises:
            PartialTeardownFailure: If any user could not be cleaned
            WorkflowCancelled: If cancellation stopped users from being cleaned
        """
        if not user_ids:
            return

        failures: List[UserCleanupFailure] = []
        cancelled = None
        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="sso-cleanup") as pool:
            futures = {
                pool.submit(self._cleanup_user, user_id, organization_slug, cancel_token): user_id
                for user_id in user_ids
            }
            for future in as_completed(futures):
                user_id = futures[future]
                try:
                    future.result()
                except WorkflowCancelled as e:
                    cancelled = e
                except SSOBridgeError as e:
                    logger.error(f"Cleanup of user {user_id} failed: {e}")
                    failures.append(UserCleanupFailure(user_id=user_id, error=e))
                else:
                    result.users_cleaned.append(user_id)

        result.users_cleaned.sort(key=user_ids.index)
        if failures:
            failures.sort(key=lambda failure: user_ids.index(failure.user_id))
            raise PartialTeardownFailure(failures)
        if cancelled is not None:
            raise cancelled

    def run(
        self,
        organization_id: str,
        organization_slug: str,
        org_creator_user_id: str,
        cancel_token: Optional[CancellationToken] = None,
    ) -> DeprovisioningResult:
        """
        Deprovision the organization's OIDC provider.

        Never raises SSOBridgeError; failures are returned in the result.
        """
        cancel_token = cancel_token or CancellationToken()
        result = DeprovisioningResult(organization_id=organization_id)
        step = DeprovisioningStep.MARK_TEARING_DOWN

        try:
            cancel_token.raise_if_cancelled(step.value)
            if self.store.get(organization_id) is not None:
                self.store.update_status(organization_id, IntegrationStatus.TEARING_DOWN)

            step = DeprovisioningStep.LIST_USERS
            cancel_token.raise_if_cancelled(step.value)
            sso_users = self.retry_policy.call(
                "list_sso_users", self.broker.list_sso_users, realm=self.realm, alias=organization_slug
            )

            step = DeprovisioningStep.CLEANUP_USERS
            user_ids = [user_id for user_id in sso_users if user_id != org_creator_user_id]
            logger.info(f"Cleaning up {len(user_ids)} SSO user(s) of organization {organization_id}")
            self._cleanup_users(user_ids, organization_slug, cancel_token, result)

            step = DeprovisioningStep.DELETE_PROVIDER
            cancel_token.raise_if_cancelled(step.value)
            self.retry_policy.call(
                "delete_provider", self.broker.delete_provider, realm=self.realm, alias=organization_slug
            )

            # The broker no longer knows the provider; the record must go last.
            step = DeprovisioningStep.DELETE_RECORD
            self.store.delete(organization_id)

        except SSOBridgeError as e:
            result.error = DeprovisioningError(step.value, e)
            logger.error(f"Deprovisioning OIDC provider for organization {organization_id} failed at {step.value}: {e}")
            return result

        logger.info(
            f"Deprovisioned OIDC provider for organization {organization_id}, "
            f"{len(result.users_cleaned)} user(s) cleaned"
        )
        return result
