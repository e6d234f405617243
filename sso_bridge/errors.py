"""
Error types for SSO Bridge.

Broker failures are split by how a workflow reacts to them:
BrokerUnavailable is retried, BrokerRejected and BrokerAuthError end the
current step. The step-level wrappers (ProvisioningError, DeprovisioningError)
record which step was reached so a caller can tell whether the identity
broker and the local provider record have diverged.
"""

from dataclasses import dataclass
from typing import List, Optional


class SSOBridgeError(Exception):
    """Base class for all SSO Bridge errors."""


class InvalidRoleError(SSOBridgeError):
    """Raised when a role mapping names a role outside Admin, Member, Viewer."""

    def __init__(self, role: object):
        self.role = role
        super().__init__(f"The role {role!r} doesn't exist")


class BrokerError(SSOBridgeError):
    """A call to the identity broker failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class BrokerUnavailable(BrokerError):
    """Network failure, timeout or 5xx from the broker. Safe to retry."""


class BrokerRejected(BrokerError):
    """The broker refused the request (bad input or conflict)."""


class BrokerAuthError(BrokerError):
    """The admin credentials or token were not accepted."""


class DuplicateIntegration(SSOBridgeError):
    """The organization already has an SSO integration."""

    def __init__(self, organization_id: str):
        self.organization_id = organization_id
        super().__init__(f"Organization {organization_id} already has an OIDC provider")


class WorkflowCancelled(SSOBridgeError):
    """The caller cancelled the workflow (explicitly or by deadline)."""


@dataclass
class UserCleanupFailure:
    """Cleanup outcome for a single user that could not be cleaned."""

    user_id: str
    error: Exception

    def __str__(self) -> str:
        return f"{self.user_id}: {self.error}"


class PartialTeardownFailure(SSOBridgeError):
    """One or more SSO users could not be removed from groups or logged out."""

    def __init__(self, failures: List[UserCleanupFailure]):
        self.failures = failures
        details = "; ".join(str(failure) for failure in failures)
        super().__init__(f"Cleanup failed for {len(failures)} user(s): {details}")

    @property
    def failed_user_ids(self) -> List[str]:
        return [failure.user_id for failure in self.failures]


class ProvisioningError(SSOBridgeError):
    """
    Failure of the provisioning workflow at a given step.

    Args:
        step: The step that failed (see ProvisioningStep)
        cause: The underlying error
        mappers_created: Claim mappers added by this call
    """

    def __init__(self, step: str, cause: Exception, mappers_created: int = 0):
        self.step = step
        self.cause = cause
        self.mappers_created = mappers_created
        super().__init__(f"Provisioning failed at step '{step}': {cause}")

    @property
    def inconsistent(self) -> bool:
        """True when the broker already holds state the local record does not reflect."""
        return self.step not in ("validate", "create_provider")


class DeprovisioningError(SSOBridgeError):
    """
    Failure of the deprovisioning workflow at a given step.

    Args:
        step: The step that failed (see DeprovisioningStep)
        cause: The underlying error
    """

    def __init__(self, step: str, cause: Exception):
        self.step = step
        self.cause = cause
        super().__init__(f"Deprovisioning failed at step '{step}': {cause}")

    @property
    def inconsistent(self) -> bool:
        """True when the broker provider is gone but the local record remains."""
        return self.step == "delete_record"
