"""
Workflow support shared by provisioning and deprovisioning.

Retries: only BrokerUnavailable is retried, with exponential backoff.
Broker calls are idempotent (providers and mappers are looked up by a
stable key, deletes tolerate 404), so a retried call never duplicates state.

Cancellation: a CancellationToken is only checked between steps, never
while a broker call is in flight.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

import backoff

from ..errors import BrokerUnavailable, WorkflowCancelled

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancellationToken:
    """
    Caller-controlled cancellation flag with an optional deadline.

    Example usage:
        token = CancellationToken(timeout=30)
        result = service.delete_oidc_provider(..., cancel_token=token)

        # or, from another thread
        token.cancel()
    """

    def __init__(self, timeout: Optional[float] = None):
        self._event = threading.Event()
        self._deadline = time.monotonic() + timeout if timeout is not None else None

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._deadline is not None and time.monotonic() >= self._deadline

    def raise_if_cancelled(self, step: str) -> None:
        """
        Raises:
            WorkflowCancelled: If the token was cancelled or its deadline passed
        """
        if self.cancelled:
            raise WorkflowCancelled(f"Cancelled before step '{step}'")


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff settings for transient broker failures."""

    max_tries: int = 3
    backoff_factor: float = 0.5

    def call(self, operation: str, func: Callable[..., T], *args, **kwargs) -> T:
        """
        Call ``func``, retrying on BrokerUnavailable.

        Raises:
            BrokerUnavailable: When the last attempt still fails
        """

        def log_backoff(details):
            logger.warning(
                f"{operation} unavailable (attempt {details['tries']}/{self.max_tries}), "
                f"retrying in {details['wait']:.1f}s"
            )

        retrying = backoff.on_exception(
            backoff.expo,
            BrokerUnavailable,
            max_tries=self.max_tries,
            on_backoff=log_backoff,
            jitter=None,
            factor=self.backoff_factor,
        )(func)
        return retrying(*args, **kwargs)
