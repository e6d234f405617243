"""
Provider Record Store

Persists the local record that marks an organization as having an SSO
integration. At most one record exists per organization id.
"""

import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

from ..errors import DuplicateIntegration
from ..models import IntegrationStatus, OidcProviderRecord

logger = logging.getLogger(__name__)


class ProviderRecordStore(Protocol):
    """Storage used by the provisioning and deprovisioning workflows."""

    def insert(self, organization_id: str, name: str, host: str) -> OidcProviderRecord: ...

    def delete(self, organization_id: str) -> bool: ...

    def get(self, organization_id: str) -> Optional[OidcProviderRecord]: ...

    def update_status(self, organization_id: str, status: IntegrationStatus) -> OidcProviderRecord: ...

    def list_all(self) -> List[OidcProviderRecord]: ...

    def list_inconsistent(self) -> List[OidcProviderRecord]: ...


class JsonProviderStore:
    """
    Provider records kept in a single JSON file keyed by organization id.

    Thread-safe using a lock around every read-modify-write cycle.

    Example usage:
        store = JsonProviderStore("/data/oidc_providers.json")

        store.insert(organization_id="org-1", name="Okta", host="idp.example.com")
        store.update_status("org-1", IntegrationStatus.ACTIVE)

        record = store.get("org-1")
        # Returns: OidcProviderRecord(organization_id="org-1", name="Okta", ...)

        store.delete("org-1")
    """

    def __init__(self, data_file: str):
        """
        Initialize JsonProviderStore with path to JSON data file.

        Args:
            data_file: Path to JSON file for storing provider records
        """
        self.data_file = Path(data_file)
        self._lock = threading.Lock()

        self.data_file.parent.mkdir(parents=True, exist_ok=True)

        if not self.data_file.exists():
            self._write_data({})

    def _read_data(self) -> Dict[str, Dict[str, Any]]:
        """
        Read provider records from the JSON file.

        Returns:
            Dictionary mapping organization ids to serialized records
        """
        try:
            with open(self.data_file, "r", encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError:
            return {}

    def _write_data(self, data: Dict[str, Dict[str, Any]]) -> None:
        """
        Write provider records atomically (temp file, then rename).

        Args:
            data: Dictionary mapping organization ids to serialized records
        """
        temp_file = self.data_file.with_suffix(".tmp")

        with open(temp_file, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)

        temp_file.replace(self.data_file)

    def insert(self, organization_id: str, name: str, host: str) -> OidcProviderRecord:
        """
        Insert the provider record for an organization.

        Args:
            organization_id: Organization id (record key)
            name: Provider display name
            host: Host of the provider's discovery endpoint

        Returns:
            The stored record, in PROVISIONING status

        Raises:
            DuplicateIntegration: If the organization already has a record
        """
        with self._lock:
            data = self._read_data()

            if organization_id in data:
                raise DuplicateIntegration(organization_id)

            record = OidcProviderRecord(organization_id=organization_id, name=name, endpoint=host)
            data[organization_id] = record.model_dump(mode="json")
            self._write_data(data)

        logger.info(f"Stored OIDC provider record for organization {organization_id} ({host})")
        return record

    def get(self, organization_id: str) -> Optional[OidcProviderRecord]:
        """Return the organization's record, or None."""
        with self._lock:
            data = self._read_data()
            raw = data.get(organization_id)
            return OidcProviderRecord.model_validate(raw) if raw else None

    def update_status(self, organization_id: str, status: IntegrationStatus) -> OidcProviderRecord:
        """
        Move the organization's record to a new saga status.

        Raises:
            KeyError: If the organization has no record
        """
        with self._lock:
            data = self._read_data()

            if organization_id not in data:
                raise KeyError(organization_id)

            record = OidcProviderRecord.model_validate(data[organization_id])
            record = record.model_copy(update={"status": status, "updated_at": datetime.now(timezone.utc)})
            data[organization_id] = record.model_dump(mode="json")
            self._write_data(data)

        logger.debug(f"OIDC provider record for organization {organization_id} is now {status.value}")
        return record

    def delete(self, organization_id: str) -> bool:
        """
        Remove the organization's record. Deleting a missing record is a no-op.

        Returns:
            True if a record was found and deleted, False otherwise
        """
        with self._lock:
            data = self._read_data()

            if organization_id not in data:
                return False

            del data[organization_id]
            self._write_data(data)

        logger.info(f"Deleted OIDC provider record for organization {organization_id}")
        return True

    def list_all(self) -> List[OidcProviderRecord]:
        with self._lock:
            data = self._read_data()
            return [OidcProviderRecord.model_validate(raw) for raw in data.values()]

    def list_inconsistent(self) -> List[OidcProviderRecord]:
        """Records left by a workflow that stopped part way (any status but active)."""
        return [record for record in self.list_all() if record.status != IntegrationStatus.ACTIVE]
