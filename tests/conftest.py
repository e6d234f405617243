"""
Shared fixtures for SSO Bridge tests.

FakeBroker is an in-memory identity broker. It and RecordingStore append
every successful call to a shared ``events`` list so tests can assert on
call order across both collaborators.
"""

import threading
from typing import Dict, List, Tuple

import pytest

from sso_bridge.models import GroupMembership, ProviderHandle
from sso_bridge.services import JsonProviderStore, RetryPolicy


class FakeBroker:
    """In-memory IdentityBroker with injectable failures."""

    def __init__(self, events: List[Tuple]):
        self.events = events
        self.providers: Dict[str, str] = {}
        self.mappers: Dict[str, Tuple[str, str]] = {}
        self.users: List[str] = []
        self.groups: Dict[str, List[GroupMembership]] = {}
        self.logged_out: List[str] = []
        self.fail_on: Dict[Tuple[str, str], object] = {}
        self.attempts: Dict[str, int] = {}
        self._lock = threading.Lock()

    def add_user(self, user_id: str, *paths: str) -> None:
        self.users.append(user_id)
        self.groups[user_id] = [
            GroupMembership(id=f"{user_id}-g{index}", path=path) for index, path in enumerate(paths)
        ]

    def _maybe_fail(self, method: str, key: str = "*") -> None:
        with self._lock:
            self.attempts[method] = self.attempts.get(method, 0) + 1
            for lookup in ((method, key), (method, "*")):
                failure = self.fail_on.get(lookup)
                if failure is None:
                    continue
                if isinstance(failure, list):
                    if failure:
                        raise failure.pop(0)
                    continue
                raise failure

    def _record(self, *event) -> None:
        with self._lock:
            self.events.append(event)

    def create_provider(self, realm, alias, name, client_id, client_secret, discovery_endpoint):
        self._maybe_fail("create_provider", alias)
        self.providers.setdefault(alias, name)
        self._record("create_provider", alias, name)
        return ProviderHandle(alias=alias, display_name=name)

    def create_claim_mapper(self, realm, alias, mapper_name, claim, group_path):
        self._maybe_fail("create_claim_mapper", group_path)
        created = mapper_name not in self.mappers
        if created:
            self.mappers[mapper_name] = (claim.value, group_path)
        self._record("create_claim_mapper", group_path, claim.value)
        return created

    def list_sso_users(self, realm, alias):
        self._maybe_fail("list_sso_users", alias)
        self._record("list_sso_users", alias)
        return list(self.users)

    def list_user_groups(self, realm, user_id):
        self._maybe_fail("list_user_groups", user_id)
        self._record("list_user_groups", user_id)
        return list(self.groups.get(user_id, []))

    def remove_user_from_group(self, realm, user_id, group_id):
        self._maybe_fail("remove_user_from_group", user_id)
        path = next(group.path for group in self.groups[user_id] if group.id == group_id)
        self.groups[user_id] = [group for group in self.groups[user_id] if group.id != group_id]
        self._record("remove_user_from_group", user_id, path)

    def logout_user(self, realm, user_id):
        self._maybe_fail("logout_user", user_id)
        self.logged_out.append(user_id)
        self._record("logout_user", user_id)

    def delete_provider(self, realm, alias):
        self._maybe_fail("delete_provider", alias)
        self.providers.pop(alias, None)
        self._record("delete_provider", alias)


class RecordingStore(JsonProviderStore):
    """JsonProviderStore that logs inserts and deletes into the shared events list."""

    def __init__(self, data_file: str, events: List[Tuple]):
        super().__init__(data_file)
        self.events = events
        self.fail_insert = None

    def insert(self, organization_id, name, host):
        if self.fail_insert is not None:
            raise self.fail_insert
        record = super().insert(organization_id, name, host)
        self.events.append(("insert_record", organization_id, host))
        return record

    def delete(self, organization_id):
        deleted = super().delete(organization_id)
        self.events.append(("delete_record", organization_id))
        return deleted


@pytest.fixture
def events():
    return []


@pytest.fixture
def broker(events):
    return FakeBroker(events)


@pytest.fixture
def store(tmp_path, events):
    return RecordingStore(str(tmp_path / "oidc_providers.json"), events)


@pytest.fixture
def retry_policy():
    """Three attempts with no waiting between them."""
    return RetryPolicy(max_tries=3, backoff_factor=0)


def broker_calls(events, name=None):
    """Events emitted by the broker, optionally filtered by method name."""
    broker_events = [event for event in events if event[0] not in ("insert_record", "delete_record")]
    if name is None:
        return broker_events
    return [event for event in broker_events if event[0] == name]
