"""
Test file for the Deprovisioning Workflow

Tests group cleanup, logout, creator exemption and the ordering of the
provider and record deletes.
"""

import pytest

from conftest import FakeBroker, broker_calls
from sso_bridge.errors import BrokerRejected, BrokerUnavailable, PartialTeardownFailure, WorkflowCancelled
from sso_bridge.models import GroupMembership, IntegrationStatus
from sso_bridge.services import CancellationToken, DeprovisioningStep, DeprovisioningWorkflow
from sso_bridge.services.deprovisioning import is_removable_group


class TestIsRemovableGroup:

    @pytest.mark.parametrize(
        "path, removable",
        [
            ("/acme", True),
            ("/acme/admin", True),
            ("/acme/viewer", False),
            ("/other/group", False),
            ("/other/viewer", False),
            ("/global", False),
        ],
    )
    def test_paths(self, path, removable):
        assert is_removable_group(GroupMembership(id="g", path=path), "acme") is removable


class TestDeprovisioningWorkflow:
    """Deprovisioning workflow behaviour"""

    @pytest.fixture
    def workflow(self, broker, store, retry_policy):
        return DeprovisioningWorkflow(broker, store, realm="cosmo", retry_policy=retry_policy, max_workers=4)

    @pytest.fixture
    def provisioned(self, store, events):
        store.insert("org-1", "Okta", "idp.example.com")
        store.update_status("org-1", IntegrationStatus.ACTIVE)
        events.clear()

    def test_end_to_end_cleanup(self, workflow, broker, store, events, provisioned):
        """u1 leaves only /acme/admin, u2 keeps /acme/viewer, both are logged out, creator untouched."""
        broker.add_user("creator", "/acme/admin", "/acme")
        broker.add_user("u1", "/acme/admin", "/other/group")
        broker.add_user("u2", "/acme/viewer")

        result = workflow.run("org-1", "acme", org_creator_user_id="creator")

        assert result.ok
        assert result.users_cleaned == ["u1", "u2"]
        assert broker_calls(events, "remove_user_from_group") == [("remove_user_from_group", "u1", "/acme/admin")]
        assert sorted(broker.logged_out) == ["u1", "u2"]
        assert [group.path for group in broker.groups["u1"]] == ["/other/group"]
        assert [group.path for group in broker.groups["u2"]] == ["/acme/viewer"]
        assert [group.path for group in broker.groups["creator"]] == ["/acme/admin", "/acme"]
        assert "acme" not in broker.providers
        assert store.get("org-1") is None

        assert [event[0] for event in events[-2:]] == ["delete_provider", "delete_record"]

    def test_creator_is_never_touched(self, workflow, broker, events):
        broker.add_user("creator", "/acme/admin")

        result = workflow.run("org-1", "acme", org_creator_user_id="creator")

        assert result.ok
        assert broker.logged_out == []
        assert broker_calls(events, "list_user_groups") == []
        assert broker_calls(events, "remove_user_from_group") == []

    def test_user_without_groups_is_still_logged_out(self, workflow, broker):
        broker.add_user("u1")

        result = workflow.run("org-1", "acme", org_creator_user_id="creator")

        assert result.ok
        assert broker.logged_out == ["u1"]

    def test_removals_precede_logout_for_each_user(self, workflow, broker, events):
        broker.add_user("u1", "/acme/admin", "/acme")
        broker.add_user("u2", "/acme")

        workflow.run("org-1", "acme", org_creator_user_id="creator")

        for user_id in ("u1", "u2"):
            user_events = [event[0] for event in events if len(event) > 1 and event[1] == user_id]
            assert user_events[-1] == "logout_user"
            assert user_events[0] == "list_user_groups"

        u1_removed = [event[2] for event in broker_calls(events, "remove_user_from_group") if event[1] == "u1"]
        assert u1_removed == ["/acme/admin", "/acme"]

    def test_no_sso_users(self, workflow, broker, store, events, provisioned):
        result = workflow.run("org-1", "acme", org_creator_user_id="creator")

        assert result.ok
        assert [event[0] for event in events] == ["list_sso_users", "delete_provider", "delete_record"]
        assert store.get("org-1") is None

    def test_missing_record_is_fine(self, workflow, store):
        result = workflow.run("org-1", "acme", org_creator_user_id="creator")

        assert result.ok
        assert store.get("org-1") is None

    def test_user_failure_stops_before_deletes(self, workflow, broker, store, events, provisioned):
        """A broker outage for one user is reported, and nothing is deleted."""
        broker.add_user("creator")
        broker.add_user("u1", "/acme/admin")
        broker.add_user("u2", "/acme")
        broker.fail_on[("remove_user_from_group", "u1")] = BrokerUnavailable("connection reset")

        result = workflow.run("org-1", "acme", org_creator_user_id="creator")

        assert not result.ok
        assert result.step == DeprovisioningStep.CLEANUP_USERS.value
        assert isinstance(result.error.cause, PartialTeardownFailure)
        assert result.failed_users == ["u1"]
        assert isinstance(result.error.cause.failures[0].error, BrokerUnavailable)
        assert broker.attempts["remove_user_from_group"] == 4  # u1 three times, u2 once

        assert result.users_cleaned == ["u2"]
        assert "u1" not in broker.logged_out
        assert broker_calls(events, "delete_provider") == []
        assert "delete_record" not in [event[0] for event in events]

        record = store.get("org-1")
        assert record.status == IntegrationStatus.TEARING_DOWN

    def test_all_failures_are_collected(self, workflow, broker):
        broker.add_user("u1", "/acme")
        broker.add_user("u2", "/acme")
        broker.add_user("u3", "/acme")
        broker.fail_on[("logout_user", "u1")] = BrokerRejected("gone", 400)
        broker.fail_on[("list_user_groups", "u3")] = BrokerRejected("gone", 400)

        result = workflow.run("org-1", "acme", org_creator_user_id="creator")

        assert result.failed_users == ["u1", "u3"]
        assert result.users_cleaned == ["u2"]

    def test_provider_delete_failure_keeps_record(self, workflow, broker, store, events, provisioned):
        broker.fail_on[("delete_provider", "*")] = BrokerRejected("forbidden", 400)

        result = workflow.run("org-1", "acme", org_creator_user_id="creator")

        assert result.step == DeprovisioningStep.DELETE_PROVIDER.value
        assert not result.error.inconsistent
        assert "delete_record" not in [event[0] for event in events]
        assert store.get("org-1").status == IntegrationStatus.TEARING_DOWN

    def test_list_users_failure(self, workflow, broker, events):
        broker.fail_on[("list_sso_users", "*")] = BrokerRejected("realm not found", 404)

        result = workflow.run("org-1", "acme", org_creator_user_id="creator")

        assert result.step == DeprovisioningStep.LIST_USERS.value
        assert events == []

    def test_rerun_after_partial_failure_completes(self, workflow, broker, store, provisioned):
        broker.add_user("u1", "/acme/admin")
        broker.add_user("u2", "/acme")
        broker.fail_on[("logout_user", "u1")] = [BrokerRejected("busy", 409)]

        first = workflow.run("org-1", "acme", org_creator_user_id="creator")
        second = workflow.run("org-1", "acme", org_creator_user_id="creator")

        assert not first.ok
        assert second.ok
        assert "u1" in broker.logged_out
        assert store.get("org-1") is None

    def test_cancelled_before_cleanup(self, broker, store, retry_policy, events):
        token = CancellationToken()

        class CancellingBroker(FakeBroker):
            def list_sso_users(self, realm, alias):
                users = super().list_sso_users(realm, alias)
                token.cancel()
                return users

        cancelling = CancellingBroker(events)
        cancelling.add_user("u1", "/acme")
        workflow = DeprovisioningWorkflow(cancelling, store, realm="cosmo", retry_policy=retry_policy)

        result = workflow.run("org-1", "acme", org_creator_user_id="creator", cancel_token=token)

        assert isinstance(result.error.cause, WorkflowCancelled)
        assert result.step == DeprovisioningStep.CLEANUP_USERS.value
        assert cancelling.logged_out == []
        assert broker_calls(events, "delete_provider") == []
