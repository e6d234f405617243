"""
Test file for the Role Mapping Resolver

Tests role parsing, group path resolution and claim descriptors.
"""

import pytest

from sso_bridge.errors import InvalidRoleError
from sso_bridge.models import ClaimDescriptor, Role, RoleMapping
from sso_bridge.services import resolve_group_path, resolve_mapping, resolve_mappings
from sso_bridge.services.role_mapping import parse_role


class TestResolveGroupPath:
    """Role to group path resolution"""

    @pytest.mark.parametrize(
        "role, expected",
        [
            (Role.ADMIN, "/acme/admin"),
            (Role.MEMBER, "/acme"),
            (Role.VIEWER, "/acme/viewer"),
        ],
    )
    def test_each_role_maps_to_its_group(self, role, expected):
        assert resolve_group_path(role, "acme") == expected

    def test_slug_namespaces_the_path(self):
        assert resolve_group_path(Role.ADMIN, "wundergraph") == "/wundergraph/admin"


class TestParseRole:
    """Raw role values"""

    def test_accepts_known_roles(self):
        assert parse_role("Admin") is Role.ADMIN
        assert parse_role("Member") is Role.MEMBER
        assert parse_role("Viewer") is Role.VIEWER
        assert parse_role(Role.VIEWER) is Role.VIEWER

    @pytest.mark.parametrize("value", ["Owner", "admin", "", "Billing"])
    def test_rejects_unknown_roles(self, value):
        with pytest.raises(InvalidRoleError) as exc_info:
            parse_role(value)
        assert exc_info.value.role == value
        assert repr(value) in str(exc_info.value)


class TestResolveMapping:
    """Resolution of complete role mappings"""

    def test_builds_structured_claim(self):
        resolved = resolve_mapping(RoleMapping(role="Admin", sso_group="platform-admins"), "acme")

        assert resolved.role is Role.ADMIN
        assert resolved.group_path == "/acme/admin"
        assert resolved.claim == ClaimDescriptor(key="ssoGroups", value="platform-admins")

    def test_claim_value_is_not_interpolated(self):
        """Quotes in a group name stay data; nothing is spliced into JSON text."""
        resolved = resolve_mapping(RoleMapping(role="Member", sso_group='team "a"'), "acme")
        assert resolved.claim.model_dump() == {"key": "ssoGroups", "value": 'team "a"'}

    def test_mapper_name_is_stable_and_distinct(self):
        first = resolve_mapping(RoleMapping(role="Admin", sso_group="g1"), "acme")
        again = resolve_mapping(RoleMapping(role="Admin", sso_group="g1"), "acme")
        other_group = resolve_mapping(RoleMapping(role="Admin", sso_group="g2"), "acme")
        other_role = resolve_mapping(RoleMapping(role="Viewer", sso_group="g1"), "acme")

        assert first.mapper_name == again.mapper_name
        assert len({first.mapper_name, other_group.mapper_name, other_role.mapper_name}) == 3

    def test_resolve_mappings_keeps_order(self):
        mappings = [
            RoleMapping(role="Viewer", sso_group="g3"),
            RoleMapping(role="Admin", sso_group="g1"),
        ]
        paths = [resolved.group_path for resolved in resolve_mappings(mappings, "acme")]
        assert paths == ["/acme/viewer", "/acme/admin"]

    def test_resolve_mappings_fails_on_first_invalid_role(self):
        mappings = [
            RoleMapping(role="Admin", sso_group="g1"),
            RoleMapping(role="Owner", sso_group="g2"),
        ]
        with pytest.raises(InvalidRoleError, match="Owner"):
            resolve_mappings(mappings, "acme")
