"""
Role Mapping Resolver

Maps organization roles onto the broker group paths that grant them.
Every organization owns three groups, all named after its slug:

    Member -> /{slug}
    Admin  -> /{slug}/admin
    Viewer -> /{slug}/viewer
"""

from typing import Iterable, List, Union

from ..errors import InvalidRoleError
from ..models import ClaimDescriptor, ResolvedMapping, Role, RoleMapping


def parse_role(value: Union[str, Role]) -> Role:
    """
    Convert a raw role value into a Role.

    Raises:
        InvalidRoleError: If the value is not Admin, Member or Viewer
    """
    if isinstance(value, Role):
        return value
    try:
        return Role(value)
    except ValueError:
        raise InvalidRoleError(value) from None


def resolve_group_path(role: Role, organization_slug: str) -> str:
    """Return the broker group path that grants ``role`` in the organization."""
    match role:
        case Role.ADMIN:
            return f"/{organization_slug}/admin"
        case Role.MEMBER:
            return f"/{organization_slug}"
        case Role.VIEWER:
            return f"/{organization_slug}/viewer"


def resolve_mapping(mapping: RoleMapping, organization_slug: str) -> ResolvedMapping:
    """Resolve one role mapping into its group path and claim descriptor."""
    role = parse_role(mapping.role)
    return ResolvedMapping(
        role=role,
        group_path=resolve_group_path(role, organization_slug),
        claim=ClaimDescriptor(value=mapping.sso_group),
    )


def resolve_mappings(mappings: Iterable[RoleMapping], organization_slug: str) -> List[ResolvedMapping]:
    """
    Resolve all mappings, in order.

    Raises:
        InvalidRoleError: On the first mapping with an unknown role
    """
    return [resolve_mapping(mapping, organization_slug) for mapping in mappings]
