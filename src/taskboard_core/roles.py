"""Role hierarchy comparisons for organization and project roles.

The two hierarchies are independent total orders over closed enums:

- Organization: GUEST < MEMBER < MANAGER < ADMIN < OWNER
- Project:      GUEST < MEMBER < MANAGER < ADMIN

A project role is never compared against the organization order (and vice
versa). The project owner is not a ProjectRole; callers check
``Project.owner_id`` before consulting the project hierarchy.
"""
import enum
from typing import Union

from .errors import InvalidRoleError
from .models import OrganizationRole, ProjectRole


ORG_ROLE_HIERARCHY: tuple[OrganizationRole, ...] = (
    OrganizationRole.GUEST,
    OrganizationRole.MEMBER,
    OrganizationRole.MANAGER,
    OrganizationRole.ADMIN,
    OrganizationRole.OWNER,
)

PROJECT_ROLE_HIERARCHY: tuple[ProjectRole, ...] = (
    ProjectRole.GUEST,
    ProjectRole.MEMBER,
    ProjectRole.MANAGER,
    ProjectRole.ADMIN,
)


def _coerce(role, enum_cls, hierarchy: str):
    """Resolve ``role`` to a member of ``enum_cls`` or fail loudly."""
    if isinstance(role, enum_cls):
        return role
    # A member of some other enum (e.g. ProjectRole.ADMIN in the org order)
    if isinstance(role, enum.Enum):
        raise InvalidRoleError(role.value, hierarchy)
    if isinstance(role, str):
        try:
            return enum_cls(role)
        except ValueError:
            raise InvalidRoleError(role, hierarchy) from None
    raise InvalidRoleError(role, hierarchy)


def org_role_level(role: Union[OrganizationRole, str]) -> int:
    """
    Get the index of an organization role in its hierarchy.

    Raises:
        InvalidRoleError: If the role is not an organization role
    """
    return ORG_ROLE_HIERARCHY.index(_coerce(role, OrganizationRole, "organization"))


def project_role_level(role: Union[ProjectRole, str]) -> int:
    """
    Get the index of a project role in its hierarchy.

    Raises:
        InvalidRoleError: If the role is not a project role (OWNER included)
    """
    return PROJECT_ROLE_HIERARCHY.index(_coerce(role, ProjectRole, "project"))


def has_min_org_role(
    actual: Union[OrganizationRole, str],
    minimum: Union[OrganizationRole, str],
) -> bool:
    """Check that ``actual`` is at or above ``minimum`` in the organization order."""
    return org_role_level(actual) >= org_role_level(minimum)


def has_min_project_role(
    actual: Union[ProjectRole, str],
    minimum: Union[ProjectRole, str],
) -> bool:
    """Check that ``actual`` is at or above ``minimum`` in the project order."""
    return project_role_level(actual) >= project_role_level(minimum)
