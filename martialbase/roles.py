"""Role catalog and capability tables for MartialBase.

Roles are plain strings stored in the ``user_roles`` table; the catalog
below is the complete, fixed set and is seeded on database connect.

Capabilities map to the roles that legitimize them:
    school member: SchoolMember, SchoolInstructor, SchoolHeadInstructor, SchoolSecretary
    school admin: SchoolSecretary
    organisation member: OrganisationMember, OrganisationAdmin
    organisation admin: OrganisationAdmin
    person admin: SchoolSecretary, OrganisationAdmin
    system admin: SystemAdmin

``SuperUser`` bypasses every check. System admins manage user accounts
and get no access to personal data.
"""

from __future__ import annotations

from collections.abc import Iterable
from enum import StrEnum


class UserRole(StrEnum):
    """Enumerated user roles."""

    SUPER_USER = "SuperUser"
    USER = "User"
    SYSTEM_ADMIN = "SystemAdmin"
    SCHOOL_MEMBER = "SchoolMember"
    SCHOOL_INSTRUCTOR = "SchoolInstructor"
    SCHOOL_HEAD_INSTRUCTOR = "SchoolHeadInstructor"
    SCHOOL_SECRETARY = "SchoolSecretary"
    ORGANISATION_MEMBER = "OrganisationMember"
    ORGANISATION_ADMIN = "OrganisationAdmin"


#: Every role, in seeding order.
ROLE_CATALOG: tuple[UserRole, ...] = tuple(UserRole)

SCHOOL_MEMBER_ROLES: frozenset[str] = frozenset(
    {
        UserRole.SCHOOL_MEMBER,
        UserRole.SCHOOL_INSTRUCTOR,
        UserRole.SCHOOL_HEAD_INSTRUCTOR,
        UserRole.SCHOOL_SECRETARY,
    }
)
SCHOOL_ADMIN_ROLES: frozenset[str] = frozenset({UserRole.SCHOOL_SECRETARY})
ORGANISATION_MEMBER_ROLES: frozenset[str] = frozenset(
    {UserRole.ORGANISATION_MEMBER, UserRole.ORGANISATION_ADMIN}
)
ORGANISATION_ADMIN_ROLES: frozenset[str] = frozenset({UserRole.ORGANISATION_ADMIN})
PERSON_ADMIN_ROLES: frozenset[str] = frozenset(
    {UserRole.SCHOOL_SECRETARY, UserRole.ORGANISATION_ADMIN}
)
SYSTEM_ADMIN_ROLES: frozenset[str] = frozenset({UserRole.SYSTEM_ADMIN})


def is_super_user(user_roles: Iterable[str]) -> bool:
    return UserRole.SUPER_USER in set(user_roles)


def has_any_role(user_roles: Iterable[str], required: Iterable[str]) -> bool:
    """Check if *user_roles* intersect *required*.

    A super-user satisfies any requirement.
    """
    held = set(user_roles)
    if UserRole.SUPER_USER in held:
        return True
    return not held.isdisjoint(required)
