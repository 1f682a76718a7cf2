"""Access validation for organisations, schools and people.

Each validation is evaluated in two fixed stages:

1. **Existence**: a missing target yields ``ENTITY_NOT_FOUND`` before any
   role is consulted, so a 404 takes precedence over a 403.
2. **Role, then relationship**: ``SuperUser`` is allowed outright.
   Otherwise the caller must hold a role legitimizing the capability
   (``DENIED_INSUFFICIENT_ROLE`` if not), and then actually stand in that
   relationship to this specific target (``DENIED_NO_RELATIONSHIP`` with a
   specific :class:`ErrorCode` if not).

Validators return an :class:`AccessDecision`; callers turn denials into
typed exceptions with :meth:`AccessDecision.raise_for_denial`. Store
failures are not decisions and propagate as raised.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Protocol, TypeVar
from uuid import UUID

from martialbase.exceptions import (
    EntityNotFoundError,
    ErrorCode,
    InsufficientRoleError,
    NoRelationshipError,
)
from martialbase.identity import UserResolver
from martialbase.roles import (
    ORGANISATION_ADMIN_ROLES,
    ORGANISATION_MEMBER_ROLES,
    PERSON_ADMIN_ROLES,
    SCHOOL_ADMIN_ROLES,
    SCHOOL_MEMBER_ROLES,
    has_any_role,
    is_super_user,
)
from martialbase.stores import OrganisationStore, PersonStore, SchoolStore

logger = logging.getLogger("martialbase.access")


class AccessOutcome(str, Enum):
    ALLOWED = "allowed"
    DENIED_INSUFFICIENT_ROLE = "denied_insufficient_role"
    DENIED_NO_RELATIONSHIP = "denied_no_relationship"
    ENTITY_NOT_FOUND = "entity_not_found"


@dataclass(frozen=True)
class AccessDecision:
    """Outcome of one access validation."""

    outcome: AccessOutcome
    code: ErrorCode | None = None
    entity_kind: str | None = None
    entity_id: UUID | None = None

    @property
    def allowed(self) -> bool:
        return self.outcome is AccessOutcome.ALLOWED

    def raise_for_denial(self) -> None:
        """Raise the typed error for a denial; do nothing when allowed."""
        if self.outcome is AccessOutcome.ALLOWED:
            return
        if self.outcome is AccessOutcome.ENTITY_NOT_FOUND:
            raise EntityNotFoundError(self.entity_kind or "Entity", self.entity_id)
        if self.outcome is AccessOutcome.DENIED_INSUFFICIENT_ROLE:
            raise InsufficientRoleError()
        raise NoRelationshipError(self.code or ErrorCode.INSUFFICIENT_USER_ROLE)


_ALLOWED = AccessDecision(AccessOutcome.ALLOWED)


class _HasId(Protocol):
    @property
    def id(self) -> UUID: ...


T = TypeVar("T", bound=_HasId)


class AccessValidator:
    """Validates a requesting person's access to a target entity."""

    def __init__(
        self,
        resolver: UserResolver,
        organisations: OrganisationStore,
        schools: SchoolStore,
        people: PersonStore,
    ) -> None:
        self._resolver = resolver
        self._organisations = organisations
        self._schools = schools
        self._people = people

    def _not_found(self, kind: str, entity_id: UUID) -> AccessDecision:
        return AccessDecision(AccessOutcome.ENTITY_NOT_FOUND, entity_kind=kind, entity_id=entity_id)

    def _deny(
        self,
        person_id: UUID,
        kind: str,
        entity_id: UUID,
        code: ErrorCode,
    ) -> AccessDecision:
        outcome = (
            AccessOutcome.DENIED_INSUFFICIENT_ROLE
            if code is ErrorCode.INSUFFICIENT_USER_ROLE
            else AccessOutcome.DENIED_NO_RELATIONSHIP
        )
        logger.info(
            "Access denied to %s %s for person %s: %s",
            kind,
            entity_id,
            person_id,
            code.name,
            extra={"person_id": str(person_id), "error_code": int(code)},
        )
        return AccessDecision(outcome, code=code, entity_kind=kind, entity_id=entity_id)

    # --- Schools ---

    async def member_access_to_school(self, person_id: UUID, school_id: UUID) -> AccessDecision:
        if not await self._schools.school_exists(school_id):
            return self._not_found("School", school_id)

        roles = await self._resolver.resolve_roles(person_id)
        if is_super_user(roles):
            return _ALLOWED
        if not has_any_role(roles, SCHOOL_MEMBER_ROLES):
            return self._deny(person_id, "School", school_id, ErrorCode.INSUFFICIENT_USER_ROLE)
        if not await self._schools.school_has_student(school_id, person_id):
            return self._deny(person_id, "School", school_id, ErrorCode.NOT_SCHOOL_STUDENT)
        return _ALLOWED

    async def admin_access_to_school(self, person_id: UUID, school_id: UUID) -> AccessDecision:
        if not await self._schools.school_exists(school_id):
            return self._not_found("School", school_id)

        roles = await self._resolver.resolve_roles(person_id)
        if is_super_user(roles):
            return _ALLOWED
        if not has_any_role(roles, SCHOOL_ADMIN_ROLES):
            return self._deny(person_id, "School", school_id, ErrorCode.INSUFFICIENT_USER_ROLE)
        if not await self._schools.school_has_secretary(school_id, person_id):
            return self._deny(person_id, "School", school_id, ErrorCode.NOT_SCHOOL_SECRETARY)
        return _ALLOWED

    # --- Organisations ---

    async def member_access_to_organisation(
        self, person_id: UUID, organisation_id: UUID
    ) -> AccessDecision:
        if not await self._organisations.organisation_exists(organisation_id):
            return self._not_found("Organisation", organisation_id)

        roles = await self._resolver.resolve_roles(person_id)
        if is_super_user(roles):
            return _ALLOWED
        if not has_any_role(roles, ORGANISATION_MEMBER_ROLES):
            return self._deny(
                person_id, "Organisation", organisation_id, ErrorCode.INSUFFICIENT_USER_ROLE
            )
        if not await self._organisations.organisation_has_member(organisation_id, person_id):
            return self._deny(
                person_id, "Organisation", organisation_id, ErrorCode.NO_ORGANISATION_ACCESS
            )
        return _ALLOWED

    async def admin_access_to_organisation(
        self, person_id: UUID, organisation_id: UUID
    ) -> AccessDecision:
        if not await self._organisations.organisation_exists(organisation_id):
            return self._not_found("Organisation", organisation_id)

        roles = await self._resolver.resolve_roles(person_id)
        if is_super_user(roles):
            return _ALLOWED
        if not has_any_role(roles, ORGANISATION_ADMIN_ROLES):
            return self._deny(
                person_id, "Organisation", organisation_id, ErrorCode.INSUFFICIENT_USER_ROLE
            )
        if not await self._organisations.organisation_is_admin(organisation_id, person_id):
            return self._deny(
                person_id, "Organisation", organisation_id, ErrorCode.NOT_ORGANISATION_ADMIN
            )
        return _ALLOWED

    # --- People ---

    async def access_to_person(self, person_id: UUID, target_person_id: UUID) -> AccessDecision:
        """Self, super-user, or a secretary/admin of one of the target's schools/organisations."""
        if not await self._people.person_exists(target_person_id):
            return self._not_found("Person", target_person_id)

        roles = await self._resolver.resolve_roles(person_id)
        if is_super_user(roles):
            return _ALLOWED
        if person_id == target_person_id:
            return _ALLOWED
        if not has_any_role(roles, PERSON_ADMIN_ROLES):
            return self._deny(
                person_id, "Person", target_person_id, ErrorCode.INSUFFICIENT_USER_ROLE
            )

        for membership in await self._schools.list_schools_for_person(target_person_id):
            if await self._schools.school_has_secretary(membership.school.id, person_id):
                return _ALLOWED

        for membership in await self._organisations.list_organisations_for_person(
            target_person_id
        ):
            if await self._organisations.organisation_is_admin(
                membership.organisation.id, person_id
            ):
                return _ALLOWED

        return self._deny(person_id, "Person", target_person_id, ErrorCode.NO_ACCESS_TO_PERSON)

    # --- Lists ---

    async def filter_by_member_access(self, organisations: Iterable[T], person_id: UUID) -> list[T]:
        """Keep the organisations *person_id* has member access to, in input order.

        Denied items are dropped. A missing organisation is not an access
        decision and raises :class:`EntityNotFoundError`.
        """
        organisations = list(organisations)
        if is_super_user(await self._resolver.resolve_roles(person_id)):
            return organisations

        allowed: list[T] = []
        for organisation in organisations:
            decision = await self.member_access_to_organisation(person_id, organisation.id)
            if decision.outcome is AccessOutcome.ENTITY_NOT_FOUND:
                decision.raise_for_denial()
            if decision.allowed:
                allowed.append(organisation)
        return allowed
