"""Store protocols consumed by identity resolution and access validation.

:class:`martialbase.storage.database.Database` implements all of them; tests
may substitute mocks. Every method is a coroutine.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable
from uuid import UUID

from martialbase.models import OrganisationMembership, SchoolMembership


@runtime_checkable
class UserStore(Protocol):
    async def find_person_id_by_external_id(self, external_id: str) -> UUID | None: ...

    async def claim_invitation_code(self, invitation_code: str, external_id: str) -> UUID | None:
        """Bind *external_id* to the holder of *invitation_code* and clear the code."""
        ...

    async def get_user_account_id_for_person(self, person_id: UUID) -> UUID | None: ...

    async def get_roles_for_person(self, person_id: UUID) -> list[str]: ...


@runtime_checkable
class OrganisationStore(Protocol):
    async def organisation_exists(self, organisation_id: UUID) -> bool: ...

    async def organisation_has_member(self, organisation_id: UUID, person_id: UUID) -> bool: ...

    async def organisation_is_admin(self, organisation_id: UUID, person_id: UUID) -> bool: ...

    async def get_organisation_parent_id(self, organisation_id: UUID) -> UUID | None: ...

    async def list_organisations_for_person(
        self, person_id: UUID
    ) -> list[OrganisationMembership]: ...


@runtime_checkable
class SchoolStore(Protocol):
    async def school_exists(self, school_id: UUID) -> bool: ...

    async def school_has_student(self, school_id: UUID, person_id: UUID) -> bool: ...

    async def school_has_secretary(self, school_id: UUID, person_id: UUID) -> bool: ...

    async def list_schools_for_person(self, person_id: UUID) -> list[SchoolMembership]: ...


@runtime_checkable
class PersonStore(Protocol):
    async def person_exists(self, person_id: UUID) -> bool: ...
