"""Domain models shared by the storage layer, the access validator and the API."""

from __future__ import annotations

from uuid import UUID

from pydantic import BaseModel, ConfigDict


class Person(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: UUID
    first_name: str
    last_name: str
    email: str | None = None


class Organisation(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: UUID
    initials: str
    name: str
    parent_id: UUID | None = None
    is_public: bool = False


class School(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: UUID
    organisation_id: UUID
    name: str
    head_instructor_id: UUID | None = None


class OrganisationMembership(BaseModel):
    """A person's membership of one organisation."""

    organisation: Organisation
    is_admin: bool = False


class OrganisationPerson(BaseModel):
    """A person as seen from one organisation's member list."""

    person: Person
    is_admin: bool = False


class SchoolMembership(BaseModel):
    """A person's enrolment at one school."""

    school: School
    is_instructor: bool = False
    is_secretary: bool = False


class SchoolStudent(BaseModel):
    student: Person
    is_instructor: bool = False
    is_secretary: bool = False


class UserAccount(BaseModel):
    """Login account linking a person to an external identity."""

    id: UUID
    person_id: UUID
    external_id: str | None = None
    invitation_code: str | None = None
