"""Person routes: the caller's own identity, and people the caller may see."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from martialbase.access import AccessValidator
from martialbase.auth import (
    RequestingUser,
    authenticate,
    get_access_validator,
    get_user_resolver,
    require_person_id,
)
from martialbase.auth_providers.base import AuthResult
from martialbase.identity import UserResolver
from martialbase.models import OrganisationMembership, Person, SchoolMembership
from martialbase.roles import is_super_user

router = APIRouter(prefix="/people", tags=["People"])


class WhoAmIResponse(BaseModel):
    person_id: UUID | None
    user_id: UUID | None = None


@router.get("/me", response_model=WhoAmIResponse)
async def who_am_i(
    request: Request,
    _auth: AuthResult = Depends(authenticate),
    resolver: UserResolver = Depends(get_user_resolver),
):
    """Resolve the caller to a person id, claiming an invitation code if one is present.

    Unregistered callers get ``person_id: null`` rather than a 403.
    """
    person_id = await resolver.resolve_requesting_person_id(request)
    if person_id is None:
        return WhoAmIResponse(person_id=None)
    return WhoAmIResponse(
        person_id=person_id, user_id=await resolver.get_user_account_id(person_id)
    )


@router.get("/{person_id}", response_model=Person)
async def get_person(
    person_id: UUID,
    request: Request,
    user: RequestingUser = Depends(require_person_id),
    validator: AccessValidator = Depends(get_access_validator),
):
    decision = await validator.access_to_person(user.person_id, person_id)
    decision.raise_for_denial()
    return await request.app.state.db.get_person(person_id)


@router.get("/{person_id}/organisations", response_model=list[OrganisationMembership])
async def list_person_organisations(
    person_id: UUID,
    request: Request,
    user: RequestingUser = Depends(require_person_id),
    validator: AccessValidator = Depends(get_access_validator),
):
    """Organisations *person_id* belongs to.

    The caller sees all of them when listing their own, and otherwise only
    the ones they are a member of. No organisation role is needed.
    """
    decision = await validator.access_to_person(user.person_id, person_id)
    decision.raise_for_denial()

    db = request.app.state.db
    memberships = await db.list_organisations_for_person(person_id)
    if is_super_user(user.roles) or user.person_id == person_id:
        return memberships
    return [
        m
        for m in memberships
        if await db.organisation_has_member(m.organisation.id, user.person_id)
    ]


@router.get("/{person_id}/schools", response_model=list[SchoolMembership])
async def list_person_schools(
    person_id: UUID,
    request: Request,
    user: RequestingUser = Depends(require_person_id),
    validator: AccessValidator = Depends(get_access_validator),
):
    decision = await validator.access_to_person(user.person_id, person_id)
    decision.raise_for_denial()

    db = request.app.state.db
    memberships = await db.list_schools_for_person(person_id)
    if is_super_user(user.roles) or user.person_id == person_id:
        return memberships
    return [m for m in memberships if await db.school_has_student(m.school.id, user.person_id)]
