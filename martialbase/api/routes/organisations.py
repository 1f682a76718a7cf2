"""Organisation routes: listing, membership and hierarchy."""

from __future__ import annotations

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request

from martialbase.access import AccessValidator
from martialbase.auth import RequestingUser, get_access_validator, require_person_id, require_roles
from martialbase.exceptions import ValidationError
from martialbase.models import Organisation, OrganisationPerson
from martialbase.roles import ORGANISATION_MEMBER_ROLES

logger = logging.getLogger("martialbase")

router = APIRouter(prefix="/organisations", tags=["Organisations"])


@router.get("", response_model=list[Organisation])
async def list_organisations(
    request: Request,
    parent_id: UUID | None = Query(None, description="Only children of this organisation"),
    user: RequestingUser = Depends(require_roles(*ORGANISATION_MEMBER_ROLES)),
    validator: AccessValidator = Depends(get_access_validator),
):
    """List the organisations the caller is a member of, sorted by initials."""
    organisations = await request.app.state.db.list_organisations(parent_id)
    visible = await validator.filter_by_member_access(organisations, user.person_id)
    return sorted(visible, key=lambda o: o.initials)


@router.get("/{organisation_id}", response_model=Organisation)
async def get_organisation(
    organisation_id: UUID,
    request: Request,
    user: RequestingUser = Depends(require_person_id),
    validator: AccessValidator = Depends(get_access_validator),
):
    decision = await validator.member_access_to_organisation(user.person_id, organisation_id)
    decision.raise_for_denial()
    return await request.app.state.db.get_organisation(organisation_id)


@router.get("/{organisation_id}/people", response_model=list[OrganisationPerson])
async def list_organisation_people(
    organisation_id: UUID,
    request: Request,
    user: RequestingUser = Depends(require_person_id),
    validator: AccessValidator = Depends(get_access_validator),
):
    decision = await validator.admin_access_to_organisation(user.person_id, organisation_id)
    decision.raise_for_denial()
    return await request.app.state.db.list_organisation_people(organisation_id)


@router.delete("/{organisation_id}/people/{person_id}", status_code=204)
async def remove_organisation_person(
    organisation_id: UUID,
    person_id: UUID,
    request: Request,
    user: RequestingUser = Depends(require_person_id),
    validator: AccessValidator = Depends(get_access_validator),
):
    """Remove a member. A person's last organisation cannot be removed."""
    decision = await validator.admin_access_to_organisation(user.person_id, organisation_id)
    decision.raise_for_denial()
    await request.app.state.db.remove_organisation_person(organisation_id, person_id)
    logger.info(
        "Person %s removed from organisation %s",
        person_id,
        organisation_id,
        extra={"person_id": str(user.person_id)},
    )


@router.put("/{organisation_id}/parent", response_model=Organisation)
async def change_organisation_parent(
    organisation_id: UUID,
    request: Request,
    parent_id: UUID = Query(..., description="New parent organisation"),
    user: RequestingUser = Depends(require_person_id),
    validator: AccessValidator = Depends(get_access_validator),
):
    """Move an organisation under a new parent.

    The caller must administer the organisation, its current parent (if it
    has one) and the new parent.
    """
    if parent_id == organisation_id:
        raise ValidationError("An organisation cannot be its own parent.")

    db = request.app.state.db
    decision = await validator.admin_access_to_organisation(user.person_id, organisation_id)
    decision.raise_for_denial()

    current_parent_id = await db.get_organisation_parent_id(organisation_id)
    if current_parent_id is not None:
        decision = await validator.admin_access_to_organisation(user.person_id, current_parent_id)
        decision.raise_for_denial()

    decision = await validator.admin_access_to_organisation(user.person_id, parent_id)
    decision.raise_for_denial()

    await db.change_organisation_parent(organisation_id, parent_id)
    return await db.get_organisation(organisation_id)


@router.delete("/{organisation_id}/parent", status_code=204)
async def remove_organisation_parent(
    organisation_id: UUID,
    request: Request,
    user: RequestingUser = Depends(require_person_id),
    validator: AccessValidator = Depends(get_access_validator),
):
    """Detach an organisation from its parent. Without a parent this is a no-op."""
    db = request.app.state.db
    decision = await validator.admin_access_to_organisation(user.person_id, organisation_id)
    decision.raise_for_denial()

    current_parent_id = await db.get_organisation_parent_id(organisation_id)
    if current_parent_id is None:
        return

    decision = await validator.admin_access_to_organisation(user.person_id, current_parent_id)
    decision.raise_for_denial()
    await db.change_organisation_parent(organisation_id, None)
