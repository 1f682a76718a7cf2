"""School routes."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Request

from martialbase.access import AccessValidator
from martialbase.auth import RequestingUser, get_access_validator, require_person_id
from martialbase.models import School, SchoolStudent

router = APIRouter(prefix="/schools", tags=["Schools"])


@router.get("/{school_id}", response_model=School)
async def get_school(
    school_id: UUID,
    request: Request,
    user: RequestingUser = Depends(require_person_id),
    validator: AccessValidator = Depends(get_access_validator),
):
    """Get a school the caller attends."""
    decision = await validator.member_access_to_school(user.person_id, school_id)
    decision.raise_for_denial()
    return await request.app.state.db.get_school(school_id)


@router.get("/{school_id}/students", response_model=list[SchoolStudent])
async def list_school_students(
    school_id: UUID,
    request: Request,
    user: RequestingUser = Depends(require_person_id),
    validator: AccessValidator = Depends(get_access_validator),
):
    """List the students of a school. Only the school's secretaries may do this."""
    decision = await validator.admin_access_to_school(user.person_id, school_id)
    decision.raise_for_denial()
    return await request.app.state.db.list_school_students(school_id)
