"""System administration of user accounts and roles."""

from __future__ import annotations

import logging
import os
from uuid import UUID

from fastapi import APIRouter, Body, Depends, Query, Request
from pydantic import BaseModel

from martialbase.auth import RequestingUser, require_roles
from martialbase.config import settings
from martialbase.exceptions import EntityNotFoundError, ValidationError
from martialbase.roles import ROLE_CATALOG, SYSTEM_ADMIN_ROLES

_audit_logger = logging.getLogger("martialbase.audit")

router = APIRouter(prefix="/admin", tags=["Admin"])

require_system_admin = require_roles(*SYSTEM_ADMIN_ROLES)


class InvitationCodeResponse(BaseModel):
    user_id: UUID
    invitation_code: str


async def _ensure_user(request: Request, user_id: UUID) -> None:
    if not await request.app.state.db.user_exists(user_id):
        raise EntityNotFoundError("User", user_id)


@router.get("/roles", response_model=list[str])
async def list_roles(_user: RequestingUser = Depends(require_system_admin)):
    return [role.value for role in ROLE_CATALOG]


@router.get("/users/{user_id}/roles", response_model=list[str])
async def list_user_roles(
    user_id: UUID,
    request: Request,
    _user: RequestingUser = Depends(require_system_admin),
):
    await _ensure_user(request, user_id)
    return await request.app.state.db.get_roles_for_user(user_id)


@router.get("/users/{user_id}/invitationcode", response_model=InvitationCodeResponse)
async def issue_invitation_code(
    user_id: UUID,
    request: Request,
    user: RequestingUser = Depends(require_system_admin),
):
    """Issue a fresh invitation code. The new code replaces any pending one."""
    await _ensure_user(request, user_id)
    length = int(os.environ.get("MB_INVITATION_CODE_LENGTH", settings.invitation_code_length))
    code = await request.app.state.db.generate_invitation_code(user_id, length=length)
    _audit_logger.info(
        "Invitation code issued for user %s",
        user_id,
        extra={
            "event_category": "audit",
            "action": "invitation_issued",
            "person_id": str(user.person_id),
        },
    )
    return InvitationCodeResponse(user_id=user_id, invitation_code=code)


@router.delete("/users/{user_id}/login", status_code=204)
async def disassociate_login(
    user_id: UUID,
    request: Request,
    user: RequestingUser = Depends(require_system_admin),
):
    """Unbind the external identity from a user account."""
    await _ensure_user(request, user_id)
    await request.app.state.db.disassociate_external_user(user_id)
    _audit_logger.info(
        "External login removed from user %s",
        user_id,
        extra={
            "event_category": "audit",
            "action": "login_removed",
            "person_id": str(user.person_id),
        },
    )


async def _ensure_role(request: Request, role_name: str) -> None:
    if not await request.app.state.db.role_exists(role_name):
        raise EntityNotFoundError("User role", role_name)


@router.post("/users/{user_id}/roles", status_code=201)
async def add_user_role(
    user_id: UUID,
    request: Request,
    role: str = Query(..., description="Name of the role to grant"),
    user: RequestingUser = Depends(require_system_admin),
):
    await _ensure_user(request, user_id)
    await _ensure_role(request, role)
    await request.app.state.db.grant_role(user_id, role)
    _audit_logger.info(
        "Role %s granted to user %s",
        role,
        user_id,
        extra={
            "event_category": "audit",
            "action": "role_granted",
            "person_id": str(user.person_id),
        },
    )


@router.delete("/users/{user_id}/roles/{role}", status_code=204)
async def remove_user_role(
    user_id: UUID,
    role: str,
    request: Request,
    user: RequestingUser = Depends(require_system_admin),
):
    await _ensure_user(request, user_id)
    await _ensure_role(request, role)
    await request.app.state.db.revoke_role(user_id, role)
    _audit_logger.info(
        "Role %s revoked from user %s",
        role,
        user_id,
        extra={
            "event_category": "audit",
            "action": "role_revoked",
            "person_id": str(user.person_id),
        },
    )


@router.put("/users/{user_id}/roles", response_model=list[str])
async def set_user_roles(
    user_id: UUID,
    request: Request,
    roles: list[str] = Body(..., description="Names of every role the user should hold"),
    user: RequestingUser = Depends(require_system_admin),
):
    """Replace the user's roles with *roles*. An empty list is rejected."""
    await _ensure_user(request, user_id)
    if not roles:
        raise ValidationError("No roles specified.")
    for role in roles:
        await _ensure_role(request, role)
    await request.app.state.db.set_roles(user_id, roles)
    _audit_logger.info(
        "Roles of user %s set to %s",
        user_id,
        ", ".join(sorted(set(roles))),
        extra={
            "event_category": "audit",
            "action": "roles_set",
            "person_id": str(user.person_id),
        },
    )
    return await request.app.state.db.get_roles_for_user(user_id)
