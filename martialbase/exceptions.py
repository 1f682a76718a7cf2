"""Custom exception hierarchy for MartialBase.

Provides structured error types that the centralized error handler
translates into consistent JSON responses. Every authorization failure
carries a stable numeric :class:`ErrorCode` so clients can tell the
different 403 causes apart without parsing messages.
"""

from __future__ import annotations

from enum import IntEnum
from typing import Any


class ErrorCode(IntEnum):
    """Machine-readable codes returned alongside 401/403/400 responses."""

    INVALID_TOKEN = 1
    USER_NOT_REGISTERED = 2
    INSUFFICIENT_USER_ROLE = 3
    NOT_SCHOOL_STUDENT = 4
    NOT_SCHOOL_SECRETARY = 5
    NO_ORGANISATION_ACCESS = 6
    NOT_ORGANISATION_ADMIN = 7
    NO_ACCESS_TO_PERSON = 8
    ORPHAN_PERSON_ENTITY = 9


class MartialBaseError(Exception):
    """Base exception for all MartialBase errors."""

    status_code: int = 500
    error_type: str = "internal_error"
    code: ErrorCode | None = None

    def __init__(self, message: str = "An internal error occurred") -> None:
        self.message = message
        super().__init__(message)


class StructuralAuthError(MartialBaseError):
    """The bearer token is missing, invalid or lacks a subject claim."""

    status_code = 401
    error_type = "unauthorized"
    code = ErrorCode.INVALID_TOKEN


class AuthorizationError(MartialBaseError):
    """Base for failures where the caller is known but may not proceed."""

    status_code = 403
    error_type = "forbidden"


class NotRegisteredError(AuthorizationError):
    """The external identity does not resolve to any person."""

    error_type = "not_registered"
    code = ErrorCode.USER_NOT_REGISTERED

    def __init__(self, message: str = "User is not registered.") -> None:
        super().__init__(message)


class InsufficientRoleError(AuthorizationError):
    """The caller holds none of the roles that legitimize the action."""

    error_type = "insufficient_role"
    code = ErrorCode.INSUFFICIENT_USER_ROLE

    def __init__(self, message: str = "Insufficient user role.") -> None:
        super().__init__(message)


class NoRelationshipError(AuthorizationError):
    """The caller holds a suitable role, but not for this particular resource."""

    error_type = "no_relationship"

    def __init__(self, code: ErrorCode, message: str | None = None) -> None:
        self.code = code
        super().__init__(message or code.name.replace("_", " ").capitalize() + ".")


class EntityNotFoundError(MartialBaseError):
    """Requested resource was not found."""

    status_code = 404
    error_type = "not_found"

    def __init__(self, kind: str, entity_id: Any) -> None:
        self.kind = kind
        self.entity_id = str(entity_id)
        super().__init__(f"{kind} ID '{entity_id}' not found.")


class OrphanEntityError(MartialBaseError):
    """Removing the relationship would leave a person without an organisation."""

    status_code = 400
    error_type = "orphan_entity"
    code = ErrorCode.ORPHAN_PERSON_ENTITY


class ValidationError(MartialBaseError):
    """Input validation failure beyond Pydantic constraints."""

    status_code = 400
    error_type = "validation_error"


class StorageError(MartialBaseError):
    """Database or storage layer failure."""

    status_code = 503
    error_type = "storage_error"
