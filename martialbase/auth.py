"""Request authentication and the per-request authorization pipeline.

Token verification is controlled by ``MB_AUTH_PROVIDER`` (``jwt`` or
``oidc``). Clients supply ``Authorization: Bearer <token>``.

The dependencies here resolve the caller once per request and hand the
result to route handlers:

* :func:`authenticate` verifies the token and stores the
  :class:`AuthResult` on ``request.state.auth``.
* :func:`require_person_id` resolves the token identity to a person id,
  rejects unregistered identities, and records the person id and roles on
  ``request.state``.
* :func:`get_access_validator` builds the validator the handlers use for
  resource-level checks, sharing the request's :class:`ScopedCache`.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from uuid import UUID

from fastapi import Depends, Request

from martialbase.access import AccessValidator
from martialbase.auth_providers.base import AuthResult, TokenVerifier
from martialbase.auth_providers.factory import create_verifier
from martialbase.caching import ScopedCache
from martialbase.config import settings
from martialbase.exceptions import InsufficientRoleError, NotRegisteredError, StructuralAuthError
from martialbase.identity import UserResolver
from martialbase.roles import has_any_role

_audit_logger = logging.getLogger("martialbase.audit")


@dataclass(frozen=True)
class RequestingUser:
    person_id: UUID
    roles: tuple[str, ...]


def _extract_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.lower().startswith("bearer "):
        return auth_header[7:].strip() or None
    return None


@lru_cache(maxsize=8)
def _build_verifier(
    provider_name: str,
    jwt_secret: str,
    jwt_audience: str | None,
    subject_claim: str,
    oidc_issuer: str | None,
    oidc_audience: str | None,
) -> TokenVerifier:
    return create_verifier(
        provider_name,
        jwt_secret=jwt_secret,
        jwt_audience=jwt_audience,
        subject_claim=subject_claim,
        oidc_issuer=oidc_issuer,
        oidc_audience=oidc_audience,
    )


def get_verifier() -> TokenVerifier:
    """Return the configured verifier. Reads os.environ so monkeypatch works in tests."""
    return _build_verifier(
        os.environ.get("MB_AUTH_PROVIDER", settings.auth_provider).lower(),
        os.environ.get("MB_JWT_SECRET", settings.jwt_secret),
        os.environ.get("MB_JWT_AUDIENCE", settings.jwt_audience),
        os.environ.get("MB_SUBJECT_CLAIM", settings.subject_claim),
        os.environ.get("MB_OIDC_ISSUER", settings.oidc_issuer),
        os.environ.get("MB_OIDC_AUDIENCE", settings.oidc_audience),
    )


def _audit_auth_failure(request: Request, reason: str, error: str | None = None) -> None:
    _audit_logger.warning(
        "Auth failure (%s): %s %s from %s",
        reason,
        request.method,
        request.url.path,
        request.client.host if request.client else "unknown",
        extra={
            "event_category": "audit",
            "action": "auth_failure",
            "reason": reason,
            "path": request.url.path,
            "error": error,
        },
    )


async def authenticate(request: Request) -> AuthResult:
    """FastAPI dependency that verifies the bearer token.

    Raises:
        StructuralAuthError: no token, or the token failed verification.
    """
    existing: AuthResult | None = getattr(request.state, "auth", None)
    if existing is not None:
        return existing

    token = _extract_token(request)
    if token is None:
        _audit_auth_failure(request, "no_token")
        raise StructuralAuthError("Bearer token required.")

    result = await get_verifier().verify(token)
    if not result.authenticated:
        _audit_auth_failure(request, "invalid_token", result.error)
        raise StructuralAuthError("Invalid bearer token.")

    request.state.auth = result
    return result


def get_scoped_cache(request: Request) -> ScopedCache:
    """Return the request's cache, creating it on first use."""
    cache: ScopedCache | None = getattr(request.state, "scoped_cache", None)
    if cache is None:
        cache = ScopedCache()
        request.state.scoped_cache = cache
    return cache


def get_user_resolver(
    request: Request, cache: ScopedCache = Depends(get_scoped_cache)
) -> UserResolver:
    return UserResolver(request.app.state.db, cache)


def get_access_validator(
    request: Request, resolver: UserResolver = Depends(get_user_resolver)
) -> AccessValidator:
    db = request.app.state.db
    return AccessValidator(resolver, organisations=db, schools=db, people=db)


async def require_person_id(
    request: Request,
    _auth: AuthResult = Depends(authenticate),
    resolver: UserResolver = Depends(get_user_resolver),
) -> RequestingUser:
    """Resolve the requesting person once per request.

    Raises:
        StructuralAuthError: the token carries no subject claim.
        NotRegisteredError: the identity maps to no person.
    """
    person_id = await resolver.resolve_requesting_person_id(request)
    if person_id is None:
        _audit_logger.info(
            "Unregistered identity rejected: %s %s",
            request.method,
            request.url.path,
            extra={"event_category": "audit", "action": "not_registered"},
        )
        raise NotRegisteredError()

    roles = await resolver.resolve_roles(person_id)
    request.state.requesting_person_id = person_id
    request.state.requesting_user_roles = roles
    return RequestingUser(person_id=person_id, roles=roles)


def require_roles(*roles: str):
    """Dependency factory: require the requesting person to hold one of *roles*.

    ``SuperUser`` always passes. Usage::

        @router.get("/admin/roles")
        async def list_roles(user: RequestingUser = Depends(require_roles("SystemAdmin"))): ...
    """

    async def _check(user: RequestingUser = Depends(require_person_id)) -> RequestingUser:
        if not has_any_role(user.roles, roles):
            raise InsufficientRoleError(f"Requires one of roles: {', '.join(roles)}")
        return user

    return _check
