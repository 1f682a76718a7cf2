"""Resolution of a verified token identity to a person and their roles.

Every lookup goes through the request's :class:`ScopedCache`, so a request
that validates access many times still hits the store once per key.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any
from uuid import UUID

from fastapi import Request

from martialbase.caching import (
    PersonIdForExternalUser,
    RolesForPerson,
    ScopedCache,
    UserIdForPerson,
)
from martialbase.config import settings
from martialbase.exceptions import StructuralAuthError
from martialbase.stores import UserStore

logger = logging.getLogger("martialbase.identity")


@dataclass(frozen=True)
class Identity:
    """External identity carried by a verified bearer token."""

    external_id: str
    invitation_code: str | None = None


def extract_identity(
    claims: dict[str, Any],
    subject_claim: str | None = None,
    invitation_code_claim: str | None = None,
) -> Identity:
    """Read the external user id and optional invitation code from *claims*.

    Raises:
        StructuralAuthError: the subject claim is missing or blank.
    """
    subject_claim = subject_claim or os.environ.get("MB_SUBJECT_CLAIM", settings.subject_claim)
    invitation_code_claim = invitation_code_claim or os.environ.get(
        "MB_INVITATION_CODE_CLAIM", settings.invitation_code_claim
    )

    external_id = claims.get(subject_claim)
    if external_id is None or not str(external_id).strip():
        raise StructuralAuthError("Auth token does not contain a valid user ID.")

    invitation_code = claims.get(invitation_code_claim)
    if invitation_code is not None:
        invitation_code = str(invitation_code).strip() or None
    return Identity(external_id=str(external_id), invitation_code=invitation_code)


class UserResolver:
    """Resolve identities to person ids, account ids and role names."""

    def __init__(self, store: UserStore, cache: ScopedCache) -> None:
        self._store = store
        self._cache = cache

    async def resolve_person_id(
        self, external_id: str, invitation_code: str | None = None
    ) -> UUID | None:
        """Return the person bound to *external_id*, claiming *invitation_code* if needed.

        ``None`` means the identity is not registered.
        """

        async def lookup() -> UUID | None:
            person_id = await self._store.find_person_id_by_external_id(external_id)
            if person_id is not None or not invitation_code:
                return person_id
            person_id = await self._store.claim_invitation_code(invitation_code, external_id)
            if person_id is not None:
                logger.info(
                    "Bound external identity to person %s via invitation code",
                    person_id,
                    extra={"person_id": str(person_id)},
                )
            return person_id

        return await self._cache.get_or_compute(
            PersonIdForExternalUser(external_id, invitation_code), lookup
        )

    async def resolve_requesting_person_id(self, request: Request) -> UUID | None:
        """Resolve the person behind the request's verified token."""
        auth = getattr(request.state, "auth", None)
        if auth is None or not auth.authenticated:
            raise StructuralAuthError("Request is not authenticated.")
        identity = extract_identity(auth.claims)
        return await self.resolve_person_id(identity.external_id, identity.invitation_code)

    async def get_user_account_id(self, person_id: UUID) -> UUID | None:
        return await self._cache.get_or_compute(
            UserIdForPerson(person_id),
            lambda: self._store.get_user_account_id_for_person(person_id),
        )

    async def resolve_roles(self, person_id: UUID) -> tuple[str, ...]:
        """Return the role names granted to *person_id* (empty when none)."""

        async def lookup() -> tuple[str, ...]:
            return tuple(await self._store.get_roles_for_person(person_id))

        return await self._cache.get_or_compute(RolesForPerson(person_id), lookup)
