"""Request-scoped memoization for identity and role lookups.

A :class:`ScopedCache` lives exactly as long as one HTTP request. It is
keyed by small frozen dataclasses, one per lookup family, and stores the
native result values. ``None`` is a legitimate, cached result; a failing
lookup is never cached.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar
from uuid import UUID

T = TypeVar("T")

_MISSING = object()


@dataclass(frozen=True)
class PersonIdForExternalUser:
    external_id: str
    invitation_code: str | None = None


@dataclass(frozen=True)
class UserIdForPerson:
    person_id: UUID


@dataclass(frozen=True)
class RolesForPerson:
    person_id: UUID


CacheKey = PersonIdForExternalUser | UserIdForPerson | RolesForPerson


class ScopedCache:
    """Per-request memo store. Not shared between requests."""

    def __init__(self) -> None:
        self._values: dict[CacheKey, Any] = {}

    def __contains__(self, key: CacheKey) -> bool:
        return key in self._values

    def __len__(self) -> int:
        return len(self._values)

    async def get_or_compute(self, key: CacheKey, compute: Callable[[], Awaitable[T]]) -> T:
        """Return the cached value for *key*, awaiting *compute* on first use."""
        value = self._values.get(key, _MISSING)
        if value is not _MISSING:
            return value
        value = await compute()
        self._values[key] = value
        return value
