"""Base token verifier protocol and result types."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable


@dataclass
class AuthResult:
    """Result of a token verification attempt."""

    authenticated: bool
    identity: str = ""
    provider: str = ""
    claims: dict[str, Any] = field(default_factory=dict)
    error: str | None = None


@runtime_checkable
class TokenVerifier(Protocol):
    """Protocol that all token verifiers must implement.

    Signature and expiry are checked here; verifiers report failure through
    ``AuthResult.authenticated`` rather than raising.
    """

    name: str

    async def verify(self, token: str) -> AuthResult:
        """Verify a bearer token and return an AuthResult."""
        ...
