"""JWT token verifiers (shared secret, generic OIDC)."""

from __future__ import annotations

import logging

import jwt

from martialbase.auth_providers.base import AuthResult

logger = logging.getLogger("martialbase.auth_providers.jwt")


class SharedSecretJWTVerifier:
    """Verify HS256 tokens signed with a shared secret."""

    name = "jwt"

    def __init__(
        self, secret: str, audience: str | None = None, subject_claim: str = "sub"
    ) -> None:
        self._secret = secret
        self._audience = audience
        self._subject_claim = subject_claim

    async def verify(self, token: str) -> AuthResult:
        options = {"verify_aud": self._audience is not None}
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=["HS256"],
                audience=self._audience,
                options=options,
            )
        except jwt.PyJWTError as e:
            return AuthResult(
                authenticated=False,
                provider=self.name,
                error=f"JWT validation failed: {e}",
            )
        return AuthResult(
            authenticated=True,
            identity=str(payload.get(self._subject_claim) or ""),
            provider=self.name,
            claims=payload,
        )


class OIDCVerifier:
    """Verify OIDC tokens with JWKS signature verification.

    Uses ``jwt.PyJWKClient`` to fetch and cache the issuer's signing keys
    from ``/.well-known/jwks.json``. RS256 and ES256 are accepted.
    """

    name = "oidc"

    def __init__(self, issuer: str, audience: str, subject_claim: str = "sub") -> None:
        self._issuer = issuer.rstrip("/")
        self._audience = audience
        self._subject_claim = subject_claim
        self._jwks_client: jwt.PyJWKClient | None = None

    def _get_jwks_client(self) -> jwt.PyJWKClient:
        """Lazily create and cache the JWKS client (1-hour TTL)."""
        if self._jwks_client is None:
            jwks_url = f"{self._issuer}/.well-known/jwks.json"
            self._jwks_client = jwt.PyJWKClient(jwks_url, cache_jwk_set=True, lifespan=3600)
        return self._jwks_client

    async def verify(self, token: str) -> AuthResult:
        try:
            signing_key = self._get_jwks_client().get_signing_key_from_jwt(token)
        except jwt.PyJWTError as e:
            logger.warning("JWKS fetch/lookup failed: %s", e)
            return AuthResult(
                authenticated=False,
                provider=self.name,
                error=f"JWKS verification failed: {e}",
            )

        try:
            payload = jwt.decode(
                token,
                signing_key.key,
                algorithms=["RS256", "ES256"],
                audience=self._audience,
                issuer=self._issuer,
                options={"require": ["iss", "exp"]},
            )
        except jwt.PyJWTError as e:
            return AuthResult(
                authenticated=False,
                provider=self.name,
                error=f"OIDC validation failed: {e}",
            )

        return AuthResult(
            authenticated=True,
            identity=str(payload.get(self._subject_claim) or ""),
            provider=self.name,
            claims=payload,
        )
