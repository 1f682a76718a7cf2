"""Factory for creating token verifiers based on configuration."""

from __future__ import annotations

from martialbase.auth_providers.base import TokenVerifier
from martialbase.auth_providers.jwt_provider import OIDCVerifier, SharedSecretJWTVerifier


def create_verifier(
    provider_name: str,
    *,
    jwt_secret: str | None = None,
    jwt_audience: str | None = None,
    subject_claim: str = "sub",
    oidc_issuer: str | None = None,
    oidc_audience: str | None = None,
) -> TokenVerifier:
    """Create a token verifier by name."""
    if provider_name == "jwt":
        if not jwt_secret:
            msg = "jwt_secret required for jwt auth provider"
            raise ValueError(msg)
        return SharedSecretJWTVerifier(
            jwt_secret, audience=jwt_audience, subject_claim=subject_claim
        )

    if provider_name == "oidc":
        if not oidc_issuer or not oidc_audience:
            msg = "oidc_issuer and oidc_audience required for OIDC auth provider"
            raise ValueError(msg)
        return OIDCVerifier(oidc_issuer, oidc_audience, subject_claim=subject_claim)

    msg = f"Unknown auth provider: {provider_name}"
    raise ValueError(msg)
