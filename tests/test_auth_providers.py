"""Tests for token verifiers and the verifier factory."""

from __future__ import annotations

import time
from types import SimpleNamespace

import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa

from martialbase.auth_providers.base import TokenVerifier
from martialbase.auth_providers.factory import create_verifier
from martialbase.auth_providers.jwt_provider import OIDCVerifier, SharedSecretJWTVerifier

SECRET = "test-secret-with-enough-length-for-hs256"
ISSUER = "https://login.example.com/tenant"


def _hs256(claims: dict, secret: str = SECRET) -> str:
    return jwt.encode(claims, secret, algorithm="HS256")


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


class TestFactory:
    def test_jwt(self):
        verifier = create_verifier("jwt", jwt_secret=SECRET)
        assert isinstance(verifier, SharedSecretJWTVerifier)
        assert isinstance(verifier, TokenVerifier)

    def test_jwt_requires_secret(self):
        with pytest.raises(ValueError, match="jwt_secret"):
            create_verifier("jwt", jwt_secret="")

    def test_oidc(self):
        verifier = create_verifier("oidc", oidc_issuer=ISSUER, oidc_audience="api")
        assert isinstance(verifier, OIDCVerifier)

    def test_oidc_requires_issuer_and_audience(self):
        with pytest.raises(ValueError, match="oidc_issuer"):
            create_verifier("oidc", oidc_issuer=ISSUER)

    def test_unknown_provider(self):
        with pytest.raises(ValueError, match="Unknown auth provider"):
            create_verifier("saml")


# ---------------------------------------------------------------------------
# Shared-secret JWT
# ---------------------------------------------------------------------------


class TestSharedSecretJWTVerifier:
    async def test_valid_token(self):
        result = await SharedSecretJWTVerifier(SECRET).verify(_hs256({"sub": "ext-1"}))
        assert result.authenticated
        assert result.identity == "ext-1"
        assert result.provider == "jwt"
        assert result.claims["sub"] == "ext-1"

    async def test_wrong_secret(self):
        token = _hs256({"sub": "ext-1"}, secret="another-secret-with-enough-length")
        result = await SharedSecretJWTVerifier(SECRET).verify(token)
        assert not result.authenticated
        assert "JWT validation failed" in result.error

    async def test_expired(self):
        token = _hs256({"sub": "ext-1", "exp": int(time.time()) - 60})
        result = await SharedSecretJWTVerifier(SECRET).verify(token)
        assert not result.authenticated

    async def test_garbage(self):
        result = await SharedSecretJWTVerifier(SECRET).verify("garbage")
        assert not result.authenticated

    async def test_audience(self):
        verifier = SharedSecretJWTVerifier(SECRET, audience="api")
        assert not (await verifier.verify(_hs256({"sub": "ext-1"}))).authenticated
        assert not (await verifier.verify(_hs256({"sub": "ext-1", "aud": "other"}))).authenticated
        assert (await verifier.verify(_hs256({"sub": "ext-1", "aud": "api"}))).authenticated

    async def test_custom_subject_claim(self):
        verifier = SharedSecretJWTVerifier(SECRET, subject_claim="oid")
        result = await verifier.verify(_hs256({"sub": "ignored", "oid": "object-id"}))
        assert result.identity == "object-id"

    async def test_missing_subject_is_empty_identity(self):
        result = await SharedSecretJWTVerifier(SECRET).verify(_hs256({"name": "x"}))
        assert result.authenticated
        assert result.identity == ""


# ---------------------------------------------------------------------------
# OIDC
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


def _oidc_verifier(monkeypatch, rsa_key) -> OIDCVerifier:
    verifier = OIDCVerifier(ISSUER + "/", "api")
    signing_key = SimpleNamespace(key=rsa_key.public_key())
    client = SimpleNamespace(get_signing_key_from_jwt=lambda token: signing_key)
    monkeypatch.setattr(verifier, "_get_jwks_client", lambda: client)
    return verifier


def _rs256(rsa_key, **overrides) -> str:
    claims = {"sub": "ext-1", "iss": ISSUER, "aud": "api", "exp": int(time.time()) + 600}
    claims.update(overrides)
    return jwt.encode(claims, rsa_key, algorithm="RS256")


class TestOIDCVerifier:
    async def test_valid_token(self, monkeypatch, rsa_key):
        result = await _oidc_verifier(monkeypatch, rsa_key).verify(_rs256(rsa_key))
        assert result.authenticated
        assert result.identity == "ext-1"
        assert result.provider == "oidc"

    async def test_wrong_issuer(self, monkeypatch, rsa_key):
        token = _rs256(rsa_key, iss="https://evil.example.com")
        result = await _oidc_verifier(monkeypatch, rsa_key).verify(token)
        assert not result.authenticated
        assert "OIDC validation failed" in result.error

    async def test_wrong_audience(self, monkeypatch, rsa_key):
        token = _rs256(rsa_key, aud="someone-else")
        result = await _oidc_verifier(monkeypatch, rsa_key).verify(token)
        assert not result.authenticated

    async def test_jwks_failure(self, monkeypatch, rsa_key):
        verifier = OIDCVerifier(ISSUER, "api")

        def _fail(token):
            raise jwt.PyJWKClientError("unable to fetch keys")

        monkeypatch.setattr(
            verifier, "_get_jwks_client", lambda: SimpleNamespace(get_signing_key_from_jwt=_fail)
        )
        result = await verifier.verify(_rs256(rsa_key))
        assert not result.authenticated
        assert "JWKS verification failed" in result.error

    def test_jwks_url(self):
        verifier = OIDCVerifier(ISSUER + "/", "api")
        assert verifier._get_jwks_client().uri == f"{ISSUER}/.well-known/jwks.json"
