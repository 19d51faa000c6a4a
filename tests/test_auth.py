"""
Tests for bearer token verification.
"""

import dataclasses
import time

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from jose import jwk, jwt

from utils import auth
from utils.config import Settings
from utils.errors import Misconfigured, Unauthorized

SECRET = "unit-test-shared-secret"


def _claims(**overrides):
    claims = {"sub": "user-1", "aud": "authenticated", "exp": int(time.time()) + 600}
    claims.update(overrides)
    return claims


@pytest.fixture
def hs_settings():
    return Settings(auth_jwt_secret=SECRET)


class TestSharedSecret:
    def test_valid_token(self, hs_settings):
        token = jwt.encode(_claims(email="a@b.co"), SECRET, algorithm="HS256")
        payload = auth.decode_token(token, hs_settings)
        assert payload["sub"] == "user-1"
        assert payload["email"] == "a@b.co"

    def test_wrong_secret(self, hs_settings):
        token = jwt.encode(_claims(), "another-secret", algorithm="HS256")
        with pytest.raises(Unauthorized):
            auth.decode_token(token, hs_settings)

    def test_expired(self, hs_settings):
        token = jwt.encode(_claims(exp=int(time.time()) - 10), SECRET, algorithm="HS256")
        with pytest.raises(Unauthorized):
            auth.decode_token(token, hs_settings)

    def test_wrong_audience(self, hs_settings):
        token = jwt.encode(_claims(aud="someone-else"), SECRET, algorithm="HS256")
        with pytest.raises(Unauthorized):
            auth.decode_token(token, hs_settings)

    def test_issuer_enforced_when_configured(self, hs_settings):
        settings = dataclasses.replace(hs_settings, auth_issuer="https://auth.example.com/auth/v1")
        token = jwt.encode(_claims(iss="https://evil.example.com"), SECRET, algorithm="HS256")
        with pytest.raises(Unauthorized):
            auth.decode_token(token, settings)

    def test_unconfigured(self):
        with pytest.raises(Misconfigured):
            auth.decode_token("a.b.c", Settings())


class TestJwks:
    @pytest.fixture
    def signing_key(self, monkeypatch):
        private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        private_pem = private_key.private_bytes(
            serialization.Encoding.PEM, serialization.PrivateFormat.PKCS8, serialization.NoEncryption()
        )
        public_pem = private_key.public_key().public_bytes(
            serialization.Encoding.PEM, serialization.PublicFormat.SubjectPublicKeyInfo
        )
        public_jwk = jwk.construct(public_pem, algorithm="RS256").to_dict()
        public_jwk["kid"] = "key-1"

        fetches = []

        def fake_fetch(url):
            fetches.append(url)
            return {"keys": [public_jwk]}

        auth._jwks_cache.clear()
        auth._jwks_cache_expires_at.clear()
        monkeypatch.setattr(auth, "_fetch_jwks", fake_fetch)
        return private_pem, fetches

    def test_resolves_key_by_kid_and_caches(self, signing_key):
        private_pem, fetches = signing_key
        settings = Settings(auth_jwks_url="https://auth.example.com/.well-known/jwks.json")
        token = jwt.encode(_claims(), private_pem, algorithm="RS256", headers={"kid": "key-1"})

        assert auth.decode_token(token, settings)["sub"] == "user-1"
        assert auth.decode_token(token, settings)["sub"] == "user-1"
        assert len(fetches) == 1

    def test_unknown_kid_refreshes_then_fails(self, signing_key):
        private_pem, fetches = signing_key
        settings = Settings(auth_jwks_url="https://auth.example.com/.well-known/jwks.json")
        token = jwt.encode(_claims(), private_pem, algorithm="RS256", headers={"kid": "rotated"})

        with pytest.raises(Unauthorized):
            auth.decode_token(token, settings)
        assert len(fetches) == 2


class TestEndpointAuth:
    def test_token_without_subject(self, client, settings):
        claims = {"aud": "authenticated", "exp": int(time.time()) + 60}
        token = jwt.encode(claims, settings.auth_jwt_secret, algorithm="HS256")
        response = client.post(
            "/api/billing/portal", headers={"Authorization": f"Bearer {token}"}
        )
        assert response.status_code == 401

    def test_basic_scheme_rejected(self, client):
        response = client.post("/api/billing/portal", headers={"Authorization": "Basic dXNlcjpwdw=="})
        assert response.status_code == 401
