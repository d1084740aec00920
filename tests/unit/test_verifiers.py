from __future__ import annotations

import time
from types import SimpleNamespace

import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa

from chat_stream.application.exceptions import AuthenticationError
from chat_stream.infrastructure.auth.hs256_verifier import HS256Verifier
from chat_stream.infrastructure.auth.jwks_verifier import JWKSVerifier

SECRET = "unit-test-secret-that-is-long-enough-for-hs256"


@pytest.mark.asyncio
async def test_hs256_valid_token():
    token = jwt.encode({"sub": "42", "email": "a@b.test", "roles": ["admin"]}, SECRET, algorithm="HS256")

    principal = await HS256Verifier(SECRET).verify(token)

    assert principal.subject_id == "42"
    assert principal.email == "a@b.test"
    assert principal.is_admin
    assert principal.token == token


@pytest.mark.asyncio
async def test_hs256_wrong_secret():
    token = jwt.encode({"sub": "1"}, "another-secret-another-secret-another", algorithm="HS256")

    with pytest.raises(AuthenticationError):
        await HS256Verifier(SECRET).verify(token)


@pytest.mark.asyncio
async def test_hs256_expired():
    token = jwt.encode({"sub": "1", "exp": int(time.time()) - 60}, SECRET, algorithm="HS256")

    with pytest.raises(AuthenticationError):
        await HS256Verifier(SECRET).verify(token)


@pytest.mark.asyncio
async def test_token_without_subject_rejected():
    token = jwt.encode({"email": "a@b.test"}, SECRET, algorithm="HS256")

    with pytest.raises(AuthenticationError):
        await HS256Verifier(SECRET).verify(token)


@pytest.fixture
def rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.mark.asyncio
async def test_jwks_verifies_with_fetched_key(rsa_key, monkeypatch):
    verifier = JWKSVerifier("https://auth.test/.well-known/jwks.json", audience="chat")
    monkeypatch.setattr(
        verifier._jwk_client,
        "get_signing_key_from_jwt",
        lambda _token: SimpleNamespace(key=rsa_key.public_key()),
    )
    token = jwt.encode({"sub": "user-7", "aud": "chat"}, rsa_key, algorithm="RS256")

    principal = await verifier.verify(token)

    assert principal.subject_id == "user-7"


@pytest.mark.asyncio
async def test_jwks_audience_mismatch(rsa_key, monkeypatch):
    verifier = JWKSVerifier("https://auth.test/.well-known/jwks.json", audience="chat")
    monkeypatch.setattr(
        verifier._jwk_client,
        "get_signing_key_from_jwt",
        lambda _token: SimpleNamespace(key=rsa_key.public_key()),
    )
    token = jwt.encode({"sub": "user-7", "aud": "billing"}, rsa_key, algorithm="RS256")

    with pytest.raises(AuthenticationError):
        await verifier.verify(token)
