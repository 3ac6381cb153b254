from __future__ import annotations

import base64
import time

import pytest
from jose import jwt

from storybridge.api.auth import AuthError, TokenVerifier, bearer_token

SECRET = "storybridge-test-signing-secret-0123456789"
AUDIENCE = "https://storybridge.test/api/"
ISSUER = "https://login.storybridge.test/"


def make_token(secret=SECRET, **overrides):
    claims = {
        "sub": "auth0|child-reader",
        "aud": AUDIENCE,
        "iss": ISSUER,
        "exp": int(time.time()) + 300,
    }
    claims.update(overrides)
    return jwt.encode(claims, secret, algorithm="HS256")


@pytest.fixture
def verifier():
    return TokenVerifier(audience=AUDIENCE, issuer=ISSUER, algorithms=("HS256",), key=SECRET)


@pytest.mark.parametrize("header, expected", [
    ("Bearer abc.def", "abc.def"),
    ("bearer abc", "abc"),
    ("Basic abc", None),
    ("Bearer", None),
    ("", None),
    (None, None),
])
def test_bearer_token(header, expected):
    assert bearer_token(header) == expected


def test_valid_token(verifier):
    claims = verifier.verify(f"Bearer {make_token()}")
    assert claims["sub"] == "auth0|child-reader"


def test_missing_token_is_401(verifier):
    with pytest.raises(AuthError) as exc:
        verifier.verify(None)
    assert exc.value.status == 401
    assert exc.value.message == "Access token required"


@pytest.mark.parametrize("token", [
    make_token(secret="some-other-signing-secret-0123456789"),
    make_token(aud="https://elsewhere.test/"),
    make_token(iss="https://evil.test/"),
    make_token(exp=int(time.time()) - 60),
    "not-a-jwt",
])
def test_bad_tokens_are_403(verifier, token):
    with pytest.raises(AuthError) as exc:
        verifier.verify(f"Bearer {token}")
    assert exc.value.status == 403
    assert exc.value.message == "Invalid token"


def test_domain_defaults():
    verifier = TokenVerifier("example.auth0.com", key=SECRET)
    assert verifier.audience == "https://example.auth0.com/api/v2/"
    assert verifier.issuer == "https://example.auth0.com/"


def test_needs_domain_or_key():
    with pytest.raises(ValueError):
        TokenVerifier()


class FakeJWKSResponse:
    def __init__(self, keys):
        self.keys = keys

    def raise_for_status(self):
        pass

    def json(self):
        return {"keys": self.keys}


def test_signing_key_comes_from_jwks(monkeypatch):
    jwk = {
        "kty": "oct",
        "kid": "key-1",
        "alg": "HS256",
        "k": base64.urlsafe_b64encode(SECRET.encode()).rstrip(b"=").decode(),
    }
    fetched = []

    def fake_get(url, timeout):
        fetched.append(url)
        return FakeJWKSResponse([jwk])

    monkeypatch.setattr("storybridge.api.auth.requests.get", fake_get)
    verifier = TokenVerifier("login.storybridge.test", audience=AUDIENCE, algorithms=("HS256",))

    token = jwt.encode(
        {"sub": "auth0|parent", "aud": AUDIENCE, "iss": "https://login.storybridge.test/"},
        SECRET,
        algorithm="HS256",
        headers={"kid": "key-1"},
    )
    assert verifier.verify(f"Bearer {token}")["sub"] == "auth0|parent"
    assert verifier.verify(f"Bearer {token}")["sub"] == "auth0|parent"
    assert fetched == ["https://login.storybridge.test/.well-known/jwks.json"]

    unknown = jwt.encode({"sub": "x", "aud": AUDIENCE}, SECRET, algorithm="HS256", headers={"kid": "other"})
    with pytest.raises(AuthError) as exc:
        verifier.verify(f"Bearer {unknown}")
    assert exc.value.status == 403


def test_token_without_subject_is_403(verifier):
    token = jwt.encode({"aud": AUDIENCE, "iss": ISSUER, "exp": int(time.time()) + 300}, SECRET, algorithm="HS256")
    with pytest.raises(AuthError) as exc:
        verifier.verify(f"Bearer {token}")
    assert exc.value.status == 403
    assert exc.value.message == "Invalid token"
