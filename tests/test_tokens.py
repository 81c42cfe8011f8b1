import time

import jwt as pyjwt
import pytest

from userforge.auth.tokens import TokenService
from userforge.utils.config import AuthSettings
from userforge.utils.exceptions import InvalidTokenError

SECRET = "unit-test-secret-for-token-service-0123456789"


@pytest.fixture
def tokens():
    return TokenService(AuthSettings(jwt_secret=SECRET, token_expiry_days=7))


def test_issue_and_verify_round_trip(tokens):
    token = tokens.issue("65f0c0ffee0000000000abcd", role="user")
    claims = tokens.verify(token)
    assert claims.user_id == "65f0c0ffee0000000000abcd"
    assert claims.role == "user"
    assert claims.expires_at - claims.issued_at == 7 * 24 * 60 * 60


def test_expired_token_rejected(tokens):
    issued = time.time() - 8 * 24 * 60 * 60
    token = tokens.issue("abc", now=issued)
    with pytest.raises(InvalidTokenError) as exc_info:
        tokens.verify(token)
    assert exc_info.value.reason == "expired"
    assert exc_info.value.message == "Invalid token."
    assert exc_info.value.status_code == 401


def test_wrong_secret_rejected(tokens):
    other = TokenService(AuthSettings(jwt_secret="some-other-secret-for-token-service-987654"))
    token = other.issue("abc")
    with pytest.raises(InvalidTokenError) as exc_info:
        tokens.verify(token)
    assert exc_info.value.reason == "signature"


def test_garbage_rejected(tokens):
    with pytest.raises(InvalidTokenError) as exc_info:
        tokens.verify("not.a.jwt")
    assert exc_info.value.reason == "malformed"


def test_missing_required_claims_rejected(tokens):
    token = pyjwt.encode({"sub": "abc"}, SECRET, algorithm="HS256")
    with pytest.raises(InvalidTokenError):
        tokens.verify(token)


def test_empty_secret_not_allowed():
    with pytest.raises(ValueError):
        TokenService(AuthSettings(jwt_secret=""))


def test_altered_signature_rejected(tokens):
    token = tokens.issue("abc")
    header, payload, signature = token.split(".")
    flipped = ("A" if signature[0] != "A" else "B") + signature[1:]
    with pytest.raises(InvalidTokenError):
        tokens.verify(".".join([header, payload, flipped]))
