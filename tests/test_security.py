"""Password hashing, token issue/verify and bearer header parsing."""
from datetime import datetime, timedelta, timezone

import jwt
import pytest

from app.core.config import Settings
from app.core.errors import ConfigurationError
from app.core.security import (
    ALGORITHM,
    extract_bearer,
    hash_password,
    issue_token,
    verify_password,
    verify_token,
)

SECRET = "unit-test-secret"


@pytest.fixture
def settings() -> Settings:
    return Settings(jwt_secret=SECRET, jwt_expires_days=7)


# =============================================================================
# Passwords
# =============================================================================

@pytest.mark.parametrize("password", ["password123", "", "pässwörd with spaces"])
def test_hash_verify_round_trip(password):
    hashed = hash_password(password)

    assert hashed != password
    assert verify_password(password, hashed) is True


def test_verify_rejects_wrong_password():
    hashed = hash_password("password123")
    assert verify_password("password124", hashed) is False


def test_hashes_are_salted():
    assert hash_password("same-password") != hash_password("same-password")


def test_verify_with_malformed_hash_is_false():
    assert verify_password("password123", "not-a-bcrypt-hash") is False


# =============================================================================
# Tokens
# =============================================================================

def test_issue_and_verify_token(settings):
    token = issue_token(42, settings)
    assert verify_token(token, settings) == 42


def test_token_expires_after_configured_days(settings):
    token = issue_token(1, settings)
    payload = jwt.decode(token, SECRET, algorithms=[ALGORITHM])

    lifetime = payload["exp"] - payload["iat"]
    assert lifetime == int(timedelta(days=7).total_seconds())
    assert payload["sub"] == "1"


def test_expired_token_is_rejected(settings):
    past = datetime.now(timezone.utc) - timedelta(days=8)
    token = jwt.encode(
        {"sub": "1", "iat": past, "exp": past + timedelta(days=7)}, SECRET, algorithm=ALGORITHM
    )
    assert verify_token(token, settings) is None


def test_token_signed_with_other_secret_is_rejected(settings):
    token = issue_token(1, Settings(jwt_secret="another-secret"))
    assert verify_token(token, settings) is None


def test_token_with_other_algorithm_is_rejected(settings):
    now = datetime.now(timezone.utc)
    token = jwt.encode(
        {"sub": "1", "iat": now, "exp": now + timedelta(days=1)}, SECRET, algorithm="HS512"
    )
    assert verify_token(token, settings) is None


@pytest.mark.parametrize("token", ["", "garbage", "a.b.c"])
def test_malformed_token_is_rejected(settings, token):
    assert verify_token(token, settings) is None


def test_token_without_numeric_subject_is_rejected(settings):
    now = datetime.now(timezone.utc)
    token = jwt.encode(
        {"sub": "alice", "iat": now, "exp": now + timedelta(days=1)}, SECRET, algorithm=ALGORITHM
    )
    assert verify_token(token, settings) is None


def test_missing_secret():
    unconfigured = Settings(jwt_secret=None)

    with pytest.raises(ConfigurationError):
        issue_token(1, unconfigured)
    assert verify_token("anything", unconfigured) is None


# =============================================================================
# Bearer header
# =============================================================================

@pytest.mark.parametrize(
    "header, expected",
    [
        ("Bearer abc.def.ghi", "abc.def.ghi"),
        ("Bearer ", None),
        ("bearer abc", None),
        ("Token abc", None),
        ("abc", None),
        ("", None),
        (None, None),
    ],
)
def test_extract_bearer(header, expected):
    assert extract_bearer(header) == expected
