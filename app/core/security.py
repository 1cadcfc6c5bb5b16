"""Credential primitives: password hashing and signed bearer tokens."""

import logging
from datetime import datetime, timedelta, timezone

import jwt
from passlib.context import CryptContext

from app.core.config import Settings, get_settings
from app.core.errors import ConfigurationError

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
BEARER_PREFIX = "Bearer "

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


# =============================================================================
# Passwords
# =============================================================================

def hash_password(password: str) -> str:
    """One-way bcrypt hash. Minimum length is enforced by callers."""
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    """Check a password against a stored hash. Unknown hash formats never match."""
    try:
        return pwd_context.verify(password, password_hash)
    except (ValueError, TypeError):
        logger.warning("Password verification against an unrecognised hash")
        return False


def dummy_verify() -> None:
    """Burn the same effort as a real verify (used for unknown accounts)."""
    pwd_context.dummy_verify()


# =============================================================================
# Tokens
# =============================================================================

def issue_token(user_id: int, settings: Settings | None = None) -> str:
    """
    Sign a token carrying only the user id.

    Raises:
        ConfigurationError: If JWT_SECRET is not configured
    """
    settings = settings or get_settings()
    if not settings.jwt_secret:
        logger.critical("JWT_SECRET is not configured")
        raise ConfigurationError("JWT_SECRET is not configured")

    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "iat": now,
        "exp": now + timedelta(days=settings.jwt_expires_days),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=ALGORITHM)


def verify_token(token: str, settings: Settings | None = None) -> int | None:
    """
    Verify a token and return its user id.

    Expired, malformed, wrongly signed tokens (or a missing secret) all
    return None so callers can answer 401 uniformly.
    """
    settings = settings or get_settings()
    if not settings.jwt_secret:
        logger.error("JWT_SECRET is not configured, rejecting token")
        return None

    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[ALGORITHM],
            options={"require": ["exp", "sub"]},
        )
        return int(payload["sub"])
    except jwt.ExpiredSignatureError:
        logger.debug("Token rejected: expired")
    except jwt.InvalidTokenError as e:
        logger.debug(f"Token rejected: {e}")
    except (TypeError, ValueError):
        logger.debug("Token rejected: subject is not a user id")
    return None


def extract_bearer(header: str | None) -> str | None:
    """Return the token from an exact ``Bearer <token>`` header, else None."""
    if not header or not header.startswith(BEARER_PREFIX):
        return None
    token = header[len(BEARER_PREFIX):]
    return token or None
