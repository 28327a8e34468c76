"""Security utilities: JWT verification and token hashing."""

import hashlib
import hmac
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import uuid4

import jwt

from secondfactor.core.config import Settings, settings


def create_access_token(principal_id: str, settings_: Settings | None = None) -> str:
    """Create a JWT access token.

    Tokens are normally minted by the primary login flow; this helper exists for
    that flow and for tests.
    """
    cfg = settings_ or settings
    if not cfg.JWT_SECRET:
        raise ValueError("JWT_SECRET must be set")

    now = datetime.now(timezone.utc)
    expire = now + timedelta(minutes=cfg.ACCESS_TOKEN_EXPIRE_MINUTES)

    payload = {
        "sub": str(principal_id),
        "iat": now,
        "exp": expire,
        "jti": str(uuid4()),
        "type": "access",
    }

    return jwt.encode(payload, cfg.JWT_SECRET, algorithm=cfg.JWT_ALG)


def verify_access_token(token: str, settings_: Settings | None = None) -> dict[str, Any]:
    """Verify and decode a JWT access token."""
    cfg = settings_ or settings
    if not cfg.JWT_SECRET:
        raise ValueError("JWT_SECRET must be set")

    try:
        payload = jwt.decode(token, cfg.JWT_SECRET, algorithms=[cfg.JWT_ALG])
        if payload.get("type") != "access":
            raise jwt.InvalidTokenError("Token is not an access token")
        return payload
    except jwt.ExpiredSignatureError:
        raise jwt.InvalidTokenError("Token has expired")
    except jwt.InvalidTokenError as e:
        raise jwt.InvalidTokenError(f"Invalid token: {e}")


def hash_token(token: str, pepper: str | None = None) -> str:
    """Hash an opaque token using HMAC-SHA256 with the server pepper."""
    pepper = pepper or settings.TOKEN_PEPPER
    if not pepper:
        raise ValueError("TOKEN_PEPPER must be set")

    return hmac.new(pepper.encode(), token.encode(), hashlib.sha256).hexdigest()


def tokens_match(token: str, token_hash: str, pepper: str | None = None) -> bool:
    """Constant-time comparison of a raw token against a stored hash."""
    return hmac.compare_digest(hash_token(token, pepper), token_hash)
