"""Security utilities: user identity tokens and the cron shared secret."""

from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from pydantic import BaseModel

from .config import settings
from .exceptions import AuthenticationError


# JWT Configuration
JWT_ALGORITHM = "HS256"
JWT_ISSUER = "tradeleague"
JWT_AUDIENCE = "tradeleague-api"


class TokenData(BaseModel):
    """Decoded user identity token."""

    sub: str  # user id
    username: str
    exp: datetime
    iat: datetime
    jti: str


def create_access_token(
    user_id: str,
    username: str | None = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """Create a signed identity token.

    Tokens are normally issued by the identity service; this is used by tooling
    and tests that need to act as a user.
    """
    now = datetime.now(timezone.utc)
    expires = now + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))

    payload = {
        "sub": user_id,
        "username": username or user_id,
        "exp": expires,
        "iat": now,
        "iss": JWT_ISSUER,
        "aud": JWT_AUDIENCE,
        "jti": secrets.token_urlsafe(16),
    }

    return jwt.encode(payload, settings.auth_secret, algorithm=JWT_ALGORITHM)


def decode_access_token(token: str) -> TokenData:
    """Decode and validate an identity token."""
    try:
        payload = jwt.decode(
            token,
            settings.auth_secret,
            algorithms=[JWT_ALGORITHM],
            issuer=JWT_ISSUER,
            audience=JWT_AUDIENCE,
            options={"require": ["exp", "iat", "sub", "iss", "aud", "jti"]},
        )
    except jwt.ExpiredSignatureError:
        raise AuthenticationError(message="Token has expired", error_code="TOKEN_EXPIRED")
    except jwt.InvalidTokenError:
        raise AuthenticationError(message="Invalid token", error_code="INVALID_TOKEN")

    return TokenData(
        sub=payload["sub"],
        username=payload.get("username") or payload["sub"],
        exp=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
        iat=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
        jti=payload["jti"],
    )


def verify_cron_secret(authorization: str | None, expected: str) -> bool:
    """Check a ``Bearer <secret>`` header against the configured cron secret.

    An unset secret rejects every call.
    """
    if not expected or not authorization:
        return False
    scheme, _, credential = authorization.partition(" ")
    if scheme.lower() != "bearer" or not credential:
        return False
    return secrets.compare_digest(credential.strip(), expected)
