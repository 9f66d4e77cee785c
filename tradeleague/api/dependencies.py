"""API dependencies for identity, cron authorization and service access."""

from __future__ import annotations

from fastapi import Depends, Header, Request

from tradeleague.core.exceptions import AuthenticationError
from tradeleague.core.security import TokenData, decode_access_token, verify_cron_secret
from tradeleague.services.container import ServiceContainer


def get_services(request: Request) -> ServiceContainer:
    """Service container built at startup."""
    return request.app.state.services


def _extract_bearer(authorization: str | None) -> str | None:
    if authorization:
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() == "bearer" and token:
            return token.strip()
    return None


async def require_user(authorization: str | None = Header(default=None)) -> TokenData:
    """Identity of the calling user, from the bearer token."""
    token = _extract_bearer(authorization)
    if not token:
        raise AuthenticationError()
    return decode_access_token(token)


async def require_cron(
    authorization: str | None = Header(default=None),
    services: ServiceContainer = Depends(get_services),
) -> None:
    """Reject trigger calls that do not carry the shared cron secret."""
    if not verify_cron_secret(authorization, services.config.cron_secret):
        raise AuthenticationError(message="Unauthorized")
