"""
Auth0 JWT validation OR dev-mode bypass (FF_USE_AUTH0), plus the cron bearer check.
"""

import hmac
import logging
import time
from dataclasses import dataclass, field
from typing import Optional

import httpx
from jose import jwt, JWTError

from .config import get_settings
from .flags import get_flags

logger = logging.getLogger(__name__)


@dataclass
class AuthenticatedUser:
    subject: str
    email: str = ""
    name: str = ""
    permissions: list[str] = field(default_factory=list)


# Dev-mode user — returned when FF_USE_AUTH0=false
DEV_USER = AuthenticatedUser(
    subject="dev-user",
    email="dev@local",
    name="Dev User",
    permissions=["all"],
)


class Auth0Client:
    """Validates Auth0 JWT tokens. Caches JWKS keys."""

    def __init__(self):
        self._jwks: Optional[dict] = None
        self._jwks_fetched_at: float = 0
        self._jwks_ttl: int = 600  # 10 minutes

    async def _get_jwks(self, domain: str) -> dict:
        now = time.time()
        if self._jwks and (now - self._jwks_fetched_at) < self._jwks_ttl:
            return self._jwks

        url = f"https://{domain}/.well-known/jwks.json"
        async with httpx.AsyncClient() as client:
            resp = await client.get(url, timeout=10)
            resp.raise_for_status()
            self._jwks = resp.json()
            self._jwks_fetched_at = now
            return self._jwks

    async def verify_token(self, token: str) -> AuthenticatedUser:
        settings = get_settings()
        domain = settings.auth0_domain

        jwks = await self._get_jwks(domain)
        kid = jwt.get_unverified_header(token).get("kid")
        rsa_key = next(
            (
                {k: key[k] for k in ("kty", "kid", "use", "n", "e")}
                for key in jwks.get("keys", [])
                if key.get("kid") == kid
            ),
            None,
        )
        if not rsa_key:
            raise JWTError("Unable to find matching key in JWKS")

        payload = jwt.decode(
            token,
            rsa_key,
            algorithms=[settings.auth0_algorithm],
            audience=settings.auth0_audience,
            issuer=f"https://{domain}/",
        )

        return AuthenticatedUser(
            subject=payload.get("sub", ""),
            email=payload.get("email", ""),
            name=payload.get("name", ""),
            permissions=payload.get("permissions", []),
        )


# Singleton
_auth0_client = Auth0Client()


async def get_current_user(authorization: str = "") -> AuthenticatedUser:
    """
    Resolve the current user from the Authorization header.
    If FF_USE_AUTH0 is false, returns a dev user.
    """
    if not get_flags().use_auth0:
        return DEV_USER

    token = _bearer_token(authorization)

    try:
        user = await _auth0_client.verify_token(token)
    except JWTError as e:
        raise PermissionError(f"Invalid token: {e}")

    if not user.subject:
        raise PermissionError("Token missing sub claim")
    return user


def verify_cron_secret(authorization: str = "") -> None:
    """
    Cron trigger guard: `Authorization: Bearer <CRON_SECRET>`.
    An unset secret rejects every request.
    """
    secret = get_settings().cron_secret
    if not secret:
        logger.warning("Cron request rejected: CRON_SECRET is not configured")
        raise PermissionError("Cron secret not configured")

    expected = f"Bearer {secret}"
    if not hmac.compare_digest(authorization.encode(), expected.encode()):
        raise PermissionError("Invalid cron credentials")


def _bearer_token(authorization: str) -> str:
    if not authorization:
        raise PermissionError("Missing Authorization header")

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise PermissionError("Invalid Authorization header. Use: Bearer <token>")
    return token
