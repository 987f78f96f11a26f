"""Supabase JWT verification for the HTTP API.

Dashboard users sign in through Supabase; the browser forwards the access token
as ``Authorization: Bearer <jwt>``. Tokens are HS256-signed with the project's
JWT secret and carry the ``authenticated`` audience.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import jwt

logger = logging.getLogger(__name__)

SUPABASE_AUDIENCE = "authenticated"
BEARER_PREFIX = "Bearer "


class AuthenticationError(Exception):
    """Raised when a request cannot be tied to a signed-in user."""


@dataclass(frozen=True, slots=True)
class AuthenticatedUser:
    id: str
    email: Optional[str] = None


def bearer_token(header: Optional[str]) -> str:
    """Pull the token out of an ``Authorization`` header value."""
    if not header or not header.startswith(BEARER_PREFIX):
        raise AuthenticationError("Missing or invalid Authorization header")
    token = header[len(BEARER_PREFIX):].strip()
    if not token:
        raise AuthenticationError("Missing or invalid Authorization header")
    return token


def verify_supabase_token(token: str, secret: Optional[str]) -> AuthenticatedUser:
    """Decode a Supabase access token and return the user it names."""
    if not secret:
        raise AuthenticationError("SUPABASE_JWT_SECRET not configured")
    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=["HS256"],
            audience=SUPABASE_AUDIENCE,
        )
    except jwt.ExpiredSignatureError as exc:
        raise AuthenticationError("Token has expired") from exc
    except jwt.InvalidTokenError as exc:
        raise AuthenticationError(f"Invalid token: {exc}") from exc

    subject = payload.get("sub")
    if not subject:
        raise AuthenticationError("Token missing 'sub' claim")
    return AuthenticatedUser(id=str(subject), email=payload.get("email"))
