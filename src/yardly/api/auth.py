"""JWT authentication for backend-issued (Supabase) access tokens.

Provides:
- verify_token(): Validates an HS256 JWT and returns the subject claim
- get_current_user(): FastAPI dependency for authenticated user context
"""

from __future__ import annotations

import os
from dataclasses import dataclass

import jwt
from fastapi import Depends, HTTPException, Request

_ALGORITHMS = ["HS256"]


@dataclass
class CurrentUser:
    """Authenticated user context."""

    id: str
    full_name: str | None
    role: str


def _get_settings() -> dict[str, str | None]:
    """Load JWT settings from environment."""
    return {
        "secret": os.environ.get("SUPABASE_JWT_SECRET"),
        "audience": os.environ.get("SUPABASE_JWT_AUDIENCE", "authenticated"),
    }


def verify_token(token: str) -> str:
    """Verify JWT and return subject claim.

    Raises:
        HTTPException: 401 if token is invalid or auth is not configured.
    """
    settings = _get_settings()
    secret = settings.get("secret")
    if not secret:
        raise HTTPException(status_code=401, detail="Auth not configured")

    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=_ALGORITHMS,
            audience=settings.get("audience"),
            options={"require": ["exp", "sub"]},
        )
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")

    sub = payload.get("sub")
    if not sub:
        raise HTTPException(status_code=401, detail="Invalid token")

    return sub


def _extract_bearer_token(request: Request) -> str:
    """Extract Bearer token from Authorization header.

    Raises:
        HTTPException: 401 if header missing or malformed.
    """
    auth_header = request.headers.get("Authorization")
    if not auth_header:
        raise HTTPException(status_code=401, detail="Missing authorization header")

    parts = auth_header.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HTTPException(status_code=401, detail="Invalid authorization header")

    return parts[1]


def _get_user_from_db(user_id: str) -> CurrentUser | None:
    """Lookup the profile created for the auth user."""
    from yardly.infra.db import txn

    with txn() as cur:
        cur.execute(
            "SELECT id, full_name, role FROM profiles WHERE id = %s",
            (user_id,),
        )
        row = cur.fetchone()
        if row is None:
            return None
        return CurrentUser(id=str(row[0]), full_name=row[1], role=row[2])


def get_current_user(request: Request) -> CurrentUser:
    """FastAPI dependency: get authenticated user.

    Raises:
        HTTPException: 401 if token invalid/missing, 403 if profile not found.
    """
    token = _extract_bearer_token(request)
    sub = verify_token(token)

    user = _get_user_from_db(sub)
    if user is None:
        raise HTTPException(status_code=403, detail="User not found")

    return user


CurrentUserDep = Depends(get_current_user)
