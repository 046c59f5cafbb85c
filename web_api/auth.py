"""
JWT authentication utilities for the web API.

Sessions are issued by Supabase Auth. Access tokens are HS256 JWTs signed
with the project's JWT secret; "sub" is the user id (profiles.id).

The token is read from the Authorization header ("Bearer <token>") or,
for browser requests such as EventSource, the sb-access-token cookie.
"""

import os
from uuid import UUID

import jwt
from fastapi import Depends, HTTPException, Request

JWT_SECRET = os.environ.get("SUPABASE_JWT_SECRET")
JWT_ALGORITHM = "HS256"
JWT_AUDIENCE = "authenticated"
SESSION_COOKIE = "sb-access-token"


def verify_jwt(token: str) -> dict | None:
    """
    Verify and decode a Supabase access token.

    Args:
        token: The JWT token string

    Returns:
        Decoded payload dict if valid, None if invalid
    """
    if not JWT_SECRET:
        raise ValueError("SUPABASE_JWT_SECRET environment variable not set")

    try:
        return jwt.decode(
            token,
            JWT_SECRET,
            algorithms=[JWT_ALGORITHM],
            audience=JWT_AUDIENCE,
        )
    except jwt.InvalidTokenError:
        return None


def _extract_token(request: Request) -> str | None:
    header = request.headers.get("authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() == "bearer" and token:
        return token.strip()
    return request.cookies.get(SESSION_COOKIE)


async def get_current_user(request: Request) -> dict:
    """
    FastAPI dependency to get the current authenticated user.

    Returns:
        The decoded JWT payload with user info

    Raises:
        HTTPException: 401 if not authenticated or invalid token
    """
    token = _extract_token(request)
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")

    payload = verify_jwt(token)
    if not payload or not payload.get("sub"):
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    return payload


async def get_optional_user(request: Request) -> dict | None:
    """
    FastAPI dependency to optionally get the current user.

    Returns None if not authenticated instead of raising an exception.
    """
    token = _extract_token(request)
    if not token:
        return None

    return verify_jwt(token)


async def get_current_user_id(user: dict = Depends(get_current_user)) -> UUID:
    """FastAPI dependency returning the authenticated user's id."""
    try:
        return UUID(user["sub"])
    except (KeyError, ValueError, TypeError):
        raise HTTPException(status_code=401, detail="Invalid token subject")


async def get_optional_user_id(user: dict | None = Depends(get_optional_user)) -> UUID | None:
    if not user:
        return None
    try:
        return UUID(user["sub"])
    except (KeyError, ValueError, TypeError):
        return None
