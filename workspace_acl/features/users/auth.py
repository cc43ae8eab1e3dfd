"""
Bearer token handling. Tokens are HS256 JWTs whose `sub` is a user id.
"""
from datetime import datetime, timedelta, timezone

import jwt
from fastapi import HTTPException, status

from workspace_acl.core import config


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def verify_jwt_token(token: str) -> dict:
    """
    Verify signature and expiry of a bearer token.

    Returns:
        The decoded payload; `sub` is always present.

    Raises:
        HTTPException: 401 if the token is expired, malformed or unsigned by us
    """
    try:
        return jwt.decode(
            token,
            config.JWT_SECRET,
            algorithms=[config.JWT_ALGORITHM],
            options={"require": ["sub", "exp"]},
        )
    except jwt.ExpiredSignatureError:
        raise _unauthorized("Token has expired")
    except jwt.InvalidTokenError as e:
        raise _unauthorized(f"Invalid token: {e}")


def create_access_token(user_id: str, expires_in_minutes: int = 60) -> str:
    """Issue a token for `user_id`. Used by tooling and tests; production tokens come from the identity service."""
    now = datetime.now(timezone.utc)
    payload = {"sub": user_id, "iat": now, "exp": now + timedelta(minutes=expires_in_minutes)}
    return jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)
