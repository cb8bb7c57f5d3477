"""JWT authentication.

- Token verification for user-facing endpoints
- Current user dependency injection
- Token creation for trusted callers and tests
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Annotated

import jwt as pyjwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt.exceptions import InvalidTokenError

from hookcast.config import get_settings

# JWT configuration from settings
_settings = get_settings()
JWT_SECRET = _settings.jwt_secret
if not JWT_SECRET:
    raise RuntimeError(
        "JWT_SECRET environment variable must be set. "
        "The application cannot start without a valid JWT secret for token verification."
    )
JWT_ALGORITHM = _settings.jwt_algorithm
JWT_EXPIRE_MINUTES = 60

# Security scheme
security = HTTPBearer()


class User:
    """Authenticated user."""

    def __init__(self, id: str, email: str | None = None):
        """Initialize user.

        Args:
            id: User ID (token subject).
            email: User email.
        """
        self.id = id
        self.email = email


def create_access_token(user_id: str, email: str | None = None, expire_minutes: int = JWT_EXPIRE_MINUTES) -> str:
    """Create JWT access token.

    Args:
        user_id: User ID to encode in token.
        email: User email.
        expire_minutes: Token lifetime.

    Returns:
        JWT token string.
    """
    now = datetime.now(UTC)
    payload = {
        "sub": user_id,
        "exp": now + timedelta(minutes=expire_minutes),
        "iat": now,
    }
    if email:
        payload["email"] = email
    return pyjwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_token(token: str) -> dict:
    """Decode and verify JWT token.

    Args:
        token: JWT token string.

    Returns:
        Decoded token payload.

    Raises:
        HTTPException: If token is invalid or expired.
    """
    try:
        return pyjwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except InvalidTokenError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error": {
                    "code": "INVALID_TOKEN",
                    "message": f"Could not validate credentials: {str(e)}",
                }
            },
            headers={"WWW-Authenticate": "Bearer"},
        )


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)]
) -> User:
    """Get current authenticated user.

    Dependency for protected endpoints.

    Raises:
        HTTPException: If authentication fails.
    """
    payload = decode_token(credentials.credentials)

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error": {
                    "code": "INVALID_TOKEN",
                    "message": "Token missing required claims",
                }
            },
        )

    return User(id=user_id, email=payload.get("email"))
