"""Authentication module."""

from .jwt import (
    User,
    create_access_token,
    get_current_user,
)

__all__ = [
    "User",
    "create_access_token",
    "get_current_user",
]
