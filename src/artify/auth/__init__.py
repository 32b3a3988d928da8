"""Session verification and admin checks."""

from artify.auth.session import (
    SessionProvider,
    TokenExpiredError,
    TokenInvalidError,
    bearer_token,
    create_session_token,
    is_admin,
    require_session,
    verify_token,
)

__all__ = [
    "SessionProvider",
    "TokenExpiredError",
    "TokenInvalidError",
    "bearer_token",
    "create_session_token",
    "is_admin",
    "require_session",
    "verify_token",
]
