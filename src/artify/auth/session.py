"""Session tokens and caller identity."""

from __future__ import annotations

import logging
import time
from typing import Any

import jwt

from artify.config import Config
from artify.errors import Unauthorized
from artify.models.session import SessionUser

logger = logging.getLogger(__name__)

_ALGORITHM = "HS256"


class TokenExpiredError(Unauthorized):
    """Raised when a session token has expired."""

    def __init__(self, message: str = "Session has expired") -> None:
        super().__init__(message)


class TokenInvalidError(Unauthorized):
    """Raised when a session token is malformed or badly signed."""

    def __init__(self, message: str = "Session token is invalid") -> None:
        super().__init__(message)


def create_session_token(
    user_id: str, email: str | None, secret: str, exp_minutes: int = 60
) -> str:
    """Create a signed session token for a user."""
    now = int(time.time())
    payload: dict[str, Any] = {"sub": user_id, "iat": now, "exp": now + exp_minutes * 60}
    if email:
        payload["email"] = email
    return jwt.encode(payload, secret, algorithm=_ALGORITHM)


def verify_token(token: str, secret: str) -> dict[str, Any]:
    """Verify and decode a session token."""
    try:
        payload = jwt.decode(
            token, secret, algorithms=[_ALGORITHM], options={"require": ["sub", "exp"]}
        )
    except jwt.ExpiredSignatureError as e:
        logger.warning("Token expired: %s", e)
        raise TokenExpiredError() from e
    except jwt.InvalidTokenError as e:
        logger.warning("Invalid token: %s", e)
        raise TokenInvalidError() from e
    return payload


def is_admin(email: str | None, config: Config) -> bool:
    """Admin status comes only from the configured allowlist."""
    return bool(email) and email.strip().lower() in config.admin_emails


def bearer_token(header: str | None) -> str | None:
    """Extract the token from an ``Authorization: Bearer ...`` header."""
    if not header:
        return None
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def require_session(session: SessionUser | None) -> SessionUser:
    if session is None:
        raise Unauthorized()
    return session


class SessionProvider:
    """Resolves a caller token to a :class:`SessionUser`."""

    def __init__(self, config: Config) -> None:
        self._config = config

    def resolve(self, token: str | None) -> SessionUser | None:
        """Return the session for ``token``, or None when no token was given.

        With mock auth enabled every caller is the fixed development user.

        Raises:
            TokenExpiredError: If the token has expired
            TokenInvalidError: If the token cannot be verified
        """
        if self._config.mock_auth:
            email = self._config.mock_user_email
            return SessionUser(
                user_id=self._config.mock_user_id,
                email=email,
                is_admin=is_admin(email, self._config),
            )
        if not token:
            return None

        payload = verify_token(token, self._config.jwt_secret)
        email = payload.get("email")
        return SessionUser(
            user_id=str(payload["sub"]),
            email=email,
            is_admin=is_admin(email, self._config),
        )
