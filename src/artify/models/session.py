"""Authenticated caller identity."""

from __future__ import annotations

from pydantic import BaseModel


class SessionUser(BaseModel):
    user_id: str
    email: str | None = None
    is_admin: bool = False
