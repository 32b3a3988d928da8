"""Per-user credit state."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class CreditInfo(BaseModel):
    user_id: str
    balance: int = Field(default=0, ge=0)
    cap: int | None = None
    plan: str | None = None
    unlocks: set[str] = Field(default_factory=set)

    def to_response(self) -> dict[str, Any]:
        return {
            "_v": "1.0",
            "user_id": self.user_id,
            "balance": self.balance,
            "cap": self.cap,
            "plan": self.plan,
            "unlocks": sorted(self.unlocks),
        }
