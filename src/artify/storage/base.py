"""Abstract storage interface for Artify."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class StorageBackend(ABC):
    """Abstract interface for Artify storage backends.

    The same interface serves the local durable store and the remote copy the
    sync outbox replays into.
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Initialize database schema and connections."""

    @abstractmethod
    async def close(self) -> None:
        """Close all connections."""

    # --- Project operations ---

    @abstractmethod
    async def insert_project(self, project: dict[str, Any]) -> dict[str, Any]:
        """Insert a project. Returns the inserted project."""

    @abstractmethod
    async def get_project(self, project_id: str) -> dict[str, Any] | None:
        """Get a project by ID."""

    @abstractmethod
    async def compare_and_swap_project(
        self, project: dict[str, Any], *, expected_version: int
    ) -> bool:
        """Write the project only if the stored version equals expected_version.

        Returns False, leaving the stored row untouched, when the versions differ
        or the project does not exist.
        """

    @abstractmethod
    async def upsert_project(self, project: dict[str, Any]) -> bool:
        """Insert, or replace the stored project if the incoming version is newer.

        Returns True when the snapshot was applied.
        """

    @abstractmethod
    async def list_projects(
        self, user_id: str, *, include_archived: bool = False
    ) -> list[dict[str, Any]]:
        """List a user's projects, most recently updated first."""

    # --- User / credit operations ---

    @abstractmethod
    async def create_user(
        self,
        user_id: str,
        email: str | None,
        *,
        balance: int = 0,
        cap: int | None = None,
        plan: str | None = None,
        credits_reset_at: str | None = None,
    ) -> dict[str, Any]:
        """Create a user record."""

    @abstractmethod
    async def get_user(self, user_id: str) -> dict[str, Any] | None:
        """Get a user with its unlocks. Returns None if not found."""

    @abstractmethod
    async def set_plan(
        self,
        user_id: str,
        plan: str | None,
        *,
        cap: int | None,
        credits_reset_at: str | None = None,
    ) -> bool:
        """Set the plan and cap, resetting the balance to the new allowance."""

    @abstractmethod
    async def reset_credits(
        self, user_id: str, *, credits_reset_at: str, reason: str
    ) -> int | None:
        """Refill a capped balance to its cap and move the next cycle date.

        Returns the new balance, or None when the user has no cap.
        """

    @abstractmethod
    async def debit_credits(self, user_id: str, cost: int, *, reason: str) -> int | None:
        """Atomically subtract cost if the balance covers it.

        Returns the new balance, or None when the balance is insufficient.
        """

    @abstractmethod
    async def refund_credits(self, user_id: str, amount: int, *, reason: str) -> int | None:
        """Add amount back, clamped to the user's cap.

        Returns the new balance, or None when the user does not exist.
        """

    @abstractmethod
    async def add_unlock(self, user_id: str, feature: str) -> bool:
        """Record an unlock. Returns False if it was already held."""

    @abstractmethod
    async def get_credit_log(self, user_id: str, *, limit: int = 20) -> list[dict[str, Any]]:
        """Recent credit movements for a user, newest first."""

    # --- Stats ---

    @abstractmethod
    async def get_stats(self) -> dict[str, Any]:
        """Get store statistics."""
