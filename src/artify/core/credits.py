"""Credit Ledger: consumable credits and one-time unlocks gating premium actions."""

import asyncio
import logging
from collections import defaultdict
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta

from artify.config import CREDIT_CYCLE_DAYS, PLAN_CREDITS
from artify.errors import InsufficientCredits, NotFoundError
from artify.events.bus import EventBus
from artify.events.types import EventType
from artify.models.credits import CreditInfo
from artify.storage.base import StorageBackend

logger = logging.getLogger(__name__)

VIDEO_UNLOCK = "video"


def _utcnow() -> datetime:
    return datetime.now(UTC)


class CreditLedger:
    """Serialises credit mutations per user.

    Each debit is a single conditional UPDATE committed before the caller's
    action starts, and the per-user lock keeps two concurrent debits from both
    observing the same balance. Plan balances refill to their cap every
    ``CREDIT_CYCLE_DAYS``; the refill happens lazily on the next read or debit.
    """

    def __init__(
        self,
        store: StorageBackend,
        event_bus: EventBus,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._event_bus = event_bus
        self._clock = clock
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def ensure_account(
        self, user_id: str, email: str | None = None, *, plan: str | None = None
    ) -> CreditInfo:
        """Return the user's credits, creating an empty account on first sight."""
        async with self._locks[user_id]:
            user = await self._store.get_user(user_id)
            if user is None:
                cap = PLAN_CREDITS.get(plan) if plan else None
                user = await self._store.create_user(
                    user_id,
                    email,
                    balance=cap or 0,
                    cap=cap,
                    plan=plan,
                    credits_reset_at=self._next_reset() if cap is not None else None,
                )
                logger.info("Created credit account for user %s (plan=%s)", user_id, plan)
            else:
                user = await self._roll_cycle(user)
        return _credit_info(user)

    async def get_credits(self, user_id: str) -> CreditInfo:
        async with self._locks[user_id]:
            user = await self._store.get_user(user_id)
            if user is None:
                raise NotFoundError(f"User not found: {user_id}")
            user = await self._roll_cycle(user)
        return _credit_info(user)

    async def set_plan(self, user_id: str, plan: str | None) -> CreditInfo:
        """Switch plan and reset the balance to its monthly allowance."""
        if plan is not None and plan not in PLAN_CREDITS:
            raise ValueError(f"Invalid plan: {plan}. Must be one of {set(PLAN_CREDITS)}")
        async with self._locks[user_id]:
            cap = PLAN_CREDITS[plan] if plan else None
            updated = await self._store.set_plan(
                user_id,
                plan,
                cap=cap,
                credits_reset_at=self._next_reset() if cap is not None else None,
            )
            if not updated:
                raise NotFoundError(f"User not found: {user_id}")
        logger.info("User %s moved to plan %s", user_id, plan)
        return await self.get_credits(user_id)

    async def check_and_debit(self, user_id: str, cost: int, *, reason: str = "debit") -> int:
        """Atomically take ``cost`` credits.

        Returns:
            The remaining balance

        Raises:
            InsufficientCredits: If the balance is below ``cost``; nothing is taken
            NotFoundError: If the user has no credit account
        """
        if cost < 0:
            raise ValueError("cost cannot be negative")
        async with self._locks[user_id]:
            user = await self._store.get_user(user_id)
            if user is None:
                raise NotFoundError(f"User not found: {user_id}")
            user = await self._roll_cycle(user)
            remaining = await self._store.debit_credits(user_id, cost, reason=reason)
            if remaining is None:
                logger.info(
                    "Insufficient credits for %s: %d needed, %d available",
                    user_id,
                    cost,
                    user["balance"],
                )
                raise InsufficientCredits(user_id, user["balance"], cost)

        logger.info("Debited %d credit(s) from %s (%s), %d left", cost, user_id, reason, remaining)
        await self._event_bus.emit(
            EventType.CREDITS_DEBITED,
            {"user_id": user_id, "cost": cost, "balance": remaining, "reason": reason},
        )
        return remaining

    async def refund(self, user_id: str, cost: int, *, reason: str = "refund") -> int:
        """Give back ``cost`` credits, never exceeding the plan cap.

        The ledger does not deduplicate; call at most once per failed action.
        """
        if cost < 0:
            raise ValueError("cost cannot be negative")
        async with self._locks[user_id]:
            balance = await self._store.refund_credits(user_id, cost, reason=reason)
        if balance is None:
            raise NotFoundError(f"User not found: {user_id}")

        logger.warning(
            "Refunded %d credit(s) to %s (%s), balance %d", cost, user_id, reason, balance
        )
        await self._event_bus.emit(
            EventType.CREDITS_REFUNDED,
            {"user_id": user_id, "cost": cost, "balance": balance, "reason": reason},
        )
        return balance

    async def grant_unlock(self, user_id: str, feature: str) -> None:
        """Grant a one-time feature unlock. Granting a held unlock is a no-op."""
        async with self._locks[user_id]:
            if await self._store.get_user(user_id) is None:
                raise NotFoundError(f"User not found: {user_id}")
            added = await self._store.add_unlock(user_id, feature)

        if added:
            logger.info("Granted unlock %s to %s", feature, user_id)
            await self._event_bus.emit(
                EventType.UNLOCK_GRANTED, {"user_id": user_id, "feature": feature}
            )

    async def has_unlock(self, user_id: str, feature: str) -> bool:
        user = await self._store.get_user(user_id)
        return bool(user) and feature in user["unlocks"]

    async def has_access(self, user_id: str) -> bool:
        """A paid plan or the video unlock opens the AI tools."""
        user = await self._store.get_user(user_id)
        if not user:
            return False
        return bool(user["plan"]) or VIDEO_UNLOCK in user["unlocks"]

    @asynccontextmanager
    async def charge(self, user_id: str, cost: int, *, reason: str) -> AsyncIterator[int]:
        """Debit before the block runs; refund once if it raises or is cancelled."""
        remaining = await self.check_and_debit(user_id, cost, reason=reason)
        try:
            yield remaining
        except (Exception, asyncio.CancelledError):
            # Shield so a cancelled caller still gets its credits back
            await asyncio.shield(self.refund(user_id, cost, reason=f"refund: {reason}"))
            raise

    def _next_reset(self) -> str:
        return (self._clock() + timedelta(days=CREDIT_CYCLE_DAYS)).isoformat()

    async def _roll_cycle(self, user: dict) -> dict:
        """Refill a plan's allowance once its cycle has ended. Caller holds the user lock."""
        if not user.get("plan") or user.get("cap") is None:
            return user
        reset_at = user.get("credits_reset_at")
        if reset_at and self._clock() < datetime.fromisoformat(reset_at):
            return user

        user_id = user["user_id"]
        balance = await self._store.reset_credits(
            user_id, credits_reset_at=self._next_reset(), reason="plan cycle reset"
        )
        if balance is None:
            return user
        logger.info(
            "Refilled %s to %d credit(s) for a new %s cycle", user_id, balance, user["plan"]
        )
        await self._event_bus.emit(
            EventType.CREDITS_RESET, {"user_id": user_id, "balance": balance}
        )
        return await self._store.get_user(user_id) or user


def _credit_info(user: dict) -> CreditInfo:
    return CreditInfo(
        user_id=user["user_id"],
        balance=user["balance"],
        cap=user.get("cap"),
        plan=user.get("plan"),
        unlocks=set(user.get("unlocks") or []),
    )
