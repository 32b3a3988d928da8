"""Outbox that replays locally saved projects into the remote copy."""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import Any

from artify.events.bus import EventBus
from artify.events.types import EventType
from artify.storage.base import StorageBackend

logger = logging.getLogger(__name__)


class SyncStatus(StrEnum):
    SYNCED = "synced"
    PENDING = "pending"
    SYNCING = "syncing"


class SyncOutbox:
    """Pending project snapshots keyed by project id.

    Queue order is the order in which a project id first became pending.
    A newer snapshot for an id that is already queued replaces the queued one
    in place, so superseded versions are never replayed.
    """

    def __init__(
        self,
        remote: StorageBackend,
        event_bus: EventBus,
        *,
        base_delay: float = 0.5,
        max_delay: float = 30.0,
        max_retries: int = 5,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self._remote = remote
        self._event_bus = event_bus
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._max_retries = max_retries
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._pending: dict[str, dict[str, Any]] = {}
        self._flush_lock = asyncio.Lock()
        self._task: asyncio.Task[SyncStatus] | None = None
        self._closed = False
        self.last_error: str | None = None

    def enqueue(self, snapshot: dict[str, Any]) -> None:
        project_id = snapshot["id"]
        queued = self._pending.get(project_id)
        if queued is not None and queued["version"] >= snapshot["version"]:
            return
        self._pending[project_id] = snapshot

    def pending(self) -> list[dict[str, Any]]:
        return list(self._pending.values())

    def status(self) -> SyncStatus:
        if self._task is not None and not self._task.done():
            return SyncStatus.SYNCING
        return SyncStatus.PENDING if self._pending else SyncStatus.SYNCED

    def backoff_delay(self, attempt: int) -> float:
        """Jittered exponential delay before retry number ``attempt`` (0-based)."""
        delay = min(self._max_delay, self._base_delay * (2**attempt))
        return delay * (0.5 + 0.5 * self._rng.random())

    async def flush(self) -> int:
        """Replay pending snapshots in queue order; stop at the first failure.

        Returns the number of snapshots delivered.
        """
        delivered = 0
        async with self._flush_lock:
            for project_id in list(self._pending):
                snapshot = self._pending.get(project_id)
                if snapshot is None:
                    continue
                try:
                    await self._remote.upsert_project(snapshot)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    self.last_error = str(e) or type(e).__name__
                    logger.warning(
                        "Remote sync failed for project %s (v%s): %s",
                        project_id,
                        snapshot["version"],
                        self.last_error,
                    )
                    break
                # A newer snapshot may have been queued while we were awaiting
                if self._pending.get(project_id) is snapshot:
                    del self._pending[project_id]
                delivered += 1
        if delivered and not self._pending:
            self.last_error = None
        return delivered

    async def sync_with_retry(self) -> SyncStatus:
        """Flush with bounded backoff. Gives up quietly, leaving items pending."""
        for attempt in range(self._max_retries + 1):
            await self.flush()
            if not self._pending:
                await self._event_bus.emit(EventType.SYNC_SUCCEEDED, {})
                return SyncStatus.SYNCED
            if attempt < self._max_retries:
                await self._sleep(self.backoff_delay(attempt))

        logger.warning(
            "Remote sync still pending for %d project(s) after %d retries",
            len(self._pending),
            self._max_retries,
        )
        await self._event_bus.emit(
            EventType.SYNC_PENDING,
            {"project_ids": list(self._pending), "error": self.last_error},
        )
        return SyncStatus.PENDING

    def schedule(self) -> asyncio.Task[SyncStatus]:
        """Start a background sync unless one is already running."""
        if self._task is None or self._task.done():
            self._closed = False
            self._task = asyncio.create_task(self.sync_with_retry())
            self._task.add_done_callback(self._after_sync)
        return self._task

    def _after_sync(self, task: asyncio.Task[SyncStatus]) -> None:
        # Snapshots queued during the final flush or emit were never seen by this run
        if self._closed or task.cancelled() or task.exception() is not None:
            return
        if task.result() == SyncStatus.SYNCED and self._pending:
            logger.debug("%d snapshot(s) queued during sync; rescheduling", len(self._pending))
            self.schedule()

    async def close(self) -> None:
        self._closed = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
