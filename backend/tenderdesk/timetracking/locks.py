"""Best-effort cross-process snapshot lock stored as documents.

Write our lock, pause, then count active locks for the day. More than one
means another process raced us, so we back off. Two processes that both
write inside the pause window can still both proceed; the per-employee
duplicate check and the periodic dedup sweep absorb that case.
"""

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import AsyncIterator, Callable

from tenderdesk.exceptions import LockNotAcquiredError
from tenderdesk.storage.base import DocumentStore, coerce_datetime

logger = logging.getLogger(__name__)

LOCKS_COLLECTION = "snapshot_locks"


class SnapshotLockManager:
    def __init__(
        self,
        store: DocumentStore,
        process_id: str,
        clock: Callable[[], datetime],
        recheck_delay_ms: int = 100,
        stale_after_seconds: int = 600,
    ):
        self.store = store
        self.process_id = process_id
        self._clock = clock
        self.recheck_delay = recheck_delay_ms / 1000
        self.stale_after = timedelta(seconds=stale_after_seconds)
        self._held: dict[str, str] = {}

    def lock_id(self, date: str) -> str | None:
        """Id of the lock document this manager currently holds for `date`."""
        return self._held.get(date)

    async def _active_locks(self, date: str) -> list[dict]:
        locks = await self.store.query(LOCKS_COLLECTION, {"date": date, "status": "active"})
        now = self._clock()
        active = []
        for lock in locks:
            taken_at = coerce_datetime(lock.get("timestamp"))
            if taken_at is not None and now - taken_at > self.stale_after:
                # Holder crashed without releasing
                logger.warning(f"Removing stale snapshot lock {lock['id']} from {lock.get('process_id')}")
                await self.store.delete(LOCKS_COLLECTION, lock["id"])
                continue
            active.append(lock)
        return active

    async def acquire(self, date: str) -> bool:
        # Fresh token per attempt: instances sharing a process_id still write distinct locks
        lock_id = f"snapshot_lock_{date}_{self.process_id}_{uuid.uuid4().hex[:8]}"
        await self.store.set(
            LOCKS_COLLECTION,
            lock_id,
            {
                "date": date,
                "process_id": self.process_id,
                "timestamp": self._clock(),
                "status": "active",
            },
        )

        await asyncio.sleep(self.recheck_delay)

        active = await self._active_locks(date)
        if len(active) > 1 or not any(lock["id"] == lock_id for lock in active):
            holders = ", ".join(str(lock.get("process_id")) for lock in active if lock["id"] != lock_id)
            logger.warning(f"Snapshot lock for {date} contended (held by {holders or 'unknown'}), backing off")
            await self.store.delete(LOCKS_COLLECTION, lock_id)
            return False

        self._held[date] = lock_id
        logger.debug(f"Snapshot lock acquired for {date} by {self.process_id}")
        return True

    async def release(self, date: str) -> None:
        lock_id = self._held.pop(date, None)
        if lock_id is None:
            return
        await self.store.delete(LOCKS_COLLECTION, lock_id)
        logger.debug(f"Snapshot lock released for {date}")

    @asynccontextmanager
    async def hold(self, date: str) -> AsyncIterator[None]:
        """Hold the day's lock for the duration of the block.

        Raises LockNotAcquiredError if another process holds it. The lock
        is released on both normal exit and error.
        """
        if not await self.acquire(date):
            raise LockNotAcquiredError(f"Snapshot lock for {date} is held by another process")
        try:
            yield
        finally:
            try:
                await self.release(date)
            except Exception as e:
                logger.error(f"Failed to release snapshot lock for {date}: {e}")
