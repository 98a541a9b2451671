"""Per-group locking around check-then-write.

The stage guard reads the current rank and the writer acts on it; without a
lock two concurrent requests for the same (route leg, shipment number) group
could both see rank R and both apply R+1. The lock is held from the rank read
until the stage transaction commits or rolls back.

Within one process an ``asyncio.Lock`` per group key serialises callers. On
PostgreSQL a transaction-scoped advisory lock on the same key also serialises
other worker processes; it is released by the commit/rollback that ends the
stage.
"""

import asyncio
import logging
import weakref
from contextlib import asynccontextmanager

from sqlalchemy import text as sa_text
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger("inbound.shipment_engine.locks")


def group_key(join_id: int, shipment_number: str) -> str:
    return f"{join_id}|{shipment_number}"


class GroupLocks:
    def __init__(self):
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    @asynccontextmanager
    async def hold(self, db: AsyncSession, join_id: int, shipment_number: str):
        key = group_key(join_id, shipment_number)
        lock = self._lock_for(key)
        async with lock:
            if db.get_bind().dialect.name == "postgresql":
                await db.execute(
                    sa_text("SELECT pg_advisory_xact_lock(hashtext(:k))"), {"k": key}
                )
            logger.debug("Holding group lock %s", key)
            yield key


group_locks = GroupLocks()
