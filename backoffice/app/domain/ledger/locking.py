"""
Per-customer write serialization.

Balance-affecting operations read "balance so far" and then write a delta
based on that read, so two writers for the same customer must never
interleave. Writers for different customers hold different locks.
"""

import asyncio
from contextlib import asynccontextmanager


class CustomerLockRegistry:
    """
    One asyncio.Lock per customer id, created on first use.

    A lock is dropped from the registry once nobody holds or waits on it,
    so the registry only tracks customers with writes in flight.
    """

    def __init__(self):
        self._locks: dict[int, asyncio.Lock] = {}
        self._users: dict[int, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def lock_for(self, customer_id: int) -> asyncio.Lock:
        lock = self._locks.get(customer_id)
        if lock is None:
            lock = self._locks[customer_id] = asyncio.Lock()
        return lock

    def is_locked(self, customer_id: int) -> bool:
        lock = self._locks.get(customer_id)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, customer_id: int):
        lock = self.lock_for(customer_id)
        self._users[customer_id] = self._users.get(customer_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[customer_id] -= 1
            if not self._users[customer_id]:
                del self._users[customer_id]
                del self._locks[customer_id]


# Process-wide registry shared by every request
customer_locks = CustomerLockRegistry()
