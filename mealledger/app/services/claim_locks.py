"""Per-allocation locks serializing claims inside one worker process.

Storage row locks do the cross-process work; these locks keep concurrent
requests of the same process from queueing on the database and make
single-process SQLite deployments safe.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional
from weakref import WeakValueDictionary


class ClaimLockRegistry:
    """Hands out one asyncio.Lock per allocation id.

    Locks are held weakly, so an allocation nobody is claiming against
    costs nothing.
    """

    def __init__(self):
        self._locks: WeakValueDictionary[str, asyncio.Lock] = WeakValueDictionary()

    def lock_for(self, allocation_id: str) -> asyncio.Lock:
        lock = self._locks.get(allocation_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[allocation_id] = lock
        return lock

    @asynccontextmanager
    async def hold(self, allocation_id: str) -> AsyncIterator[None]:
        lock = self.lock_for(allocation_id)
        async with lock:
            yield

    def __len__(self) -> int:
        return len(self._locks)


# Global instance
_claim_locks: Optional[ClaimLockRegistry] = None


def get_claim_locks() -> ClaimLockRegistry:
    """Get the global ClaimLockRegistry instance (singleton)."""
    global _claim_locks
    if _claim_locks is None:
        _claim_locks = ClaimLockRegistry()
    return _claim_locks


def reset_claim_locks() -> None:
    """Reset the global registry. Useful for testing."""
    global _claim_locks
    _claim_locks = None
