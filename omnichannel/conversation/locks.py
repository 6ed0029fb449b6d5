"""Per-subject advisory locks.

One in-process ``asyncio.Lock`` per subject id, shared by the turn
orchestrator and the approval coordinator so two turns for the same
customer never interleave their context and run-state updates. Locks
are held in a ``WeakValueDictionary`` and disappear once no turn holds
or waits on them.
"""

import asyncio
import weakref
from contextlib import asynccontextmanager
from typing import AsyncIterator


class SubjectLocks:
    """Lazily created mutex per subject id."""

    def __init__(self, enabled: bool = True) -> None:
        self.enabled = enabled
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    def _lock_for(self, subject_id: str) -> asyncio.Lock:
        lock = self._locks.get(subject_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[subject_id] = lock
        return lock

    @asynccontextmanager
    async def hold(self, subject_id: str) -> AsyncIterator[None]:
        """Serialize the wrapped block with every other block for ``subject_id``.

        Usage:
            async with locks.hold("phone_+14155550100"):
                ...
        """
        if not self.enabled:
            yield
            return
        lock = self._lock_for(subject_id)
        async with lock:
            yield

    def is_locked(self, subject_id: str) -> bool:
        lock = self._locks.get(subject_id)
        return lock is not None and lock.locked()
