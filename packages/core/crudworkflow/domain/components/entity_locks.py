"""Per-entity mutual exclusion for the transition engine."""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from crudworkflow.domain.models.transition_record import EntityRef


class EntityLockRegistry:
    """Hands out one asyncio.Lock per (entity_type, entity_id).

    Transitions on the same entity serialize; transitions on different
    entities never contend. Locks are reference-counted and dropped once no
    coroutine holds or waits for them, so the registry does not grow with
    the number of entities ever touched.
    """

    def __init__(self) -> None:
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}
        self._users: dict[tuple[str, str], int] = {}

    @asynccontextmanager
    async def hold(self, ref: EntityRef) -> AsyncIterator[None]:
        """Hold the entity's lock for the duration of the block."""
        key = ref.key
        # No await between lookup and insert, so get-or-create is atomic on the loop.
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def is_locked(self, ref: EntityRef) -> bool:
        """Return True if a transition currently holds the entity's lock."""
        lock = self._locks.get(ref.key)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)
