"""In-memory workflow store implementation.

This module provides an in-memory implementation of the WorkflowStore
interface using Python dictionaries. It is the default store and needs no
external services; state does not survive a restart.

Example:
    ```python
    from crudworkflow.infrastructure.state_store.memory_store import (
        InMemoryWorkflowStore,
    )

    store = InMemoryWorkflowStore()
    ref = EntityRef(entity_type="order", entity_id="42")
    await store.create_entity(ref, "new")
    snapshot = await store.get_entity(ref)
    ```
"""

import asyncio
import uuid

from crudworkflow.domain.interfaces.workflow_store import (
    EntityExistsError,
    StateConflictError,
    WorkflowStore,
    encode_record,
)
from crudworkflow.domain.models.transition_record import (
    EntityRef,
    EntitySnapshot,
    TransitionRecord,
)


class InMemoryWorkflowStore(WorkflowStore):
    """In-memory implementation of WorkflowStore.

    Thread Safety:
        - Writes (create_entity, append, commit_transition) share one
          asyncio.Lock, so the state change and record append of a commit are
          never observed apart.
        - Records are kept JSON-encoded, the same form the Redis and MongoDB
          stores persist. Every read decodes a fresh TransitionRecord, so
          callers cannot reach the ledger through a returned record.

    Attributes:
        _entities: Current snapshot per (entity_type, entity_id)
        _records: Encoded audit records per (entity_type, entity_id), in
            insertion order
        _sequence: Global insertion counter used to break timestamp ties
        _write_lock: asyncio.Lock guarding all writes
    """

    def __init__(self) -> None:
        self._entities: dict[tuple[str, str], EntitySnapshot] = {}
        self._records: dict[tuple[str, str], list[str]] = {}
        self._sequence = 0
        self._write_lock = asyncio.Lock()

    async def get_entity(self, ref: EntityRef) -> EntitySnapshot | None:
        return self._entities.get(ref.key)

    async def create_entity(self, ref: EntityRef, initial_state: str) -> EntitySnapshot:
        """Persist a new entity in its initial state.

        Raises:
            EntityExistsError: If the entity already exists.
        """
        async with self._write_lock:
            if ref.key in self._entities:
                raise EntityExistsError(f"Entity {ref} already exists")
            snapshot = EntitySnapshot(ref=ref, state=initial_state, version=0)
            self._entities[ref.key] = snapshot
            return snapshot

    async def append(self, record: TransitionRecord) -> str:
        """Append a record to the ledger without touching entity state.

        Raises:
            StoreError: If the record payload cannot be encoded.
        """
        async with self._write_lock:
            return self._append_locked(record).record_id  # type: ignore[return-value]

    async def query_by_entity(
        self, entity_type: str, entity_id: str
    ) -> list[TransitionRecord]:
        """Return the entity's records ordered by timestamp, then insertion."""
        records = [
            TransitionRecord.model_validate_json(raw)
            for raw in self._records.get((entity_type, str(entity_id)), [])
        ]
        return sorted(records, key=lambda r: (r.timestamp, r.sequence))

    async def commit_transition(
        self,
        ref: EntityRef,
        expected_version: int,
        new_state: str,
        record: TransitionRecord,
    ) -> TransitionRecord:
        """Set the entity's state and append the record under one lock.

        Raises:
            StateConflictError: If the entity is missing or its version moved.
            StoreError: If the record payload cannot be encoded; nothing
                was written.
        """
        async with self._write_lock:
            current = self._entities.get(ref.key)
            if current is None:
                raise StateConflictError(f"Entity {ref} does not exist")
            if current.version != expected_version:
                raise StateConflictError(
                    f"Entity {ref} is at version {current.version}, "
                    f"expected {expected_version}"
                )

            # Both writes happen with no await in between.
            stored = self._append_locked(record)
            self._entities[ref.key] = EntitySnapshot(
                ref=ref,
                state=new_state,
                version=current.version + 1,
                updated_at=stored.timestamp,
            )
            return stored

    def _append_locked(self, record: TransitionRecord) -> TransitionRecord:
        stored = record.model_copy(
            update={"record_id": str(uuid.uuid4()), "sequence": self._sequence + 1}
        )
        encoded = encode_record(stored)
        self._sequence += 1
        self._records.setdefault((record.entity_type, record.entity_id), []).append(encoded)
        return TransitionRecord.model_validate_json(encoded)

    def clear(self) -> None:
        """Drop all entities and records."""
        self._entities.clear()
        self._records.clear()
        self._sequence = 0
