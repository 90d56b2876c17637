"""AuditStore and WorkflowStore interfaces for state and audit persistence.

This module defines the abstract persistence contract used by the transition
engine. `AuditStore` is the append-only ledger of transition records;
`WorkflowStore` extends it with the entity state persistence needed to
commit a state change and its audit record as one atomic unit.

Example:
    ```python
    from crudworkflow.infrastructure.state_store.memory_store import (
        InMemoryWorkflowStore,
    )

    store: WorkflowStore = InMemoryWorkflowStore()
    ref = EntityRef(entity_type="order", entity_id="42")
    snapshot = await store.create_entity(ref, "new")

    record = TransitionRecord(
        entity_type="order",
        entity_id="42",
        transition="activate",
        state_before="new",
        state_after="active",
        actor_id="u-1",
    )
    await store.commit_transition(ref, snapshot.version, "active", record)

    history = await store.query_by_entity("order", "42")
    ```
"""

from abc import ABC, abstractmethod

from pydantic_core import PydanticSerializationError

from crudworkflow.domain.models.transition_record import (
    EntityRef,
    EntitySnapshot,
    TransitionRecord,
)


class StoreError(Exception):
    """Raised when a store operation fails.

    A StoreError raised from `commit_transition` means the atomic unit was
    aborted: neither the state change nor the audit record persisted. There
    is no automatic retry.

    Example:
        ```python
        try:
            await store.commit_transition(ref, version, "active", record)
        except StoreError as e:
            logger.error("commit failed", error=str(e))
        ```
    """

    pass


class StateConflictError(StoreError):
    """Raised when the entity's version changed since it was read.

    Signals that another writer committed a transition for the same entity
    first (optimistic compare-and-swap failure). Nothing was written.
    """

    pass


class EntityExistsError(StoreError):
    """Raised by `create_entity` when the entity is already persisted.

    Also raised when a concurrent writer created the same entity between
    the existence check and the insert.
    """

    pass


def encode_record(record: TransitionRecord) -> str:
    """Serialize a record to JSON, the form every backend persists.

    Raises:
        StoreError: If the payload holds values with no JSON form.
    """
    try:
        return record.model_dump_json()
    except PydanticSerializationError as e:
        raise StoreError(
            f"Record for {record.entity_type}:{record.entity_id} is not serializable: {e}"
        ) from e


class AuditStore(ABC):
    """Append-only ledger of transition records.

    No update or delete operation exists. Lookups by (entity_type, entity_id)
    must be efficient; backends index that pair.
    """

    @abstractmethod
    async def append(self, record: TransitionRecord) -> str:
        """Append a record to the ledger.

        Args:
            record: The TransitionRecord to append. Store-assigned fields
                (record_id, sequence) are overwritten.

        Returns:
            The record id assigned by the store.

        Raises:
            StoreError: If the append fails.
        """
        pass

    @abstractmethod
    async def query_by_entity(
        self, entity_type: str, entity_id: str
    ) -> list[TransitionRecord]:
        """Return every committed record for one entity.

        Args:
            entity_type: Entity type tag.
            entity_id: Entity identifier.

        Returns:
            Records sorted by timestamp ascending, ties broken by insertion
            order. Empty list if the entity has no history.

        Raises:
            StoreError: If the query fails.
        """
        pass


class WorkflowStore(AuditStore):
    """Entity state persistence plus the audit ledger.

    Implementations must make `commit_transition` atomic: the state change
    and the record append either both persist or neither does.
    """

    @abstractmethod
    async def get_entity(self, ref: EntityRef) -> EntitySnapshot | None:
        """Return the entity's persisted state, or None if it does not exist.

        Raises:
            StoreError: If the read fails.
        """
        pass

    @abstractmethod
    async def create_entity(self, ref: EntityRef, initial_state: str) -> EntitySnapshot:
        """Persist a new entity in its initial state with version 0.

        Raises:
            EntityExistsError: If the entity already exists.
            StoreError: If the write fails.
        """
        pass

    @abstractmethod
    async def commit_transition(
        self,
        ref: EntityRef,
        expected_version: int,
        new_state: str,
        record: TransitionRecord,
    ) -> TransitionRecord:
        """Atomically set the entity's state and append the audit record.

        Args:
            ref: Entity to update.
            expected_version: Version read by the caller; the update only
                applies if the stored version still matches.
            new_state: State to persist.
            record: Audit record to append in the same unit.

        Returns:
            The appended record with store-assigned record_id and sequence.

        Raises:
            StateConflictError: If the stored version no longer matches or
                the entity disappeared.
            StoreError: If persistence fails; nothing was written.
        """
        pass

    async def close(self) -> None:
        """Release connections held by the store."""
        return None


__all__ = [
    "AuditStore",
    "EntityExistsError",
    "StateConflictError",
    "StoreError",
    "WorkflowStore",
    "encode_record",
]
