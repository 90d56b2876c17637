"""MongoDB document models using Beanie ODM.

These models map the workflow domain models to MongoDB documents with the
indexes the store relies on: a unique (entity_type, entity_id) key for
entities and an (entity_type, entity_id, timestamp, sequence) index for
ordered history lookups.

Example:
    ```python
    from motor.motor_asyncio import AsyncIOMotorClient
    from crudworkflow.infrastructure.state_store.mongo_models import (
        initialize_beanie_models,
    )

    client = AsyncIOMotorClient("mongodb://localhost:27017")
    await initialize_beanie_models(client["crudworkflow"])
    ```
"""

from datetime import datetime
from typing import Any

from beanie import Document, Indexed, init_beanie
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import IndexModel

from crudworkflow.domain.models.transition_record import (
    EntityRef,
    EntitySnapshot,
    TransitionRecord,
)


class WorkflowEntityDocument(Document):
    """Beanie document holding the current state of one entity.

    Indexes:
        - entity_type + entity_id: Unique compound index (natural key)
        - entity_type + state: Index for listing entities by state
    """

    entity_type: str
    entity_id: str
    state: str
    version: int = 0
    updated_at: datetime

    class Settings:
        """Beanie document settings."""

        name = "workflow_entities"
        indexes = [
            IndexModel([("entity_type", 1), ("entity_id", 1)], unique=True),
            IndexModel([("entity_type", 1), ("state", 1)]),
        ]

    @classmethod
    def from_domain_model(cls, snapshot: EntitySnapshot) -> "WorkflowEntityDocument":
        return cls(
            entity_type=snapshot.ref.entity_type,
            entity_id=snapshot.ref.entity_id,
            state=snapshot.state,
            version=snapshot.version,
            updated_at=snapshot.updated_at,
        )

    def to_domain_model(self) -> EntitySnapshot:
        return EntitySnapshot(
            ref=EntityRef(entity_type=self.entity_type, entity_id=self.entity_id),
            state=self.state,
            version=self.version,
            updated_at=self.updated_at,
        )


class TransitionRecordDocument(Document):
    """Beanie document for one immutable audit record.

    Indexes:
        - record_id: Unique index
        - entity_type + entity_id + timestamp + sequence: History lookups in order
        - actor_id: Index for per-actor audit queries
    """

    record_id: Indexed(str, unique=True)  # type: ignore[valid-type]
    entity_type: str
    entity_id: str
    transition: str
    state_before: str
    state_after: str
    comment: str | None = None
    actor_id: Indexed(str)  # type: ignore[valid-type]
    timestamp: datetime
    payload: dict[str, Any] = {}
    sequence: int

    class Settings:
        """Beanie document settings."""

        name = "transition_records"
        indexes = [
            IndexModel(
                [
                    ("entity_type", 1),
                    ("entity_id", 1),
                    ("timestamp", 1),
                    ("sequence", 1),
                ]
            ),
        ]

    @classmethod
    def from_domain_model(cls, record: TransitionRecord) -> "TransitionRecordDocument":
        """Create TransitionRecordDocument from a stored TransitionRecord.

        Args:
            record: Record with store-assigned record_id and sequence.
        """
        return cls(
            record_id=record.record_id,
            entity_type=record.entity_type,
            entity_id=record.entity_id,
            transition=record.transition,
            state_before=record.state_before,
            state_after=record.state_after,
            comment=record.comment,
            actor_id=record.actor_id,
            timestamp=record.timestamp,
            payload=record.payload,
            sequence=record.sequence,
        )

    def to_domain_model(self) -> TransitionRecord:
        return TransitionRecord(
            record_id=self.record_id,
            entity_type=self.entity_type,
            entity_id=self.entity_id,
            transition=self.transition,
            state_before=self.state_before,
            state_after=self.state_after,
            comment=self.comment,
            actor_id=self.actor_id,
            timestamp=self.timestamp,
            payload=self.payload,
            sequence=self.sequence,
        )


class SequenceCounterDocument(Document):
    """Named monotonic counter used to assign record sequence numbers."""

    id: str  # Maps to MongoDB _id
    value: int = 0

    class Settings:
        """Beanie document settings."""

        name = "workflow_counters"


async def initialize_beanie_models(database: AsyncIOMotorDatabase) -> None:
    """Initialize Beanie with all document models and create their indexes.

    Args:
        database: MongoDB database instance from motor client.
    """
    await init_beanie(
        database=database,
        document_models=[
            WorkflowEntityDocument,
            TransitionRecordDocument,
            SequenceCounterDocument,
        ],
    )
