"""MongoDB workflow store implementation.

This module provides a MongoDB-backed implementation of the WorkflowStore
interface using motor (async MongoDB driver) and beanie (Pydantic-based ODM).
State changes and audit records are committed in one multi-document
transaction, which requires a replica set or sharded cluster.

Example:
    ```python
    import os
    os.environ["MONGODB_URL"] = "mongodb://localhost:27017/?replicaSet=rs0"

    from crudworkflow.infrastructure.state_store.mongo_store import MongoWorkflowStore

    store = MongoWorkflowStore()
    await store.initialize()
    history = await store.query_by_entity("order", "42")
    ```
"""

import os
import uuid

import structlog
from bson.errors import InvalidDocument
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ReturnDocument
from pymongo.errors import (
    ConfigurationError,
    ConnectionFailure,
    DuplicateKeyError,
    NetworkTimeout,
    PyMongoError,
    ServerSelectionTimeoutError,
)

from crudworkflow.domain.interfaces.workflow_store import (
    EntityExistsError,
    StateConflictError,
    StoreError,
    WorkflowStore,
    encode_record,
)
from crudworkflow.domain.models.transition_record import (
    EntityRef,
    EntitySnapshot,
    TransitionRecord,
)
from crudworkflow.infrastructure.state_store.mongo_models import (
    SequenceCounterDocument,
    TransitionRecordDocument,
    WorkflowEntityDocument,
    initialize_beanie_models,
)

logger = structlog.get_logger(__name__)

RECORD_SEQUENCE_COUNTER = "transition_records"


class MongoWorkflowStore(WorkflowStore):
    """MongoDB implementation of WorkflowStore.

    Connection Configuration:
        - Connection string from MONGODB_URL environment variable
        - Connection pooling configured via motor client options
        - Health check via ping operation

    Error Handling:
        - Connection errors raise StoreError with appropriate context
        - A version mismatch inside the commit transaction raises
          StateConflictError and aborts the transaction

    Attributes:
        _client: AsyncIOMotorClient instance for MongoDB connection
        _database_name: Name of the MongoDB database to use
        _initialized: Whether Beanie has been initialized
    """

    def __init__(
        self,
        connection_url: str | None = None,
        database_name: str = "crudworkflow",
        max_pool_size: int = 100,
        min_pool_size: int = 0,
        connect_timeout_ms: int = 20000,
        server_selection_timeout_ms: int = 5000,
    ) -> None:
        """Initialize MongoWorkflowStore with connection configuration.

        Args:
            connection_url: MongoDB connection string. If None, reads from
                MONGODB_URL environment variable.
            database_name: Name of the MongoDB database to use.
            max_pool_size: Maximum number of connections in the pool.
            min_pool_size: Minimum number of connections in the pool.
            connect_timeout_ms: Connection timeout in milliseconds.
            server_selection_timeout_ms: Server selection timeout in milliseconds.

        Raises:
            StoreError: If connection URL is missing or invalid.
        """
        if connection_url is None:
            connection_url = os.getenv("MONGODB_URL")
            if connection_url is None:
                raise StoreError(
                    "MongoDB connection URL not provided. Set MONGODB_URL "
                    "environment variable or pass connection_url parameter."
                )

        self._database_name = database_name
        self._initialized = False

        try:
            self._client: AsyncIOMotorClient = AsyncIOMotorClient(
                connection_url,
                maxPoolSize=max_pool_size,
                minPoolSize=min_pool_size,
                connectTimeoutMS=connect_timeout_ms,
                serverSelectionTimeoutMS=server_selection_timeout_ms,
                tz_aware=True,
            )
            logger.info(
                "MongoDB client created",
                database=database_name,
                max_pool_size=max_pool_size,
            )
        except (ConfigurationError, ValueError) as e:
            error_msg = f"Invalid MongoDB connection URL: {e}"
            logger.error("mongodb_connection_error", error=error_msg)
            raise StoreError(error_msg) from e

    async def initialize(self) -> None:
        """Verify connectivity and initialize Beanie with the document models.

        Raises:
            StoreError: If the connection or initialization fails.
        """
        if self._initialized:
            return

        try:
            await self._client.admin.command("ping")
            await initialize_beanie_models(self._client[self._database_name])
            self._initialized = True
            logger.info(
                "MongoDB connection established and Beanie initialized",
                database=self._database_name,
            )
        except (ConnectionFailure, ServerSelectionTimeoutError, NetworkTimeout) as e:
            error_msg = f"Failed to connect to MongoDB: {e}"
            logger.error("mongodb_connection_failure", error=error_msg)
            raise StoreError(error_msg) from e
        except PyMongoError as e:
            error_msg = f"Unexpected error during MongoDB initialization: {e}"
            logger.error("mongodb_initialization_error", error=error_msg)
            raise StoreError(error_msg) from e

    async def check_connection(self) -> bool:
        """Return True if MongoDB answers a ping."""
        try:
            await self._client.admin.command("ping")
            return True
        except PyMongoError as e:
            logger.warning("mongodb_health_check_failed", error=str(e))
            return False

    async def close(self) -> None:
        """Close the MongoDB client."""
        self._client.close()
        self._initialized = False
        logger.info("MongoDB connection closed")

    async def get_entity(self, ref: EntityRef) -> EntitySnapshot | None:
        await self.initialize()
        try:
            doc = await WorkflowEntityDocument.find_one(
                WorkflowEntityDocument.entity_type == ref.entity_type,
                WorkflowEntityDocument.entity_id == ref.entity_id,
            )
        except PyMongoError as e:
            logger.error("mongodb_get_entity_error", entity=str(ref), error=str(e))
            raise StoreError(f"Failed to get entity {ref}: {e}") from e
        return doc.to_domain_model() if doc is not None else None

    async def create_entity(self, ref: EntityRef, initial_state: str) -> EntitySnapshot:
        """Insert a new entity document in its initial state.

        Raises:
            EntityExistsError: If the entity already exists.
            StoreError: If the insert fails.
        """
        await self.initialize()
        snapshot = EntitySnapshot(ref=ref, state=initial_state, version=0)
        try:
            await WorkflowEntityDocument.from_domain_model(snapshot).insert()
        except DuplicateKeyError as e:
            raise EntityExistsError(f"Entity {ref} already exists") from e
        except PyMongoError as e:
            logger.error("mongodb_create_entity_error", entity=str(ref), error=str(e))
            raise StoreError(f"Failed to create entity {ref}: {e}") from e
        return snapshot

    async def append(self, record: TransitionRecord) -> str:
        """Insert a record without touching entity state.

        Raises:
            StoreError: If the record cannot be encoded or the insert fails.
        """
        encode_record(record)
        await self.initialize()
        try:
            stored = await self._assign_identity(record)
            await TransitionRecordDocument.from_domain_model(stored).insert()
        except (PyMongoError, InvalidDocument) as e:
            logger.error("mongodb_append_error", entity_id=record.entity_id, error=str(e))
            raise StoreError(f"Failed to append record: {e}") from e
        return stored.record_id  # type: ignore[return-value]

    async def query_by_entity(
        self, entity_type: str, entity_id: str
    ) -> list[TransitionRecord]:
        """Return the entity's records ordered by timestamp, then sequence.

        Uses the (entity_type, entity_id, timestamp, sequence) index.
        """
        await self.initialize()
        try:
            docs = (
                await TransitionRecordDocument.find(
                    TransitionRecordDocument.entity_type == entity_type,
                    TransitionRecordDocument.entity_id == str(entity_id),
                )
                .sort("+timestamp", "+sequence")
                .to_list()
            )
        except PyMongoError as e:
            logger.error("mongodb_query_error", entity_id=entity_id, error=str(e))
            raise StoreError(f"Failed to query records: {e}") from e
        return [doc.to_domain_model() for doc in docs]

    async def commit_transition(
        self,
        ref: EntityRef,
        expected_version: int,
        new_state: str,
        record: TransitionRecord,
    ) -> TransitionRecord:
        """Update the entity and insert the record in one transaction.

        The entity update filters on the expected version; if it matches no
        document the transaction is aborted.

        Raises:
            StateConflictError: If the entity is missing or its version moved.
            StoreError: If the record cannot be encoded or the transaction
                fails; nothing was written.
        """
        encode_record(record)
        await self.initialize()
        try:
            stored = await self._assign_identity(record)
            entities = WorkflowEntityDocument.get_motor_collection()
            async with await self._client.start_session() as session:
                async with session.start_transaction():
                    result = await entities.update_one(
                        {
                            "entity_type": ref.entity_type,
                            "entity_id": ref.entity_id,
                            "version": expected_version,
                        },
                        {
                            "$set": {
                                "state": new_state,
                                "updated_at": stored.timestamp,
                            },
                            "$inc": {"version": 1},
                        },
                        session=session,
                    )
                    if result.matched_count == 0:
                        raise StateConflictError(
                            f"Entity {ref} is missing or no longer at version "
                            f"{expected_version}"
                        )
                    await TransitionRecordDocument.from_domain_model(stored).insert(
                        session=session
                    )
        except (PyMongoError, InvalidDocument) as e:
            logger.error(
                "mongodb_commit_error",
                entity=str(ref),
                transition=record.transition,
                error=str(e),
            )
            raise StoreError(f"Failed to commit transition for {ref}: {e}") from e

        return stored

    async def _assign_identity(self, record: TransitionRecord) -> TransitionRecord:
        counters = SequenceCounterDocument.get_motor_collection()
        counter = await counters.find_one_and_update(
            {"_id": RECORD_SEQUENCE_COUNTER},
            {"$inc": {"value": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return record.model_copy(
            update={"record_id": str(uuid.uuid4()), "sequence": int(counter["value"])}
        )
