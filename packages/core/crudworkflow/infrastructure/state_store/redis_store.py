"""Redis-based workflow store implementation.

This module provides a Redis implementation of the WorkflowStore interface
for deployments where several service instances share entity state.

Layout (with the default "crudworkflow" prefix):
    crudworkflow:entity:{entity_type}:{entity_id}   hash of state, version, updated_at
    crudworkflow:records:{entity_type}:{entity_id}  list of JSON-encoded TransitionRecords
    crudworkflow:sequence                           global insertion counter

Example:
    ```python
    import os
    os.environ["REDIS_URL"] = "redis://localhost:6379/0"

    from crudworkflow.infrastructure.state_store.redis_store import RedisWorkflowStore

    store = RedisWorkflowStore()
    await store.create_entity(EntityRef(entity_type="order", entity_id="42"), "new")
    ```
"""

import os
import uuid
from datetime import datetime

import structlog
from redis.asyncio import Redis
from redis.asyncio.connection import ConnectionPool
from redis.exceptions import RedisError, WatchError

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
    utcnow,
)

logger = structlog.get_logger(__name__)

DEFAULT_KEY_PREFIX = "crudworkflow"


class RedisWorkflowStore(WorkflowStore):
    """Redis-based implementation of WorkflowStore.

    `commit_transition` uses optimistic locking: the entity hash is WATCHed,
    its version compared, and the state update plus record push are queued in
    one MULTI/EXEC block. If another client touches the entity in between,
    EXEC aborts and StateConflictError is raised. There is no in-memory
    fallback; a Redis failure surfaces as StoreError.

    Attributes:
        _redis: Redis async client instance
        _connection_pool: Redis connection pool
        _prefix: Namespace prefix for every key
    """

    def __init__(
        self,
        redis_url: str | None = None,
        key_prefix: str = DEFAULT_KEY_PREFIX,
        connection_timeout: int = 5,
        max_connections: int = 10,
    ) -> None:
        """Initialize RedisWorkflowStore with connection configuration.

        Args:
            redis_url: Redis connection URL. If None, reads REDIS_URL.
            key_prefix: Namespace prefix for all keys.
            connection_timeout: Socket and connect timeout in seconds.
            max_connections: Connection pool size.

        Raises:
            StoreError: If no URL is available or the URL is invalid.
        """
        self._redis_url = redis_url or os.getenv("REDIS_URL")
        if not self._redis_url:
            raise StoreError(
                "Redis connection URL not provided. Set REDIS_URL environment "
                "variable or pass redis_url parameter."
            )
        self._prefix = key_prefix

        try:
            self._connection_pool = ConnectionPool.from_url(
                self._redis_url,
                max_connections=max_connections,
                socket_connect_timeout=connection_timeout,
                socket_timeout=connection_timeout,
                retry_on_timeout=True,
                decode_responses=True,
            )
        except ValueError as e:
            raise StoreError(f"Invalid Redis connection URL: {e}") from e
        self._redis = Redis(connection_pool=self._connection_pool)

    def _entity_key(self, entity_type: str, entity_id: str) -> str:
        return f"{self._prefix}:entity:{entity_type}:{entity_id}"

    def _records_key(self, entity_type: str, entity_id: str) -> str:
        return f"{self._prefix}:records:{entity_type}:{entity_id}"

    @property
    def _sequence_key(self) -> str:
        return f"{self._prefix}:sequence"

    async def check_connection(self) -> bool:
        """Return True if Redis answers a PING."""
        try:
            return bool(await self._redis.ping())
        except RedisError as e:
            logger.warning("redis_health_check_failed", error=str(e))
            return False

    async def get_entity(self, ref: EntityRef) -> EntitySnapshot | None:
        try:
            raw = await self._redis.hgetall(self._entity_key(*ref.key))
        except RedisError as e:
            logger.error("redis_get_entity_error", entity=str(ref), error=str(e))
            raise StoreError(f"Failed to get entity {ref}: {e}") from e
        return self._to_snapshot(ref, raw)

    async def create_entity(self, ref: EntityRef, initial_state: str) -> EntitySnapshot:
        """Persist a new entity in its initial state.

        Raises:
            EntityExistsError: If the entity already exists, including when
                another client created it during the check.
            StoreError: If Redis fails.
        """
        key = self._entity_key(*ref.key)
        snapshot = EntitySnapshot(ref=ref, state=initial_state, version=0)
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                await pipe.watch(key)
                if await pipe.exists(key):
                    raise EntityExistsError(f"Entity {ref} already exists")
                pipe.multi()
                pipe.hset(key, mapping=self._to_mapping(snapshot))
                await pipe.execute()
        except WatchError as e:
            raise EntityExistsError(f"Entity {ref} was created concurrently") from e
        except RedisError as e:
            logger.error("redis_create_entity_error", entity=str(ref), error=str(e))
            raise StoreError(f"Failed to create entity {ref}: {e}") from e
        return snapshot

    async def append(self, record: TransitionRecord) -> str:
        """Append a record to the entity's ledger without touching its state.

        Raises:
            StoreError: If the record cannot be encoded or Redis fails.
        """
        encode_record(record)
        try:
            stored = await self._assign_identity(record)
            await self._redis.rpush(
                self._records_key(record.entity_type, record.entity_id),
                encode_record(stored),
            )
        except RedisError as e:
            logger.error("redis_append_error", entity_id=record.entity_id, error=str(e))
            raise StoreError(f"Failed to append record: {e}") from e
        return stored.record_id  # type: ignore[return-value]

    async def query_by_entity(
        self, entity_type: str, entity_id: str
    ) -> list[TransitionRecord]:
        """Return the entity's records ordered by timestamp, then sequence."""
        try:
            raw_records = await self._redis.lrange(
                self._records_key(entity_type, str(entity_id)), 0, -1
            )
        except RedisError as e:
            logger.error("redis_query_error", entity_id=entity_id, error=str(e))
            raise StoreError(f"Failed to query records: {e}") from e

        records = [TransitionRecord.model_validate_json(raw) for raw in raw_records]
        return sorted(records, key=lambda r: (r.timestamp, r.sequence))

    async def commit_transition(
        self,
        ref: EntityRef,
        expected_version: int,
        new_state: str,
        record: TransitionRecord,
    ) -> TransitionRecord:
        """Set the entity's state and push the record in one MULTI/EXEC block.

        Raises:
            StateConflictError: If the entity is missing, its version moved,
                or another client modified it during the transaction.
            StoreError: If the record cannot be encoded or Redis fails;
                nothing was written.
        """
        # Rejects unencodable payloads before the sequence is drawn.
        encode_record(record)
        entity_key = self._entity_key(*ref.key)
        records_key = self._records_key(*ref.key)
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                await pipe.watch(entity_key)
                current = self._to_snapshot(ref, await pipe.hgetall(entity_key))
                if current is None:
                    raise StateConflictError(f"Entity {ref} does not exist")
                if current.version != expected_version:
                    raise StateConflictError(
                        f"Entity {ref} is at version {current.version}, "
                        f"expected {expected_version}"
                    )

                # The sequence is drawn outside the transaction; an aborted
                # commit leaves a gap, which ordering tolerates.
                stored = await self._assign_identity(record)
                snapshot = EntitySnapshot(
                    ref=ref,
                    state=new_state,
                    version=current.version + 1,
                    updated_at=stored.timestamp,
                )

                pipe.multi()
                pipe.hset(entity_key, mapping=self._to_mapping(snapshot))
                pipe.rpush(records_key, encode_record(stored))
                await pipe.execute()
        except WatchError as e:
            raise StateConflictError(f"Entity {ref} was modified concurrently") from e
        except RedisError as e:
            logger.error(
                "redis_commit_error",
                entity=str(ref),
                transition=record.transition,
                error=str(e),
            )
            raise StoreError(f"Failed to commit transition for {ref}: {e}") from e

        return stored

    async def close(self) -> None:
        """Close the Redis client and its connection pool."""
        await self._redis.aclose()
        await self._connection_pool.disconnect()
        logger.info("Redis connection closed")

    async def _assign_identity(self, record: TransitionRecord) -> TransitionRecord:
        sequence = await self._redis.incr(self._sequence_key)
        return record.model_copy(
            update={"record_id": str(uuid.uuid4()), "sequence": int(sequence)}
        )

    @staticmethod
    def _to_mapping(snapshot: EntitySnapshot) -> dict[str, str]:
        return {
            "state": snapshot.state,
            "version": str(snapshot.version),
            "updated_at": snapshot.updated_at.isoformat(),
        }

    @staticmethod
    def _to_snapshot(ref: EntityRef, raw: dict[str, str]) -> EntitySnapshot | None:
        if not raw:
            return None
        return EntitySnapshot(
            ref=ref,
            state=raw["state"],
            version=int(raw["version"]),
            updated_at=datetime.fromisoformat(raw["updated_at"])
            if raw.get("updated_at")
            else utcnow(),
        )
