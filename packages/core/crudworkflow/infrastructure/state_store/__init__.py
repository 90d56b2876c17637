"""Workflow store implementations."""

from crudworkflow.infrastructure.state_store.memory_store import InMemoryWorkflowStore
from crudworkflow.infrastructure.state_store.mongo_store import MongoWorkflowStore
from crudworkflow.infrastructure.state_store.redis_store import RedisWorkflowStore

__all__ = ["InMemoryWorkflowStore", "MongoWorkflowStore", "RedisWorkflowStore"]
