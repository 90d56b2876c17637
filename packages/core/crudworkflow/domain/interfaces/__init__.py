"""Domain interfaces for dependency injection."""

from crudworkflow.domain.interfaces.observability_manager import (
    ObservabilityError,
    ObservabilityManager,
    WorkflowEventType,
)
from crudworkflow.domain.interfaces.principal import Principal
from crudworkflow.domain.interfaces.workflow_store import (
    AuditStore,
    EntityExistsError,
    StateConflictError,
    StoreError,
    WorkflowStore,
)

__all__ = [
    "AuditStore",
    "EntityExistsError",
    "ObservabilityError",
    "ObservabilityManager",
    "Principal",
    "StateConflictError",
    "StoreError",
    "WorkflowEventType",
    "WorkflowStore",
]
