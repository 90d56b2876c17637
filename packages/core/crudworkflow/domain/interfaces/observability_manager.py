"""Observability port of the transition engine.

The engine reports entity lifecycle events and transition outcomes through
an `ObservabilityManager`. The default implementation writes them as
structlog lines (see `infrastructure.observability.logger`); tests plug in
recording fakes.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any


class WorkflowEventType(str, Enum):
    """Event types emitted by the transition engine.

    Payloads always carry the entity as "type:id" and, for transition
    events, the transition name.
    """

    EntityInitialized = "entity_initialized"
    """Entity created in its schema's initial state."""

    TransitionCommitted = "transition_committed"
    """State change and audit record persisted; payload has from/to states."""

    TransitionBodyFailed = "transition_body_failed"
    """Body raised; entity committed to the error target."""

    TransitionRejected = "transition_rejected"
    """A precondition failed; nothing was written. Payload has the error kind."""

    HookFailed = "hook_failed"
    """Post-transition hook raised or timed out after the commit."""


class ObservabilityManager(ABC):
    """Sink for workflow events and structured log lines.

    Calls are best-effort from the engine's point of view: an
    ObservabilityError never fails, retries or rolls back a transition.
    """

    @abstractmethod
    async def emit_event(
        self,
        event_type: str,
        payload: dict[str, Any],
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Record one workflow event.

        Args:
            event_type: A WorkflowEventType value.
            payload: Entity, transition and outcome fields of the event.
            metadata: Optional record_id and commit timestamp.

        Raises:
            ObservabilityError: If the event could not be recorded.
        """

    @abstractmethod
    async def log(
        self,
        level: str,
        message: str,
        context: dict[str, Any] | None = None,
    ) -> None:
        """Write a log line at level (DEBUG through CRITICAL).

        Comments in context may be truncated by implementations.

        Raises:
            ObservabilityError: If the line could not be written.
        """


class ObservabilityError(Exception):
    """Raised by an ObservabilityManager that failed to record an event or log line."""
