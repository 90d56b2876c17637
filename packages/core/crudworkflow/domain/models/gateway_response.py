"""TransitionRequest, GatewayResponse and related caller-facing models."""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from crudworkflow.domain.models.state_schema import CommentPolicy
from crudworkflow.domain.models.transition_outcome import TransitionOutcome
from crudworkflow.domain.models.transition_record import EntityRef, TransitionRecord


class TransitionRequest(BaseModel):
    """Inbound request to run a transition."""

    entity: EntityRef
    transition: str = Field(..., description="Transition name", min_length=1)
    actor: Any = Field(..., description="Acting principal")
    comment: str | None = Field(default=None, description="Optional comment")

    model_config = ConfigDict(
        frozen=True,
        arbitrary_types_allowed=True,
    )


class GatewayStatus(str, Enum):
    """Caller-facing outcome categories."""

    Ok = "ok"
    """Transition committed."""

    NotFound = "not_found"
    """Transition (or entity type) does not exist."""

    Conflict = "conflict"
    """Entity is not in the transition's source state."""

    Forbidden = "forbidden"
    """Principal is not authorized for the transition."""

    Invalid = "invalid"
    """Request failed the comment policy."""

    Failed = "failed"
    """Transition body failed; entity moved to its error state."""

    Error = "error"
    """Persistence failure; nothing was committed."""


class GatewayResponse(BaseModel):
    """Outcome of a transition request as reported to the caller.

    Example:
        ```python
        response = await gateway.execute(request)
        if response.ok:
            print(response.state_after)
        elif response.retryable:
            print(f"Fix the request and retry: {response.message}")
        ```
    """

    status: GatewayStatus
    entity: EntityRef
    transition: str
    error_code: str | None = Field(
        default=None,
        description="TransitionErrorKind value or 'store_error'",
    )
    message: str | None = None
    retryable: bool = Field(
        default=False,
        description="Whether a corrected request may succeed",
    )
    state_before: str | None = None
    state_after: str | None = None
    record: TransitionRecord | None = Field(
        default=None,
        description="Committed audit record (success and body failure only)",
    )
    payload: dict[str, Any] = Field(default_factory=dict)
    hook_error: str | None = None

    model_config = ConfigDict(
        frozen=True,
    )

    @property
    def ok(self) -> bool:
        return self.status == GatewayStatus.Ok

    @classmethod
    def from_outcome(
        cls, entity: EntityRef, transition: str, outcome: TransitionOutcome
    ) -> "GatewayResponse":
        """Build a success response from a TransitionOutcome."""
        return cls(
            status=GatewayStatus.Ok,
            entity=entity,
            transition=transition,
            state_before=outcome.state_before,
            state_after=outcome.state_after,
            record=outcome.record,
            payload=outcome.payload,
            hook_error=outcome.hook_error,
        )


class AvailableTransition(BaseModel):
    """A transition currently legal for an entity and principal."""

    name: str
    label: str
    comment_policy: CommentPolicy

    model_config = ConfigDict(
        frozen=True,
    )


class StateView(BaseModel):
    """Current state of an entity with its display attributes."""

    entity: EntityRef
    state: str
    label: str
    badge: str
    version: int

    model_config = ConfigDict(
        frozen=True,
    )
