"""TransitionOutcome, TransitionContext and HookEvent models."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from crudworkflow.domain.models.state_schema import StateSchema, TransitionDefinition
from crudworkflow.domain.models.transition_record import EntityRef, TransitionRecord


class TransitionContext(BaseModel):
    """Input handed to a transition body.

    The body runs while the engine holds exclusive access to the entity.
    It may return a dict payload (stored on the audit record) or None, and
    signals failure by raising.
    """

    entity: EntityRef
    transition: TransitionDefinition
    state_schema: StateSchema
    state_before: str
    comment: str | None = None
    actor: Any = Field(..., description="Acting principal")

    model_config = ConfigDict(
        frozen=True,
        arbitrary_types_allowed=True,
    )


class TransitionOutcome(BaseModel):
    """Result of a successful transition."""

    record: TransitionRecord
    state_before: str
    state_after: str
    payload: dict[str, Any] = Field(default_factory=dict)
    hook_error: str | None = Field(
        default=None,
        description="Post-transition hook failure, observed but not propagated",
    )

    model_config = ConfigDict(
        frozen=True,
    )


class HookEvent(BaseModel):
    """Notification passed to the post-transition hook after commit."""

    record: TransitionRecord
    transition_name: str
    state_before: str
    state_after: str
    comment: str | None = None
    actor: Any = Field(..., description="Acting principal")
    payload: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(
        frozen=True,
        arbitrary_types_allowed=True,
    )
