"""EntityRef, EntitySnapshot and TransitionRecord data models for the audit trail."""

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(UTC)


class EntityRef(BaseModel):
    """Composite key identifying a workflow-bearing entity.

    The entity id is opaque: integer, UUID and other key schemes are all
    normalized to strings so heterogeneous entity types share one ledger.
    """

    entity_type: str = Field(
        ...,
        description="Entity type tag (e.g., 'order')",
        min_length=1,
    )
    entity_id: str = Field(
        ...,
        description="Entity identifier, normalized to a string",
        min_length=1,
    )

    model_config = ConfigDict(
        frozen=True,
        str_strip_whitespace=True,
    )

    @field_validator("entity_id", mode="before")
    @classmethod
    def coerce_entity_id(cls, v: Any) -> Any:
        """Accept int, UUID and other identifiers as strings."""
        if v is not None and not isinstance(v, str):
            return str(v)
        return v

    @property
    def key(self) -> tuple[str, str]:
        """Return the (entity_type, entity_id) pair."""
        return (self.entity_type, self.entity_id)

    def __str__(self) -> str:
        return f"{self.entity_type}:{self.entity_id}"


class EntitySnapshot(BaseModel):
    """Persisted current state of one entity.

    The version increments on every committed transition and is the
    compare-and-swap token used by persistent stores.
    """

    ref: EntityRef
    state: str = Field(..., description="Current state value", min_length=1)
    version: int = Field(default=0, description="Commit counter", ge=0)
    updated_at: datetime = Field(
        default_factory=utcnow,
        description="Timestamp of the last state change",
    )

    model_config = ConfigDict(
        frozen=True,
    )


class TransitionRecord(BaseModel):
    """Immutable audit entry capturing one committed transition.

    Created exactly once per transition attempt that reaches the commit
    point, including attempts whose body failed into the error target.
    Records are never updated or deleted.
    """

    record_id: str | None = Field(
        default=None,
        description="Store-assigned identifier (set on append)",
    )
    entity_type: str = Field(
        ...,
        description="Type of the subject entity",
        min_length=1,
    )
    entity_id: str = Field(
        ...,
        description="Identifier of the subject entity",
        min_length=1,
    )
    transition: str = Field(
        ...,
        description="Name of the transition that was executed",
        min_length=1,
    )
    state_before: str = Field(..., description="State prior to the transition")
    state_after: str = Field(..., description="State the entity ended in")
    comment: str | None = Field(
        default=None,
        description="Comment stored according to the transition's comment policy",
    )
    actor_id: str = Field(
        ...,
        description="Identifier of the acting principal",
        min_length=1,
    )
    timestamp: datetime = Field(
        default_factory=utcnow,
        description="Timestamp when the transition was committed",
    )
    payload: dict[str, Any] = Field(
        default_factory=dict,
        description="Opaque result attached by the transition body",
    )
    sequence: int = Field(
        default=0,
        description="Store-assigned insertion sequence (tie breaker for ordering)",
        ge=0,
    )

    model_config = ConfigDict(
        frozen=True,  # Immutable audit trail
    )

    @property
    def entity_ref(self) -> EntityRef:
        """Return the subject entity reference."""
        return EntityRef(entity_type=self.entity_type, entity_id=self.entity_id)

    @property
    def is_error(self) -> bool:
        """Return True if the transition body failed."""
        return bool(self.payload.get("error"))
