"""StateSchema, TransitionDefinition and CommentPolicy models."""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class SchemaError(Exception):
    """Raised when a workflow schema is malformed.

    Schema errors are construction-time failures and are fatal to startup:
    an undeclared initial state, a transition referencing an undeclared
    state, a duplicate transition name, or an error target equal to the
    transition target.
    """

    pass


class CommentPolicy(str, Enum):
    """Per-transition rule governing the free-text comment."""

    NONE = "none"
    """Any supplied comment is discarded; the stored comment is null."""

    OPTIONAL = "optional"
    """A supplied comment is stored verbatim; no comment is acceptable."""

    REQUIRED = "required"
    """A non-blank comment must accompany the transition."""


class StateDefinition(BaseModel):
    """A single declared state with its display attributes."""

    value: str = Field(
        ...,
        description="Stable state value persisted on the entity",
        min_length=1,
    )
    label: str = Field(
        default="",
        description="Human-readable state label (defaults to value)",
    )
    badge: str = Field(
        default="secondary",
        description="Display badge classifier (e.g., 'success', 'danger')",
        min_length=1,
    )

    model_config = ConfigDict(
        frozen=True,
        str_strip_whitespace=True,
    )

    @model_validator(mode="before")
    @classmethod
    def default_label(cls, data: Any) -> Any:
        """Fall back to the state value when no label is given."""
        if isinstance(data, dict) and not data.get("label"):
            return {**data, "label": data.get("value")}
        return data


class TransitionDefinition(BaseModel):
    """A named edge between two states of one schema.

    Self loops (source == target) are allowed. The error target, the state
    an entity moves to when the transition body fails, must differ from the
    target.
    """

    name: str = Field(
        ...,
        description="Stable transition identifier (not translated)",
        min_length=1,
    )
    source: str = Field(..., description="State the entity must be in", min_length=1)
    target: str = Field(..., description="State reached on success", min_length=1)
    error_target: str = Field(
        ...,
        description="State reached when the transition body fails",
        min_length=1,
    )
    label: str = Field(
        default="",
        description="Human-readable label (defaults to name)",
    )
    comment_policy: CommentPolicy = Field(
        default=CommentPolicy.NONE,
        description="Whether a comment is discarded, optional or required",
    )
    permission: str | None = Field(
        default=None,
        description="Permission the acting principal must hold, if any",
    )

    model_config = ConfigDict(
        frozen=True,
        str_strip_whitespace=True,
    )

    @model_validator(mode="before")
    @classmethod
    def default_label(cls, data: Any) -> Any:
        """Fall back to the transition name when no label is given."""
        if isinstance(data, dict) and not data.get("label"):
            return {**data, "label": data.get("name")}
        return data

    @model_validator(mode="after")
    def validate_targets(self) -> "TransitionDefinition":
        """Reject an error target equal to the target."""
        if self.error_target == self.target:
            raise SchemaError(
                f"Transition {self.name!r}: error_target must differ from target "
                f"({self.target!r})"
            )
        return self


class StateSchema(BaseModel):
    """Static description of one entity type's states and transitions.

    Schemas are validated once at construction and are immutable afterwards,
    so they can be shared read-only across concurrent engine invocations.

    Example:
        ```python
        schema = StateSchema(
            entity_type="order",
            states=["new", "active", "error"],
            initial_state="new",
            transitions=[
                TransitionDefinition(
                    name="activate",
                    source="new",
                    target="active",
                    error_target="error",
                ),
            ],
        )
        assert schema.is_valid_state("active")
        ```
    """

    entity_type: str = Field(
        ...,
        description="Entity type tag this schema governs",
        min_length=1,
    )
    states: tuple[StateDefinition, ...] = Field(
        ...,
        description="Ordered set of declared states",
        min_length=1,
    )
    initial_state: str = Field(
        ...,
        description="State assigned to newly created entities",
        min_length=1,
    )
    transitions: tuple[TransitionDefinition, ...] = Field(
        default=(),
        description="Ordered transitions between declared states",
    )

    model_config = ConfigDict(
        frozen=True,
        str_strip_whitespace=True,
    )

    @field_validator("states", mode="before")
    @classmethod
    def coerce_states(cls, v: Any) -> Any:
        """Accept bare state values as shorthand for StateDefinition."""
        if isinstance(v, list | tuple):
            return tuple(StateDefinition(value=s) if isinstance(s, str) else s for s in v)
        return v

    @model_validator(mode="after")
    def validate_schema(self) -> "StateSchema":
        """Check that every referenced state is declared and names are unique."""
        values = [state.value for state in self.states]
        if len(set(values)) != len(values):
            raise SchemaError(f"Schema {self.entity_type!r}: duplicate state values")

        declared = set(values)
        if self.initial_state not in declared:
            raise SchemaError(
                f"Schema {self.entity_type!r}: initial state "
                f"{self.initial_state!r} is not declared"
            )

        names: set[str] = set()
        for transition in self.transitions:
            if transition.name in names:
                raise SchemaError(
                    f"Schema {self.entity_type!r}: duplicate transition name "
                    f"{transition.name!r}"
                )
            names.add(transition.name)
            for role in ("source", "target", "error_target"):
                state = getattr(transition, role)
                if state not in declared:
                    raise SchemaError(
                        f"Schema {self.entity_type!r}: transition {transition.name!r} "
                        f"references undeclared {role} state {state!r}"
                    )
        return self

    def is_valid_state(self, value: str) -> bool:
        """Return True if value is one of the declared states."""
        return any(state.value == value for state in self.states)

    def valid_transitions_from(self, state: str) -> tuple[TransitionDefinition, ...]:
        """Return every transition whose source equals state, in declaration order."""
        return tuple(t for t in self.transitions if t.source == state)

    def get_transition(self, name: str) -> TransitionDefinition | None:
        """Look up a transition by its stable name."""
        for transition in self.transitions:
            if transition.name == name:
                return transition
        return None

    def get_state(self, value: str) -> StateDefinition | None:
        """Look up a declared state by value."""
        for state in self.states:
            if state.value == value:
                return state
        return None

    def badge_for(self, value: str) -> str:
        """Return the display badge classifier for a state."""
        state = self.get_state(value)
        return state.badge if state is not None else "secondary"

    def label_for(self, value: str) -> str:
        """Return the human-readable label for a state."""
        state = self.get_state(value)
        return state.label if state is not None else value
