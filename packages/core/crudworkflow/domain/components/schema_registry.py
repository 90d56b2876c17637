"""SchemaRegistry component for per-entity-type workflow definitions."""

from collections.abc import Awaitable, Callable, Mapping
from types import MappingProxyType
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from crudworkflow.domain.models.state_schema import SchemaError, StateSchema
from crudworkflow.domain.models.transition_outcome import HookEvent, TransitionContext

TransitionHandler = Callable[
    [TransitionContext], Awaitable[dict[str, Any] | None] | dict[str, Any] | None
]
"""Transition body: sync or async, returns an optional payload, raises on failure."""

PostTransitionHook = Callable[[HookEvent], Awaitable[None] | None]
"""Post-transition hook: sync or async, called after commit."""


class UnknownEntityTypeError(Exception):
    """Raised when no schema is registered for an entity type."""

    pass


class RegisteredWorkflow(BaseModel):
    """A schema together with its bound transition bodies and hook."""

    schema_definition: StateSchema
    handlers: Mapping[str, Callable[..., Any]] = Field(default_factory=dict)
    hook: Callable[..., Any] | None = None

    model_config = ConfigDict(
        frozen=True,
        arbitrary_types_allowed=True,
    )

    @field_validator("handlers", mode="after")
    @classmethod
    def freeze_handlers(
        cls, v: Mapping[str, Callable[..., Any]]
    ) -> Mapping[str, Callable[..., Any]]:
        """Expose handlers as a read-only mapping."""
        return MappingProxyType(dict(v))

    @property
    def entity_type(self) -> str:
        """Return the entity type this workflow governs."""
        return self.schema_definition.entity_type

    def handler_for(self, transition_name: str) -> Callable[..., Any] | None:
        """Return the body bound to a transition, or None if it has no body."""
        return self.handlers.get(transition_name)


class SchemaRegistry:
    """Process-wide registry of workflow schemas, keyed by entity type.

    Schemas are registered once at startup. After `freeze()` (called by the
    gateway before serving its first request) registration is rejected, so
    every engine invocation reads an immutable registry without locking.

    Example:
        ```python
        registry = SchemaRegistry()
        registry.register(order_schema, handlers={"ship": ship_order})
        registry.freeze()

        workflow = registry.get("order")
        ```
    """

    def __init__(self) -> None:
        self._workflows: dict[str, RegisteredWorkflow] = {}
        self._frozen = False

    def register(
        self,
        schema: StateSchema,
        handlers: Mapping[str, TransitionHandler] | None = None,
        hook: PostTransitionHook | None = None,
    ) -> RegisteredWorkflow:
        """Register a schema with its transition bodies and optional hook.

        Args:
            schema: Validated StateSchema for one entity type.
            handlers: Mapping from transition name to body. Transitions
                without a body just change state.
            hook: Optional post-transition hook for this entity type.

        Returns:
            The RegisteredWorkflow.

        Raises:
            SchemaError: If the registry is frozen, the entity type is
                already registered, or a handler names an undeclared
                transition.
        """
        if self._frozen:
            raise SchemaError(
                f"Cannot register schema {schema.entity_type!r}: registry is frozen"
            )
        if schema.entity_type in self._workflows:
            raise SchemaError(f"Schema already registered for {schema.entity_type!r}")

        handlers = dict(handlers or {})
        for name, handler in handlers.items():
            if schema.get_transition(name) is None:
                raise SchemaError(
                    f"Schema {schema.entity_type!r}: handler bound to undeclared "
                    f"transition {name!r}"
                )
            if not callable(handler):
                raise SchemaError(
                    f"Schema {schema.entity_type!r}: handler for {name!r} is not callable"
                )
        if hook is not None and not callable(hook):
            raise SchemaError(f"Schema {schema.entity_type!r}: hook is not callable")

        workflow = RegisteredWorkflow(
            schema_definition=schema,
            handlers=handlers,
            hook=hook,
        )
        self._workflows[schema.entity_type] = workflow
        return workflow

    def get(self, entity_type: str) -> RegisteredWorkflow:
        """Return the workflow registered for entity_type.

        Raises:
            UnknownEntityTypeError: If nothing is registered for entity_type.
        """
        workflow = self._workflows.get(entity_type)
        if workflow is None:
            raise UnknownEntityTypeError(f"No schema registered for {entity_type!r}")
        return workflow

    def freeze(self) -> None:
        """Reject further registrations."""
        self._frozen = True

    @property
    def is_frozen(self) -> bool:
        return self._frozen

    def entity_types(self) -> list[str]:
        """Return registered entity types in registration order."""
        return list(self._workflows)

    def __contains__(self, entity_type: object) -> bool:
        return entity_type in self._workflows

    def __len__(self) -> int:
        return len(self._workflows)
