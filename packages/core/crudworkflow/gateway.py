"""TransitionGateway - caller-facing facade over the transition engine."""

from collections.abc import Mapping
from typing import Any

import structlog

from crudworkflow.domain.components.schema_registry import (
    PostTransitionHook,
    RegisteredWorkflow,
    SchemaRegistry,
    TransitionHandler,
    UnknownEntityTypeError,
)
from crudworkflow.domain.components.transition_engine import TransitionEngine
from crudworkflow.domain.interfaces.observability_manager import ObservabilityManager
from crudworkflow.domain.interfaces.principal import Principal
from crudworkflow.domain.interfaces.workflow_store import StoreError, WorkflowStore
from crudworkflow.domain.models.gateway_response import (
    AvailableTransition,
    GatewayResponse,
    GatewayStatus,
    StateView,
    TransitionRequest,
)
from crudworkflow.domain.models.state_schema import StateSchema
from crudworkflow.domain.models.transition_error import (
    BodyFailedError,
    TransitionError,
    TransitionErrorKind,
)
from crudworkflow.domain.models.transition_record import (
    EntityRef,
    EntitySnapshot,
    TransitionRecord,
)
from crudworkflow.infrastructure.config.file_loader import SchemaFileLoader
from crudworkflow.infrastructure.config.settings import WorkflowSettings
from crudworkflow.infrastructure.observability.logger import (
    DefaultObservabilityManager,
)
from crudworkflow.infrastructure.state_store.memory_store import InMemoryWorkflowStore
from crudworkflow.infrastructure.state_store.mongo_store import MongoWorkflowStore
from crudworkflow.infrastructure.state_store.redis_store import RedisWorkflowStore

logger = structlog.get_logger(__name__)

STORE_ERROR_CODE = "store_error"

_STATUS_BY_KIND: dict[TransitionErrorKind, GatewayStatus] = {
    TransitionErrorKind.UnknownTransition: GatewayStatus.NotFound,
    TransitionErrorKind.InvalidSourceState: GatewayStatus.Conflict,
    TransitionErrorKind.Unauthorized: GatewayStatus.Forbidden,
    TransitionErrorKind.CommentPolicyViolation: GatewayStatus.Invalid,
    TransitionErrorKind.BodyFailed: GatewayStatus.Failed,
}


def build_store(settings: WorkflowSettings) -> WorkflowStore:
    """Create the WorkflowStore selected by settings.store_backend."""
    if settings.store_backend == "redis":
        return RedisWorkflowStore(redis_url=settings.redis_url)
    if settings.store_backend == "mongo":
        return MongoWorkflowStore(
            connection_url=settings.mongodb_url,
            database_name=settings.mongodb_database,
        )
    return InMemoryWorkflowStore()


class TransitionGateway:
    """Main entry point for the library.

    TransitionGateway wires the schema registry, the workflow store, the
    observability manager and the transition engine together, and reports
    every transition attempt as a GatewayResponse instead of an exception.

    Schemas are registered at startup. The registry freezes on the first
    request the gateway serves; later registrations raise SchemaError.

    Example:
        ```python
        gateway = TransitionGateway()
        gateway.register_schema(order_schema, handlers={"ship": ship_order})

        await gateway.initialize_entity(EntityRef(entity_type="order", entity_id=42))
        response = await gateway.execute(
            TransitionRequest(
                entity=EntityRef(entity_type="order", entity_id=42),
                transition="ship",
                actor=StaticPrincipal(identifier="u-1", permissions={"order.ship"}),
            )
        )
        print(response.status, response.state_after)

        # Async context manager closes the store
        async with TransitionGateway(config={"store_backend": "redis"}) as gateway:
            pass
        ```
    """

    def __init__(
        self,
        store: WorkflowStore | None = None,
        observability_manager: ObservabilityManager | None = None,
        config: WorkflowSettings | dict[str, Any] | None = None,
    ) -> None:
        """Initialize TransitionGateway with dependencies.

        Args:
            store: Optional WorkflowStore implementation. If not provided, one
                is built from config.store_backend.
            observability_manager: Optional ObservabilityManager implementation.
                If not provided, defaults to DefaultObservabilityManager.
            config: Optional configuration. Can be:
                - WorkflowSettings instance
                - Dictionary with configuration values
                - None (loads from environment variables)

        Raises:
            ValueError: If configuration is invalid.
            ConfigurationError: If config.schema_file cannot be loaded.
            SchemaError: If a schema in config.schema_file is invalid.
        """
        if config is None:
            self._config = WorkflowSettings()
        elif isinstance(config, dict):
            self._config = WorkflowSettings.from_dict(config)
        elif isinstance(config, WorkflowSettings):
            self._config = config
        else:
            raise ValueError(
                f"Invalid config type: {type(config)}. Expected WorkflowSettings, dict, or None"
            )

        self._store = store if store is not None else build_store(self._config)

        if observability_manager is None:
            self._observability_manager: ObservabilityManager = DefaultObservabilityManager(
                log_level=self._config.log_level,
                json_format=self._config.json_logs,
            )
        else:
            self._observability_manager = observability_manager

        self._registry = SchemaRegistry()
        self._engine = TransitionEngine(
            registry=self._registry,
            store=self._store,
            observability_manager=self._observability_manager,
            hook_timeout_seconds=self._config.hook_timeout_seconds,
        )

        if self._config.schema_file:
            for schema in SchemaFileLoader(self._config.schema_file).load_schemas():
                self.register_schema(schema)

    async def __aenter__(self) -> "TransitionGateway":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    @property
    def registry(self) -> SchemaRegistry:
        return self._registry

    @property
    def engine(self) -> TransitionEngine:
        return self._engine

    @property
    def store(self) -> WorkflowStore:
        return self._store

    @property
    def observability_manager(self) -> ObservabilityManager:
        return self._observability_manager

    @property
    def config(self) -> WorkflowSettings:
        return self._config

    def register_schema(
        self,
        schema: StateSchema,
        handlers: Mapping[str, TransitionHandler] | None = None,
        hook: PostTransitionHook | None = None,
    ) -> RegisteredWorkflow:
        """Register a workflow schema with its transition bodies and hook.

        Must be called before the gateway serves its first request.

        Raises:
            SchemaError: If the registry is frozen, the entity type is taken,
                or a handler names an undeclared transition.
        """
        workflow = self._registry.register(schema, handlers=handlers, hook=hook)
        logger.info(
            "Workflow schema registered",
            entity_type=schema.entity_type,
            states=len(schema.states),
            transitions=len(schema.transitions),
            handlers=sorted(workflow.handlers),
            has_hook=hook is not None,
        )
        return workflow

    async def initialize_entity(self, ref: EntityRef) -> EntitySnapshot:
        """Create an entity in its schema's initial state.

        Raises:
            UnknownEntityTypeError: If no schema is registered for the entity type.
            EntityExistsError: If the entity already exists.
            StoreError: If persistence fails.
        """
        self._registry.freeze()
        return await self._engine.initialize(ref)

    async def execute(self, request: TransitionRequest) -> GatewayResponse:
        """Run a transition request and report the outcome.

        Never raises for transition or store failures; the response status
        tells them apart:
            ok         - committed
            not_found  - unknown transition or entity type
            conflict   - entity not in the source state
            forbidden  - principal not authorized
            invalid    - comment policy violated
            failed     - body failed; entity moved to the error target
            error      - persistence failed; nothing committed

        Args:
            request: TransitionRequest with entity, transition, actor and comment.

        Returns:
            GatewayResponse describing the outcome.
        """
        self._registry.freeze()
        ref = request.entity

        try:
            outcome = await self._engine.execute(
                ref, request.transition, request.actor, comment=request.comment
            )
        except BodyFailedError as e:
            return GatewayResponse(
                status=GatewayStatus.Failed,
                entity=ref,
                transition=request.transition,
                error_code=e.kind.value,
                message=e.message,
                retryable=e.retryable,
                state_before=e.record.state_before,
                state_after=e.record.state_after,
                record=e.record,
                payload=e.record.payload,
                hook_error=e.hook_error,
            )
        except TransitionError as e:
            return GatewayResponse(
                status=_STATUS_BY_KIND[e.kind],
                entity=ref,
                transition=request.transition,
                error_code=e.kind.value,
                message=e.message,
                retryable=e.retryable,
                state_before=e.details.get("current_state"),
            )
        except StoreError as e:
            await self._observability_manager.log(
                level="ERROR",
                message="Transition commit failed",
                context={
                    "entity": str(ref),
                    "transition": request.transition,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
            )
            return GatewayResponse(
                status=GatewayStatus.Error,
                entity=ref,
                transition=request.transition,
                error_code=STORE_ERROR_CODE,
                message=str(e),
                retryable=False,
            )

        return GatewayResponse.from_outcome(ref, request.transition, outcome)

    async def list_available(
        self, ref: EntityRef, actor: Principal
    ) -> list[AvailableTransition]:
        """Return transitions actor may run from the entity's current state.

        Ordered by declaration. Empty when nothing applies, including when
        the entity or its type is unknown.
        """
        transitions = await self._engine.available_transitions(ref, actor)
        return [
            AvailableTransition(
                name=t.name,
                label=t.label,
                comment_policy=t.comment_policy,
            )
            for t in transitions
        ]

    async def query_by_entity(
        self, entity_type: str, entity_id: Any
    ) -> list[TransitionRecord]:
        """Return the entity's audit trail, oldest first.

        The identifier is normalized the same way EntityRef normalizes it.
        """
        ref = EntityRef(entity_type=entity_type, entity_id=entity_id)
        return await self._store.query_by_entity(*ref.key)

    async def describe(self, ref: EntityRef) -> StateView | None:
        """Return the entity's current state with its label and badge.

        Returns None if the entity or its type is unknown.
        """
        try:
            workflow = self._registry.get(ref.entity_type)
        except UnknownEntityTypeError:
            return None

        snapshot = await self._engine.get_state(ref)
        if snapshot is None:
            return None

        schema = workflow.schema_definition
        return StateView(
            entity=ref,
            state=snapshot.state,
            label=schema.label_for(snapshot.state),
            badge=schema.badge_for(snapshot.state),
            version=snapshot.version,
        )

    async def close(self) -> None:
        """Release store connections."""
        await self._store.close()
