"""TransitionEngine component: validates, executes and records workflow transitions."""

import asyncio
import inspect
from contextlib import suppress
from typing import Any

from pydantic import TypeAdapter

from crudworkflow.domain.components import comment_policy
from crudworkflow.domain.components.entity_locks import EntityLockRegistry
from crudworkflow.domain.components.schema_registry import (
    RegisteredWorkflow,
    SchemaRegistry,
    UnknownEntityTypeError,
)
from crudworkflow.domain.interfaces.observability_manager import (
    ObservabilityError,
    ObservabilityManager,
    WorkflowEventType,
)
from crudworkflow.domain.interfaces.principal import Principal
from crudworkflow.domain.interfaces.workflow_store import (
    StateConflictError,
    WorkflowStore,
)
from crudworkflow.domain.models.state_schema import TransitionDefinition
from crudworkflow.domain.models.transition_error import (
    BodyFailedError,
    CommentPolicyViolationError,
    InvalidSourceStateError,
    TransitionError,
    UnauthorizedTransitionError,
    UnknownTransitionError,
)
from crudworkflow.domain.models.transition_outcome import (
    HookEvent,
    TransitionContext,
    TransitionOutcome,
)
from crudworkflow.domain.models.transition_record import (
    EntityRef,
    EntitySnapshot,
    TransitionRecord,
)

_PAYLOAD_ADAPTER: TypeAdapter[dict[str, Any]] = TypeAdapter(dict[str, Any])


def _is_async_callable(fn: Any) -> bool:
    return inspect.iscoroutinefunction(fn) or inspect.iscoroutinefunction(
        getattr(fn, "__call__", None)
    )


def _normalize_payload(result: Any) -> dict[str, Any]:
    """Return the JSON form of a body result.

    Raises:
        PydanticSerializationError: If the result holds a value with no JSON
            form; the engine treats this as a body failure.
    """
    if result is None:
        payload: dict[str, Any] = {}
    elif isinstance(result, dict):
        payload = result
    else:
        payload = {"result": result}
    return _PAYLOAD_ADAPTER.dump_python(payload, mode="json")


def _retrieve_result(task: "asyncio.Task[Any]") -> None:
    # A cancelled caller never awaits the shielded task.
    if not task.cancelled():
        task.exception()


class TransitionEngine:
    """Executes named transitions against workflow-bearing entities.

    Preconditions are checked in order, and the first failure short-circuits
    with the entity untouched: the transition must exist, the entity must be
    in its source state, the principal must be authorized, and the comment
    policy must pass. The engine then takes the entity's lock, re-checks the
    source state, runs the transition body and commits the new state and the
    audit record as one unit. If the body fails, the entity moves to the
    transition's error target instead and BodyFailedError is raised. The
    post-transition hook runs after the lock is released; its failures are
    reported on the outcome but never fail the transition.

    Example:
        ```python
        engine = TransitionEngine(registry, store, observability)
        outcome = await engine.execute(ref, "approve", actor, comment="LGTM")
        print(outcome.state_after)
        ```
    """

    def __init__(
        self,
        registry: SchemaRegistry,
        store: WorkflowStore,
        observability_manager: ObservabilityManager,
        hook_timeout_seconds: float = 30.0,
    ) -> None:
        """Initialize TransitionEngine with dependencies.

        Args:
            registry: SchemaRegistry holding schemas, bodies and hooks.
            store: WorkflowStore for entity state and the audit ledger.
            observability_manager: ObservabilityManager for events and logging.
            hook_timeout_seconds: Upper bound on a post-transition hook run.
        """
        self._registry = registry
        self._store = store
        self._observability = observability_manager
        self._hook_timeout_seconds = hook_timeout_seconds
        self._locks = EntityLockRegistry()

    @property
    def locks(self) -> EntityLockRegistry:
        return self._locks

    async def initialize(self, ref: EntityRef) -> EntitySnapshot:
        """Create an entity in its schema's initial state.

        Raises:
            UnknownEntityTypeError: If no schema is registered for the entity type.
            EntityExistsError: If the entity already exists.
            StoreError: If persistence fails.
        """
        workflow = self._registry.get(ref.entity_type)
        snapshot = await self._store.create_entity(
            ref, workflow.schema_definition.initial_state
        )
        await self._emit(
            WorkflowEventType.EntityInitialized,
            {"entity": str(ref), "state": snapshot.state},
        )
        return snapshot

    async def get_state(self, ref: EntityRef) -> EntitySnapshot | None:
        """Return the entity's persisted state, or None if it does not exist."""
        return await self._store.get_entity(ref)

    async def available_transitions(
        self, ref: EntityRef, actor: Principal
    ) -> list[TransitionDefinition]:
        """Return transitions legal for actor from the entity's current state.

        Unknown entity types and missing entities yield an empty list.
        """
        try:
            workflow = self._registry.get(ref.entity_type)
        except UnknownEntityTypeError:
            return []

        snapshot = await self._store.get_entity(ref)
        if snapshot is None:
            return []

        return [
            transition
            for transition in workflow.schema_definition.valid_transitions_from(snapshot.state)
            if self._is_authorized(transition, actor, ref)
        ]

    async def execute(
        self,
        ref: EntityRef,
        transition_name: str,
        actor: Principal,
        comment: str | None = None,
    ) -> TransitionOutcome:
        """Execute a named transition on an entity.

        Args:
            ref: Entity to transition.
            transition_name: Stable name of the transition.
            actor: Principal requesting the transition.
            comment: Optional free-text comment, subject to the comment policy.

        Returns:
            TransitionOutcome with the committed record.

        Raises:
            UnknownTransitionError: If the name does not resolve in the schema.
            InvalidSourceStateError: If the entity is not in the source state,
                including when a concurrent transition committed first.
            UnauthorizedTransitionError: If actor lacks the permission.
            CommentPolicyViolationError: If the comment policy fails.
            BodyFailedError: If the body failed; the entity is now in the
                error target and an audit record was committed.
            StoreError: If the commit failed; nothing was persisted.
        """
        try:
            workflow, transition, stored_comment = await self._check_preconditions(
                ref, transition_name, actor, comment
            )
            # Once started, the commit and the hook run to completion even if
            # the caller is cancelled.
            record, cause, hook_error = await asyncio.shield(
                self._start_transition(workflow, transition, ref, actor, stored_comment)
            )
        except TransitionError as e:
            await self._emit(
                WorkflowEventType.TransitionRejected,
                {
                    "entity": str(ref),
                    "transition": transition_name,
                    "actor_id": actor.identifier,
                    "kind": e.kind.value,
                    "reason": e.message,
                },
            )
            raise

        if cause is not None:
            raise BodyFailedError(
                f"Transition {transition_name!r} failed on {ref}: {cause}",
                cause=cause,
                record=record,
                entity=str(ref),
                transition=transition_name,
                hook_error=hook_error,
            ) from cause

        return TransitionOutcome(
            record=record,
            state_before=record.state_before,
            state_after=record.state_after,
            payload=record.payload,
            hook_error=hook_error,
        )

    def _start_transition(
        self,
        workflow: RegisteredWorkflow,
        transition: TransitionDefinition,
        ref: EntityRef,
        actor: Principal,
        comment: str | None,
    ) -> "asyncio.Task[tuple[TransitionRecord, Exception | None, str | None]]":
        task = asyncio.create_task(
            self._run_to_completion(workflow, transition, ref, actor, comment)
        )
        task.add_done_callback(_retrieve_result)
        return task

    async def _run_to_completion(
        self,
        workflow: RegisteredWorkflow,
        transition: TransitionDefinition,
        ref: EntityRef,
        actor: Principal,
        comment: str | None,
    ) -> tuple[TransitionRecord, Exception | None, str | None]:
        record, cause = await self._run_exclusive(workflow, transition, ref, actor, comment)

        # The entity lock is released at this point.
        hook_error = await self._run_hook(workflow, record, actor)

        if cause is not None:
            await self._emit(
                WorkflowEventType.TransitionBodyFailed,
                {
                    "entity": str(ref),
                    "transition": transition.name,
                    "from_state": record.state_before,
                    "to_state": record.state_after,
                    "error_type": type(cause).__name__,
                },
                metadata={"record_id": record.record_id},
            )
        else:
            await self._emit(
                WorkflowEventType.TransitionCommitted,
                {
                    "entity": str(ref),
                    "transition": transition.name,
                    "from_state": record.state_before,
                    "to_state": record.state_after,
                    "actor_id": record.actor_id,
                    "comment": record.comment,
                },
                metadata={
                    "record_id": record.record_id,
                    "timestamp": record.timestamp.isoformat(),
                },
            )
        return record, cause, hook_error

    async def _check_preconditions(
        self,
        ref: EntityRef,
        transition_name: str,
        actor: Principal,
        comment: str | None,
    ) -> tuple[RegisteredWorkflow, TransitionDefinition, str | None]:
        try:
            workflow = self._registry.get(ref.entity_type)
        except UnknownEntityTypeError as e:
            raise UnknownTransitionError(
                f"No schema registered for entity type {ref.entity_type!r}",
                entity=str(ref),
                transition=transition_name,
            ) from e

        transition = workflow.schema_definition.get_transition(transition_name)
        if transition is None:
            raise UnknownTransitionError(
                f"Unknown transition {transition_name!r} for {ref.entity_type!r}",
                entity=str(ref),
                transition=transition_name,
            )

        snapshot = await self._store.get_entity(ref)
        self._ensure_source_state(snapshot, transition, ref)

        if not self._is_authorized(transition, actor, ref):
            raise UnauthorizedTransitionError(
                f"Principal {actor.identifier!r} may not {transition_name!r} {ref}",
                entity=str(ref),
                transition=transition_name,
                details={"permission": transition.permission},
            )

        try:
            stored_comment = comment_policy.evaluate(transition.comment_policy, comment)
        except comment_policy.CommentError as e:
            raise CommentPolicyViolationError(
                f"Transition {transition_name!r}: {e.message}",
                entity=str(ref),
                transition=transition_name,
                details={"reason": e.reason},
            ) from e

        return workflow, transition, stored_comment

    async def _run_exclusive(
        self,
        workflow: RegisteredWorkflow,
        transition: TransitionDefinition,
        ref: EntityRef,
        actor: Principal,
        comment: str | None,
    ) -> tuple[TransitionRecord, Exception | None]:
        async with self._locks.hold(ref):
            # Double-check: a concurrent transition may have committed since the
            # optimistic check.
            snapshot = await self._store.get_entity(ref)
            snapshot = self._ensure_source_state(snapshot, transition, ref)

            context = TransitionContext(
                entity=ref,
                transition=transition,
                state_schema=workflow.schema_definition,
                state_before=snapshot.state,
                comment=comment,
                actor=actor,
            )

            cause: Exception | None = None
            try:
                payload = await self._invoke_body(workflow.handler_for(transition.name), context)
                new_state = transition.target
            except Exception as e:
                cause = e
                new_state = transition.error_target
                payload = {
                    "error": True,
                    "error_type": type(e).__name__,
                    "error_message": str(e),
                }

            record = TransitionRecord(
                entity_type=ref.entity_type,
                entity_id=ref.entity_id,
                transition=transition.name,
                state_before=snapshot.state,
                state_after=new_state,
                comment=comment,
                actor_id=actor.identifier,
                payload=payload,
            )

            try:
                committed = await self._store.commit_transition(
                    ref, snapshot.version, new_state, record
                )
            except StateConflictError as e:
                raise InvalidSourceStateError(
                    f"{ref} changed state concurrently; expected {transition.source!r}",
                    entity=str(ref),
                    transition=transition.name,
                    details={"expected_state": transition.source},
                ) from e

            return committed, cause

    def _ensure_source_state(
        self,
        snapshot: EntitySnapshot | None,
        transition: TransitionDefinition,
        ref: EntityRef,
    ) -> EntitySnapshot:
        if snapshot is None:
            raise InvalidSourceStateError(
                f"{ref} does not exist",
                entity=str(ref),
                transition=transition.name,
                details={"expected_state": transition.source, "current_state": None},
            )
        if snapshot.state != transition.source:
            raise InvalidSourceStateError(
                f"{ref} is in state {snapshot.state!r}; transition {transition.name!r} "
                f"requires {transition.source!r}",
                entity=str(ref),
                transition=transition.name,
                details={
                    "expected_state": transition.source,
                    "current_state": snapshot.state,
                },
            )
        return snapshot

    def _is_authorized(
        self,
        transition: TransitionDefinition,
        actor: Principal,
        ref: EntityRef,
    ) -> bool:
        if transition.permission is None:
            return True
        return bool(actor.has_permission(transition.permission, ref))

    async def _invoke_body(
        self, handler: Any, context: TransitionContext
    ) -> dict[str, Any]:
        if handler is None:
            return {}
        if _is_async_callable(handler):
            result = await handler(context)
        else:
            # Sync bodies run in a worker thread so they never block other entities.
            result = await asyncio.to_thread(handler, context)
            if inspect.isawaitable(result):
                result = await result
        return _normalize_payload(result)

    async def _run_hook(
        self,
        workflow: RegisteredWorkflow,
        record: TransitionRecord,
        actor: Principal,
    ) -> str | None:
        """Invoke the post-transition hook; return an error description on failure."""
        if workflow.hook is None:
            return None

        # The hook gets its own copy; the committed record is never shared.
        hook_record = record.model_copy(deep=True)
        event = HookEvent(
            record=hook_record,
            transition_name=record.transition,
            state_before=record.state_before,
            state_after=record.state_after,
            comment=record.comment,
            actor=actor,
            payload=hook_record.payload,
        )
        try:
            if _is_async_callable(workflow.hook):
                await asyncio.wait_for(workflow.hook(event), self._hook_timeout_seconds)
            else:
                await asyncio.wait_for(
                    asyncio.to_thread(workflow.hook, event), self._hook_timeout_seconds
                )
        except Exception as e:
            hook_error = f"{type(e).__name__}: {e}"
            await self._log(
                "WARNING",
                f"Post-transition hook failed: {hook_error}",
                {
                    "entity": f"{record.entity_type}:{record.entity_id}",
                    "transition": record.transition,
                    "record_id": record.record_id,
                },
            )
            await self._emit(
                WorkflowEventType.HookFailed,
                {
                    "entity": f"{record.entity_type}:{record.entity_id}",
                    "transition": record.transition,
                    "error": hook_error,
                },
                metadata={"record_id": record.record_id},
            )
            return hook_error
        return None

    async def _emit(
        self,
        event_type: WorkflowEventType,
        payload: dict[str, Any],
        metadata: dict[str, Any] | None = None,
    ) -> None:
        try:
            await self._observability.emit_event(
                event_type=event_type.value,
                payload=payload,
                metadata=metadata,
            )
        except Exception as e:
            # Event emission never fails a transition
            await self._log(
                "WARNING",
                f"Failed to emit {event_type.value} event: {e}",
                {"entity": payload.get("entity")},
            )

    async def _log(self, level: str, message: str, context: dict[str, Any]) -> None:
        with suppress(ObservabilityError):
            await self._observability.log(level=level, message=message, context=context)


