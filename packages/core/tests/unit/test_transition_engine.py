"""Tests for TransitionEngine component."""

import asyncio
import gc
import time

import pytest

from crudworkflow.domain.components.schema_registry import SchemaRegistry
from crudworkflow.domain.components.transition_engine import TransitionEngine
from crudworkflow.domain.interfaces.observability_manager import (
    ObservabilityManager,
    WorkflowEventType,
)
from crudworkflow.domain.interfaces.workflow_store import StoreError
from crudworkflow.domain.models.principal import StaticPrincipal
from crudworkflow.domain.models.state_schema import (
    CommentPolicy,
    StateSchema,
    TransitionDefinition,
)
from crudworkflow.domain.models.transition_error import (
    BodyFailedError,
    CommentPolicyViolationError,
    InvalidSourceStateError,
    TransitionErrorKind,
    UnauthorizedTransitionError,
    UnknownTransitionError,
)
from crudworkflow.domain.models.transition_outcome import HookEvent, TransitionContext
from crudworkflow.domain.models.transition_record import EntityRef
from crudworkflow.infrastructure.state_store.memory_store import InMemoryWorkflowStore


class MockObservabilityManager(ObservabilityManager):
    """Mock ObservabilityManager for testing."""

    def __init__(self) -> None:
        self.events: list[dict] = []
        self.logs: list[dict] = []
        self.emit_error: Exception | None = None

    async def emit_event(
        self,
        event_type: str,
        payload: dict,
        metadata: dict | None = None,
    ) -> None:
        if self.emit_error:
            raise self.emit_error
        self.events.append({
            "event_type": event_type,
            "payload": payload,
            "metadata": metadata or {},
        })

    async def log(
        self,
        level: str,
        message: str,
        context: dict | None = None,
    ) -> None:
        self.logs.append({
            "level": level,
            "message": message,
            "context": context or {},
        })

    def event_types(self) -> list[str]:
        return [e["event_type"] for e in self.events]


class FailingCommitStore(InMemoryWorkflowStore):
    """Memory store whose commits always fail."""

    async def commit_transition(self, ref, expected_version, new_state, record):
        raise StoreError("disk full")


ORDER_SCHEMA = StateSchema(
    entity_type="order",
    states=["new", "active", "canceled", "error"],
    initial_state="new",
    transitions=[
        TransitionDefinition(
            name="activate",
            source="new",
            target="active",
            error_target="error",
            label="Activate",
        ),
        TransitionDefinition(
            name="cancel",
            source="new",
            target="canceled",
            error_target="error",
            comment_policy=CommentPolicy.REQUIRED,
        ),
        TransitionDefinition(
            name="approve",
            source="new",
            target="active",
            error_target="error",
            comment_policy=CommentPolicy.OPTIONAL,
            permission="order.approve",
        ),
        TransitionDefinition(
            name="deactivate",
            source="active",
            target="new",
            error_target="error",
        ),
        TransitionDefinition(
            name="retry",
            source="error",
            target="new",
            error_target="canceled",
        ),
    ],
)


class TestTransitionEngine:
    """Tests for TransitionEngine.execute and friends."""

    def setup_method(self) -> None:
        """Set up test environment."""
        self.registry = SchemaRegistry()
        self.store = InMemoryWorkflowStore()
        self.observability = MockObservabilityManager()
        self.actor = StaticPrincipal(identifier="u-1")
        self.approver = StaticPrincipal(identifier="u-2", permissions={"order.approve"})
        self.ref = EntityRef(entity_type="order", entity_id=1)

    def _engine(self, handlers=None, hook=None, hook_timeout_seconds: float = 30.0):
        self.registry.register(ORDER_SCHEMA, handlers=handlers, hook=hook)
        return TransitionEngine(
            registry=self.registry,
            store=self.store,
            observability_manager=self.observability,
            hook_timeout_seconds=hook_timeout_seconds,
        )

    async def _state(self, ref: EntityRef | None = None) -> str:
        snapshot = await self.store.get_entity(ref or self.ref)
        return snapshot.state

    @pytest.mark.asyncio
    async def test_initialize_creates_entity_in_initial_state(self) -> None:
        engine = self._engine()

        snapshot = await engine.initialize(self.ref)

        assert snapshot.state == "new"
        assert snapshot.version == 0
        assert self.observability.event_types() == ["entity_initialized"]

    @pytest.mark.asyncio
    async def test_execute_success_commits_state_and_record(self) -> None:
        engine = self._engine()
        await engine.initialize(self.ref)

        outcome = await engine.execute(self.ref, "activate", self.actor)

        assert outcome.state_before == "new"
        assert outcome.state_after == "active"
        assert outcome.hook_error is None
        assert await self._state() == "active"

        history = await self.store.query_by_entity("order", "1")
        assert len(history) == 1
        assert history[0] == outcome.record
        assert history[0].record_id is not None
        assert history[0].actor_id == "u-1"
        assert history[0].transition == "activate"

    @pytest.mark.asyncio
    async def test_execute_success_emits_committed_event(self) -> None:
        engine = self._engine()
        await engine.initialize(self.ref)

        outcome = await engine.execute(self.ref, "activate", self.actor)

        event = self.observability.events[-1]
        assert self.observability.event_types() == [
            WorkflowEventType.EntityInitialized.value,
            WorkflowEventType.TransitionCommitted.value,
        ]
        assert event["event_type"] == "transition_committed"
        assert event["payload"]["entity"] == "order:1"
        assert event["payload"]["from_state"] == "new"
        assert event["payload"]["to_state"] == "active"
        assert event["metadata"]["record_id"] == outcome.record.record_id

    @pytest.mark.asyncio
    async def test_body_payload_is_recorded(self) -> None:
        async def activate(context: TransitionContext) -> dict:
            assert context.state_before == "new"
            assert context.transition.name == "activate"
            assert context.actor is self.actor
            return {"invoice": "INV-7"}

        engine = self._engine(handlers={"activate": activate})
        await engine.initialize(self.ref)

        outcome = await engine.execute(self.ref, "activate", self.actor)

        assert outcome.payload == {"invoice": "INV-7"}
        assert outcome.record.payload == {"invoice": "INV-7"}

    @pytest.mark.asyncio
    async def test_sync_body_non_dict_result_is_wrapped(self) -> None:
        engine = self._engine(handlers={"activate": lambda context: 42})
        await engine.initialize(self.ref)

        outcome = await engine.execute(self.ref, "activate", self.actor)

        assert outcome.payload == {"result": 42}

    @pytest.mark.asyncio
    async def test_unknown_transition(self) -> None:
        engine = self._engine()
        await engine.initialize(self.ref)

        with pytest.raises(UnknownTransitionError) as exc_info:
            await engine.execute(self.ref, "ship", self.actor)

        assert exc_info.value.kind == TransitionErrorKind.UnknownTransition
        assert exc_info.value.retryable is True
        assert await self._state() == "new"
        assert await self.store.query_by_entity("order", "1") == []

    @pytest.mark.asyncio
    async def test_unknown_entity_type_is_unknown_transition(self) -> None:
        engine = self._engine()

        with pytest.raises(UnknownTransitionError, match="No schema registered"):
            await engine.execute(
                EntityRef(entity_type="invoice", entity_id="9"), "activate", self.actor
            )

    @pytest.mark.asyncio
    async def test_invalid_source_state_leaves_entity_unchanged(self) -> None:
        engine = self._engine()
        await engine.initialize(self.ref)

        with pytest.raises(InvalidSourceStateError) as exc_info:
            await engine.execute(self.ref, "deactivate", self.actor)

        assert exc_info.value.details["current_state"] == "new"
        assert exc_info.value.details["expected_state"] == "active"
        assert await self._state() == "new"
        assert await self.store.query_by_entity("order", "1") == []

    @pytest.mark.asyncio
    async def test_missing_entity_is_invalid_source_state(self) -> None:
        engine = self._engine()

        with pytest.raises(InvalidSourceStateError, match="does not exist"):
            await engine.execute(self.ref, "activate", self.actor)

    @pytest.mark.asyncio
    async def test_unauthorized(self) -> None:
        engine = self._engine()
        await engine.initialize(self.ref)

        with pytest.raises(UnauthorizedTransitionError) as exc_info:
            await engine.execute(self.ref, "approve", self.actor)

        assert exc_info.value.details["permission"] == "order.approve"
        assert await self._state() == "new"

    @pytest.mark.asyncio
    async def test_authorized_principal_succeeds(self) -> None:
        engine = self._engine()
        await engine.initialize(self.ref)

        outcome = await engine.execute(self.ref, "approve", self.approver, comment="ok")

        assert outcome.state_after == "active"
        assert outcome.record.comment == "ok"

    @pytest.mark.asyncio
    async def test_superuser_passes_permission_check(self) -> None:
        engine = self._engine()
        await engine.initialize(self.ref)

        admin = StaticPrincipal(identifier="root", is_superuser=True)
        outcome = await engine.execute(self.ref, "approve", admin)

        assert outcome.state_after == "active"

    @pytest.mark.asyncio
    async def test_source_state_checked_before_authorization(self) -> None:
        engine = self._engine()
        await engine.initialize(self.ref)
        await engine.execute(self.ref, "activate", self.actor)

        # Actor lacks the permission, but the source state fails first.
        with pytest.raises(InvalidSourceStateError):
            await engine.execute(self.ref, "approve", self.actor)

    @pytest.mark.asyncio
    async def test_authorization_checked_before_comment_policy(self) -> None:
        schema = StateSchema(
            entity_type="ticket",
            states=["open", "closed", "error"],
            initial_state="open",
            transitions=[
                TransitionDefinition(
                    name="close",
                    source="open",
                    target="closed",
                    error_target="error",
                    comment_policy=CommentPolicy.REQUIRED,
                    permission="ticket.close",
                )
            ],
        )
        self.registry.register(schema)
        engine = TransitionEngine(self.registry, self.store, self.observability)
        ref = EntityRef(entity_type="ticket", entity_id="t-1")
        await engine.initialize(ref)

        with pytest.raises(UnauthorizedTransitionError):
            await engine.execute(ref, "close", self.actor, comment=None)

    @pytest.mark.asyncio
    async def test_comment_required_violation_produces_no_record(self) -> None:
        body_calls = []
        engine = self._engine(handlers={"cancel": lambda context: body_calls.append(1)})
        await engine.initialize(self.ref)

        for comment in (None, "", "   "):
            with pytest.raises(CommentPolicyViolationError):
                await engine.execute(self.ref, "cancel", self.actor, comment=comment)

        assert body_calls == []
        assert await self._state() == "new"
        assert await self.store.query_by_entity("order", "1") == []

    @pytest.mark.asyncio
    async def test_comment_none_policy_discards_comment(self) -> None:
        engine = self._engine()
        await engine.initialize(self.ref)

        outcome = await engine.execute(self.ref, "activate", self.actor, comment="ignored")

        assert outcome.record.comment is None

    @pytest.mark.asyncio
    async def test_rejection_emits_event(self) -> None:
        engine = self._engine()
        await engine.initialize(self.ref)

        with pytest.raises(UnauthorizedTransitionError):
            await engine.execute(self.ref, "approve", self.actor)

        event = self.observability.events[-1]
        assert event["event_type"] == "transition_rejected"
        assert event["payload"]["kind"] == "unauthorized"

    @pytest.mark.asyncio
    async def test_body_failure_moves_to_error_target(self) -> None:
        def activate(context: TransitionContext) -> None:
            raise RuntimeError("payment gateway down")

        engine = self._engine(handlers={"activate": activate})
        await engine.initialize(self.ref)

        with pytest.raises(BodyFailedError) as exc_info:
            await engine.execute(self.ref, "activate", self.actor)

        error = exc_info.value
        assert error.kind == TransitionErrorKind.BodyFailed
        assert error.retryable is False
        assert isinstance(error.cause, RuntimeError)
        assert error.__cause__ is error.cause
        assert error.record.state_before == "new"
        assert error.record.state_after == "error"
        assert error.record.payload == {
            "error": True,
            "error_type": "RuntimeError",
            "error_message": "payment gateway down",
        }
        assert error.record.is_error is True

        assert await self._state() == "error"
        history = await self.store.query_by_entity("order", "1")
        assert history == [error.record]
        assert "transition_body_failed" in self.observability.event_types()

    @pytest.mark.asyncio
    async def test_transition_from_error_state(self) -> None:
        async def activate(context: TransitionContext) -> None:
            raise ValueError("bad")

        engine = self._engine(handlers={"activate": activate})
        await engine.initialize(self.ref)
        with pytest.raises(BodyFailedError):
            await engine.execute(self.ref, "activate", self.actor)

        outcome = await engine.execute(self.ref, "retry", self.actor)

        assert outcome.state_after == "new"
        assert len(await self.store.query_by_entity("order", "1")) == 2

    @pytest.mark.asyncio
    async def test_store_error_aborts_commit(self) -> None:
        self.store = FailingCommitStore()
        engine = self._engine()
        await engine.initialize(self.ref)

        with pytest.raises(StoreError, match="disk full"):
            await engine.execute(self.ref, "activate", self.actor)

        assert await self._state() == "new"
        assert await self.store.query_by_entity("order", "1") == []

    @pytest.mark.asyncio
    async def test_hook_receives_event_after_commit(self) -> None:
        events: list[HookEvent] = []

        async def hook(event: HookEvent) -> None:
            # The commit is visible by the time the hook runs.
            snapshot = await self.store.get_entity(self.ref)
            assert snapshot.state == "active"
            events.append(event)

        engine = self._engine(handlers={"activate": lambda c: {"n": 1}}, hook=hook)
        await engine.initialize(self.ref)

        outcome = await engine.execute(self.ref, "activate", self.actor)

        assert len(events) == 1
        event = events[0]
        assert event.record == outcome.record
        assert event.transition_name == "activate"
        assert event.state_before == "new"
        assert event.state_after == "active"
        assert event.actor is self.actor
        assert event.payload == {"n": 1}

    @pytest.mark.asyncio
    async def test_sync_hook_is_supported(self) -> None:
        seen = []
        engine = self._engine(hook=lambda event: seen.append(event.state_after))
        await engine.initialize(self.ref)

        await engine.execute(self.ref, "activate", self.actor)

        assert seen == ["active"]

    @pytest.mark.asyncio
    async def test_hook_failure_does_not_fail_transition(self) -> None:
        def hook(event: HookEvent) -> None:
            raise ConnectionError("mail server unreachable")

        engine = self._engine(hook=hook)
        await engine.initialize(self.ref)

        outcome = await engine.execute(self.ref, "activate", self.actor)

        assert outcome.state_after == "active"
        assert outcome.hook_error == "ConnectionError: mail server unreachable"
        assert await self._state() == "active"
        assert "hook_failed" in self.observability.event_types()
        assert any(log["level"] == "WARNING" for log in self.observability.logs)

    @pytest.mark.asyncio
    async def test_hook_timeout_is_reported(self) -> None:
        async def hook(event: HookEvent) -> None:
            await asyncio.sleep(5)

        engine = self._engine(hook=hook, hook_timeout_seconds=0.05)
        await engine.initialize(self.ref)

        outcome = await engine.execute(self.ref, "activate", self.actor)

        assert outcome.state_after == "active"
        assert outcome.hook_error is not None
        assert outcome.hook_error.startswith("TimeoutError")

    @pytest.mark.asyncio
    async def test_hook_runs_on_body_failure(self) -> None:
        seen = []

        def activate(context: TransitionContext) -> None:
            raise RuntimeError("boom")

        engine = self._engine(
            handlers={"activate": activate},
            hook=lambda event: seen.append(event.state_after),
        )
        await engine.initialize(self.ref)

        with pytest.raises(BodyFailedError):
            await engine.execute(self.ref, "activate", self.actor)

        assert seen == ["error"]

    @pytest.mark.asyncio
    async def test_hook_mutating_payload_leaves_history_intact(self) -> None:
        def hook(event: HookEvent) -> None:
            event.record.payload["tampered"] = True
            event.payload["lines"].append("forged")

        engine = self._engine(
            handlers={"activate": lambda c: {"lines": ["sku-1"]}},
            hook=hook,
        )
        await engine.initialize(self.ref)

        outcome = await engine.execute(self.ref, "activate", self.actor)

        assert outcome.hook_error is None
        assert outcome.payload == {"lines": ["sku-1"]}
        (record,) = await self.store.query_by_entity("order", "1")
        assert record.payload == {"lines": ["sku-1"]}

    @pytest.mark.asyncio
    async def test_body_result_is_stored_in_json_form(self) -> None:
        engine = self._engine(handlers={"activate": lambda c: {"tags": ("a", "b"), "n": 1}})
        await engine.initialize(self.ref)

        outcome = await engine.execute(self.ref, "activate", self.actor)

        assert outcome.payload == {"tags": ["a", "b"], "n": 1}
        (record,) = await self.store.query_by_entity("order", "1")
        assert record.payload == outcome.payload

    @pytest.mark.asyncio
    async def test_unencodable_body_result_moves_to_error_target(self) -> None:
        engine = self._engine(handlers={"activate": lambda c: {"connection": object()}})
        await engine.initialize(self.ref)

        with pytest.raises(BodyFailedError) as exc_info:
            await engine.execute(self.ref, "activate", self.actor)

        record = exc_info.value.record
        assert record.state_after == "error"
        assert record.payload["error"] is True
        assert record.payload["error_type"] == "PydanticSerializationError"
        assert await self._state() == "error"
        assert await self.store.query_by_entity("order", "1") == [record]

    @pytest.mark.asyncio
    async def test_event_emission_failure_does_not_fail_transition(self) -> None:
        engine = self._engine()
        await engine.initialize(self.ref)
        self.observability.emit_error = RuntimeError("collector down")

        outcome = await engine.execute(self.ref, "activate", self.actor)

        assert outcome.state_after == "active"
        assert any("collector down" in log["message"] for log in self.observability.logs)

    @pytest.mark.asyncio
    async def test_available_transitions(self) -> None:
        engine = self._engine()
        await engine.initialize(self.ref)

        names = [t.name for t in await engine.available_transitions(self.ref, self.actor)]
        assert names == ["activate", "cancel"]

        names = [t.name for t in await engine.available_transitions(self.ref, self.approver)]
        assert names == ["activate", "cancel", "approve"]

    @pytest.mark.asyncio
    async def test_available_transitions_unknown_entity_is_empty(self) -> None:
        engine = self._engine()

        assert await engine.available_transitions(self.ref, self.actor) == []
        assert (
            await engine.available_transitions(
                EntityRef(entity_type="invoice", entity_id="1"), self.actor
            )
            == []
        )


class TestTransitionEngineConcurrency:
    """Tests for per-entity exclusion and cross-entity parallelism."""

    def setup_method(self) -> None:
        self.registry = SchemaRegistry()
        self.store = InMemoryWorkflowStore()
        self.observability = MockObservabilityManager()
        self.actor = StaticPrincipal(identifier="u-1")

    def _engine(self, handlers=None, hook=None) -> TransitionEngine:
        self.registry.register(ORDER_SCHEMA, handlers=handlers, hook=hook)
        return TransitionEngine(self.registry, self.store, self.observability)

    @pytest.mark.asyncio
    async def test_same_entity_exactly_one_succeeds(self) -> None:
        async def activate(context: TransitionContext) -> None:
            await asyncio.sleep(0.05)

        engine = self._engine(handlers={"activate": activate})
        ref = EntityRef(entity_type="order", entity_id="c-1")
        await engine.initialize(ref)

        results = await asyncio.gather(
            *(engine.execute(ref, "activate", self.actor) for _ in range(5)),
            return_exceptions=True,
        )

        successes = [r for r in results if not isinstance(r, Exception)]
        failures = [r for r in results if isinstance(r, Exception)]
        assert len(successes) == 1
        assert len(failures) == 4
        assert all(isinstance(f, InvalidSourceStateError) for f in failures)

        history = await self.store.query_by_entity("order", "c-1")
        assert len(history) == 1
        snapshot = await self.store.get_entity(ref)
        assert snapshot.state == "active"
        assert snapshot.version == 1

    @pytest.mark.asyncio
    async def test_conflicting_transitions_on_same_entity(self) -> None:
        async def slow(context: TransitionContext) -> None:
            await asyncio.sleep(0.05)

        engine = self._engine(handlers={"activate": slow, "cancel": slow})
        ref = EntityRef(entity_type="order", entity_id="c-2")
        await engine.initialize(ref)

        results = await asyncio.gather(
            engine.execute(ref, "activate", self.actor),
            engine.execute(ref, "cancel", self.actor, comment="changed my mind"),
            return_exceptions=True,
        )

        assert sum(not isinstance(r, Exception) for r in results) == 1
        assert sum(isinstance(r, InvalidSourceStateError) for r in results) == 1
        assert len(await self.store.query_by_entity("order", "c-2")) == 1

    @pytest.mark.asyncio
    async def test_different_entities_run_in_parallel(self) -> None:
        def activate(context: TransitionContext) -> None:
            # Blocking body; runs in a worker thread.
            time.sleep(0.2)

        engine = self._engine(handlers={"activate": activate})
        refs = [EntityRef(entity_type="order", entity_id=f"p-{i}") for i in range(4)]
        for ref in refs:
            await engine.initialize(ref)

        started = time.monotonic()
        outcomes = await asyncio.gather(
            *(engine.execute(ref, "activate", self.actor) for ref in refs)
        )
        elapsed = time.monotonic() - started

        assert all(o.state_after == "active" for o in outcomes)
        assert elapsed < 0.6

    @pytest.mark.asyncio
    async def test_cancelled_caller_does_not_interrupt_commit(self) -> None:
        body_finished = asyncio.Event()

        async def activate(context: TransitionContext) -> None:
            await asyncio.sleep(0.05)
            body_finished.set()

        engine = self._engine(handlers={"activate": activate})
        ref = EntityRef(entity_type="order", entity_id="x-1")
        await engine.initialize(ref)

        task = asyncio.create_task(engine.execute(ref, "activate", self.actor))
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        await asyncio.wait_for(body_finished.wait(), timeout=1)
        # Let the shielded section finish its commit.
        for _ in range(10):
            if engine.locks.is_locked(ref):
                await asyncio.sleep(0.01)

        snapshot = await self.store.get_entity(ref)
        assert snapshot.state == "active"
        assert len(await self.store.query_by_entity("order", "x-1")) == 1

    @pytest.mark.asyncio
    async def test_cancelled_caller_still_runs_hook_and_emits(self) -> None:
        hook_seen = asyncio.Event()

        async def activate(context: TransitionContext) -> None:
            await asyncio.sleep(0.05)

        async def hook(event: HookEvent) -> None:
            hook_seen.set()

        engine = self._engine(handlers={"activate": activate}, hook=hook)
        ref = EntityRef(entity_type="order", entity_id="x-2")
        await engine.initialize(ref)

        task = asyncio.create_task(engine.execute(ref, "activate", self.actor))
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        await asyncio.wait_for(hook_seen.wait(), timeout=1)
        for _ in range(10):
            if "transition_committed" not in self.observability.event_types():
                await asyncio.sleep(0.01)

        assert (await self.store.get_entity(ref)).state == "active"
        assert "transition_committed" in self.observability.event_types()

    @pytest.mark.asyncio
    async def test_cancelled_caller_with_failed_commit_reports_nothing_unretrieved(
        self,
    ) -> None:
        self.store = FailingCommitStore()

        async def activate(context: TransitionContext) -> None:
            await asyncio.sleep(0.05)

        engine = self._engine(handlers={"activate": activate})
        ref = EntityRef(entity_type="order", entity_id="x-3")
        await engine.initialize(ref)

        loop = asyncio.get_running_loop()
        reported: list[dict] = []
        loop.set_exception_handler(lambda _loop, context: reported.append(context))
        try:
            task = asyncio.create_task(engine.execute(ref, "activate", self.actor))
            await asyncio.sleep(0.01)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

            for _ in range(20):
                if engine.locks.is_locked(ref):
                    await asyncio.sleep(0.01)
            await asyncio.sleep(0.01)
            gc.collect()
        finally:
            loop.set_exception_handler(None)

        assert reported == []
        assert (await self.store.get_entity(ref)).state == "new"

    @pytest.mark.asyncio
    async def test_locks_are_released_after_execution(self) -> None:
        engine = self._engine()
        ref = EntityRef(entity_type="order", entity_id="l-1")
        await engine.initialize(ref)

        await engine.execute(ref, "activate", self.actor)

        assert len(engine.locks) == 0
