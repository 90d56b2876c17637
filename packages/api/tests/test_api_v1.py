"""Tests for the v1 workflow API routes."""

from fastapi.testclient import TestClient

from crudworkflow.domain.interfaces.observability_manager import ObservabilityManager
from crudworkflow.domain.interfaces.workflow_store import StoreError
from crudworkflow.domain.models.state_schema import (
    CommentPolicy,
    StateDefinition,
    StateSchema,
    TransitionDefinition,
)
from crudworkflow.gateway import TransitionGateway
from crudworkflow.infrastructure.state_store.memory_store import InMemoryWorkflowStore
from crudworkflow_api.dependencies import get_gateway
from crudworkflow_api.main import app

TICKET_SCHEMA = StateSchema(
    entity_type="ticket",
    states=[
        StateDefinition(value="open", label="Open", badge="info"),
        StateDefinition(value="resolved", label="Resolved", badge="success"),
        StateDefinition(value="closed", label="Closed"),
        StateDefinition(value="error", label="Error", badge="danger"),
    ],
    initial_state="open",
    transitions=[
        TransitionDefinition(
            name="resolve",
            source="open",
            target="resolved",
            error_target="error",
            label="Resolve",
            comment_policy=CommentPolicy.REQUIRED,
        ),
        TransitionDefinition(
            name="close",
            source="resolved",
            target="closed",
            error_target="error",
            permission="ticket.close",
        ),
        TransitionDefinition(
            name="escalate",
            source="open",
            target="resolved",
            error_target="error",
        ),
    ],
)


class MockObservabilityManager(ObservabilityManager):
    """Mock ObservabilityManager for testing."""

    def __init__(self) -> None:
        self.events: list[dict] = []
        self.logs: list[dict] = []

    async def emit_event(
        self,
        event_type: str,
        payload: dict,
        metadata: dict | None = None,
    ) -> None:
        self.events.append({"event_type": event_type, "payload": payload})

    async def log(
        self,
        level: str,
        message: str,
        context: dict | None = None,
    ) -> None:
        self.logs.append({"level": level, "message": message})


class FailingCommitStore(InMemoryWorkflowStore):
    """Memory store whose commits always fail."""

    async def commit_transition(self, ref, expected_version, new_state, record):
        raise StoreError("connection reset")


class UnreadableEntityStore(InMemoryWorkflowStore):
    """Memory store whose reads never find the entity."""

    async def get_entity(self, ref):
        return None


def _escalate(context) -> None:
    raise RuntimeError("pager offline")


class TestWorkflowAPI:
    """Tests for /api/v1/entities routes."""

    def setup_method(self) -> None:
        self.gateway = self._build_gateway(InMemoryWorkflowStore())
        app.dependency_overrides[get_gateway] = lambda: self.gateway
        self.client = TestClient(app)
        self.headers = {"X-Principal-Id": "agent-1"}
        self.closer_headers = {
            "X-Principal-Id": "lead-1",
            "X-Principal-Permissions": "ticket.close, ticket.reopen",
        }

    def teardown_method(self) -> None:
        app.dependency_overrides.clear()

    @staticmethod
    def _build_gateway(store: InMemoryWorkflowStore) -> TransitionGateway:
        gateway = TransitionGateway(
            store=store,
            observability_manager=MockObservabilityManager(),
            config={"hook_timeout_seconds": 1.0},
        )
        gateway.register_schema(TICKET_SCHEMA, handlers={"escalate": _escalate})
        return gateway

    def _create(self, entity_id: str = "T-1") -> None:
        response = self.client.post(f"/api/v1/entities/ticket/{entity_id}")
        assert response.status_code == 201

    def _transition(self, name: str, comment: str | None = None, headers=None, entity_id="T-1"):
        return self.client.post(
            f"/api/v1/entities/ticket/{entity_id}/transitions/{name}",
            json={"comment": comment},
            headers=headers if headers is not None else self.headers,
        )

    def test_initialize_entity(self) -> None:
        response = self.client.post("/api/v1/entities/ticket/T-1")

        assert response.status_code == 201
        entity = response.json()["entity"]
        assert entity["state"] == "open"
        assert entity["version"] == 0

    def test_initialize_existing_entity_conflicts(self) -> None:
        self._create()

        response = self.client.post("/api/v1/entities/ticket/T-1")

        assert response.status_code == 409

    def test_initialize_conflict_is_detected_by_the_store(self) -> None:
        self.gateway = self._build_gateway(UnreadableEntityStore())
        self._create()

        response = self.client.post("/api/v1/entities/ticket/T-1")

        assert response.status_code == 409
        assert "already exists" in response.json()["detail"]

    def test_initialize_unknown_entity_type(self) -> None:
        response = self.client.post("/api/v1/entities/invoice/1")

        assert response.status_code == 404

    def test_describe_entity(self) -> None:
        self._create()

        response = self.client.get("/api/v1/entities/ticket/T-1")

        assert response.status_code == 200
        state = response.json()["state"]
        assert state["state"] == "open"
        assert state["label"] == "Open"
        assert state["badge"] == "info"

    def test_describe_missing_entity(self) -> None:
        response = self.client.get("/api/v1/entities/ticket/missing")

        assert response.status_code == 404

    def test_execute_transition(self) -> None:
        self._create()

        response = self._transition("resolve", comment="rebooted the router")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["state_before"] == "open"
        assert data["state_after"] == "resolved"
        assert data["record"]["comment"] == "rebooted the router"
        assert data["record"]["actor_id"] == "agent-1"

    def test_execute_without_body(self) -> None:
        self._create()
        self._transition("resolve", comment="done")

        response = self.client.post(
            "/api/v1/entities/ticket/T-1/transitions/close",
            headers=self.closer_headers,
        )

        assert response.status_code == 200
        assert response.json()["state_after"] == "closed"

    def test_execute_requires_principal(self) -> None:
        self._create()

        response = self._transition("resolve", comment="done", headers={})

        assert response.status_code == 401

    def test_unknown_transition_is_404(self) -> None:
        self._create()

        response = self._transition("reopen")

        assert response.status_code == 404
        assert response.json()["error_code"] == "unknown_transition"

    def test_wrong_source_state_is_409(self) -> None:
        self._create()

        response = self._transition("close", headers=self.closer_headers)

        assert response.status_code == 409
        assert response.json()["error_code"] == "invalid_source_state"
        assert response.json()["state_before"] == "open"

    def test_missing_permission_is_403(self) -> None:
        self._create()
        self._transition("resolve", comment="done")

        response = self._transition("close")

        assert response.status_code == 403
        assert response.json()["error_code"] == "unauthorized"

    def test_missing_required_comment_is_422(self) -> None:
        self._create()

        response = self._transition("resolve", comment="   ")

        assert response.status_code == 422
        assert response.json()["error_code"] == "comment_policy_violation"
        assert response.json()["retryable"] is True

    def test_body_failure_is_500_with_record(self) -> None:
        self._create()

        response = self._transition("escalate")

        assert response.status_code == 500
        data = response.json()
        assert data["status"] == "failed"
        assert data["state_after"] == "error"
        assert data["record"]["state_after"] == "error"
        assert data["payload"]["error_type"] == "RuntimeError"
        assert self.client.get("/api/v1/entities/ticket/T-1").json()["state"]["state"] == "error"

    def test_store_error_is_503(self) -> None:
        self.gateway = self._build_gateway(FailingCommitStore())
        self._create()

        response = self._transition("resolve", comment="done")

        assert response.status_code == 503
        assert response.json()["error_code"] == "store_error"

    def test_list_available_transitions(self) -> None:
        self._create()

        response = self.client.get(
            "/api/v1/entities/ticket/T-1/transitions", headers=self.headers
        )

        assert response.status_code == 200
        assert response.json()["transitions"] == [
            {"name": "resolve", "label": "Resolve", "comment_policy": "required"},
            {"name": "escalate", "label": "escalate", "comment_policy": "none"},
        ]

    def test_list_available_filters_by_permission(self) -> None:
        self._create()
        self._transition("resolve", comment="done")

        without = self.client.get(
            "/api/v1/entities/ticket/T-1/transitions", headers=self.headers
        )
        with_permission = self.client.get(
            "/api/v1/entities/ticket/T-1/transitions", headers=self.closer_headers
        )

        assert without.json()["transitions"] == []
        assert [t["name"] for t in with_permission.json()["transitions"]] == ["close"]

    def test_history(self) -> None:
        self._create()
        self._transition("resolve", comment="done")
        self._transition("close", headers=self.closer_headers)

        response = self.client.get("/api/v1/entities/ticket/T-1/history")

        assert response.status_code == 200
        history = response.json()["history"]
        assert [(r["transition"], r["actor_id"]) for r in history] == [
            ("resolve", "agent-1"),
            ("close", "lead-1"),
        ]
