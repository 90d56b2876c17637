"""Tests for WorkflowSettings."""

import pytest
from pydantic import ValidationError

from crudworkflow.infrastructure.config.settings import WorkflowSettings


class TestWorkflowSettings:
    """Tests for WorkflowSettings."""

    def test_defaults(self) -> None:
        # conftest clears CRUDWORKFLOW_* variables before each test.
        settings = WorkflowSettings()

        assert settings.store_backend == "memory"
        assert settings.schema_file is None
        assert settings.hook_timeout_seconds == 30.0
        assert settings.log_level == "INFO"
        assert settings.mongodb_database == "crudworkflow"

    def test_env_prefix(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CRUDWORKFLOW_STORE_BACKEND", "redis")
        monkeypatch.setenv("CRUDWORKFLOW_REDIS_URL", "redis://cache:6379/2")
        monkeypatch.setenv("CRUDWORKFLOW_HOOK_TIMEOUT_SECONDS", "2.5")
        monkeypatch.setenv("CRUDWORKFLOW_JSON_LOGS", "false")

        settings = WorkflowSettings()

        assert settings.store_backend == "redis"
        assert settings.redis_url == "redis://cache:6379/2"
        assert settings.hook_timeout_seconds == 2.5
        assert settings.json_logs is False

    def test_from_dict(self) -> None:
        settings = WorkflowSettings.from_dict(
            {"store_backend": "mongo", "mongodb_database": "workflows", "unknown": 1}
        )

        assert settings.store_backend == "mongo"
        assert settings.mongodb_database == "workflows"

    def test_unknown_backend_rejected(self) -> None:
        with pytest.raises(ValidationError):
            WorkflowSettings(store_backend="sqlite")

    def test_hook_timeout_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            WorkflowSettings(hook_timeout_seconds=0)
