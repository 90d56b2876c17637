"""Tests for DefaultObservabilityManager and log sanitization."""

from unittest.mock import MagicMock

import pytest

from crudworkflow.domain.interfaces.observability_manager import ObservabilityError
from crudworkflow.infrastructure.observability.logger import (
    MAX_LOGGED_COMMENT_LENGTH,
    DefaultObservabilityManager,
    sanitize_for_logging,
)


class TestSanitizeForLogging:
    """Tests for sanitize_for_logging."""

    def test_short_comment_kept(self) -> None:
        data = {"comment": "looks good", "entity": "order:1"}
        assert sanitize_for_logging(data) == data

    def test_long_comment_truncated(self) -> None:
        comment = "x" * (MAX_LOGGED_COMMENT_LENGTH + 50)

        sanitized = sanitize_for_logging({"comment": comment})

        assert sanitized["comment"].startswith("x" * MAX_LOGGED_COMMENT_LENGTH)
        assert sanitized["comment"].endswith("...[truncated]")
        assert len(sanitized["comment"]) == MAX_LOGGED_COMMENT_LENGTH + len("...[truncated]")

    def test_nested_structures(self) -> None:
        comment = "y" * (MAX_LOGGED_COMMENT_LENGTH + 1)

        sanitized = sanitize_for_logging(
            {"records": [{"comment": comment}], "meta": {"comment": None}}
        )

        assert sanitized["records"][0]["comment"].endswith("...[truncated]")
        assert sanitized["meta"]["comment"] is None

    def test_primitives_pass_through(self) -> None:
        assert sanitize_for_logging(42) == 42
        assert sanitize_for_logging("comment") == "comment"


class TestDefaultObservabilityManager:
    """Tests for DefaultObservabilityManager."""

    def setup_method(self) -> None:
        self.manager = DefaultObservabilityManager(log_level="DEBUG", json_format=False)
        self.mock_logger = MagicMock()
        self.manager._logger = self.mock_logger

    @pytest.mark.asyncio
    async def test_emit_event(self) -> None:
        await self.manager.emit_event(
            "transition_committed",
            {"entity": "order:1", "comment": "ok"},
            metadata={"record_id": "r-1"},
        )

        self.mock_logger.info.assert_called_once()
        args, kwargs = self.mock_logger.info.call_args
        assert args == ("Event emitted",)
        assert kwargs["event_type"] == "transition_committed"
        assert kwargs["entity"] == "order:1"
        assert kwargs["metadata"]["record_id"] == "r-1"
        assert "timestamp" in kwargs["metadata"]

    @pytest.mark.asyncio
    async def test_log_uses_level(self) -> None:
        await self.manager.log("WARNING", "Hook failed", context={"entity": "order:1"})

        self.mock_logger.warning.assert_called_once_with("Hook failed", entity="order:1")

    @pytest.mark.asyncio
    async def test_log_without_context(self) -> None:
        await self.manager.log("DEBUG", "Lock acquired")

        self.mock_logger.debug.assert_called_once_with("Lock acquired")

    @pytest.mark.asyncio
    async def test_emit_failure_raises_observability_error(self) -> None:
        self.mock_logger.info.side_effect = RuntimeError("sink closed")

        with pytest.raises(ObservabilityError, match="Failed to emit event"):
            await self.manager.emit_event("transition_committed", {})

    @pytest.mark.asyncio
    async def test_log_failure_raises_observability_error(self) -> None:
        self.mock_logger.error.side_effect = RuntimeError("sink closed")

        with pytest.raises(ObservabilityError, match="Failed to log message"):
            await self.manager.log("ERROR", "Commit failed")
