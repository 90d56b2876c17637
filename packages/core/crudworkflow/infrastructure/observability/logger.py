"""Default observability manager implementation."""

import logging
from datetime import UTC, datetime
from typing import Any

import structlog

from crudworkflow.domain.interfaces.observability_manager import (
    ObservabilityError,
    ObservabilityManager,
)

MAX_LOGGED_COMMENT_LENGTH = 200


def sanitize_for_logging(data: Any) -> Any:
    """Trim free-text fields before they reach the log stream.

    Transition comments are user-supplied and unbounded; they are truncated
    to MAX_LOGGED_COMMENT_LENGTH characters. Nested dicts and lists are
    sanitized recursively.

    Args:
        data: Data structure to sanitize (dict, list, or primitive).

    Returns:
        Sanitized data structure.
    """
    if isinstance(data, dict):
        sanitized = {}
        for key, value in data.items():
            if key == "comment" and isinstance(value, str):
                sanitized[key] = _truncate(value)
            else:
                sanitized[key] = sanitize_for_logging(value)
        return sanitized
    elif isinstance(data, list):
        return [sanitize_for_logging(item) for item in data]
    return data


def _truncate(text: str) -> str:
    if len(text) <= MAX_LOGGED_COMMENT_LENGTH:
        return text
    return text[:MAX_LOGGED_COMMENT_LENGTH] + "...[truncated]"


class DefaultObservabilityManager(ObservabilityManager):
    """Default implementation of ObservabilityManager using structlog.

    Emits JSON lines in production and human-readable console output in
    development mode.
    """

    def __init__(self, log_level: str = "INFO", json_format: bool = True) -> None:
        """Initialize DefaultObservabilityManager.

        Args:
            log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
            json_format: If True, render JSON. If False, use the console
                renderer (development mode).
        """
        self._log_level = log_level
        self._json_format = json_format

        processors = [
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
        ]

        if json_format:
            processors.append(structlog.processors.JSONRenderer())
        else:
            processors.append(structlog.dev.ConsoleRenderer())

        structlog.configure(
            processors=processors,
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=True,
        )

        logging.basicConfig(
            level=getattr(logging, log_level.upper(), logging.INFO),
            format="%(message)s"
            if json_format
            else "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        )

        self._logger = structlog.get_logger("crudworkflow")

    async def emit_event(
        self,
        event_type: str,
        payload: dict[str, Any],
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Emit a workflow event as a structured log line.

        Args:
            event_type: Type of event (e.g., "transition_committed").
            payload: Event payload data.
            metadata: Optional metadata (record_id, timestamp, etc.).

        Raises:
            ObservabilityError: If event emission fails.
        """
        try:
            event_data = sanitize_for_logging(payload)
            if metadata:
                event_data["metadata"] = {
                    "timestamp": datetime.now(UTC).isoformat(),
                    **sanitize_for_logging(metadata),
                }

            self._logger.info(
                "Event emitted",
                event_type=event_type,
                **event_data,
            )
        except Exception as e:
            raise ObservabilityError(f"Failed to emit event: {e}") from e

    async def log(
        self,
        level: str,
        message: str,
        context: dict[str, Any] | None = None,
    ) -> None:
        """Log a message with structured context.

        Args:
            level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
            message: Log message.
            context: Optional structured context data.

        Raises:
            ObservabilityError: If logging fails.
        """
        try:
            sanitized_context = sanitize_for_logging(context) if context else None

            log_method = getattr(self._logger, level.lower(), self._logger.info)
            if sanitized_context:
                log_method(message, **sanitized_context)
            else:
                log_method(message)
        except Exception as e:
            raise ObservabilityError(f"Failed to log message: {e}") from e
