"""TransitionError hierarchy for rejected and failed transitions."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from crudworkflow.domain.models.transition_record import TransitionRecord


class TransitionErrorKind(str, Enum):
    """Categories of transition errors."""

    UnknownTransition = "unknown_transition"
    """Transition name is not declared in the entity's schema."""

    InvalidSourceState = "invalid_source_state"
    """Entity is not in the transition's source state (stale or replayed request)."""

    Unauthorized = "unauthorized"
    """Principal lacks the transition's permission."""

    CommentPolicyViolation = "comment_policy_violation"
    """Comment required by the transition is missing or blank."""

    BodyFailed = "body_failed"
    """Transition body raised; entity moved to the error target."""


class TransitionError(Exception):
    """Base class for transition errors.

    All kinds except BodyFailed are raised before any mutation and leave the
    entity untouched; the caller may retry with corrected input.

    Example:
        ```python
        try:
            await engine.execute(ref, "approve", actor, comment="ok")
        except TransitionError as e:
            logger.warning("transition rejected", kind=e.kind.value)
        ```
    """

    kind: TransitionErrorKind

    def __init__(
        self,
        message: str,
        entity: str | None = None,
        transition: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize TransitionError.

        Args:
            message: Human-readable error message.
            entity: Entity reference as "type:id", if known.
            transition: Requested transition name, if known.
            details: Additional error details.
        """
        self.message = message
        self.entity = entity
        self.transition = transition
        self.details = details or {}
        super().__init__(self.message)

    @property
    def retryable(self) -> bool:
        """Whether a corrected request may succeed without a new transition."""
        return self.kind != TransitionErrorKind.BodyFailed

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(kind={self.kind.value}, "
            f"message={self.message!r}, entity={self.entity!r})"
        )

    def __str__(self) -> str:
        return self.message


class UnknownTransitionError(TransitionError):
    """Raised when the transition name does not resolve in the schema."""

    kind = TransitionErrorKind.UnknownTransition


class InvalidSourceStateError(TransitionError):
    """Raised when the entity's current state is not the transition's source."""

    kind = TransitionErrorKind.InvalidSourceState


class UnauthorizedTransitionError(TransitionError):
    """Raised when the principal fails the transition's authorization check."""

    kind = TransitionErrorKind.Unauthorized


class CommentPolicyViolationError(TransitionError):
    """Raised when the supplied comment does not satisfy the comment policy."""

    kind = TransitionErrorKind.CommentPolicyViolation


class BodyFailedError(TransitionError):
    """Raised when the transition body failed.

    Unlike the other kinds, a state change and an audit record were
    committed: the entity is now in the transition's error target and
    `record` describes that change. Retrying needs a fresh transition,
    typically one declared from the error state.
    """

    kind = TransitionErrorKind.BodyFailed

    def __init__(
        self,
        message: str,
        cause: BaseException,
        record: TransitionRecord,
        entity: str | None = None,
        transition: str | None = None,
        hook_error: str | None = None,
    ) -> None:
        """Initialize BodyFailedError.

        Args:
            message: Human-readable error message.
            cause: Exception raised by the transition body.
            record: Committed audit record (state_after is the error target).
            entity: Entity reference as "type:id".
            transition: Transition name.
            hook_error: Description of a post-transition hook failure, if any.
        """
        super().__init__(
            message,
            entity=entity,
            transition=transition,
            details={"error_type": type(cause).__name__},
        )
        self.cause = cause
        self.record = record
        self.hook_error = hook_error
