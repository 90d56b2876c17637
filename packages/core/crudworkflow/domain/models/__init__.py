"""Domain models for crudworkflow."""

from crudworkflow.domain.models.gateway_response import (
    AvailableTransition,
    GatewayResponse,
    GatewayStatus,
    StateView,
    TransitionRequest,
)
from crudworkflow.domain.models.principal import StaticPrincipal
from crudworkflow.domain.models.state_schema import (
    CommentPolicy,
    SchemaError,
    StateDefinition,
    StateSchema,
    TransitionDefinition,
)
from crudworkflow.domain.models.transition_error import (
    BodyFailedError,
    CommentPolicyViolationError,
    InvalidSourceStateError,
    TransitionError,
    TransitionErrorKind,
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

__all__ = [
    "AvailableTransition",
    "BodyFailedError",
    "CommentPolicy",
    "CommentPolicyViolationError",
    "EntityRef",
    "EntitySnapshot",
    "GatewayResponse",
    "GatewayStatus",
    "HookEvent",
    "InvalidSourceStateError",
    "SchemaError",
    "StateDefinition",
    "StateSchema",
    "StateView",
    "StaticPrincipal",
    "TransitionContext",
    "TransitionDefinition",
    "TransitionError",
    "TransitionErrorKind",
    "TransitionOutcome",
    "TransitionRecord",
    "TransitionRequest",
    "UnauthorizedTransitionError",
    "UnknownTransitionError",
]
