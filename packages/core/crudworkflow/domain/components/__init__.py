"""Domain components for crudworkflow."""

from crudworkflow.domain.components.comment_policy import CommentError, evaluate
from crudworkflow.domain.components.entity_locks import EntityLockRegistry
from crudworkflow.domain.components.schema_registry import (
    PostTransitionHook,
    RegisteredWorkflow,
    SchemaRegistry,
    TransitionHandler,
    UnknownEntityTypeError,
)
from crudworkflow.domain.components.transition_engine import TransitionEngine

__all__ = [
    "CommentError",
    "EntityLockRegistry",
    "PostTransitionHook",
    "RegisteredWorkflow",
    "SchemaRegistry",
    "TransitionEngine",
    "TransitionHandler",
    "UnknownEntityTypeError",
    "evaluate",
]
