"""Configuration management for crudworkflow."""

from crudworkflow.infrastructure.config.file_loader import (
    ConfigurationError,
    SchemaFileLoader,
)
from crudworkflow.infrastructure.config.settings import WorkflowSettings

__all__ = [
    "ConfigurationError",
    "SchemaFileLoader",
    "WorkflowSettings",
]
