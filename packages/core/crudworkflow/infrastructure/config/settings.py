"""Configuration settings using pydantic-settings."""

from typing import Any, Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class WorkflowSettings(BaseSettings):
    """Configuration settings for crudworkflow.

    Settings can be loaded from environment variables or passed as a dictionary.
    Environment variables are prefixed with 'CRUDWORKFLOW_'
    (e.g., CRUDWORKFLOW_STORE_BACKEND=redis).

    Example:
        ```python
        # From environment variables
        settings = WorkflowSettings()

        # From dictionary
        settings = WorkflowSettings(store_backend="memory", log_level="DEBUG")
        ```
    """

    model_config = SettingsConfigDict(
        env_prefix="CRUDWORKFLOW_",
        case_sensitive=False,
        extra="ignore",
    )

    # Store configuration
    store_backend: Literal["memory", "redis", "mongo"] = Field(
        default="memory",
        description="Backend holding entity state and the audit ledger",
    )
    redis_url: str | None = Field(
        default=None,
        description="Redis connection URL (redis backend); falls back to REDIS_URL",
    )
    mongodb_url: str | None = Field(
        default=None,
        description="MongoDB connection URL (mongo backend); falls back to MONGODB_URL",
    )
    mongodb_database: str = Field(
        default="crudworkflow",
        description="MongoDB database name",
    )

    # Schema configuration
    schema_file: str | None = Field(
        default=None,
        description="Optional YAML/JSON file with workflow schema definitions",
    )

    # Engine configuration
    hook_timeout_seconds: float = Field(
        default=30.0,
        description="Upper bound on a post-transition hook run, in seconds",
        gt=0,
    )

    # Observability configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    json_logs: bool = Field(
        default=True,
        description="Render logs as JSON (False for console output in development)",
    )

    @classmethod
    def from_dict(cls, config: dict[str, Any]) -> "WorkflowSettings":
        """Create settings from a dictionary.

        Args:
            config: Dictionary with configuration values.

        Returns:
            WorkflowSettings instance.
        """
        return cls(**config)
