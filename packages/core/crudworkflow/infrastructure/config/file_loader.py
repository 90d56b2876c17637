"""Workflow schema file loader for YAML and JSON files."""

import json
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from crudworkflow.domain.models.state_schema import StateSchema


class ConfigurationError(Exception):
    """Raised when configuration loading or validation fails."""

    def __init__(self, message: str, field: str | None = None) -> None:
        """Initialize ConfigurationError.

        Args:
            message: Human-readable error message.
            field: Optional field name that failed validation.
        """
        self.message = message
        self.field = field
        super().__init__(self.message)

    def __str__(self) -> str:
        """Return error message with field name if available."""
        if self.field:
            return f"Configuration error in field '{self.field}': {self.message}"
        return self.message


class SchemaFileLoader:
    """Loads workflow schema definitions from YAML or JSON files.

    The file holds a top-level `workflows` list; each entry is one
    StateSchema. States may be given as bare values or as mappings with
    `value`, `label` and `badge`.

    Example file:
        ```yaml
        workflows:
          - entity_type: order
            initial_state: new
            states:
              - new
              - {value: active, label: Active, badge: success}
              - {value: error, badge: danger}
            transitions:
              - name: activate
                source: new
                target: active
                error_target: error
                comment_policy: optional
                permission: order.activate
        ```
    """

    def __init__(self, config_file_path: str | Path | None = None) -> None:
        """Initialize SchemaFileLoader.

        Args:
            config_file_path: Path to the schema file. If None, reads the
                CRUDWORKFLOW_SCHEMA_FILE environment variable.

        Raises:
            ConfigurationError: If no path is available or the file does not exist.
        """
        if config_file_path is None:
            config_file_path = os.getenv("CRUDWORKFLOW_SCHEMA_FILE")
            if not config_file_path:
                raise ConfigurationError(
                    "Schema file path not provided and CRUDWORKFLOW_SCHEMA_FILE "
                    "environment variable is not set"
                )

        self._config_path = Path(config_file_path)
        if not self._config_path.exists():
            raise ConfigurationError(f"Schema file not found: {self._config_path}")

    def load(self) -> dict[str, Any]:
        """Load the raw file contents.

        Detects the format from the file extension.

        Raises:
            ConfigurationError: If the format is unsupported or the file cannot be parsed.
        """
        suffix = self._config_path.suffix.lower()

        if suffix in (".yaml", ".yml"):
            return self._load_yaml()
        elif suffix == ".json":
            return self._load_json()
        else:
            raise ConfigurationError(
                f"Unsupported schema file format: {suffix}. "
                "Supported formats: .yaml, .yml, .json"
            )

    def load_schemas(self) -> list[StateSchema]:
        """Load and validate every schema in the file.

        Raises:
            ConfigurationError: If the file structure is invalid.
            SchemaError: If a schema is well-formed but semantically invalid
                (undeclared states, duplicate names, and so on).
        """
        return self.parse_schemas(self.load())

    def parse_schemas(self, config: dict[str, Any]) -> list[StateSchema]:
        """Build StateSchema objects from a loaded configuration dictionary.

        Raises:
            ConfigurationError: If the structure or a field type is invalid.
            SchemaError: If a schema fails semantic validation.
        """
        workflows = config.get("workflows", [])
        if not isinstance(workflows, list):
            raise ConfigurationError(
                "Configuration 'workflows' must be a list", field="workflows"
            )

        schemas = []
        seen: set[str] = set()
        for idx, workflow in enumerate(workflows):
            if not isinstance(workflow, dict):
                raise ConfigurationError(
                    f"Workflow configuration at index {idx} must be a dictionary",
                    field=f"workflows[{idx}]",
                )
            try:
                schema = StateSchema.model_validate(workflow)
            except ValidationError as e:
                first = e.errors()[0]
                location = ".".join(str(part) for part in first["loc"])
                raise ConfigurationError(
                    f"Workflow configuration at index {idx} is invalid: {first['msg']}",
                    field=f"workflows[{idx}].{location}" if location else f"workflows[{idx}]",
                ) from e

            if schema.entity_type in seen:
                raise ConfigurationError(
                    f"Duplicate workflow for entity type '{schema.entity_type}'",
                    field=f"workflows[{idx}].entity_type",
                )
            seen.add(schema.entity_type)
            schemas.append(schema)

        return schemas

    def _load_yaml(self) -> dict[str, Any]:
        try:
            with self._config_path.open("r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
                if data is None:
                    return {}
                if not isinstance(data, dict):
                    raise ConfigurationError("YAML file must contain a dictionary/mapping")
                return data
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML format: {e}") from e
        except OSError as e:
            raise ConfigurationError(f"Failed to read schema file: {e}") from e

    def _load_json(self) -> dict[str, Any]:
        try:
            with self._config_path.open("r", encoding="utf-8") as f:
                data = json.load(f)
                if not isinstance(data, dict):
                    raise ConfigurationError("JSON file must contain an object")
                return data
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid JSON format: {e}") from e
        except OSError as e:
            raise ConfigurationError(f"Failed to read schema file: {e}") from e
