"""Shared test configuration.

Backend URLs for the integration suites (REDIS_URL, MONGODB_URL) may come
from a .env file at the repository root or in packages/core. Workflow
settings themselves are isolated per test so a developer's CRUDWORKFLOW_*
variables never change which store a gateway builds.
"""

import os
from pathlib import Path

import pytest
from dotenv import load_dotenv

CORE_ROOT = Path(__file__).resolve().parent.parent
REPO_ROOT = CORE_ROOT.parent.parent
SETTINGS_ENV_PREFIX = "CRUDWORKFLOW_"

# Earlier files win; load_dotenv never overrides what is already set.
for env_file in (REPO_ROOT / ".env", CORE_ROOT / ".env"):
    if env_file.exists():
        load_dotenv(env_file, override=False)


@pytest.fixture(autouse=True)
def isolated_workflow_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    """Drop CRUDWORKFLOW_* variables for the duration of each test."""
    for name in list(os.environ):
        if name.upper().startswith(SETTINGS_ENV_PREFIX):
            monkeypatch.delenv(name)
