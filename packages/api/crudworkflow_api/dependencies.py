"""
Dependency injection setup for the crudworkflow API.
"""

from functools import cache
from typing import Annotated

from fastapi import Header, HTTPException, status

from crudworkflow.domain.models.principal import StaticPrincipal
from crudworkflow.gateway import TransitionGateway


@cache
def get_gateway() -> TransitionGateway:
    """Get a singleton instance of the TransitionGateway.

    Configuration, including the schema file, comes from CRUDWORKFLOW_*
    environment variables.
    """
    return TransitionGateway()


def get_principal(
    x_principal_id: Annotated[str | None, Header()] = None,
    x_principal_permissions: Annotated[str, Header()] = "",
) -> StaticPrincipal:
    """Build the acting principal from request headers.

    X-Principal-Id carries the identifier; X-Principal-Permissions carries a
    comma-separated permission list. Authentication is the job of whatever
    sits in front of this service.

    Raises:
        HTTPException: 401 if X-Principal-Id is missing.
    """
    if not x_principal_id or not x_principal_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-Principal-Id header",
        )
    permissions = frozenset(
        p.strip() for p in x_principal_permissions.split(",") if p.strip()
    )
    return StaticPrincipal(identifier=x_principal_id, permissions=permissions)
