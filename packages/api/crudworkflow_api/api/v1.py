"""API v1 routes for workflow entities."""

from typing import Annotated, Any

from fastapi import APIRouter, Body, Depends, HTTPException, Path, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from crudworkflow.domain.components.schema_registry import UnknownEntityTypeError
from crudworkflow.domain.interfaces.workflow_store import EntityExistsError, StoreError
from crudworkflow.domain.models.gateway_response import GatewayStatus, TransitionRequest
from crudworkflow.domain.models.principal import StaticPrincipal
from crudworkflow.domain.models.transition_record import EntityRef
from crudworkflow.gateway import TransitionGateway
from crudworkflow_api.dependencies import get_gateway, get_principal

router = APIRouter()

HTTP_STATUS_BY_GATEWAY_STATUS: dict[GatewayStatus, int] = {
    GatewayStatus.Ok: status.HTTP_200_OK,
    GatewayStatus.NotFound: status.HTTP_404_NOT_FOUND,
    GatewayStatus.Conflict: status.HTTP_409_CONFLICT,
    GatewayStatus.Forbidden: status.HTTP_403_FORBIDDEN,
    GatewayStatus.Invalid: 422,
    GatewayStatus.Failed: status.HTTP_500_INTERNAL_SERVER_ERROR,
    GatewayStatus.Error: status.HTTP_503_SERVICE_UNAVAILABLE,
}

EntityType = Annotated[str, Path(..., description="Entity type tag.")]
EntityId = Annotated[str, Path(..., description="Entity identifier.")]


class TransitionBody(BaseModel):
    comment: str | None = Field(None, description="Optional comment for the transition.")


@router.post("/entities/{entity_type}/{entity_id}", status_code=status.HTTP_201_CREATED)
async def initialize_entity(
    entity_type: EntityType,
    entity_id: EntityId,
    gateway: Annotated[TransitionGateway, Depends(get_gateway)],
) -> dict[str, Any]:
    """
    Create an entity in its workflow's initial state.
    """
    ref = EntityRef(entity_type=entity_type, entity_id=entity_id)
    if entity_type not in gateway.registry:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No workflow registered for entity type '{entity_type}'",
        )

    try:
        snapshot = await gateway.initialize_entity(ref)
    except UnknownEntityTypeError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except EntityExistsError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    except StoreError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e)
        ) from e
    return {"entity": snapshot.model_dump(mode="json")}


@router.get("/entities/{entity_type}/{entity_id}")
async def describe_entity(
    entity_type: EntityType,
    entity_id: EntityId,
    gateway: Annotated[TransitionGateway, Depends(get_gateway)],
) -> dict[str, Any]:
    """
    Get the entity's current state with its label and badge.
    """
    view = await gateway.describe(EntityRef(entity_type=entity_type, entity_id=entity_id))
    if view is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Entity {entity_type}:{entity_id} not found",
        )
    return {"state": view.model_dump(mode="json")}


@router.post("/entities/{entity_type}/{entity_id}/transitions/{transition}")
async def execute_transition(
    entity_type: EntityType,
    entity_id: EntityId,
    transition: Annotated[str, Path(..., description="Transition name.")],
    gateway: Annotated[TransitionGateway, Depends(get_gateway)],
    principal: Annotated[StaticPrincipal, Depends(get_principal)],
    body: Annotated[TransitionBody | None, Body()] = None,
) -> JSONResponse:
    """
    Execute a named transition on an entity.
    """
    response = await gateway.execute(
        TransitionRequest(
            entity=EntityRef(entity_type=entity_type, entity_id=entity_id),
            transition=transition,
            actor=principal,
            comment=body.comment if body is not None else None,
        )
    )
    return JSONResponse(
        status_code=HTTP_STATUS_BY_GATEWAY_STATUS[response.status],
        content=response.model_dump(mode="json"),
    )


@router.get("/entities/{entity_type}/{entity_id}/transitions")
async def list_available_transitions(
    entity_type: EntityType,
    entity_id: EntityId,
    gateway: Annotated[TransitionGateway, Depends(get_gateway)],
    principal: Annotated[StaticPrincipal, Depends(get_principal)],
) -> dict[str, Any]:
    """
    List transitions the principal may run from the entity's current state.
    """
    available = await gateway.list_available(
        EntityRef(entity_type=entity_type, entity_id=entity_id), principal
    )
    return {"transitions": [t.model_dump(mode="json") for t in available]}


@router.get("/entities/{entity_type}/{entity_id}/history")
async def get_entity_history(
    entity_type: EntityType,
    entity_id: EntityId,
    gateway: Annotated[TransitionGateway, Depends(get_gateway)],
) -> dict[str, Any]:
    """
    Get the audit trail for an entity, oldest first.
    """
    try:
        records = await gateway.query_by_entity(entity_type, entity_id)
    except StoreError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e)
        ) from e
    return {"history": [r.model_dump(mode="json") for r in records]}
