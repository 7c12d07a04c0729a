"""
Owner-facing integration management routes.

All endpoints require an identity-provider bearer token; the token subject
must own the integration being read or changed.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status

from jsonoracle.api.auth import get_container, get_owner
from jsonoracle.api.routes.analyses import to_analysis_response
from jsonoracle.api.schemas import (
    AnalysisResponse,
    ApiKeyResponse,
    IntegrationCreate,
    IntegrationCreateResponse,
    IntegrationResponse,
    IntegrationUpdate,
    OwnerStatsResponse,
)
from jsonoracle.container import ServiceContainer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/user", tags=["integrations"])


@router.post(
    "/integrations",
    response_model=IntegrationCreateResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_integration(
    body: IntegrationCreate,
    owner: str = Depends(get_owner),
    container: ServiceContainer = Depends(get_container),
) -> IntegrationCreateResponse:
    """
    Register an integration.

    The API key and webhook secret are returned only in this response.
    """
    integration, api_key = container.registry.register(
        owner=owner,
        name=body.name,
        transport_kind=body.transport_kind,
        webhook_url=body.webhook_url,
        config=body.config,
    )
    return IntegrationCreateResponse(
        **IntegrationResponse.model_validate(integration).model_dump(),
        api_key=api_key,
        webhook_secret=integration.webhook_secret,
    )


@router.get("/integrations", response_model=list[IntegrationResponse])
def list_integrations(
    owner: str = Depends(get_owner),
    container: ServiceContainer = Depends(get_container),
) -> list[IntegrationResponse]:
    integrations = container.registry.list_by_owner(owner)
    return [IntegrationResponse.model_validate(i) for i in integrations]


@router.get("/integrations/{integration_id}", response_model=IntegrationResponse)
def get_integration(
    integration_id: UUID,
    owner: str = Depends(get_owner),
    container: ServiceContainer = Depends(get_container),
) -> IntegrationResponse:
    integration = container.registry.get_owned(integration_id, owner)
    return IntegrationResponse.model_validate(integration)


@router.patch("/integrations/{integration_id}", response_model=IntegrationResponse)
def update_integration(
    integration_id: UUID,
    body: IntegrationUpdate,
    owner: str = Depends(get_owner),
    container: ServiceContainer = Depends(get_container),
) -> IntegrationResponse:
    """Update name, webhook URL or configuration (merged over the current one)."""
    integration = container.registry.update_config(
        integration_id,
        owner,
        name=body.name,
        webhook_url=body.webhook_url,
        config=body.config,
    )
    return IntegrationResponse.model_validate(integration)


@router.post("/integrations/{integration_id}/rotate-key", response_model=ApiKeyResponse)
def rotate_api_key(
    integration_id: UUID,
    owner: str = Depends(get_owner),
    container: ServiceContainer = Depends(get_container),
) -> ApiKeyResponse:
    """Issue a new API key. The previous key stops working immediately."""
    api_key = container.registry.rotate_key(integration_id, owner)
    return ApiKeyResponse(integration_id=integration_id, api_key=api_key)


@router.post("/integrations/{integration_id}/suspend", response_model=IntegrationResponse)
def suspend_integration(
    integration_id: UUID,
    owner: str = Depends(get_owner),
    container: ServiceContainer = Depends(get_container),
) -> IntegrationResponse:
    integration = container.registry.suspend(integration_id, owner)
    return IntegrationResponse.model_validate(integration)


@router.post("/integrations/{integration_id}/reactivate", response_model=IntegrationResponse)
def reactivate_integration(
    integration_id: UUID,
    owner: str = Depends(get_owner),
    container: ServiceContainer = Depends(get_container),
) -> IntegrationResponse:
    integration = container.registry.reactivate(integration_id, owner)
    return IntegrationResponse.model_validate(integration)


@router.delete("/integrations/{integration_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_integration(
    integration_id: UUID,
    owner: str = Depends(get_owner),
    container: ServiceContainer = Depends(get_container),
) -> Response:
    """Delete an integration. Its results remain available for audit."""
    container.registry.delete(integration_id, owner)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/integrations/{integration_id}/results", response_model=list[AnalysisResponse]
)
def list_results(
    integration_id: UUID,
    limit: int = Query(50, ge=1, le=500),
    owner: str = Depends(get_owner),
    container: ServiceContainer = Depends(get_container),
) -> list[AnalysisResponse]:
    results = container.service.list_results(integration_id, limit=limit, owner=owner)
    return [to_analysis_response(r, include_turns=False) for r in results]


@router.get("/stats", response_model=OwnerStatsResponse)
def owner_stats(
    owner: str = Depends(get_owner),
    container: ServiceContainer = Depends(get_container),
) -> OwnerStatsResponse:
    """Integration and analysis counters for the dashboard."""
    return OwnerStatsResponse(**container.service.owner_stats(owner))
