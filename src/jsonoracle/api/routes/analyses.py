"""
Analysis API routes.

Integration-facing endpoints, authenticated with the integration's API key:
- POST /analyze - Submit a payload for analysis
- GET /analyses/{analysis_id} - Result with delivery attempts
- POST /analyses/{analysis_id}/cancel - Cancel an unfinished analysis
- GET /integrations/{integration_id}/results - Recent results
- GET /domains - Supported domains, analysis types and output formats
"""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status

from jsonoracle.api.auth import get_api_key, get_container, require_api_key
from jsonoracle.api.schemas import (
    AnalysisDetailResponse,
    AnalysisResponse,
    AnalyzeRequest,
    DeliveryAttemptResponse,
    DomainsResponse,
)
from jsonoracle.container import ServiceContainer
from jsonoracle.models.db import AnalysisResult
from jsonoracle.prompts import OutputFormat, supported_analysis_types, supported_domains

logger = logging.getLogger(__name__)

router = APIRouter(tags=["analyses"])


def to_analysis_response(result: AnalysisResult, include_turns: bool = True) -> AnalysisResponse:
    return AnalysisResponse(**result.to_dict(include_turns=include_turns))


@router.post("/analyze", response_model=AnalysisResponse)
async def analyze(
    body: AnalyzeRequest,
    response: Response,
    wait: bool = Query(True, description="Wait for the analysis to finish"),
    api_key: Optional[str] = Depends(get_api_key),
    container: ServiceContainer = Depends(get_container),
) -> AnalysisResponse:
    """
    Run a multi-model analysis of a JSON payload.

    With ``wait=false`` the pending record is returned at once with status
    202; the finished result is delivered by webhook, stream or polling.
    """
    result = await container.service.submit(
        api_key=api_key or body.api_key,
        integration_id=body.integration_id,
        data=body.data,
        domain=body.domain,
        models=body.models,
        rounds=body.rounds,
        callback_url=body.callback_url,
        wait=wait,
        analysis_type=body.analysis_type,
        custom_prompt=body.prompt,
        custom_instructions=body.custom_instructions,
        output_format=body.output_format,
    )
    if not wait:
        response.status_code = status.HTTP_202_ACCEPTED
    return to_analysis_response(result)


@router.get("/analyses/{analysis_id}", response_model=AnalysisDetailResponse)
def get_analysis(
    analysis_id: UUID,
    api_key: str = Depends(require_api_key),
    container: ServiceContainer = Depends(get_container),
) -> AnalysisDetailResponse:
    """Get an analysis result and its webhook delivery attempts."""
    result = container.service.get_result(analysis_id, api_key=api_key)
    return AnalysisDetailResponse(
        **result.to_dict(),
        delivery_attempts=[
            DeliveryAttemptResponse.model_validate(attempt)
            for attempt in result.delivery_attempts
        ],
    )


@router.post("/analyses/{analysis_id}/cancel", response_model=AnalysisResponse)
def cancel_analysis(
    analysis_id: UUID,
    api_key: str = Depends(require_api_key),
    container: ServiceContainer = Depends(get_container),
) -> AnalysisResponse:
    """Cancel an analysis that has not finished yet."""
    result = container.service.cancel(analysis_id, api_key=api_key)
    return to_analysis_response(result)


@router.get("/integrations/{integration_id}/results", response_model=list[AnalysisResponse])
def list_integration_results(
    integration_id: UUID,
    limit: int = Query(50, ge=1, le=500),
    api_key: str = Depends(require_api_key),
    container: ServiceContainer = Depends(get_container),
) -> list[AnalysisResponse]:
    """Most recent results of the calling integration, newest first."""
    results = container.service.list_results(integration_id, limit=limit, api_key=api_key)
    return [to_analysis_response(r, include_turns=False) for r in results]


@router.get("/domains", response_model=DomainsResponse)
def list_domains() -> DomainsResponse:
    """Domains, analysis types and output formats accepted by /analyze."""
    return DomainsResponse(
        domains=supported_domains(),
        analysis_types=supported_analysis_types(),
        output_formats=[output_format.value for output_format in OutputFormat],
    )
