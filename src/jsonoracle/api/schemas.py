"""
API schemas for JSON Oracle.

Pydantic models for request/response validation.
"""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field

# ===== Analysis =====


class AnalyzeRequest(BaseModel):
    """Body of POST /analyze."""

    integration_id: Optional[UUID] = None
    api_key: Optional[str] = None  # Alternative to the X-API-Key header
    data: Any = None
    domain: Optional[str] = None
    models: Optional[list[str]] = None
    rounds: int = 1
    callback_url: Optional[str] = None
    analysis_type: Optional[str] = None  # prediction, optimization, ... (default general)
    prompt: Optional[str] = None  # Replaces the built-in role and focus areas
    custom_instructions: Optional[str] = None
    output_format: Optional[str] = None  # structured, narrative, bullet_points, table, json or free text


class DomainsResponse(BaseModel):
    """Supported domains, analysis types and output formats."""

    domains: list[str]
    analysis_types: list[str]
    output_formats: list[str]


class AnalysisBody(BaseModel):
    """Findings of a finished analysis."""

    insights: list[dict[str, Any]] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    metrics: dict[str, Any] = Field(default_factory=dict)
    summary: Optional[str] = None
    data_sample: Optional[Any] = None


class AnalysisResponse(BaseModel):
    """Stored analysis result."""

    id: UUID
    integration_id: UUID
    status: str  # pending, running, completed, failed
    failure_reason: Optional[str] = None
    analysis_result: AnalysisBody
    processing_time: Optional[float] = None  # Seconds from acceptance to completion
    insights_count: int = 0
    recommendations_count: int = 0
    turns: list[dict[str, Any]] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class DeliveryAttemptResponse(BaseModel):
    """One webhook delivery attempt."""

    attempt_number: int
    target_url: str
    outcome: str
    status_code: Optional[int] = None
    error: Optional[str] = None
    attempted_at: datetime
    next_retry_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class AnalysisDetailResponse(AnalysisResponse):
    """Analysis result with its delivery history."""

    delivery_attempts: list[DeliveryAttemptResponse] = Field(default_factory=list)


# ===== Integrations =====


class IntegrationCreate(BaseModel):
    """Request to register an integration."""

    name: str
    transport_kind: str = "webhook"  # webhook, polling, stream_only
    webhook_url: Optional[str] = None
    config: Optional[dict[str, Any]] = None


class IntegrationUpdate(BaseModel):
    """Partial update of an integration. Omitted fields are left unchanged."""

    name: Optional[str] = None
    webhook_url: Optional[str] = None
    config: Optional[dict[str, Any]] = None


class IntegrationResponse(BaseModel):
    """Integration as shown to its owner. Credentials are never included."""

    id: UUID
    owner_id: str
    name: str
    transport_kind: str
    webhook_url: Optional[str] = None
    api_key_prefix: str
    config: dict[str, Any] = Field(default_factory=dict)
    status: str
    created_at: datetime
    updated_at: datetime
    last_activity_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class IntegrationCreateResponse(IntegrationResponse):
    """Returned once at registration; the API key is not retrievable later."""

    api_key: str
    webhook_secret: str


class ApiKeyResponse(BaseModel):
    """Returned by key rotation."""

    integration_id: UUID
    api_key: str


# ===== Stats =====


class OwnerStatsResponse(BaseModel):
    """Dashboard counters across an owner's integrations."""

    total_integrations: int
    active_integrations: int
    total_analyses: int
    successful_analyses: int
    failed_analyses: int
    recent_analyses_24h: int
    success_rate: float


class HealthResponse(BaseModel):
    status: str
    database: str
