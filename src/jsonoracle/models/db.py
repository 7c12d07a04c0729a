"""
SQLAlchemy database models for JSON Oracle.

These models represent the database schema for integrations, analysis
requests and their results, and the webhook delivery audit trail.
"""

import enum
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class TransportKind(str, enum.Enum):
    """How an integration receives its results."""

    WEBHOOK = "webhook"  # Signed POST to the registered URL
    POLLING = "polling"  # Caller polls the result endpoints
    STREAM_ONLY = "stream_only"  # Live stream subscribers only


class IntegrationStatus(str, enum.Enum):
    """Lifecycle status of an integration."""

    ACTIVE = "active"
    SUSPENDED = "suspended"


class AnalysisStatus(str, enum.Enum):
    """Status of an analysis result. Transitions are monotonic."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (AnalysisStatus.COMPLETED, AnalysisStatus.FAILED)


# Allowed status transitions (pending -> running -> completed | failed).
# A pending analysis may fail directly when cancelled before it starts.
STATUS_TRANSITIONS: dict[AnalysisStatus, set[AnalysisStatus]] = {
    AnalysisStatus.PENDING: {AnalysisStatus.RUNNING, AnalysisStatus.FAILED},
    AnalysisStatus.RUNNING: {AnalysisStatus.COMPLETED, AnalysisStatus.FAILED},
    AnalysisStatus.COMPLETED: set(),
    AnalysisStatus.FAILED: set(),
}


class FailureReason(str, enum.Enum):
    """Request-level failure reasons recorded on failed results."""

    ALL_MODELS_UNAVAILABLE = "AllModelsUnavailable"
    CANCELLED = "Cancelled"
    INTERNAL_ERROR = "InternalError"


class DeliveryOutcome(str, enum.Enum):
    """Outcome of a single webhook delivery attempt."""

    SUCCESS = "success"
    RETRIABLE_FAILURE = "retriable_failure"
    PERMANENT_FAILURE = "permanent_failure"


class Integration(Base):
    """A registered external caller with its credentials and delivery config."""

    __tablename__ = "integrations"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    owner_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    transport_kind: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TransportKind.WEBHOOK.value
    )
    webhook_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Authentication (single API key per integration, stored salted + hashed)
    api_key_prefix: Mapped[str] = mapped_column(
        String(32), nullable=False, index=True
    )  # First characters of the key, used for lookup only
    api_key_salt: Mapped[str] = mapped_column(String(64), nullable=False)
    api_key_hash: Mapped[str] = mapped_column(
        String(64), nullable=False, unique=True
    )  # HMAC-SHA256(salt, key)
    webhook_secret: Mapped[str] = mapped_column(String(128), nullable=False)

    # Domain tag, default model set, notification flags
    config: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=IntegrationStatus.ACTIVE.value, index=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )
    last_activity_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )  # Tombstone; results stay queryable for audit

    @property
    def is_suspended(self) -> bool:
        return self.status == IntegrationStatus.SUSPENDED.value

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def __repr__(self) -> str:
        return (
            f"<Integration(id={self.id}, name={self.name!r}, "
            f"status={self.status!r})>"
        )


class AnalysisRequest(Base):
    """An accepted analysis submission. Immutable once stored."""

    __tablename__ = "analysis_requests"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    # No cascade: deleting an integration leaves its history in place
    integration_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("integrations.id"), nullable=False, index=True
    )
    payload: Mapped[dict] = mapped_column(JSONB, nullable=False)
    domain: Mapped[str] = mapped_column(String(50), nullable=False)
    models: Mapped[list] = mapped_column(JSONB, nullable=False)
    analysis_type: Mapped[str] = mapped_column(String(50), nullable=False, default="general")
    rounds: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    callback_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # analysis_type, custom_prompt, custom_instructions, output_format
    prompt_options: Mapped[Optional[dict]] = mapped_column(JSONB, nullable=True)
    submitted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    result: Mapped["AnalysisResult"] = relationship(
        back_populates="request", uselist=False
    )

    def __repr__(self) -> str:
        return f"<AnalysisRequest(id={self.id}, domain={self.domain!r})>"


class AnalysisResult(Base):
    """Outcome of an analysis: turns, insights, recommendations, metrics."""

    __tablename__ = "analysis_results"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    request_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("analysis_requests.id"),
        nullable=False,
        unique=True,
    )
    integration_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), nullable=False, index=True
    )

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=AnalysisStatus.PENDING.value, index=True
    )
    failure_reason: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    turns: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    insights: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    recommendations: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    metrics: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    data_sample: Mapped[Optional[dict]] = mapped_column(JSONB, nullable=True)
    processing_time: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False, index=True
    )
    started_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    request: Mapped["AnalysisRequest"] = relationship(back_populates="result")
    delivery_attempts: Mapped[list["DeliveryAttempt"]] = relationship(
        back_populates="result", order_by="DeliveryAttempt.attempted_at"
    )

    __table_args__ = (
        Index("ix_analysis_results_integration_created", "integration_id", "created_at"),
    )

    @property
    def insights_count(self) -> int:
        return len(self.insights or [])

    @property
    def recommendations_count(self) -> int:
        return len(self.recommendations or [])

    def to_dict(self, include_turns: bool = True) -> dict:
        """JSON document for webhooks and live streams."""
        document = {
            "id": str(self.id),
            "integration_id": str(self.integration_id),
            "status": self.status,
            "failure_reason": self.failure_reason,
            "analysis_result": {
                "insights": list(self.insights or []),
                "recommendations": list(self.recommendations or []),
                "metrics": dict(self.metrics or {}),
                "summary": self.summary,
                "data_sample": self.data_sample,
            },
            "processing_time": self.processing_time,
            "insights_count": self.insights_count,
            "recommendations_count": self.recommendations_count,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }
        if include_turns:
            document["turns"] = list(self.turns or [])
        return document

    def __repr__(self) -> str:
        return f"<AnalysisResult(id={self.id}, status={self.status!r})>"


class DeliveryAttempt(Base):
    """One try at pushing a finished result to a webhook."""

    __tablename__ = "delivery_attempts"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    integration_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), nullable=False, index=True
    )
    result_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("analysis_results.id"), nullable=False, index=True
    )
    target_url: Mapped[str] = mapped_column(Text, nullable=False)
    attempt_number: Mapped[int] = mapped_column(Integer, nullable=False)
    outcome: Mapped[str] = mapped_column(String(30), nullable=False)
    status_code: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    attempted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    next_retry_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    result: Mapped["AnalysisResult"] = relationship(back_populates="delivery_attempts")

    def __repr__(self) -> str:
        return (
            f"<DeliveryAttempt(result_id={self.result_id}, "
            f"attempt={self.attempt_number}, outcome={self.outcome!r})>"
        )
