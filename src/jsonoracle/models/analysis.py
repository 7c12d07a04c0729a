"""
Analysis data models.

Python dataclasses describing a conversation while it runs and the structured
outcome it produces, before it is stored in the database.
"""

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional


class InsightKind(str, enum.Enum):
    PATTERN = "pattern"
    ANOMALY = "anomaly"
    TREND = "trend"
    PREDICTION = "prediction"


class Impact(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass
class ConversationTurn:
    """A single model invocation and its response.

    Failure markers have ``error`` set and an empty response; they are kept in
    the transcript for auditing but never fed back into prompts.
    """

    index: int
    round: int
    model: str
    prompt: str
    response: str = ""
    timestamp: Optional[datetime] = None
    latency_ms: float = 0.0
    error: Optional[str] = None  # ModelError.kind for failure markers
    attempts: int = 1

    @property
    def failed(self) -> bool:
        return self.error is not None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSONB storage."""
        return {
            "index": self.index,
            "round": self.round,
            "model": self.model,
            "prompt": self.prompt,
            "response": self.response,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "latency_ms": round(self.latency_ms, 3),
            "error": self.error,
            "attempts": self.attempts,
        }


@dataclass(frozen=True)
class Insight:
    """A structured finding extracted from model output."""

    kind: InsightKind
    description: str
    confidence: float
    impact: Impact

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "description": self.description,
            "confidence": self.confidence,
            "impact": self.impact.value,
        }


@dataclass
class AnalysisMetrics:
    """Size and timing figures for one analysis."""

    data_points: int = 0
    total_duration_ms: float = 0.0
    turn_latencies_ms: list[float] = field(default_factory=list)
    models_used: list[str] = field(default_factory=list)
    models_dropped: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "data_points": self.data_points,
            "total_duration_ms": round(self.total_duration_ms, 3),
            "turn_latencies_ms": [round(v, 3) for v in self.turn_latencies_ms],
            "models_used": list(self.models_used),
            "models_dropped": list(self.models_dropped),
        }


@dataclass
class AnalysisOutcome:
    """Everything the orchestrator produced for one request."""

    turns: list[ConversationTurn] = field(default_factory=list)
    insights: list[Insight] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    metrics: AnalysisMetrics = field(default_factory=AnalysisMetrics)
    summary: Optional[str] = None
    data_sample: Any = None
    failure_reason: Optional[str] = None  # FailureReason value when failed

    @property
    def succeeded(self) -> bool:
        return self.failure_reason is None
