"""
Analysis request/result repository.
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from jsonoracle.db.repositories.base import BaseRepository
from jsonoracle.models.db import (
    STATUS_TRANSITIONS,
    AnalysisRequest,
    AnalysisResult,
    AnalysisStatus,
    utcnow,
)


class InvalidTransitionError(Exception):
    """Raised when a result status change would move backwards or leave a terminal state."""

    def __init__(self, result_id: uuid.UUID, current: str, requested: str):
        self.result_id = result_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"Analysis {result_id} cannot move from {current} to {requested}"
        )


class AnalysisRepository(BaseRepository[AnalysisResult]):
    """Repository for AnalysisResult and its owning AnalysisRequest."""

    def __init__(self, session: Session):
        super().__init__(AnalysisResult, session)

    def create_pending(
        self,
        integration_id: uuid.UUID,
        payload: Any,
        domain: str,
        models: list[str],
        rounds: int,
        callback_url: Optional[str] = None,
        analysis_type: str = "general",
        prompt_options: Optional[dict] = None,
    ) -> AnalysisResult:
        """
        Store an accepted request together with its pending result.

        Returns:
            The pending AnalysisResult (``result.request`` is populated)
        """
        request = AnalysisRequest(
            integration_id=integration_id,
            payload=payload,
            domain=domain,
            models=list(models),
            rounds=rounds,
            callback_url=callback_url,
            analysis_type=analysis_type,
            prompt_options=prompt_options,
        )
        self.session.add(request)
        self.session.flush()

        result = AnalysisResult(
            request_id=request.id,
            integration_id=integration_id,
            status=AnalysisStatus.PENDING.value,
        )
        result.request = request
        self.session.add(result)
        self.session.flush()
        return result

    def transition(
        self, result_id: uuid.UUID, status: AnalysisStatus, **fields: Any
    ) -> AnalysisResult:
        """
        Move a result to a new status, updating any extra columns with it.

        Raises:
            LookupError: If the result does not exist
            InvalidTransitionError: If the change is not allowed
        """
        result = self.get_for_update(result_id)
        if result is None:
            raise LookupError(f"Analysis {result_id} not found")

        current = AnalysisStatus(result.status)
        if status not in STATUS_TRANSITIONS[current]:
            raise InvalidTransitionError(result_id, current.value, status.value)

        result.status = status.value
        if status == AnalysisStatus.RUNNING:
            result.started_at = utcnow()
        if status.is_terminal:
            result.completed_at = utcnow()
        for key, value in fields.items():
            setattr(result, key, value)
        self.session.flush()
        return result

    def get_by_integration(
        self, integration_id: uuid.UUID, limit: Optional[int] = None, offset: int = 0
    ) -> List[AnalysisResult]:
        """
        Get results for an integration, newest first.

        Args:
            integration_id: Integration UUID
            limit: Maximum number of records to return
            offset: Number of records to skip
        """
        query = (
            self.session.query(AnalysisResult)
            .filter(AnalysisResult.integration_id == integration_id)
            .order_by(AnalysisResult.created_at.desc())
            .offset(offset)
        )
        if limit:
            query = query.limit(limit)
        return query.all()

    def get_unfinished(self) -> List[AnalysisResult]:
        """Results left pending or running (e.g. by a process restart)."""
        return (
            self.session.query(AnalysisResult)
            .filter(
                AnalysisResult.status.in_(
                    [AnalysisStatus.PENDING.value, AnalysisStatus.RUNNING.value]
                )
            )
            .all()
        )

    def stats_for_integrations(self, integration_ids: list[uuid.UUID]) -> dict[str, Any]:
        """
        Aggregate counts across a set of integrations.

        Returns:
            Dict with total, completed, failed and last-24h counts plus success rate
        """
        if not integration_ids:
            return {
                "total_analyses": 0,
                "successful_analyses": 0,
                "failed_analyses": 0,
                "recent_analyses_24h": 0,
                "success_rate": 0.0,
            }

        rows = (
            self.session.query(AnalysisResult.status, func.count(AnalysisResult.id))
            .filter(AnalysisResult.integration_id.in_(integration_ids))
            .group_by(AnalysisResult.status)
            .all()
        )
        by_status = {status: count for status, count in rows}
        total = sum(by_status.values())
        completed = by_status.get(AnalysisStatus.COMPLETED.value, 0)

        since = datetime.now(timezone.utc) - timedelta(hours=24)
        recent = (
            self.session.query(func.count(AnalysisResult.id))
            .filter(
                AnalysisResult.integration_id.in_(integration_ids),
                AnalysisResult.created_at >= since,
            )
            .scalar()
        )

        return {
            "total_analyses": total,
            "successful_analyses": completed,
            "failed_analyses": by_status.get(AnalysisStatus.FAILED.value, 0),
            "recent_analyses_24h": recent or 0,
            "success_rate": completed / total if total else 0.0,
        }
