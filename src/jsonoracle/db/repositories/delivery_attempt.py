"""
Delivery attempt repository.
"""

import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from jsonoracle.db.repositories.base import BaseRepository
from jsonoracle.models.db import DeliveryAttempt, DeliveryOutcome


class DeliveryAttemptRepository(BaseRepository[DeliveryAttempt]):
    """Repository for the webhook delivery audit trail."""

    def __init__(self, session: Session):
        super().__init__(DeliveryAttempt, session)

    def record(
        self,
        integration_id: uuid.UUID,
        result_id: uuid.UUID,
        target_url: str,
        attempt_number: int,
        outcome: DeliveryOutcome,
        status_code: Optional[int] = None,
        error: Optional[str] = None,
        next_retry_at: Optional[datetime] = None,
        attempted_at: Optional[datetime] = None,
    ) -> DeliveryAttempt:
        extra = {"attempted_at": attempted_at} if attempted_at is not None else {}
        return self.create(
            integration_id=integration_id,
            result_id=result_id,
            target_url=target_url,
            attempt_number=attempt_number,
            outcome=outcome.value,
            status_code=status_code,
            error=error,
            next_retry_at=next_retry_at,
            **extra,
        )

    def get_by_result(self, result_id: uuid.UUID) -> List[DeliveryAttempt]:
        """All attempts for a result in attempt order."""
        return (
            self.session.query(DeliveryAttempt)
            .filter(DeliveryAttempt.result_id == result_id)
            .order_by(DeliveryAttempt.attempt_number)
            .all()
        )

    def count_for_target(self, result_id: uuid.UUID, target_url: str) -> int:
        return (
            self.session.query(func.count(DeliveryAttempt.id))
            .filter(
                DeliveryAttempt.result_id == result_id,
                DeliveryAttempt.target_url == target_url,
            )
            .scalar()
            or 0
        )
