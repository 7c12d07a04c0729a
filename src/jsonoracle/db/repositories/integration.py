"""
Integration repository.
"""

import uuid
from typing import List, Optional

from sqlalchemy.orm import Session

from jsonoracle.db.repositories.base import BaseRepository
from jsonoracle.models.db import Integration, IntegrationStatus


class IntegrationRepository(BaseRepository[Integration]):
    """Repository for Integration model."""

    def __init__(self, session: Session):
        super().__init__(Integration, session)

    def get_live(self, id: uuid.UUID) -> Optional[Integration]:
        """Get an integration unless it has been deleted."""
        integration = self.get(id)
        if integration is None or integration.deleted_at is not None:
            return None
        return integration

    def get_by_api_key_prefix(self, api_key_prefix: str) -> List[Integration]:
        """
        Get integrations sharing an API key prefix.

        Used during authentication to find candidates for hash comparison.
        Prefixes are short, so more than one integration may match.

        Args:
            api_key_prefix: API key prefix (e.g., "jo_live_Ab3x9Qz1")

        Returns:
            List of non-deleted integrations with that prefix
        """
        return (
            self.session.query(Integration)
            .filter(
                Integration.api_key_prefix == api_key_prefix,
                Integration.deleted_at.is_(None),
            )
            .all()
        )

    def get_by_owner(
        self, owner_id: str, limit: Optional[int] = None, offset: int = 0
    ) -> List[Integration]:
        """
        Get all non-deleted integrations for an owner, newest first.

        Args:
            owner_id: Owner identity (identity-provider subject)
            limit: Maximum number of records to return
            offset: Number of records to skip

        Returns:
            List of integrations
        """
        query = (
            self.session.query(Integration)
            .filter(
                Integration.owner_id == owner_id,
                Integration.deleted_at.is_(None),
            )
            .order_by(Integration.created_at.desc())
            .offset(offset)
        )
        if limit:
            query = query.limit(limit)
        return query.all()

    def count_by_owner(self, owner_id: str, active_only: bool = False) -> int:
        query = self.session.query(Integration).filter(
            Integration.owner_id == owner_id,
            Integration.deleted_at.is_(None),
        )
        if active_only:
            query = query.filter(Integration.status == IntegrationStatus.ACTIVE.value)
        return query.count()
