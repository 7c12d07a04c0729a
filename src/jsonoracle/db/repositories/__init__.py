"""
Repository layer for database operations.

Provides a clean API for CRUD operations on database models.
"""

from jsonoracle.db.repositories.analysis import (
    AnalysisRepository,
    InvalidTransitionError,
)
from jsonoracle.db.repositories.base import BaseRepository
from jsonoracle.db.repositories.delivery_attempt import DeliveryAttemptRepository
from jsonoracle.db.repositories.integration import IntegrationRepository

__all__ = [
    "AnalysisRepository",
    "BaseRepository",
    "DeliveryAttemptRepository",
    "IntegrationRepository",
    "InvalidTransitionError",
]
