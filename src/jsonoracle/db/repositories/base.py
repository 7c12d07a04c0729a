"""
Base repository with generic CRUD operations.
"""

import uuid
from typing import Any, Generic, Optional, Type, TypeVar

from sqlalchemy.orm import Session

from jsonoracle.models.db import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseRepository(Generic[ModelType]):
    """Generic repository for a single SQLAlchemy model."""

    def __init__(self, model: Type[ModelType], session: Session):
        self.model = model
        self.session = session

    def create(self, **kwargs: Any) -> ModelType:
        """
        Create and flush a new instance.

        Args:
            **kwargs: Column values

        Returns:
            The new instance (with its primary key populated)
        """
        instance = self.model(**kwargs)
        self.session.add(instance)
        self.session.flush()
        return instance

    def get(self, id: uuid.UUID) -> Optional[ModelType]:
        """Get an instance by primary key."""
        return self.session.get(self.model, id)

    def get_for_update(self, id: uuid.UUID) -> Optional[ModelType]:
        """
        Get an instance by primary key, locking its row until commit.

        SQLite ignores row locks; callers also hold a keyed in-process lock.
        """
        return (
            self.session.query(self.model)
            .filter(self.model.id == id)
            .with_for_update()
            .first()
        )
