"""
Database connection management for JSON Oracle.

Provides database session management, connection handling, and transaction
support. A ``Database`` is created once per process (see
``jsonoracle.container``) and handed to every component that persists state.
"""

import logging
import threading
from contextlib import contextmanager, nullcontext
from typing import Generator, Optional

from sqlalchemy import JSON, create_engine, event, text
from sqlalchemy.dialects import postgresql
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from jsonoracle.config import Settings
from jsonoracle.models.db import Base

logger = logging.getLogger(__name__)


@event.listens_for(Base.metadata, "before_create")
def _set_json_type(target, connection, **kw):
    """Replace JSONB with JSON for databases other than PostgreSQL."""
    if connection.dialect.name == "postgresql":
        return
    for table in target.tables.values():
        for column in table.columns:
            if isinstance(column.type, postgresql.JSONB):
                column.type = JSON()


class Database:
    """Owns the engine and session factory for one database URL."""

    def __init__(self, url: str, settings: Optional[Settings] = None, echo: bool = False):
        self.url = url
        self._shared_connection_lock = None
        if url.startswith("sqlite"):
            engine_kwargs: dict = {
                "echo": echo,
                "connect_args": {"check_same_thread": False},
            }
            if url in ("sqlite://", "sqlite:///:memory:"):
                # One shared connection so every session sees the same in-memory DB
                engine_kwargs["poolclass"] = StaticPool
                # Sessions on the shared connection must not interleave across threads
                self._shared_connection_lock = threading.RLock()
            self.engine: Engine = create_engine(url, **engine_kwargs)
        else:
            # Each uvicorn worker gets its own pool.
            # Total connections = workers x (pool_size + max_overflow)
            self.engine = create_engine(
                url,
                echo=echo,
                pool_size=settings.db_pool_size if settings else 5,
                max_overflow=settings.db_pool_max_overflow if settings else 5,
                pool_pre_ping=True,
                pool_timeout=settings.db_pool_timeout if settings else 30,
                pool_recycle=settings.db_pool_recycle if settings else 1800,
            )

        self.SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            bind=self.engine,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        return cls(settings.database_url, settings=settings)

    @property
    def is_sqlite(self) -> bool:
        return self.engine.dialect.name == "sqlite"

    def get_session(self) -> Session:
        """
        Get a new database session.

        The caller is responsible for commit/rollback and close.
        """
        return self.SessionLocal()

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """
        Context manager for database sessions with automatic cleanup.

        Commits on success, rolls back on any exception.

        Example:
            >>> with database.session() as db:
            >>>     integration = db.get(Integration, integration_id)
        """
        with self._shared_connection_lock or nullcontext():
            session = self.SessionLocal()
            try:
                yield session
                session.commit()
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()

    def init_db(self) -> None:
        """Create all tables that do not exist yet."""
        Base.metadata.create_all(bind=self.engine)

    def check_connection(self) -> bool:
        """
        Check if database connection is working.

        Returns:
            bool: True if connection successful, False otherwise
        """
        try:
            with self.session() as db:
                db.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.error(f"Database connection failed: {e}")
            return False

    def dispose(self) -> None:
        self.engine.dispose()
