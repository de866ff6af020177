"""Database manager for the evidence pipeline.

This module contains the DatabaseManager class for handling database
connections, session creation, and schema initialization.
"""

from typing import Any, Dict, Optional

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from ..config import Config
from ..models import Base
from ..exceptions import DatabaseError

__all__ = ["DatabaseManager"]


class DatabaseManager:
    """Owns the SQLAlchemy engine and session factory of the record store.

    The engine is built on first use and creates any missing tables.
    Every repository shares one manager, so all of them see the same
    evidence, extraction and claim rows.

    Attributes:
        database_url: SQLAlchemy database URL
        _engine: Engine, built lazily
        _session_factory: sessionmaker bound to the engine
    """

    def __init__(self, database_url: str = Config.DATABASE_URL) -> None:
        """Initialize DatabaseManager with database URL.

        Args:
            database_url: SQLAlchemy database URL string
        """
        self.database_url: str = database_url
        self._engine: Optional[Any] = None
        self._session_factory: Optional[Any] = None

    @property
    def engine(self) -> Any:
        """Get or create SQLAlchemy engine with lazy initialization.

        SQLite connections may be used from worker threads (async callers
        reach repositories through ``asyncio.to_thread``), so same-thread
        checking is disabled. An in-memory SQLite database is pinned to a
        single connection so every session sees the same data.

        Returns:
            SQLAlchemy engine instance

        Raises:
            DatabaseError: If engine creation or schema initialization fails
        """
        if self._engine is None:
            try:
                kwargs: Dict[str, Any] = {"echo": False}
                if self.database_url.startswith("sqlite"):
                    kwargs["connect_args"] = {
                        "check_same_thread": False,
                        "timeout": 20
                    }
                    if self.database_url in ("sqlite://", "sqlite:///:memory:"):
                        kwargs["poolclass"] = StaticPool
                else:
                    kwargs["pool_pre_ping"] = True
                self._engine = create_engine(self.database_url, **kwargs)
                Base.metadata.create_all(self._engine)
            except Exception as e:
                raise DatabaseError(f"Database initialization error: {str(e)}")
        return self._engine

    def create_session(self) -> Session:
        """Create a new database session.

        Objects stay readable after commit so repositories can hand
        detached rows back to callers.

        Returns:
            SQLAlchemy Session instance
        """
        if self._session_factory is None:
            self._session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)
        return self._session_factory()

    def dispose(self) -> None:
        """Release pooled connections."""
        if self._engine is not None:
            self._engine.dispose()
