"""Shared session handling for the evidence pipeline repositories."""

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from ..exceptions import DatabaseError
from .database_manager import DatabaseManager

__all__ = ["BaseRepository"]


class BaseRepository:
    """Base class for repositories backed by a DatabaseManager.

    Attributes:
        db_manager: DatabaseManager instance for database operations
    """

    def __init__(self, db_manager: DatabaseManager) -> None:
        self.db_manager: DatabaseManager = db_manager

    @contextmanager
    def _session(self, action: str) -> Iterator[Session]:
        """Yield a session that commits on success and rolls back on error.

        Args:
            action: Short description used in the DatabaseError message

        Raises:
            DatabaseError: If any SQLAlchemy operation fails
        """
        session: Session = self.db_manager.create_session()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise DatabaseError(f"Database {action} error: {str(e)}")
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
