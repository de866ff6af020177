"""Activity log repository for the evidence pipeline."""

import logging
from typing import Any, Dict, List, Optional

from ..exceptions import DatabaseError
from ..models import ActivityLog
from .base_repository import BaseRepository

__all__ = ["ActivityRepository"]

logger = logging.getLogger(__name__)


class ActivityRepository(BaseRepository):
    """Append-only audit trail of pipeline events per case."""

    def create_activity(self, case_id: Optional[str], event_type: str, message: str,
                        metadata: Optional[Dict[str, Any]] = None) -> ActivityLog:
        with self._session("save") as session:
            entry = ActivityLog(
                case_id=case_id,
                event_type=event_type,
                message=message,
                metadata_json=metadata or {}
            )
            session.add(entry)
            session.flush()
            return entry

    def record_activity(self, case_id: Optional[str], event_type: str, message: str,
                        metadata: Optional[Dict[str, Any]] = None) -> Optional[ActivityLog]:
        """Write an activity entry without letting a logging failure propagate.

        Returns:
            The stored entry, or None if it could not be written
        """
        try:
            return self.create_activity(case_id, event_type, message, metadata)
        except DatabaseError as e:
            logger.warning("Failed to record activity %s for case %s: %s", event_type, case_id, e)
            return None

    def list_activity(self, case_id: str, event_type: Optional[str] = None) -> List[ActivityLog]:
        with self._session("read") as session:
            query = session.query(ActivityLog).filter(ActivityLog.case_id == case_id)
            if event_type is not None:
                query = query.filter(ActivityLog.event_type == event_type)
            return query.order_by(ActivityLog.created_at, ActivityLog.id).all()
