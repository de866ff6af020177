"""Evidence file repository for the evidence pipeline."""

from typing import List, Optional

from ..models import EvidenceFile
from .base_repository import BaseRepository

__all__ = ["EvidenceRepository"]


class EvidenceRepository(BaseRepository):
    """Persistence operations for uploaded evidence file references."""

    def create_evidence(self, case_id: str, mime_type: str,
                        storage_key: str, original_name: str) -> EvidenceFile:
        """Register an uploaded file.

        Args:
            case_id: Owning case
            mime_type: Declared content type
            storage_key: Key returned by the object storage collaborator
            original_name: Name of the file as uploaded

        Returns:
            The created EvidenceFile record

        Raises:
            DatabaseError: If persistence operation fails
        """
        with self._session("save") as session:
            record = EvidenceFile(
                case_id=case_id,
                mime_type=mime_type,
                storage_key=storage_key,
                original_name=original_name
            )
            session.add(record)
            session.flush()
            return record

    def get_evidence(self, evidence_id: str) -> Optional[EvidenceFile]:
        with self._session("read") as session:
            return session.get(EvidenceFile, evidence_id)

    def list_evidence(self, case_id: str) -> List[EvidenceFile]:
        with self._session("read") as session:
            return (
                session.query(EvidenceFile)
                .filter(EvidenceFile.case_id == case_id)
                .order_by(EvidenceFile.created_at, EvidenceFile.id)
                .all()
            )
