"""SubmissionHistory — append-only audit trail of submission events per case."""

from __future__ import annotations

from sqlalchemy import JSON, Column, DateTime, ForeignKey, String, Text

from esg_pipeline.db.models.base import Base, generate_uuid, utcnow


class SubmissionHistory(Base):
    __tablename__ = "submission_history"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    case_id = Column(String(36), ForeignKey("cases.id"), nullable=False, index=True)
    event_type = Column(String(50), nullable=False, index=True)
    details = Column(JSON, default=dict)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    def __repr__(self) -> str:
        return f"<SubmissionHistory case={self.case_id} event={self.event_type}>"
