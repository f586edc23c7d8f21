"""
SubmissionAttempt — one row per end-to-end try of the ESG protocol.

Created when an attempt starts; amended once when it completes and once
more when an acknowledgment arrives.  `attempt_number` is derived from the
rows already present for the case, never from in-memory counters.
"""

from __future__ import annotations

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint

from esg_pipeline.db.models.base import Base, generate_uuid, utcnow


class SubmissionAttempt(Base):
    """Audit record of a single submission attempt."""

    __tablename__ = "api_submission_attempts"
    __table_args__ = (
        UniqueConstraint("case_id", "attempt_number", name="uq_attempt_case_number"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    case_id = Column(String(36), ForeignKey("cases.id"), nullable=False, index=True)
    attempt_number = Column(Integer, nullable=False)

    # Remote identifiers
    esg_submission_id = Column(String(100), nullable=True)
    esg_core_id = Column(String(100), nullable=True)
    environment = Column(String(20), nullable=False)

    # Outcome
    status = Column(String(20), nullable=False, default="in_progress")
    started_at = Column(DateTime(timezone=True), default=utcnow)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    error = Column(Text, nullable=True)
    error_category = Column(String(30), nullable=True)
    http_status_code = Column(Integer, nullable=True)

    # Acknowledgment
    ack_type = Column(String(10), nullable=True)
    ack_timestamp = Column(String(50), nullable=True)
    ack_fda_core_id = Column(String(100), nullable=True)
    ack_errors = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return (
            f"<SubmissionAttempt case={self.case_id} "
            f"n={self.attempt_number} status={self.status}>"
        )
