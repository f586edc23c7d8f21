"""
Case — the subset of the case record the submission pipeline reads and writes.

Clinical content lives elsewhere; only identification, workflow status and
the ESG bookkeeping columns are modelled here.
"""

from __future__ import annotations

from sqlalchemy import Column, DateTime, Integer, String, Text

from esg_pipeline.db.models.base import Base, generate_uuid, utcnow


class Case(Base):
    """An ICSR case as seen by the submission pipeline."""

    __tablename__ = "cases"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    status = Column(String(50), nullable=False, default="Draft", index=True)

    # Summary fields shown before submission
    safety_report_id = Column(String(100), nullable=True)
    patient_initials = Column(String(20), nullable=True)
    primary_reaction = Column(String(255), nullable=True)
    primary_drug = Column(String(255), nullable=True)

    # ESG bookkeeping
    esg_submission_id = Column(String(100), nullable=True, index=True)
    esg_core_id = Column(String(100), nullable=True)
    last_submitted_at = Column(DateTime(timezone=True), nullable=True)
    api_attempt_count = Column(Integer, nullable=False, default=0)
    api_last_error = Column(Text, nullable=True)
    fda_case_number = Column(String(100), nullable=True)
    acknowledgment_date = Column(String(50), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<Case id={self.id} status={self.status}>"
