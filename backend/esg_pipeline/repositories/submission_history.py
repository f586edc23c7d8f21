"""
Submission-history repository — append-only event log.

Repository rules:
- Pure data-access logic only
- Every function receives AsyncSession explicitly
- Functions flush, but never commit
"""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from esg_pipeline.db.models.submission_history import SubmissionHistory


async def add_history_entry(
    db: AsyncSession,
    *,
    case_id: str,
    event_type: str,
    details: dict | None = None,
    notes: str | None = None,
) -> SubmissionHistory:
    entry = SubmissionHistory(
        case_id=case_id,
        event_type=event_type,
        details=details or {},
        notes=notes,
    )
    db.add(entry)
    await db.flush()
    return entry


async def list_history_for_case(
    db: AsyncSession,
    case_id: str,
    *,
    event_type: str | None = None,
) -> list[SubmissionHistory]:
    """Oldest first."""
    stmt = select(SubmissionHistory).where(SubmissionHistory.case_id == case_id)
    if event_type is not None:
        stmt = stmt.where(SubmissionHistory.event_type == event_type)
    stmt = stmt.order_by(SubmissionHistory.created_at.asc())
    result = await db.execute(stmt)
    return list(result.scalars().all())
