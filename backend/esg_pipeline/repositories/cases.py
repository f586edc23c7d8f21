"""
Case repository — the case columns owned by the submission pipeline.

Repository rules:
- Pure data-access logic only
- Every function receives AsyncSession explicitly
- Functions flush, but never commit
"""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from esg_pipeline.core.constants import CaseStatus
from esg_pipeline.db.models.case import Case

# Columns the pipeline is allowed to write through `update_case`
_MUTABLE_FIELDS = {
    "status",
    "esg_submission_id",
    "esg_core_id",
    "last_submitted_at",
    "api_attempt_count",
    "api_last_error",
    "fda_case_number",
    "acknowledgment_date",
}


async def create_case(db: AsyncSession, **fields: object) -> Case:
    case = Case(**fields)
    db.add(case)
    await db.flush()
    return case


async def get_case_by_id(db: AsyncSession, case_id: str) -> Case | None:
    """Fetch a non-deleted case by primary key."""
    stmt = select(Case).where(Case.id == case_id, Case.deleted_at.is_(None))
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def update_case(db: AsyncSession, case_id: str, **fields: object) -> Case | None:
    """Update pipeline-owned columns and return the updated row."""
    case = await get_case_by_id(db, case_id)
    if case is None:
        return None

    for key, value in fields.items():
        if key not in _MUTABLE_FIELDS:
            raise ValueError(f"Case field '{key}' is not writable by the submission pipeline")
        setattr(case, key, value)

    await db.flush()
    return case


async def list_cases_awaiting_ack(db: AsyncSession) -> list[Case]:
    """Submitted, non-deleted cases carrying a remote submission id, oldest first."""
    stmt = (
        select(Case)
        .where(
            Case.status == CaseStatus.SUBMITTED.value,
            Case.esg_submission_id.is_not(None),
            Case.deleted_at.is_(None),
        )
        .order_by(Case.last_submitted_at.asc())
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())
