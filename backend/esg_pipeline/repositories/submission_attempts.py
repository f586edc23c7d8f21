"""
Submission-attempt repository — api_submission_attempts table.

Repository rules:
- Pure data-access logic only
- Every function receives AsyncSession explicitly
- Functions flush, but never commit
"""

from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from esg_pipeline.core.constants import AttemptStatus
from esg_pipeline.db.models.submission_attempt import SubmissionAttempt


async def count_attempts(db: AsyncSession, case_id: str) -> int:
    """Number of attempts ever recorded for a case."""
    stmt = select(func.count()).select_from(SubmissionAttempt).where(
        SubmissionAttempt.case_id == case_id
    )
    result = await db.execute(stmt)
    return int(result.scalar_one())


async def create_attempt(
    db: AsyncSession,
    *,
    case_id: str,
    attempt_number: int,
    environment: str,
) -> SubmissionAttempt:
    attempt = SubmissionAttempt(
        case_id=case_id,
        attempt_number=attempt_number,
        environment=environment,
        status=AttemptStatus.IN_PROGRESS.value,
    )
    db.add(attempt)
    await db.flush()
    return attempt


async def get_attempt_by_id(db: AsyncSession, attempt_id: str) -> SubmissionAttempt | None:
    return await db.get(SubmissionAttempt, attempt_id)


async def update_attempt(
    db: AsyncSession,
    attempt_id: str,
    **fields: object,
) -> SubmissionAttempt | None:
    attempt = await get_attempt_by_id(db, attempt_id)
    if attempt is None:
        return None
    for key, value in fields.items():
        if not hasattr(SubmissionAttempt, key):
            raise ValueError(f"Unknown attempt field '{key}'")
        setattr(attempt, key, value)
    await db.flush()
    return attempt


async def get_latest_attempt(db: AsyncSession, case_id: str) -> SubmissionAttempt | None:
    """Highest attempt_number for the case."""
    stmt = (
        select(SubmissionAttempt)
        .where(SubmissionAttempt.case_id == case_id)
        .order_by(SubmissionAttempt.attempt_number.desc())
        .limit(1)
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def list_attempts_for_case(db: AsyncSession, case_id: str) -> list[SubmissionAttempt]:
    stmt = (
        select(SubmissionAttempt)
        .where(SubmissionAttempt.case_id == case_id)
        .order_by(SubmissionAttempt.attempt_number.desc())
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def list_failed_submissions(db: AsyncSession, *, limit: int = 50) -> list[SubmissionAttempt]:
    """Latest attempt per case, where that attempt failed."""
    latest = (
        select(
            SubmissionAttempt.case_id,
            func.max(SubmissionAttempt.attempt_number).label("attempt_number"),
        )
        .group_by(SubmissionAttempt.case_id)
        .subquery()
    )
    stmt = (
        select(SubmissionAttempt)
        .join(
            latest,
            (SubmissionAttempt.case_id == latest.c.case_id)
            & (SubmissionAttempt.attempt_number == latest.c.attempt_number),
        )
        .where(SubmissionAttempt.status == AttemptStatus.FAILED.value)
        .order_by(SubmissionAttempt.started_at.desc())
        .limit(limit)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def list_recent_acknowledgments(db: AsyncSession, *, limit: int = 20) -> list[SubmissionAttempt]:
    stmt = (
        select(SubmissionAttempt)
        .where(SubmissionAttempt.ack_type.is_not(None))
        .order_by(SubmissionAttempt.updated_at.desc())
        .limit(limit)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())
