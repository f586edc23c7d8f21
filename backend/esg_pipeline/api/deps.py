"""Shared dependencies for API routes."""

from __future__ import annotations

from typing import AsyncGenerator

from fastapi import HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from esg_pipeline.db.session import get_db as _get_db
from esg_pipeline.submission.service import SubmissionServices


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async DB session."""
    async for session in _get_db():
        yield session


def get_services(request: Request) -> SubmissionServices:
    """The submission pipeline built by the application lifespan."""
    services = getattr(request.app.state, "esg", None)
    if services is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Submission pipeline is not initialised",
        )
    return services
