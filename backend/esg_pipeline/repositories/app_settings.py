"""
Data-access operations for the app_settings key/value table.

Repository rules:
- Pure data-access logic only
- Every function receives AsyncSession explicitly
- Functions flush, but never commit
"""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from esg_pipeline.db.models.app_setting import AppSetting


async def get_setting(db: AsyncSession, key: str) -> str | None:
    row = await db.get(AppSetting, key)
    return row.value if row is not None else None


async def get_settings_by_prefix(db: AsyncSession, prefix: str) -> dict[str, str | None]:
    """Return every key starting with `prefix`, prefix included."""
    stmt = select(AppSetting).where(AppSetting.key.startswith(prefix)).order_by(AppSetting.key)
    result = await db.execute(stmt)
    return {row.key: row.value for row in result.scalars().all()}


async def upsert_setting(db: AsyncSession, key: str, value: str | None) -> AppSetting:
    """Insert or overwrite a single setting."""
    row = await db.get(AppSetting, key)
    if row is None:
        row = AppSetting(key=key, value=value)
        db.add(row)
    else:
        row.value = value
    await db.flush()
    return row
