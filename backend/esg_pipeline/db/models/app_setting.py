"""AppSetting — key/value runtime settings editable by operators."""

from __future__ import annotations

from sqlalchemy import Column, DateTime, String, Text

from esg_pipeline.db.models.base import Base, utcnow


class AppSetting(Base):
    __tablename__ = "app_settings"

    key = Column(String(100), primary_key=True)
    value = Column(Text, nullable=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<AppSetting {self.key}={self.value!r}>"
