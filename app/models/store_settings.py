from __future__ import annotations

from sqlalchemy import JSON, Column, DateTime, Integer, func

from app.models.base import Base

SETTINGS_ROW_ID = 1  # one settings row per deployment


class TimeSettingsRow(Base):
    __tablename__ = "time_settings"

    id = Column(Integer, primary_key=True, default=SETTINGS_ROW_ID)
    value = Column(JSON, nullable=False)  # TimeSettings.model_dump(mode="json")
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
