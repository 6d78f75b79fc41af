# app/services/time_settings.py
from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Optional, Tuple

from fastapi import HTTPException
from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from app.core.config import settings as app_settings
from app.db import Database
from app.models.store_settings import SETTINGS_ROW_ID, TimeSettingsRow
from app.schemas.settings import ShopStatus, SpecialDay, TimeSettings, TimeSettingsUpdate
from app.services.shop_status import calculate_shop_status, default_status

logger = logging.getLogger(__name__)

FALLBACK_TZ = "Asia/Kolkata"
FALLBACK_WARNING = "Using default shop status due to database connectivity issues"


def default_settings() -> TimeSettings:
    return TimeSettings(timezone=app_settings.DEFAULT_TZ)


def _load(row: Optional[TimeSettingsRow]) -> Optional[TimeSettings]:
    if row is None:
        return None
    return TimeSettings.model_validate(row.value)


def get_current_settings(db: Database) -> TimeSettings:
    """
    Singleton settings; created with defaults on first read.
    """
    try:
        with db.session_scope() as s:
            row = s.get(TimeSettingsRow, SETTINGS_ROW_ID)
            if row is not None:
                return _load(row)
            current = default_settings()
            s.add(TimeSettingsRow(id=SETTINGS_ROW_ID, value=current.model_dump(mode="json")))
    except IntegrityError:
        # another request created the row first
        with db.session_scope() as s:
            return _load(s.get(TimeSettingsRow, SETTINGS_ROW_ID))
    logger.info("time settings created with defaults (tz=%s)", current.timezone)
    return current


def save_settings(db: Database, value: TimeSettings) -> TimeSettings:
    with db.session_scope() as s:
        row = s.get(TimeSettingsRow, SETTINGS_ROW_ID)
        payload = value.model_dump(mode="json")
        if row is None:
            s.add(TimeSettingsRow(id=SETTINGS_ROW_ID, value=payload))
        else:
            row.value = payload
    return value


def update_settings(db: Database, patch: TimeSettingsUpdate) -> TimeSettings:
    current = get_current_settings(db)
    data = current.model_dump()
    if patch.weekday is not None:
        data["weekday"].update(patch.weekday.model_dump(exclude_none=True))
    if patch.weekend is not None:
        data["weekend"].update(patch.weekend.model_dump(exclude_none=True))
    if patch.timezone:
        data["timezone"] = patch.timezone
    if patch.specialDays is not None:
        data["specialDays"] = [d.model_dump() for d in patch.specialDays]
    if patch.dailyPauseWindows is not None:
        data["dailyPauseWindows"] = [w.model_dump() for w in patch.dailyPauseWindows]
    updated = TimeSettings.model_validate(data)
    logger.info("time settings updated")
    return save_settings(db, updated)


def add_special_day(db: Database, day: SpecialDay) -> TimeSettings:
    current = get_current_settings(db)
    # one entry per calendar date: the new one replaces the old
    days = [d for d in current.specialDays if d.date != day.date]
    days.append(day)
    days.sort(key=lambda d: d.date)
    current.specialDays = days
    logger.info("special day set: %s closed=%s", day.date, day.isClosed)
    return save_settings(db, current)


def remove_special_day(db: Database, day: date) -> TimeSettings:
    current = get_current_settings(db)
    days = [d for d in current.specialDays if d.date != day]
    if len(days) == len(current.specialDays):
        raise HTTPException(status_code=404, detail="Special day not found")
    current.specialDays = days
    logger.info("special day removed: %s", day)
    return save_settings(db, current)


def shop_status_or_default(db: Database, now: datetime) -> Tuple[ShopStatus, Optional[str]]:
    """
    Current shop status; if the settings cannot be read the shop is reported
    open with default hours so browsing is never blocked.
    """
    try:
        current = get_current_settings(db)
        return calculate_shop_status(current, now), None
    except (SQLAlchemyError, ValidationError):
        logger.warning("shop status fallback: settings unavailable", exc_info=True)
        return default_status(now, FALLBACK_TZ), FALLBACK_WARNING
