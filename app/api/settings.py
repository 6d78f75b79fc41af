# app/api/settings.py
from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Body, Depends

from app.core.utils import utcnow
from app.db import Database
from app.deps.auth import require_admin
from app.deps.services import get_db
from app.schemas.settings import SpecialDay, TimeSettings, TimeSettingsUpdate
from app.services import time_settings as ts
from app.services.shop_status import calculate_shop_status, describe_next_opening

router = APIRouter(tags=["time-settings"])
status_router = APIRouter(tags=["shop-status"])


def _admin_view(current: TimeSettings, message: Optional[str] = None) -> dict:
    now = utcnow()
    status = calculate_shop_status(current, now)
    out = {
        "success": True,
        "data": current.model_dump(mode="json"),
        "shopStatus": {
            **status.model_dump(),
            "nextOpeningLabel": describe_next_opening(current, now),
        },
    }
    if message:
        out["message"] = message
    return out


@status_router.get("/shop-status")
def shop_status(db: Database = Depends(get_db)):
    status, warning = ts.shop_status_or_default(db, utcnow())
    out = status.model_dump()
    if warning:
        out["warning"] = warning
    return out


@router.get("/status")
def shop_status_alias(db: Database = Depends(get_db)):
    return shop_status(db)


@router.get("", dependencies=[Depends(require_admin)])
def get_time_settings(db: Database = Depends(get_db)):
    return _admin_view(ts.get_current_settings(db))


@router.put("", dependencies=[Depends(require_admin)])
def update_time_settings(patch: TimeSettingsUpdate = Body(...), db: Database = Depends(get_db)):
    updated = ts.update_settings(db, patch)
    return _admin_view(updated, "Time settings updated successfully")


@router.post("/special-day", dependencies=[Depends(require_admin)])
def add_special_day(day: SpecialDay = Body(...), db: Database = Depends(get_db)):
    updated = ts.add_special_day(db, day)
    return _admin_view(updated, "Special day added successfully")


@router.delete("/special-day/{day}", dependencies=[Depends(require_admin)])
def remove_special_day(day: date, db: Database = Depends(get_db)):
    updated = ts.remove_special_day(db, day)
    return _admin_view(updated, "Special day removed successfully")
