from __future__ import annotations

import datetime as _dt
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing_extensions import Annotated

from app.core.utils import normalize_hhmm
from app.utils.shop_clock import zone

HHMM = Annotated[str, Field(pattern=r"^\d{1,2}:\d{2}$", description="HH:MM (local)")]


def _hhmm(v: Optional[str]) -> Optional[str]:
    if v is None or v == "":
        return None
    return normalize_hhmm(v)


def _tz(v: str) -> str:
    v = (v or "").strip()
    zone(v)
    return v


class DaySchedule(BaseModel):
    startTime: HHMM = "09:00"
    endTime: HHMM = "21:00"
    isActive: bool = True

    @field_validator("startTime", "endTime")
    @classmethod
    def _norm_times(cls, v: str) -> str:
        return normalize_hhmm(v)


class DayScheduleUpdate(BaseModel):
    startTime: Optional[HHMM] = None
    endTime: Optional[HHMM] = None
    isActive: Optional[bool] = None

    @field_validator("startTime", "endTime")
    @classmethod
    def _norm_times(cls, v: Optional[str]) -> Optional[str]:
        return _hhmm(v)


class SpecialDay(BaseModel):
    date: _dt.date = Field(..., description="shop-local calendar date, YYYY-MM-DD")
    isClosed: bool = True
    startTime: Optional[HHMM] = None
    endTime: Optional[HHMM] = None
    description: Optional[str] = None

    @field_validator("date", mode="before")
    @classmethod
    def _calendar_date(cls, v: Any) -> Any:
        # admin clients send either "2024-12-25" or a full ISO timestamp;
        # only the calendar part is meaningful
        if isinstance(v, _dt.datetime):
            return v.date()
        if isinstance(v, str) and len(v) > 10:
            return v[:10]
        return v

    @field_validator("startTime", "endTime")
    @classmethod
    def _norm_times(cls, v: Optional[str]) -> Optional[str]:
        return _hhmm(v)


class PauseWindow(BaseModel):
    startTime: HHMM
    endTime: HHMM
    description: Optional[str] = None

    @field_validator("startTime", "endTime")
    @classmethod
    def _norm_times(cls, v: str) -> str:
        return normalize_hhmm(v)


class TimeSettings(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    weekday: DaySchedule = Field(default_factory=DaySchedule)
    weekend: DaySchedule = Field(default_factory=DaySchedule)
    timezone: str = "Asia/Kolkata"
    specialDays: List[SpecialDay] = Field(default_factory=list)
    dailyPauseWindows: List[PauseWindow] = Field(default_factory=list)

    @field_validator("timezone")
    @classmethod
    def _valid_tz(cls, v: str) -> str:
        return _tz(v)

    def special_day_for(self, day: _dt.date) -> Optional[SpecialDay]:
        for sd in self.specialDays:
            if sd.date == day:
                return sd
        return None


class TimeSettingsUpdate(BaseModel):
    weekday: Optional[DayScheduleUpdate] = None
    weekend: Optional[DayScheduleUpdate] = None
    timezone: Optional[str] = None
    specialDays: Optional[List[SpecialDay]] = None
    dailyPauseWindows: Optional[List[PauseWindow]] = None

    @field_validator("timezone")
    @classmethod
    def _valid_tz(cls, v: Optional[str]) -> Optional[str]:
        return None if v is None else _tz(v)


class OperatingHours(BaseModel):
    startTime: str
    endTime: str


class ShopStatus(BaseModel):
    isOpen: bool
    nextOpenTime: Optional[str] = None
    closingTime: Optional[str] = None
    currentTime: str
    timezone: str
    operatingHours: Optional[OperatingHours] = None
    message: str = ""
