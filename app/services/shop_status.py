"""
Shop availability: a pure function of (TimeSettings, now).

All day/time questions are answered on the shop clock (`settings.timezone`);
instants are returned as ISO-8601 UTC strings.
"""
from __future__ import annotations

from datetime import datetime, date, timedelta
from typing import List, Optional, Tuple

from app.core.utils import as_utc, iso_utc
from app.schemas.settings import OperatingHours, PauseWindow, ShopStatus, TimeSettings
from app.utils.shop_clock import (
    WEEKDAY_NAMES,
    build_tz_date_on,
    is_time_in_pause,
    is_time_in_range,
    is_weekend,
    local_parts,
    next_occurrence,
)

SCAN_DAYS = 7

DEFAULT_HOURS = OperatingHours(startTime="09:00", endTime="21:00")


def hours_for_day(settings: TimeSettings, day: date, day_index: int) -> Tuple[Optional[OperatingHours], str]:
    """
    Effective operating window for one shop-local calendar day plus the
    special-day message (if any). None means closed all day.
    """
    regular = settings.weekend if is_weekend(day_index) else settings.weekday
    special = settings.special_day_for(day)
    if special is not None:
        if special.isClosed:
            return None, special.description or "Closed for special day"
        return OperatingHours(
            startTime=special.startTime or regular.startTime,
            endTime=special.endTime or regular.endTime,
        ), special.description or ""
    if not regular.isActive:
        return None, ""
    return OperatingHours(startTime=regular.startTime, endTime=regular.endTime), ""


def within_hours(current: str, hours: OperatingHours) -> bool:
    if hours.startTime <= hours.endTime:
        return hours.startTime <= current <= hours.endTime
    return is_time_in_range(current, hours.startTime, hours.endTime)


def active_pause(settings: TimeSettings, current: str) -> Optional[PauseWindow]:
    for w in settings.dailyPauseWindows:
        if w.startTime and w.endTime and is_time_in_pause(current, w.startTime, w.endTime):
            return w
    return None


def is_shop_open(settings: TimeSettings, now: datetime) -> bool:
    parts = local_parts(now, settings.timezone)
    hours, _ = hours_for_day(settings, parts.date, parts.day_index)
    if hours is None or not within_hours(parts.hhmm, hours):
        return False
    return active_pause(settings, parts.hhmm) is None


def _closing_time(settings: TimeSettings, now: datetime, hours: OperatingHours) -> datetime:
    tz = settings.timezone
    end = next_occurrence(now, tz, hours.endTime)
    candidates = [end]
    for w in settings.dailyPauseWindows:
        if not (w.startTime and w.endTime) or w.startTime == w.endTime:
            continue
        start = next_occurrence(now, tz, w.startTime)
        if start <= end:
            candidates.append(start)
    return min(candidates)


def _opening_candidates(settings: TimeSettings, hours: OperatingHours) -> List[str]:
    # the shop can only go from closed to open at one of these clock readings
    marks = {"00:00", hours.startTime}
    marks.update(w.endTime for w in settings.dailyPauseWindows if w.startTime and w.endTime)
    return sorted(marks)


def _first_opening_on(settings: TimeSettings, day: date, after: datetime) -> Optional[datetime]:
    hours, _ = hours_for_day(settings, day, day.isoweekday() % 7)
    if hours is None:
        return None
    for hhmm in _opening_candidates(settings, hours):
        instant = build_tz_date_on(day, settings.timezone, hhmm)
        if instant > after and is_shop_open(settings, instant):
            return instant
    return None


def _next_open_time(settings: TimeSettings, now: datetime) -> Optional[datetime]:
    """
    First instant after `now` at which is_shop_open holds: today first, then
    up to SCAN_DAYS following days. Starts and pause ends that fall inside
    a pause or outside the day's hours are skipped.
    """
    after = as_utc(now)
    today = local_parts(now, settings.timezone).date
    for offset in range(SCAN_DAYS + 1):
        instant = _first_opening_on(settings, today + timedelta(days=offset), after)
        if instant is not None:
            return instant
    return None


def _closed_message(settings: TimeSettings, now: datetime, hours: Optional[OperatingHours],
                    next_open: Optional[datetime]) -> str:
    tz = settings.timezone
    parts = local_parts(now, tz)
    pause = active_pause(settings, parts.hhmm)
    if next_open is not None:
        if pause is not None and next_open == next_occurrence(now, tz, pause.endTime):
            return f"On a break until {pause.endTime}"
        opening = local_parts(next_open, tz)
        if hours is not None and opening.date == parts.date:
            return f"Opens at {opening.hhmm}"
    return "Closed today" if hours is None else "Closed for the day"


def calculate_shop_status(settings: TimeSettings, now: datetime) -> ShopStatus:
    tz = settings.timezone
    parts = local_parts(now, tz)
    hours, special_message = hours_for_day(settings, parts.date, parts.day_index)
    open_now = is_shop_open(settings, now)

    closing_time = None
    next_open = None
    if open_now and hours is not None:
        closing_time = _closing_time(settings, now, hours)
        message = special_message or f"Open until {hours.endTime}"
    else:
        next_open = _next_open_time(settings, now)
        message = special_message or _closed_message(settings, now, hours, next_open)

    return ShopStatus(
        isOpen=open_now,
        nextOpenTime=iso_utc(next_open),
        closingTime=iso_utc(closing_time),
        currentTime=iso_utc(now),
        timezone=tz,
        operatingHours=hours,
        message=message,
    )


def describe_next_opening(settings: TimeSettings, now: datetime) -> Optional[str]:
    """
    Human label for the admin screen: "Today at 14:00", "Tuesday at 09:00".
    None when the shop is open or nothing opens within a week.
    """
    if is_shop_open(settings, now):
        return None
    instant = _next_open_time(settings, now)
    if instant is None:
        return None
    today = local_parts(now, settings.timezone).date
    opening = local_parts(instant, settings.timezone)
    if opening.date == today:
        return f"Today at {opening.hhmm}"
    if opening.date == today + timedelta(days=1):
        return f"Tomorrow at {opening.hhmm}"
    return f"{WEEKDAY_NAMES[opening.day_index]} at {opening.hhmm}"


def default_status(now: datetime, tz: str = "Asia/Kolkata") -> ShopStatus:
    """
    Always-open status served when the settings cannot be loaded.
    """
    return ShopStatus(
        isOpen=True,
        nextOpenTime=None,
        closingTime=None,
        currentTime=iso_utc(now),
        timezone=tz,
        operatingHours=DEFAULT_HOURS,
        message="",
    )
