"""
Wall-clock helpers for a shop that lives in a named timezone.

The server clock and the shop clock may disagree (a server in UTC serving a
shop in Asia/Kolkata), so every "what day is it / what time is it" question
is answered in the shop's timezone, never with the server's local time.

Usage pattern:
- `local_parts(now, tz)` gives the local date, weekday index and "HH:MM".
- `build_tz_date(ref, tz, "HH:MM")` turns a local wall-clock time on the
  local date of `ref` into an exact UTC instant (DST aware).
"""
from __future__ import annotations

from datetime import datetime, date, time, timedelta, timezone
from typing import NamedTuple, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.core.utils import parse_hhmm, as_utc

WEEKDAY_NAMES = ("Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday")


class LocalParts(NamedTuple):
    date: date
    day_index: int  # 0 = Sunday ... 6 = Saturday
    hhmm: str


def zone(tz: str) -> ZoneInfo:
    try:
        return ZoneInfo(tz)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"Unknown timezone: {tz!r}") from e


def to_local(dt: datetime, tz: str) -> datetime:
    """
    Treats naive datetimes as UTC and returns the localized time in tz.
    """
    return as_utc(dt).astimezone(zone(tz))


def local_parts(dt: datetime, tz: str) -> LocalParts:
    local = to_local(dt, tz)
    # isoweekday: Monday=1 ... Sunday=7
    return LocalParts(local.date(), local.isoweekday() % 7, f"{local.hour:02d}:{local.minute:02d}")


def is_weekend(day_index: int) -> bool:
    return day_index in (0, 6)


def build_tz_date(ref: datetime, tz: str, hhmm: Optional[str]) -> datetime:
    """
    UTC instant of wall-clock `hhmm` on the local calendar date of `ref` in tz.

    The offset is the one in force at that wall-clock moment, so a zone that
    observes DST yields the right instant on either side of the switch.
    """
    local_date = to_local(ref, tz).date()
    return build_tz_date_on(local_date, tz, hhmm)


def build_tz_date_on(local_date: date, tz: str, hhmm: Optional[str]) -> datetime:
    h, m = parse_hhmm(hhmm or "00:00")
    local = datetime.combine(local_date, time(h, m), zone(tz))
    return local.astimezone(timezone.utc)


def next_occurrence(now: datetime, tz: str, hhmm: str) -> datetime:
    """
    The first instant strictly after `now` at which the shop clock reads hhmm.
    """
    candidate = build_tz_date(now, tz, hhmm)
    if candidate <= as_utc(now):
        tomorrow = to_local(now, tz).date() + timedelta(days=1)
        candidate = build_tz_date_on(tomorrow, tz, hhmm)
    return candidate


def is_time_in_range(current: str, start: str, end: str) -> bool:
    """
    Inclusive "HH:MM" containment with midnight wrap (start > end).
    An empty range (start == end) contains nothing.
    """
    if start == end:
        return False
    if start < end:
        return start <= current <= end
    return current >= start or current <= end


def is_time_in_pause(current: str, start: str, end: str) -> bool:
    """
    Like is_time_in_range but the end minute is excluded: a pause ending at
    14:00 is over at 14:00.
    """
    if start == end:
        return False
    if start < end:
        return start <= current < end
    return current >= start or current < end
