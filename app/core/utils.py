from __future__ import annotations
from datetime import datetime, timezone
from typing import Optional, Tuple


def parse_hhmm(s: Optional[str]) -> Tuple[int, int]:
    """
    Parse "HH:MM" into (hours, minutes). Raises ValueError for bad input.
    """
    s = (s or "").strip()
    if ":" not in s:
        raise ValueError(f"Invalid HH:MM string: {s!r}")
    hh, mm = s.split(":", 1)
    h, m = int(hh), int(mm)
    if not (0 <= h <= 23 and 0 <= m <= 59):
        raise ValueError(f"Invalid time bounds: {s!r}")
    return h, m


def normalize_hhmm(s: str) -> str:
    h, m = parse_hhmm(s)
    return f"{h:02d}:{m:02d}"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: datetime) -> datetime:
    # naive timestamps coming back from SQLite are stored as UTC
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def iso_utc(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    return as_utc(dt).isoformat(timespec="milliseconds").replace("+00:00", "Z")
