"""Civil-day helpers pinned to the Asia/Tokyo offset."""

from __future__ import annotations

import re
from datetime import date, datetime, timedelta, timezone, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .config import TIMEZONE_NAME


def _load_tokyo() -> tzinfo:
    # Hosts without tzdata still get the fixed +09:00 offset; Japan has no DST.
    try:
        return ZoneInfo(TIMEZONE_NAME)
    except ZoneInfoNotFoundError:
        return timezone(timedelta(hours=9), "JST")


TOKYO_TZ = _load_tokyo()

_SEPARATED = re.compile(r"^(\d{4})[-/.](\d{1,2})[-/.](\d{1,2})$")
_COMPACT = re.compile(r"^(\d{4})(\d{2})(\d{2})$")
_TIME = re.compile(r"^(\d{1,2}):(\d{1,2})(?::\d{1,2})?$")


def parse_date(value: str) -> date:
    """Parse `YYYY-MM-DD`, `YYYY/MM/DD`, `YYYYMMDD` and unpadded variants."""
    text = (value or "").strip()
    match = _SEPARATED.match(text) or _COMPACT.match(text)
    if match is None:
        raise ValueError(f"Unrecognised date '{value}'")
    year, month, day = (int(part) for part in match.groups())
    return date(year, month, day)


def normalize_date(value: str) -> str | None:
    """Return the canonical `YYYY-MM-DD` form, or None when `value` is not a date."""
    try:
        return parse_date(value).isoformat()
    except ValueError:
        return None


def parse_clock(value: str) -> tuple[int, int]:
    """Split `H:MM` / `HH:MM[:SS]` into (hour, minute); hour may be 24 for end-of-day stamps."""
    match = _TIME.match((value or "").strip())
    if match is None:
        raise ValueError(f"Invalid time '{value}'")
    hour, minute = int(match.group(1)), int(match.group(2))
    if not 0 <= hour <= 24 or not 0 <= minute <= 59:
        raise ValueError(f"Invalid time '{value}'")
    return hour, minute


def build_timestamp(day: str | date, hour: int) -> str:
    """ISO-8601 timestamp at the top of `hour` on `day`, carrying the +09:00 offset."""
    if not 0 <= hour <= 23:
        raise ValueError(f"Hour out of range (0-23): {hour}")
    base = parse_date(day) if isinstance(day, str) else day
    stamp = datetime(base.year, base.month, base.day, hour, tzinfo=TOKYO_TZ)
    return stamp.isoformat(timespec="seconds")


def parse_timestamp(value: str) -> datetime:
    stamp = datetime.fromisoformat(value)
    if stamp.tzinfo is None:
        stamp = stamp.replace(tzinfo=TOKYO_TZ)
    return stamp.astimezone(TOKYO_TZ)


def today_tokyo() -> str:
    return datetime.now(TOKYO_TZ).date().isoformat()
