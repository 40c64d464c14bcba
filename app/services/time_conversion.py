# app/services/time_conversion.py
"""
Wall-clock <-> absolute instant conversion.

Every instant produced here is a timezone-aware UTC datetime. Offsets are
resolved per date through the IANA database (`zoneinfo`), so seasonal offset
changes are applied for the specific day being converted.
"""

from datetime import date, datetime, time, timedelta, timezone
from functools import lru_cache
from typing import Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.errors import ValidationError


@lru_cache(maxsize=256)
def get_zone(name: str) -> ZoneInfo:
    if not name:
        raise ValidationError("a time zone is required")
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValidationError(f"unknown time zone '{name}'", details={"zone": name}) from e


def is_known_zone(name: str) -> bool:
    try:
        get_zone(name)
    except ValidationError:
        return False
    return True


def to_instant(d: date, t: time, zone: str) -> datetime:
    """Resolve a (date, wall-clock time, zone) triple to a UTC instant."""
    local = datetime.combine(d, t.replace(tzinfo=None), tzinfo=get_zone(zone))
    return local.astimezone(timezone.utc)


def to_wall_clock(instant: datetime, zone: str) -> Tuple[date, time]:
    """Read an absolute instant off the clock of `zone`."""
    if instant.tzinfo is None:
        raise ValidationError("instant must be timezone-aware")
    local = instant.astimezone(get_zone(zone))
    return local.date(), local.time()


def is_valid_wall_clock(d: date, t: time, zone: str) -> bool:
    """
    False when (d, t) falls into a gap of `zone` (clocks jumped forward),
    i.e. the wall-clock reading never happens on that day.
    """
    back_date, back_time = to_wall_clock(to_instant(d, t, zone), zone)
    return back_date == d and back_time == t.replace(tzinfo=None)


def day_bounds(d: date, zone: str) -> Tuple[datetime, datetime]:
    """Half-open [start, end) of calendar day `d` in `zone`, as UTC instants."""
    return to_instant(d, time(0, 0), zone), to_instant(d + timedelta(days=1), time(0, 0), zone)


def hours_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 3600.0


def format_wall_time(t: time) -> str:
    return t.strftime("%H:%M")


def describe_slot(d: date, t: time, zone: str) -> str:
    return f"{d.isoformat()} {format_wall_time(t)} ({zone})"
