# app/services/slot_service.py
import logging
from datetime import date, datetime, timedelta
from typing import Iterable, List, Optional, Tuple

from app.config import get_settings
from app.errors import ValidationError
from app.schemas.scheduling import (
    AvailabilityProfile,
    LessonInstance,
    weekday_of,
)
from app.services.collision_service import (
    intervals_overlap,
    is_active_booking,
    lesson_interval,
)
from app.services.time_conversion import (
    day_bounds,
    format_wall_time,
    get_zone,
    to_instant,
    to_wall_clock,
)

logger = logging.getLogger(__name__)

Interval = Tuple[datetime, datetime]


def provider_open_intervals(
    profile: AvailabilityProfile,
    day_start: datetime,
    day_end: datetime,
    target_date: date,
) -> List[Interval]:
    """
    Active weekly windows that intersect [day_start, day_end), as instants.

    A viewer's calendar day can straddle two provider-local days, so the
    provider weekdays of the day before, the day itself and the day after
    are all considered.
    """
    intervals: List[Interval] = []
    for offset in (-1, 0, 1):
        provider_date = target_date + timedelta(days=offset)
        weekday = weekday_of(provider_date)
        for window in profile.windows:
            if not window.active or window.day_of_week != weekday:
                continue
            start = to_instant(provider_date, window.start_time, profile.zone)
            end = to_instant(provider_date, window.end_time, profile.zone)
            if intervals_overlap(start, end, day_start, day_end):
                intervals.append((start, end))
    return intervals


def occupied_intervals(
    profile: AvailabilityProfile,
    bookings: Iterable[LessonInstance],
    day_start: datetime,
    day_end: datetime,
) -> List[Interval]:
    """
    Non-cancelled bookings (each in its own zone) plus blackout exceptions
    (in the provider zone) that touch the viewer's day.
    """
    occupied: List[Interval] = []

    for lesson in bookings:
        if not is_active_booking(lesson):
            continue
        start, end = lesson_interval(lesson)
        if intervals_overlap(start, end, day_start, day_end):
            occupied.append((start, end))

    for blackout in profile.blackouts:
        start = to_instant(blackout.date, blackout.start_time, profile.zone)
        end = to_instant(blackout.date, blackout.end_time, profile.zone)
        if intervals_overlap(start, end, day_start, day_end):
            occupied.append((start, end))

    return occupied


def compute_available_slots(
    target_date: date,
    duration_minutes: int,
    profile: AvailabilityProfile,
    bookings: Iterable[LessonInstance],
    viewer_zone: str,
    *,
    step_minutes: Optional[int] = None,
) -> List[str]:
    """
    Bookable start times ("HH:MM", viewer wall-clock) on `target_date` as
    seen from `viewer_zone`.

    A slot [s, s + duration) is offered when:
      - it starts at or after its window's start and ends strictly before
        the window's end;
      - it lies entirely inside the viewer's calendar day;
      - it does not overlap any occupied interval (half-open).

    Each open window is walked from its own start (clipped to the viewer's
    day) in steps of `step_minutes`. The result is sorted and duplicate-free;
    nothing is cached between calls.
    """
    if duration_minutes <= 0:
        raise ValidationError("duration must be positive", details={"duration": duration_minutes})

    if step_minutes is None:
        step_minutes = get_settings().SLOT_STEP_MINUTES
    if step_minutes <= 0:
        raise ValidationError("slot step must be positive", details={"step": step_minutes})

    get_zone(viewer_zone)
    day_start, day_end = day_bounds(target_date, viewer_zone)

    open_intervals = provider_open_intervals(profile, day_start, day_end, target_date)
    if not open_intervals:
        return []

    occupied = occupied_intervals(profile, list(bookings), day_start, day_end)

    length = timedelta(minutes=duration_minutes)
    step = timedelta(minutes=step_minutes)
    slots = set()

    for window_start, window_end in open_intervals:
        cursor = max(window_start, day_start)
        while cursor < window_end and cursor < day_end:
            slot_end = cursor + length
            fits_window = slot_end < window_end
            fits_day = slot_end <= day_end
            if fits_window and fits_day and not any(
                intervals_overlap(cursor, slot_end, occ_start, occ_end)
                for occ_start, occ_end in occupied
            ):
                _, local_time = to_wall_clock(cursor, viewer_zone)
                slots.add(format_wall_time(local_time))
            cursor += step

    result = sorted(slots)
    logger.debug(
        "Computed %d slots for %s (%s, %d min)",
        len(result),
        target_date.isoformat(),
        viewer_zone,
        duration_minutes,
    )
    return result
