# app/services/collision_service.py
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Tuple

from app.schemas.scheduling import CANCELLED_STATUSES, LessonInstance
from app.services.time_conversion import to_instant


def intervals_overlap(
    start_a: datetime,
    end_a: datetime,
    start_b: datetime,
    end_b: datetime,
) -> bool:
    """Half-open overlap: [a) and [b) touch only if they share a moment."""
    return start_a < end_b and end_a > start_b


def lesson_interval(lesson: LessonInstance) -> Tuple[datetime, datetime]:
    start = to_instant(lesson.date, lesson.time, lesson.zone)
    return start, start + timedelta(minutes=lesson.duration)


def is_active_booking(lesson: LessonInstance) -> bool:
    return lesson.status not in CANCELLED_STATUSES


def find_collisions(
    candidate: LessonInstance,
    bookings: Iterable[LessonInstance],
    exclude_id: Optional[int] = None,
) -> List[LessonInstance]:
    """
    Return the existing bookings that overlap `candidate`.

    Cancelled bookings never collide. The candidate itself (when it already
    has an id) and `exclude_id` are skipped, so a lesson being moved is not
    reported as colliding with its own old slot.

    Comparison happens on absolute instants, each booking read in its own
    recorded zone.
    """
    skip = {i for i in (candidate.id, exclude_id) if i is not None}
    cand_start, cand_end = lesson_interval(candidate)

    collisions: List[LessonInstance] = []
    for existing in bookings:
        if existing.id is not None and existing.id in skip:
            continue
        if not is_active_booking(existing):
            continue
        ex_start, ex_end = lesson_interval(existing)
        if intervals_overlap(cand_start, cand_end, ex_start, ex_end):
            collisions.append(existing)
    return collisions


def detect_collision(
    candidate: LessonInstance,
    bookings: Iterable[LessonInstance],
    exclude_id: Optional[int] = None,
) -> bool:
    return bool(find_collisions(candidate, bookings, exclude_id=exclude_id))
