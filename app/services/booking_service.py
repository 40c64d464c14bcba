# app/services/booking_service.py
import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Iterable, List, Optional, Sequence

from app.errors import ValidationError
from app.schemas.scheduling import (
    LessonInstance,
    LessonStatus,
    LessonTemplate,
    RecurrenceRule,
)
from app.services.collision_service import find_collisions, lesson_interval
from app.services.recurrence_service import expand_recurrence
from app.services.time_conversion import get_zone, to_wall_clock
from app.stores.base import LessonStore

logger = logging.getLogger(__name__)


@dataclass
class BookingResult:
    created: List[LessonInstance] = field(default_factory=list)
    conflicts: List[LessonInstance] = field(default_factory=list)

    @property
    def booked(self) -> bool:
        return bool(self.created)


def _bookings_around(lesson_store: LessonStore, first: date, last: date) -> List[LessonInstance]:
    # One day of slack on each side covers bookings recorded in other zones
    return lesson_store.list_lessons(
        date_from=first - timedelta(days=1),
        date_to=last + timedelta(days=1),
    )


def _unique_by_id(lessons: List[LessonInstance]) -> List[LessonInstance]:
    seen = set()
    unique: List[LessonInstance] = []
    for lesson in lessons:
        if lesson.id in seen:
            continue
        seen.add(lesson.id)
        unique.append(lesson)
    return unique


def collisions_for(
    lesson_store: LessonStore,
    instances: Sequence[LessonInstance],
    *,
    skip_ids: Iterable[int] = (),
) -> List[LessonInstance]:
    """
    Existing bookings that overlap any of `instances`, each reported once.

    Bookings whose id is in `skip_ids` are ignored (lessons being moved or
    about to be cancelled).
    """
    if not instances:
        return []
    skip = set(skip_ids)
    first = min(i.date for i in instances)
    last = max(i.date for i in instances)
    bookings = [b for b in _bookings_around(lesson_store, first, last) if b.id not in skip]

    conflicts: List[LessonInstance] = []
    for instance in instances:
        conflicts.extend(find_collisions(instance, bookings))
    return _unique_by_id(conflicts)


def book_lesson(
    lesson_store: LessonStore,
    lesson: LessonInstance,
    *,
    force: bool = False,
) -> BookingResult:
    """
    Create a single lesson unless it collides with an existing booking.

    With `force=True` the lesson is created anyway and the collisions are
    still reported.
    """
    if lesson.id is not None:
        raise ValidationError("a new lesson must not carry an id", details={"id": lesson.id})

    bookings = _bookings_around(lesson_store, lesson.date, lesson.date)
    conflicts = find_collisions(lesson, bookings)

    if conflicts and not force:
        logger.info(
            "Booking on %s %s blocked by %d collision(s)",
            lesson.date.isoformat(),
            lesson.time.strftime("%H:%M"),
            len(conflicts),
        )
        return BookingResult(created=[], conflicts=conflicts)

    created = lesson_store.create_lesson(lesson)
    logger.info("Booked lesson %s on %s", created.id, created.date.isoformat())
    return BookingResult(created=[created], conflicts=conflicts)


def book_series(
    lesson_store: LessonStore,
    template: LessonTemplate,
    anchor_date: date,
    rule: RecurrenceRule,
    *,
    force: bool = False,
    max_span_days: Optional[int] = None,
) -> BookingResult:
    """
    Expand `rule` from `anchor_date` and create every instance in one batch.

    All instances are checked for collisions first; if any collide and
    `force` is not set nothing is created.
    """
    instances = expand_recurrence(template, anchor_date, rule, max_span_days=max_span_days)
    if not instances:
        return BookingResult()

    conflicts = collisions_for(lesson_store, instances)

    if conflicts and not force:
        logger.info(
            "Series from %s blocked by %d collision(s)",
            anchor_date.isoformat(),
            len(conflicts),
        )
        return BookingResult(created=[], conflicts=conflicts)

    created = lesson_store.create_lessons(instances)
    logger.info(
        "Booked series %s with %d lesson(s)",
        created[0].recurrence.series_id if created else None,
        len(created),
    )
    return BookingResult(created=created, conflicts=conflicts)


def upcoming_lessons_in_zone(
    lesson_store: LessonStore,
    participant_id: int,
    viewer_zone: str,
) -> List[LessonInstance]:
    """
    A participant's upcoming lessons with date/time re-expressed on the
    viewer's wall clock, ordered by start.
    """
    get_zone(viewer_zone)
    lessons = [
        lesson
        for lesson in lesson_store.list_lessons(participant_id=participant_id)
        if lesson.status == LessonStatus.UPCOMING
    ]
    lessons.sort(key=lambda lesson: lesson_interval(lesson)[0])

    converted: List[LessonInstance] = []
    for lesson in lessons:
        start, _ = lesson_interval(lesson)
        local_date, local_time = to_wall_clock(start, viewer_zone)
        converted.append(
            lesson.model_copy(update={"date": local_date, "time": local_time, "zone": viewer_zone})
        )
    return converted
