# app/services/recurrence_service.py
import logging
import uuid
from datetime import date, timedelta
from typing import List, Optional

from app.config import get_settings
from app.errors import ValidationError
from app.schemas.scheduling import (
    LessonInstance,
    LessonTemplate,
    RecurrenceInfo,
    RecurrenceRule,
    RecurrenceType,
    weekday_of,
)
from app.services.time_conversion import is_valid_wall_clock

logger = logging.getLogger(__name__)


def new_series_id() -> str:
    return uuid.uuid4().hex


def _weekly_dates(anchor: date, end: date) -> List[date]:
    # Whole-day steps from the anchor; no calendar-month arithmetic.
    weeks = (end - anchor).days // 7
    return [anchor + timedelta(days=7 * i) for i in range(weeks + 1)]


def _specific_day_dates(anchor: date, end: date, day_set: List[int]) -> List[date]:
    wanted = set(day_set)
    span = (end - anchor).days
    return [
        anchor + timedelta(days=i)
        for i in range(span + 1)
        if weekday_of(anchor + timedelta(days=i)) in wanted
    ]


def expansion_dates(
    anchor_date: date,
    rule: RecurrenceRule,
    *,
    max_span_days: Optional[int] = None,
) -> List[date]:
    """
    Calendar dates produced by `rule` starting at `anchor_date`.

    - none: the anchor only.
    - weekly: the anchor and every 7th day after it up to and including
      series_end_date.
    - specific-days: every day in [anchor, series_end_date] whose weekday is
      in day_set.
    - explicit-dates: exactly the supplied dates (sorted, duplicates dropped).

    When series_end_date is before the anchor, weekly yields the anchor alone
    and specific-days yields the anchor only if its weekday is in day_set.
    """
    if rule.type == RecurrenceType.NONE:
        return [anchor_date]

    if rule.type == RecurrenceType.EXPLICIT_DATES:
        if not rule.dates:
            raise ValidationError("explicit-dates recurrence needs at least one date")
        return sorted(set(rule.dates))

    if rule.series_end_date is None:
        raise ValidationError(
            f"{rule.type.value} recurrence needs a series_end_date",
            details={"type": rule.type.value},
        )

    if rule.type == RecurrenceType.SPECIFIC_DAYS and not rule.day_set:
        raise ValidationError("specific-days recurrence needs a non-empty day_set")

    end = rule.series_end_date
    if end < anchor_date:
        if rule.type == RecurrenceType.WEEKLY:
            return [anchor_date]
        return [anchor_date] if weekday_of(anchor_date) in set(rule.day_set) else []

    if max_span_days is None:
        max_span_days = get_settings().MAX_SERIES_SPAN_DAYS
    span = (end - anchor_date).days
    if span > max_span_days:
        raise ValidationError(
            f"series spans {span} days, more than the allowed {max_span_days}",
            details={"span_days": span, "max_span_days": max_span_days},
        )

    if rule.type == RecurrenceType.WEEKLY:
        return _weekly_dates(anchor_date, end)
    return _specific_day_dates(anchor_date, end, rule.day_set)


def expand_recurrence(
    template: LessonTemplate,
    anchor_date: date,
    rule: RecurrenceRule,
    *,
    series_id: Optional[str] = None,
    max_span_days: Optional[int] = None,
) -> List[LessonInstance]:
    """
    Materialize `template` into concrete lesson instances.

    All instances of one expansion share a freshly generated series_id
    (a one-off lesson gets none) and copy the template verbatim apart from
    their date.
    """
    dates = expansion_dates(anchor_date, rule, max_span_days=max_span_days)

    missing = [d for d in dates if not is_valid_wall_clock(d, template.time, template.zone)]
    if missing:
        raise ValidationError(
            f"{template.time.strftime('%H:%M')} does not exist in {template.zone} "
            f"on {', '.join(d.isoformat() for d in missing)}",
            details={"dates": [d.isoformat() for d in missing]},
        )

    if rule.type == RecurrenceType.NONE:
        series_id = None
    else:
        series_id = series_id or new_series_id()

    recurrence = RecurrenceInfo(
        type=rule.type,
        series_end_date=rule.series_end_date,
        day_set=sorted(set(rule.day_set)) if rule.day_set else None,
        series_id=series_id,
        is_makeup=template.recurrence.is_makeup or rule.type == RecurrenceType.EXPLICIT_DATES,
    )
    # Only template fields carry over (an existing lesson may be passed in)
    base = template.model_dump(include=set(LessonTemplate.model_fields) - {"recurrence"})

    instances = [
        LessonInstance(**base, date=d, recurrence=recurrence.model_copy())
        for d in dates
    ]
    logger.info(
        "Expanded %s recurrence from %s into %d instance(s), series=%s",
        rule.type.value,
        anchor_date.isoformat(),
        len(instances),
        series_id,
    )
    return instances
