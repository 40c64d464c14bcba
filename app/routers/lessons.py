# app/routers/lessons.py
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.errors import NotFoundError, SchedulingError
from app.schemas.scheduling import (
    ActorRole,
    EditMode,
    LessonInstance,
    LessonTemplate,
    RecurrenceRule,
    WallTime,
    ZoneName,
)
from app.services.booking_service import (
    BookingResult,
    book_lesson,
    book_series,
    upcoming_lessons_in_zone,
)
from app.services.collision_service import find_collisions, lesson_interval
from app.services.reschedule_service import RescheduleWorkflow
from app.stores.sql import (
    SqlBalanceStore,
    SqlLessonStore,
    SqlRequestStore,
)

router = APIRouter(prefix="/lessons", tags=["lessons"])


def get_workflow(db: Session = Depends(get_db)) -> RescheduleWorkflow:
    return RescheduleWorkflow(
        lessons=SqlLessonStore(db),
        requests=SqlRequestStore(db),
        balances=SqlBalanceStore(db),
    )


class SeriesCreate(BaseModel):
    template: LessonTemplate
    anchor_date: date
    rule: RecurrenceRule


class CollisionCheck(BaseModel):
    candidate: LessonInstance
    exclude_id: Optional[int] = None


class CancelPayload(BaseModel):
    actor_role: ActorRole
    actor_id: Optional[int] = None
    reason: Optional[str] = None
    # Optional 'now' for determinism in tests / simulations
    now: Optional[datetime] = None


class ReschedulePayload(BaseModel):
    date: date
    time: WallTime
    zone: ZoneName
    mode: EditMode = EditMode.SINGLE
    reason: Optional[str] = None
    force: bool = False
    now: Optional[datetime] = None


def _dump(lessons: List[LessonInstance]) -> List[Dict[str, Any]]:
    return [lesson.model_dump(mode="json") for lesson in lessons]


def _raise_on_conflicts(result: BookingResult) -> None:
    if not result.booked:
        raise HTTPException(
            status_code=409,
            detail={
                "message": "Requested time collides with existing lessons",
                "conflicts": _dump(result.conflicts),
            },
        )


def _booking_response(result: BookingResult) -> Dict[str, Any]:
    _raise_on_conflicts(result)
    return {"created": _dump(result.created), "conflicts": _dump(result.conflicts)}


@router.get("/")
def list_lessons(
    participant_id: Optional[int] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    db: Session = Depends(get_db),
) -> List[Dict[str, Any]]:
    lessons = SqlLessonStore(db).list_lessons(
        participant_id=participant_id,
        date_from=date_from,
        date_to=date_to,
    )
    return _dump(lessons)


@router.get("/participant/{participant_id}")
def lessons_for_participant(
    participant_id: int,
    viewer_zone: str = Query(...),
    db: Session = Depends(get_db),
) -> List[Dict[str, Any]]:
    """Upcoming lessons of one participant, on the viewer's wall clock."""
    try:
        lessons = upcoming_lessons_in_zone(SqlLessonStore(db), participant_id, viewer_zone)
    except SchedulingError as e:
        raise e.to_http_exception()
    return _dump(lessons)


@router.get("/{lesson_id}")
def get_lesson(lesson_id: int, db: Session = Depends(get_db)) -> Dict[str, Any]:
    lesson = SqlLessonStore(db).get_lesson(lesson_id)
    if lesson is None:
        raise NotFoundError(
            f"lesson {lesson_id} not found", details={"lesson_id": lesson_id}
        ).to_http_exception()
    return lesson.model_dump(mode="json")


@router.post("/")
def create_lesson(
    payload: LessonInstance,
    force: bool = False,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """
    Book a single lesson.

    Collisions answer 409 with the colliding lessons unless `force=true`,
    in which case the lesson is created and the collisions are returned
    alongside it.
    """
    try:
        result = book_lesson(SqlLessonStore(db), payload, force=force)
    except SchedulingError as e:
        raise e.to_http_exception()
    return _booking_response(result)


@router.post("/series")
def create_series(
    payload: SeriesCreate,
    force: bool = False,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    try:
        result = book_series(
            SqlLessonStore(db),
            payload.template,
            payload.anchor_date,
            payload.rule,
            force=force,
        )
    except SchedulingError as e:
        raise e.to_http_exception()
    return _booking_response(result)


@router.post("/collisions")
def check_collisions(payload: CollisionCheck, db: Session = Depends(get_db)) -> Dict[str, Any]:
    start, end = lesson_interval(payload.candidate)
    # Bookings are recorded in arbitrary zones; widen by a day on each side
    bookings = SqlLessonStore(db).list_lessons(
        date_from=start.date() - timedelta(days=1),
        date_to=end.date() + timedelta(days=1),
    )
    conflicts = find_collisions(payload.candidate, bookings, exclude_id=payload.exclude_id)
    return {"collides": bool(conflicts), "conflicts": _dump(conflicts)}


@router.post("/{lesson_id}/complete")
def complete_lesson(
    lesson_id: int,
    workflow: RescheduleWorkflow = Depends(get_workflow),
) -> Dict[str, Any]:
    try:
        lesson = workflow.complete_lesson(lesson_id)
    except SchedulingError as e:
        raise e.to_http_exception()
    return lesson.model_dump(mode="json")


@router.post("/{lesson_id}/cancel")
def cancel_lesson(
    lesson_id: int,
    payload: CancelPayload,
    workflow: RescheduleWorkflow = Depends(get_workflow),
) -> Dict[str, Any]:
    try:
        result = workflow.cancel_lesson(
            lesson_id,
            payload.actor_role,
            payload.reason,
            actor_id=payload.actor_id,
            now=payload.now,
        )
    except SchedulingError as e:
        raise e.to_http_exception()
    return {
        "lesson": result.lesson.model_dump(mode="json"),
        "penalty_charged": result.penalty_charged,
    }


@router.post("/{lesson_id}/reschedule")
def reschedule_lesson(
    lesson_id: int,
    payload: ReschedulePayload,
    workflow: RescheduleWorkflow = Depends(get_workflow),
) -> Dict[str, Any]:
    """
    Provider moves a lesson; with mode=following the rest of its series
    is regenerated from the new slot. Collisions answer 409 unless `force`.
    """
    try:
        result = workflow.reschedule_lesson(
            lesson_id,
            payload.date,
            payload.time,
            payload.zone,
            mode=payload.mode,
            reason=payload.reason,
            force=payload.force,
            now=payload.now,
        )
    except SchedulingError as e:
        raise e.to_http_exception()
    _raise_on_conflicts(result)
    return {"lessons": _dump(result.created), "conflicts": _dump(result.conflicts)}


@router.delete("/{lesson_id}")
def delete_lesson(
    lesson_id: int,
    mode: EditMode = EditMode.SINGLE,
    workflow: RescheduleWorkflow = Depends(get_workflow),
) -> Dict[str, Any]:
    try:
        deleted = workflow.delete_lesson(lesson_id, mode)
    except SchedulingError as e:
        raise e.to_http_exception()
    return {"deleted": deleted}
