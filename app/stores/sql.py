# app/stores/sql.py
import logging
from datetime import date, datetime, timezone
from typing import List, Optional, Sequence

from sqlalchemy.orm import Session

from app.errors import NotFoundError
from app.models.availability import AvailabilityWindow, BlackoutSlot
from app.models.lesson import Lesson
from app.models.participant import Participant
from app.models.provider import ProviderProfile
from app.models.reschedule_request import RescheduleRequest as RescheduleRequestRow
from app.schemas.scheduling import (
    AuditAttach,
    AuditRecord,
    AvailabilityProfile,
    BlackoutException,
    LessonInstance,
    LessonPatch,
    LessonStatus,
    RecurrenceInfo,
    RequestStatus,
    RescheduleRequest,
    SlotChange,
    SlotProposal,
    StatusChange,
    TimeWindow,
)

logger = logging.getLogger(__name__)


def _commit(db: Session) -> None:
    """Commit, or roll back so the session stays usable after a failed write."""
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def lesson_from_row(row: Lesson) -> LessonInstance:
    return LessonInstance(
        id=row.id,
        participant_ids=list(row.participant_ids or []),
        date=row.date,
        time=row.time,
        duration=row.duration_minutes,
        zone=row.timezone,
        status=row.status,
        payment_status=row.payment_status,
        recurrence=RecurrenceInfo(
            type=row.recurrence_type,
            series_end_date=row.series_end_date,
            day_set=row.day_set,
            series_id=row.series_id,
            is_makeup=row.is_makeup,
        ),
        meeting_link=row.meeting_link,
        subject=row.subject,
        notes=row.notes,
        audit=AuditRecord.model_validate(row.audit) if row.audit else None,
        cancellation_reason=row.cancellation_reason,
        created_at=_as_utc(row.created_at) if row.created_at else None,
    )


def _lesson_row(lesson: LessonInstance) -> Lesson:
    return Lesson(
        participant_ids=list(lesson.participant_ids),
        date=lesson.date,
        time=lesson.time,
        timezone=lesson.zone,
        duration_minutes=lesson.duration,
        status=lesson.status.value,
        payment_status=lesson.payment_status.value,
        recurrence_type=lesson.recurrence.type.value,
        series_end_date=lesson.recurrence.series_end_date,
        day_set=lesson.recurrence.day_set,
        series_id=lesson.recurrence.series_id,
        is_makeup=lesson.recurrence.is_makeup,
        meeting_link=lesson.meeting_link,
        subject=lesson.subject,
        notes=lesson.notes,
        audit=lesson.audit.model_dump(mode="json") if lesson.audit else None,
        cancellation_reason=lesson.cancellation_reason,
    )


class SqlLessonStore:
    def __init__(self, db: Session):
        self.db = db

    def _row(self, lesson_id: int) -> Lesson:
        row = self.db.get(Lesson, lesson_id)
        if row is None:
            raise NotFoundError(f"lesson {lesson_id} not found", details={"lesson_id": lesson_id})
        return row

    def list_lessons(
        self,
        *,
        participant_id: Optional[int] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        series_id: Optional[str] = None,
    ) -> List[LessonInstance]:
        query = self.db.query(Lesson)
        if date_from is not None:
            query = query.filter(Lesson.date >= date_from)
        if date_to is not None:
            query = query.filter(Lesson.date <= date_to)
        if series_id is not None:
            query = query.filter(Lesson.series_id == series_id)

        rows = query.order_by(Lesson.date.asc(), Lesson.time.asc(), Lesson.id.asc()).all()

        # participant_ids is a JSON list; filter in Python to stay dialect-neutral
        if participant_id is not None:
            rows = [r for r in rows if participant_id in (r.participant_ids or [])]

        return [lesson_from_row(r) for r in rows]

    def get_lesson(self, lesson_id: int) -> Optional[LessonInstance]:
        row = self.db.get(Lesson, lesson_id)
        return lesson_from_row(row) if row else None

    def create_lesson(self, lesson: LessonInstance) -> LessonInstance:
        row = _lesson_row(lesson)
        self.db.add(row)
        _commit(self.db)
        self.db.refresh(row)
        return lesson_from_row(row)

    def create_lessons(self, lessons: Sequence[LessonInstance]) -> List[LessonInstance]:
        rows = [_lesson_row(lesson) for lesson in lessons]
        self.db.add_all(rows)
        _commit(self.db)
        for row in rows:
            self.db.refresh(row)
        return [lesson_from_row(r) for r in rows]

    def update_lesson(self, lesson_id: int, patch: LessonPatch) -> LessonInstance:
        row = self._row(lesson_id)

        if isinstance(patch, StatusChange):
            row.status = patch.status.value
            if patch.cancellation_reason is not None:
                row.cancellation_reason = patch.cancellation_reason
        elif isinstance(patch, SlotChange):
            row.date = patch.date
            row.time = patch.time
            row.timezone = patch.zone
            row.status = LessonStatus.UPCOMING.value
            row.audit = patch.audit.model_dump(mode="json")
        elif isinstance(patch, AuditAttach):
            row.audit = patch.audit.model_dump(mode="json")
        else:
            raise TypeError(f"unsupported lesson patch {type(patch).__name__}")

        self.db.add(row)
        _commit(self.db)
        self.db.refresh(row)
        return lesson_from_row(row)

    def _delete_requests_for(self, lesson_ids: Sequence[int]) -> None:
        self.db.query(RescheduleRequestRow).filter(
            RescheduleRequestRow.lesson_id.in_(list(lesson_ids))
        ).delete(synchronize_session=False)

    def delete_lesson(self, lesson_id: int) -> None:
        row = self._row(lesson_id)
        self._delete_requests_for([lesson_id])
        self.db.delete(row)
        _commit(self.db)

    def delete_lessons(self, lesson_ids: Sequence[int]) -> None:
        if not lesson_ids:
            return
        self._delete_requests_for(lesson_ids)
        self.db.query(Lesson).filter(Lesson.id.in_(list(lesson_ids))).delete(
            synchronize_session=False
        )
        _commit(self.db)


def _window_from_row(row: AvailabilityWindow) -> TimeWindow:
    return TimeWindow(
        id=row.id,
        day_of_week=row.day_of_week,
        start_time=row.start_time,
        end_time=row.end_time,
        active=row.active,
    )


def _blackout_from_row(row: BlackoutSlot) -> BlackoutException:
    return BlackoutException(
        id=row.id,
        date=row.date,
        start_time=row.start_time,
        end_time=row.end_time,
        notes=row.notes,
    )


class SqlProfileStore:
    def __init__(self, db: Session):
        self.db = db

    def _to_schema(self, provider: ProviderProfile) -> AvailabilityProfile:
        return AvailabilityProfile(
            provider_id=provider.id,
            zone=provider.timezone,
            windows=[_window_from_row(w) for w in provider.windows],
            blackouts=[_blackout_from_row(b) for b in provider.blackouts],
        )

    def get_availability_profile(self, provider_id: str) -> Optional[AvailabilityProfile]:
        provider = self.db.get(ProviderProfile, provider_id)
        return self._to_schema(provider) if provider else None

    def update_availability_profile(
        self,
        provider_id: str,
        *,
        zone: str,
        windows: Sequence[TimeWindow],
    ) -> AvailabilityProfile:
        """Set the provider zone and replace the weekly windows wholesale."""
        provider = self.db.get(ProviderProfile, provider_id)
        if provider is None:
            provider = ProviderProfile(id=provider_id, timezone=zone)
            self.db.add(provider)
        provider.timezone = zone

        provider.windows = [
            AvailabilityWindow(
                day_of_week=w.day_of_week,
                start_time=w.start_time,
                end_time=w.end_time,
                active=w.active,
            )
            for w in windows
        ]
        _commit(self.db)
        self.db.refresh(provider)
        logger.info("Availability profile %s updated (%d windows)", provider_id, len(windows))
        return self._to_schema(provider)

    def add_blackout_exception(
        self, provider_id: str, blackout: BlackoutException
    ) -> BlackoutException:
        provider = self.db.get(ProviderProfile, provider_id)
        if provider is None:
            raise NotFoundError(
                f"availability profile {provider_id} not found",
                details={"provider_id": provider_id},
            )
        row = BlackoutSlot(
            provider_id=provider_id,
            date=blackout.date,
            start_time=blackout.start_time,
            end_time=blackout.end_time,
            notes=blackout.notes,
        )
        self.db.add(row)
        _commit(self.db)
        self.db.refresh(row)
        return _blackout_from_row(row)

    def delete_blackout_exception(self, blackout_id: int) -> bool:
        row = self.db.get(BlackoutSlot, blackout_id)
        if row is None:
            return False
        self.db.delete(row)
        _commit(self.db)
        return True


class SqlBalanceStore:
    def __init__(self, db: Session):
        self.db = db

    def adjust_credit(self, participant_id: int, delta: int) -> int:
        participant = self.db.get(Participant, participant_id)
        if participant is None:
            raise NotFoundError(
                f"participant {participant_id} not found",
                details={"participant_id": participant_id},
            )
        participant.lesson_balance = (participant.lesson_balance or 0) + delta
        self.db.add(participant)
        _commit(self.db)
        self.db.refresh(participant)
        return participant.lesson_balance


def request_from_row(row: RescheduleRequestRow) -> RescheduleRequest:
    return RescheduleRequest(
        id=row.id,
        lesson_id=row.lesson_id,
        participant_id=row.participant_id,
        proposed_slots=[SlotProposal.model_validate(s) for s in row.proposed_slots or []],
        reason=row.reason,
        status=row.status,
        zone=row.timezone,
        created_at=_as_utc(row.created_at),
    )


class SqlRequestStore:
    def __init__(self, db: Session):
        self.db = db

    def create_reschedule_request(self, request: RescheduleRequest) -> RescheduleRequest:
        row = RescheduleRequestRow(
            lesson_id=request.lesson_id,
            participant_id=request.participant_id,
            proposed_slots=[s.model_dump(mode="json") for s in request.proposed_slots],
            reason=request.reason,
            status=request.status.value,
            timezone=request.zone,
            created_at=_as_utc(request.created_at),
        )
        self.db.add(row)
        _commit(self.db)
        self.db.refresh(row)
        return request_from_row(row)

    def update_reschedule_request(
        self, request_id: int, *, status: RequestStatus
    ) -> RescheduleRequest:
        row = self.db.get(RescheduleRequestRow, request_id)
        if row is None:
            raise NotFoundError(
                f"reschedule request {request_id} not found",
                details={"request_id": request_id},
            )
        row.status = status.value
        self.db.add(row)
        _commit(self.db)
        self.db.refresh(row)
        return request_from_row(row)

    def get_reschedule_request(self, request_id: int) -> Optional[RescheduleRequest]:
        row = self.db.get(RescheduleRequestRow, request_id)
        return request_from_row(row) if row else None

    def get_reschedule_request_for_lesson(self, lesson_id: int) -> Optional[RescheduleRequest]:
        row = (
            self.db.query(RescheduleRequestRow)
            .filter(
                RescheduleRequestRow.lesson_id == lesson_id,
                RescheduleRequestRow.status == RequestStatus.PENDING.value,
            )
            .order_by(RescheduleRequestRow.created_at.desc())
            .first()
        )
        return request_from_row(row) if row else None
