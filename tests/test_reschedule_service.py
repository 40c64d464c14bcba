# tests/test_reschedule_service.py
from datetime import date, datetime, time, timedelta, timezone

import pytest
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.db.session import engine, SessionLocal
from app.errors import (
    NotFoundError,
    PartialWriteError,
    StateConflictError,
    ValidationError,
)
from app.models import Base, Lesson, Participant
from app.models import RescheduleRequest as RescheduleRequestRow
from app.schemas.scheduling import (
    ActorRole,
    AuditAttach,
    EditMode,
    LessonInstance,
    LessonStatus,
    LessonTemplate,
    RecurrenceRule,
    RecurrenceType,
    RequestStatus,
    SlotChange,
    SlotProposal,
    StatusChange,
)
from app.services.booking_service import book_lesson, book_series
from app.services.reschedule_service import RescheduleWorkflow, is_late_action
from app.stores.sql import SqlBalanceStore, SqlLessonStore, SqlRequestStore

LESSON_DATE = date(2030, 1, 7)
LESSON_START = datetime(2030, 1, 7, 10, 0, tzinfo=timezone.utc)


def setup_module(module):
    Base.metadata.create_all(bind=engine)


def _clean_db():
    db: Session = SessionLocal()
    try:
        db.query(RescheduleRequestRow).delete()
        db.query(Lesson).delete()
        db.query(Participant).delete()
        db.commit()
    finally:
        db.close()


def _participant(db: Session, balance: int = 10) -> int:
    participant = Participant(name="Dana", email="dana@example.com", timezone="UTC", lesson_balance=balance)
    db.add(participant)
    db.commit()
    db.refresh(participant)
    return participant.id


def _balance(db: Session, participant_id: int) -> int:
    db.expire_all()
    return db.get(Participant, participant_id).lesson_balance


def _workflow(db: Session) -> RescheduleWorkflow:
    return RescheduleWorkflow(
        lessons=SqlLessonStore(db),
        requests=SqlRequestStore(db),
        balances=SqlBalanceStore(db),
        late_window_hours=4.0,
        penalty_credits=1,
    )


def _book(db: Session, participant_id: int, d=LESSON_DATE, t=time(10, 0)) -> LessonInstance:
    lesson = LessonInstance(
        participant_ids=[participant_id], date=d, time=t, duration=60, zone="UTC"
    )
    return book_lesson(SqlLessonStore(db), lesson).created[0]


# ---------- penalty window ----------


def test_late_action_boundaries():
    assert not is_late_action(LESSON_START, LESSON_START - timedelta(hours=4), 4.0)
    assert is_late_action(LESSON_START, LESSON_START - timedelta(hours=3.999), 4.0)
    assert is_late_action(LESSON_START, LESSON_START, 4.0)
    assert not is_late_action(LESSON_START, LESSON_START + timedelta(minutes=1), 4.0)


@pytest.mark.parametrize(
    "acted_at, charged",
    [
        (LESSON_START - timedelta(hours=4), False),
        (LESSON_START - timedelta(hours=3.999), True),
        (LESSON_START + timedelta(hours=1), False),
    ],
)
def test_participant_cancel_penalty(acted_at, charged):
    _clean_db()
    db = SessionLocal()
    try:
        pid = _participant(db, balance=5)
        lesson = _book(db, pid)

        result = _workflow(db).cancel_lesson(
            lesson.id, ActorRole.PARTICIPANT, "Sick", actor_id=pid, now=acted_at
        )

        assert result.penalty_charged is charged
        assert result.lesson.status == LessonStatus.CANCELLED_BY_PARTICIPANT
        assert result.lesson.cancellation_reason == "Sick"
        assert result.lesson.audit.penalty_charged is charged
        assert result.lesson.audit.previous_slot_description == "2030-01-07 10:00 (UTC)"
        assert _balance(db, pid) == (4 if charged else 5)
    finally:
        db.close()


# ---------- cancel ----------


def test_provider_cancel_is_never_charged():
    _clean_db()
    db = SessionLocal()
    try:
        pid = _participant(db, balance=3)
        lesson = _book(db, pid)

        result = _workflow(db).cancel_lesson(
            lesson.id, ActorRole.PROVIDER, None, now=LESSON_START - timedelta(hours=1)
        )

        assert result.penalty_charged is False
        assert result.lesson.status == LessonStatus.CANCELLED_BY_PROVIDER
        assert result.lesson.audit is not None
        assert _balance(db, pid) == 3
    finally:
        db.close()


def test_participant_cancel_requires_reason_and_membership():
    _clean_db()
    db = SessionLocal()
    try:
        pid = _participant(db)
        other = _participant(db)
        lesson = _book(db, pid)
        workflow = _workflow(db)
        now = LESSON_START - timedelta(days=1)

        with pytest.raises(ValidationError):
            workflow.cancel_lesson(lesson.id, ActorRole.PARTICIPANT, "  ", actor_id=pid, now=now)
        with pytest.raises(ValidationError):
            workflow.cancel_lesson(lesson.id, ActorRole.PARTICIPANT, "Busy", actor_id=other, now=now)

        assert SqlLessonStore(db).get_lesson(lesson.id).status == LessonStatus.UPCOMING
    finally:
        db.close()


def test_cancel_twice_is_a_state_conflict():
    _clean_db()
    db = SessionLocal()
    try:
        pid = _participant(db)
        lesson = _book(db, pid)
        workflow = _workflow(db)
        now = LESSON_START - timedelta(days=1)

        workflow.cancel_lesson(lesson.id, ActorRole.PROVIDER, "Holiday", now=now)
        with pytest.raises(StateConflictError) as exc:
            workflow.cancel_lesson(lesson.id, ActorRole.PROVIDER, "Holiday", now=now)
        assert exc.value.details["status"] == "cancelled-by-provider"
        assert exc.value.details["expected"] == "upcoming"
    finally:
        db.close()


def test_missing_lesson_and_naive_now():
    _clean_db()
    db = SessionLocal()
    try:
        pid = _participant(db)
        lesson = _book(db, pid)
        workflow = _workflow(db)

        with pytest.raises(NotFoundError):
            workflow.cancel_lesson(999999, ActorRole.PROVIDER, "x", now=LESSON_START)
        with pytest.raises(ValidationError):
            workflow.cancel_lesson(lesson.id, ActorRole.PROVIDER, "x", now=datetime(2030, 1, 1))
    finally:
        db.close()


def test_complete_lesson_only_from_upcoming():
    _clean_db()
    db = SessionLocal()
    try:
        pid = _participant(db)
        lesson = _book(db, pid)
        workflow = _workflow(db)

        assert workflow.complete_lesson(lesson.id).status == LessonStatus.COMPLETED
        with pytest.raises(StateConflictError):
            workflow.complete_lesson(lesson.id)
    finally:
        db.close()


# ---------- reschedule requests ----------


def test_request_then_approve_moves_lesson_and_records_audit():
    _clean_db()
    db = SessionLocal()
    try:
        pid = _participant(db, balance=2)
        lesson = _book(db, pid)
        workflow = _workflow(db)
        slots = [
            SlotProposal(date=date(2030, 1, 8), time=time(11, 0)),
            SlotProposal(date=date(2030, 1, 9), time=time(12, 0)),
        ]

        result = workflow.request_reschedule(
            lesson.id, pid, slots, "Exam", "Europe/Berlin", now=LESSON_START - timedelta(days=2)
        )
        assert result.penalty_charged is False
        assert result.request.status == RequestStatus.PENDING
        assert SqlLessonStore(db).get_lesson(lesson.id).status == LessonStatus.RESCHEDULE_REQUESTED

        moved = workflow.approve_reschedule(
            result.request.id, slots[1], now=LESSON_START - timedelta(days=1)
        )

        assert moved.status == LessonStatus.UPCOMING
        assert moved.date == date(2030, 1, 9)
        assert moved.time == time(12, 0)
        assert moved.zone == "Europe/Berlin"
        assert moved.audit.previous_slot_description == "2030-01-07 10:00 (UTC)"
        assert moved.audit.reason == "Exam"
        assert moved.audit.penalty_charged is False
        assert SqlRequestStore(db).get_reschedule_request(result.request.id).status == RequestStatus.APPROVED
        assert _balance(db, pid) == 2

        with pytest.raises(StateConflictError):
            workflow.approve_reschedule(result.request.id, slots[0])
    finally:
        db.close()


def test_late_request_is_charged_and_flagged_on_approval():
    _clean_db()
    db = SessionLocal()
    try:
        pid = _participant(db, balance=2)
        lesson = _book(db, pid)
        workflow = _workflow(db)
        slot = SlotProposal(date=date(2030, 1, 8), time=time(10, 0))

        result = workflow.request_reschedule(
            lesson.id, pid, [slot], "Flight", "UTC", now=LESSON_START - timedelta(hours=2)
        )
        assert result.penalty_charged is True
        assert _balance(db, pid) == 1

        # Approved well after the lesson start; the flag follows the request time
        moved = workflow.approve_reschedule(
            result.request.id, slot, now=LESSON_START + timedelta(hours=1)
        )
        assert moved.audit.penalty_charged is True
        assert _balance(db, pid) == 1
    finally:
        db.close()


def test_approve_rejects_slot_that_was_not_proposed():
    _clean_db()
    db = SessionLocal()
    try:
        pid = _participant(db)
        lesson = _book(db, pid)
        workflow = _workflow(db)
        result = workflow.request_reschedule(
            lesson.id,
            pid,
            [SlotProposal(date=date(2030, 1, 8), time=time(10, 0))],
            None,
            "UTC",
            now=LESSON_START - timedelta(days=1),
        )

        with pytest.raises(ValidationError):
            workflow.approve_reschedule(
                result.request.id, SlotProposal(date=date(2030, 1, 8), time=time(15, 0))
            )
        assert SqlLessonStore(db).get_lesson(lesson.id).status == LessonStatus.RESCHEDULE_REQUESTED
    finally:
        db.close()


def test_reject_restores_lesson_without_refund():
    _clean_db()
    db = SessionLocal()
    try:
        pid = _participant(db, balance=2)
        lesson = _book(db, pid)
        workflow = _workflow(db)
        result = workflow.request_reschedule(
            lesson.id,
            pid,
            [SlotProposal(date=date(2030, 1, 8), time=time(10, 0))],
            "Late notice",
            "UTC",
            now=LESSON_START - timedelta(hours=1),
        )

        rejected = workflow.reject_reschedule(result.request.id)

        assert rejected.status == RequestStatus.REJECTED
        restored = SqlLessonStore(db).get_lesson(lesson.id)
        assert restored.status == LessonStatus.UPCOMING
        assert restored.date == LESSON_DATE
        assert _balance(db, pid) == 1
    finally:
        db.close()


def test_request_with_nonexistent_wall_clock_is_rejected():
    _clean_db()
    db = SessionLocal()
    try:
        pid = _participant(db)
        lesson = _book(db, pid)

        with pytest.raises(ValidationError):
            _workflow(db).request_reschedule(
                lesson.id,
                pid,
                [SlotProposal(date=date(2030, 3, 10), time=time(2, 30))],
                "DST",
                "America/New_York",
                now=LESSON_START - timedelta(days=1),
            )
        assert SqlLessonStore(db).get_lesson(lesson.id).status == LessonStatus.UPCOMING
    finally:
        db.close()


# ---------- provider reschedule / delete ----------


def _weekly_series(db: Session, pid: int):
    template = LessonTemplate(participant_ids=[pid], time=time(10, 0), duration=60, zone="UTC")
    rule = RecurrenceRule(type=RecurrenceType.WEEKLY, series_end_date=date(2030, 2, 4))
    return book_series(SqlLessonStore(db), template, LESSON_DATE, rule).created


def test_reschedule_following_regenerates_rest_of_series():
    _clean_db()
    db = SessionLocal()
    try:
        pid = _participant(db)
        series = _weekly_series(db, pid)
        assert len(series) == 5
        original_series_id = series[0].recurrence.series_id

        created = _workflow(db).reschedule_lesson(
            series[2].id,
            date(2030, 1, 23),
            time(11, 0),
            "UTC",
            mode=EditMode.FOLLOWING,
            now=LESSON_START - timedelta(days=1),
        ).created

        assert [c.date for c in created] == [date(2030, 1, 23), date(2030, 1, 30)]
        new_series_id = created[0].recurrence.series_id
        assert new_series_id not in (None, original_series_id)
        assert all(c.time == time(11, 0) for c in created)
        assert created[0].audit.previous_slot_description == "2030-01-21 10:00 (UTC)"
        assert created[1].audit is None

        store = SqlLessonStore(db)
        old = store.list_lessons(series_id=original_series_id)
        assert [o.status for o in old[:2]] == [LessonStatus.UPCOMING, LessonStatus.UPCOMING]
        assert all(o.status == LessonStatus.CANCELLED_BY_PROVIDER for o in old[2:])
        assert all(o.cancellation_reason == "rescheduled" for o in old[2:])
        assert len(store.list_lessons(series_id=new_series_id)) == 2
    finally:
        db.close()


def test_reschedule_single_moves_one_instance():
    _clean_db()
    db = SessionLocal()
    try:
        pid = _participant(db)
        series = _weekly_series(db, pid)

        moved = _workflow(db).reschedule_lesson(
            series[1].id,
            date(2030, 1, 15),
            time(9, 0),
            "UTC",
            mode=EditMode.SINGLE,
            reason="Conference",
            now=LESSON_START - timedelta(days=1),
        ).created

        assert len(moved) == 1
        assert moved[0].id == series[1].id
        assert moved[0].date == date(2030, 1, 15)
        assert moved[0].recurrence.series_id == series[1].recurrence.series_id
        assert moved[0].audit.reason == "Conference"
        others = SqlLessonStore(db).list_lessons(series_id=series[0].recurrence.series_id)
        assert all(o.status == LessonStatus.UPCOMING for o in others)
    finally:
        db.close()


def test_following_on_one_off_lesson_degrades_to_single():
    _clean_db()
    db = SessionLocal()
    try:
        pid = _participant(db)
        lesson = _book(db, pid)

        moved = _workflow(db).reschedule_lesson(
            lesson.id,
            date(2030, 1, 10),
            time(10, 0),
            "UTC",
            mode=EditMode.FOLLOWING,
            now=LESSON_START - timedelta(days=1),
        ).created

        assert [m.id for m in moved] == [lesson.id]
        assert moved[0].date == date(2030, 1, 10)
    finally:
        db.close()


def test_move_onto_booked_slot_is_blocked_unless_forced():
    _clean_db()
    db = SessionLocal()
    try:
        pid = _participant(db)
        booked = _book(db, pid)
        other = _book(db, pid, t=time(13, 0))
        workflow = _workflow(db)
        now = LESSON_START - timedelta(days=1)

        result = workflow.reschedule_lesson(other.id, LESSON_DATE, time(10, 30), "UTC", now=now)

        assert result.created == []
        assert [c.id for c in result.conflicts] == [booked.id]
        unchanged = SqlLessonStore(db).get_lesson(other.id)
        assert unchanged.time == time(13, 0)
        assert unchanged.audit is None

        forced = workflow.reschedule_lesson(
            other.id, LESSON_DATE, time(10, 30), "UTC", force=True, now=now
        )
        assert forced.created[0].time == time(10, 30)
        assert [c.id for c in forced.conflicts] == [booked.id]
    finally:
        db.close()


def test_move_overlapping_own_old_slot_is_allowed():
    _clean_db()
    db = SessionLocal()
    try:
        pid = _participant(db)
        lesson = _book(db, pid)

        result = _workflow(db).reschedule_lesson(
            lesson.id, LESSON_DATE, time(10, 30), "UTC", now=LESSON_START - timedelta(days=1)
        )

        assert result.conflicts == []
        assert result.created[0].time == time(10, 30)
    finally:
        db.close()


def test_following_reschedule_onto_booked_slot_writes_nothing():
    _clean_db()
    db = SessionLocal()
    try:
        pid = _participant(db)
        series = _weekly_series(db, pid)
        blocker = _book(db, pid, d=date(2030, 1, 30), t=time(11, 30))

        result = _workflow(db).reschedule_lesson(
            series[2].id,
            date(2030, 1, 23),
            time(11, 0),
            "UTC",
            mode=EditMode.FOLLOWING,
            now=LESSON_START - timedelta(days=1),
        )

        assert result.created == []
        assert [c.id for c in result.conflicts] == [blocker.id]
        lessons = SqlLessonStore(db).list_lessons(series_id=series[0].recurrence.series_id)
        assert all(l.status == LessonStatus.UPCOMING for l in lessons)
        assert len(SqlLessonStore(db).list_lessons()) == 6
    finally:
        db.close()


def _mon_wed_series(db: Session, pid: int):
    template = LessonTemplate(participant_ids=[pid], time=time(10, 0), duration=60, zone="UTC")
    rule = RecurrenceRule(
        type=RecurrenceType.SPECIFIC_DAYS,
        series_end_date=date(2030, 1, 23),
        day_set=[1, 3],
    )
    return book_series(SqlLessonStore(db), template, LESSON_DATE, rule).created


def test_following_move_to_day_outside_day_set_keeps_moved_lesson():
    _clean_db()
    db = SessionLocal()
    try:
        pid = _participant(db)
        series = _mon_wed_series(db, pid)
        assert series[2].date == date(2030, 1, 14)

        # Tuesday is not in the Mon/Wed day set
        created = _workflow(db).reschedule_lesson(
            series[2].id,
            date(2030, 1, 15),
            time(10, 0),
            "UTC",
            mode=EditMode.FOLLOWING,
            now=LESSON_START - timedelta(days=1),
        ).created

        assert [c.date for c in created] == [
            date(2030, 1, 15),
            date(2030, 1, 16),
            date(2030, 1, 21),
            date(2030, 1, 23),
        ]
        assert created[0].audit.previous_slot_description == "2030-01-14 10:00 (UTC)"
        assert len({c.recurrence.series_id for c in created}) == 1
        assert created[0].recurrence.day_set == [1, 3]
    finally:
        db.close()


def test_following_move_past_series_end_keeps_moved_lesson():
    _clean_db()
    db = SessionLocal()
    try:
        pid = _participant(db)
        series = _mon_wed_series(db, pid)

        # Saturday after the series end date
        created = _workflow(db).reschedule_lesson(
            series[-1].id,
            date(2030, 1, 26),
            time(9, 0),
            "UTC",
            mode=EditMode.FOLLOWING,
            now=LESSON_START - timedelta(days=1),
        ).created

        assert [(c.date, c.time) for c in created] == [(date(2030, 1, 26), time(9, 0))]
        assert created[0].audit is not None
        assert created[0].status == LessonStatus.UPCOMING
    finally:
        db.close()


def test_failed_commit_is_rolled_back_and_session_stays_usable(monkeypatch):
    _clean_db()
    db = SessionLocal()
    try:
        pid = _participant(db, balance=5)
        lesson = _book(db, pid)
        real_commit = db.commit

        def commit_with_invalid_row():
            db.add(Participant(name=None))
            real_commit()

        monkeypatch.setattr(db, "commit", commit_with_invalid_row)
        with pytest.raises(IntegrityError):
            SqlBalanceStore(db).adjust_credit(pid, -1)
        monkeypatch.undo()

        assert _balance(db, pid) == 5
        assert SqlLessonStore(db).get_lesson(lesson.id).status == LessonStatus.UPCOMING
    finally:
        db.close()


def test_delete_following_purges_tail_of_series():
    _clean_db()
    db = SessionLocal()
    try:
        pid = _participant(db)
        series = _weekly_series(db, pid)

        deleted = _workflow(db).delete_lesson(series[3].id, EditMode.FOLLOWING)

        assert sorted(deleted) == [series[3].id, series[4].id]
        remaining = SqlLessonStore(db).list_lessons(series_id=series[0].recurrence.series_id)
        assert [r.id for r in remaining] == [s.id for s in series[:3]]
    finally:
        db.close()


# ---------- partial writes (in-memory stores) ----------


class StoreDown(RuntimeError):
    pass


class MemoryLessonStore:
    def __init__(self, fail_on=None):
        self.lessons = {}
        self.fail_on = fail_on
        self._next_id = 1

    def list_lessons(self, *, participant_id=None, date_from=None, date_to=None, series_id=None):
        found = []
        for lesson in sorted(self.lessons.values(), key=lambda l: (l.date, l.time, l.id)):
            if participant_id is not None and participant_id not in lesson.participant_ids:
                continue
            if date_from is not None and lesson.date < date_from:
                continue
            if date_to is not None and lesson.date > date_to:
                continue
            if series_id is not None and lesson.recurrence.series_id != series_id:
                continue
            found.append(lesson)
        return found

    def get_lesson(self, lesson_id):
        return self.lessons.get(lesson_id)

    def create_lesson(self, lesson):
        stored = lesson.model_copy(update={"id": self._next_id})
        self.lessons[stored.id] = stored
        self._next_id += 1
        return stored

    def create_lessons(self, lessons):
        return [self.create_lesson(lesson) for lesson in lessons]

    def update_lesson(self, lesson_id, patch):
        if patch.kind == self.fail_on:
            raise StoreDown(f"{patch.kind} write failed")
        lesson = self.lessons[lesson_id]
        if isinstance(patch, StatusChange):
            update = {"status": patch.status}
            if patch.cancellation_reason is not None:
                update["cancellation_reason"] = patch.cancellation_reason
        elif isinstance(patch, SlotChange):
            update = {
                "date": patch.date,
                "time": patch.time,
                "zone": patch.zone,
                "status": LessonStatus.UPCOMING,
                "audit": patch.audit,
            }
        elif isinstance(patch, AuditAttach):
            update = {"audit": patch.audit}
        self.lessons[lesson_id] = lesson.model_copy(update=update)
        return self.lessons[lesson_id]

    def delete_lesson(self, lesson_id):
        del self.lessons[lesson_id]

    def delete_lessons(self, lesson_ids):
        for lesson_id in lesson_ids:
            del self.lessons[lesson_id]


class MemoryBalanceStore:
    def __init__(self, fail=False):
        self.balances = {1: 5}
        self.fail = fail

    def adjust_credit(self, participant_id, delta):
        if self.fail:
            raise StoreDown("balance write failed")
        self.balances[participant_id] += delta
        return self.balances[participant_id]


class MemoryRequestStore:
    def __init__(self, fail=False):
        self.requests = {}
        self.fail = fail

    def create_reschedule_request(self, request):
        if self.fail:
            raise StoreDown("request write failed")
        stored = request.model_copy(update={"id": len(self.requests) + 1})
        self.requests[stored.id] = stored
        return stored

    def update_reschedule_request(self, request_id, *, status):
        self.requests[request_id] = self.requests[request_id].model_copy(update={"status": status})
        return self.requests[request_id]

    def get_reschedule_request(self, request_id):
        return self.requests.get(request_id)

    def get_reschedule_request_for_lesson(self, lesson_id):
        for request in self.requests.values():
            if request.lesson_id == lesson_id and request.status == RequestStatus.PENDING:
                return request
        return None


def _memory_workflow(lessons=None, balances=None, requests=None):
    lessons = lessons or MemoryLessonStore()
    lesson = lessons.create_lesson(
        LessonInstance(participant_ids=[1], date=LESSON_DATE, time=time(10, 0), duration=60, zone="UTC")
    )
    workflow = RescheduleWorkflow(
        lessons,
        requests or MemoryRequestStore(),
        balances or MemoryBalanceStore(),
        late_window_hours=4.0,
        penalty_credits=1,
    )
    return workflow, lesson


def test_failed_credit_write_reports_completed_and_pending_steps():
    balances = MemoryBalanceStore(fail=True)
    workflow, lesson = _memory_workflow(balances=balances)

    with pytest.raises(PartialWriteError) as exc:
        workflow.cancel_lesson(
            lesson.id, ActorRole.PARTICIPANT, "Sick", actor_id=1, now=LESSON_START - timedelta(hours=1)
        )

    assert exc.value.details == {"completed": ["status", "audit"], "pending": ["credit"]}
    assert isinstance(exc.value.__cause__, StoreDown)
    stored = workflow.lessons.get_lesson(lesson.id)
    assert stored.status == LessonStatus.CANCELLED_BY_PARTICIPANT
    assert stored.audit.penalty_charged is True
    assert balances.balances[1] == 5


def test_failed_audit_write_stops_before_credit():
    balances = MemoryBalanceStore()
    workflow, lesson = _memory_workflow(lessons=MemoryLessonStore(fail_on="audit"), balances=balances)

    with pytest.raises(PartialWriteError) as exc:
        workflow.cancel_lesson(
            lesson.id, ActorRole.PARTICIPANT, "Sick", actor_id=1, now=LESSON_START - timedelta(hours=1)
        )

    assert exc.value.details == {"completed": ["status"], "pending": ["audit", "credit"]}
    assert balances.balances[1] == 5


def test_failure_of_first_write_propagates_unchanged():
    workflow, lesson = _memory_workflow(lessons=MemoryLessonStore(fail_on="status"))

    with pytest.raises(StoreDown):
        workflow.cancel_lesson(lesson.id, ActorRole.PROVIDER, "x", now=LESSON_START - timedelta(days=1))


def test_failed_request_write_after_status_change():
    workflow, lesson = _memory_workflow(requests=MemoryRequestStore(fail=True))

    with pytest.raises(PartialWriteError) as exc:
        workflow.request_reschedule(
            lesson.id,
            1,
            [SlotProposal(date=date(2030, 1, 8), time=time(10, 0))],
            "Trip",
            "UTC",
            now=LESSON_START - timedelta(hours=1),
        )

    assert exc.value.details == {"completed": ["status"], "pending": ["request", "credit"]}
    assert workflow.lessons.get_lesson(lesson.id).status == LessonStatus.RESCHEDULE_REQUESTED
    assert workflow.balances.balances[1] == 5
