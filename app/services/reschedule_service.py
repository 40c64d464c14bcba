# app/services/reschedule_service.py
"""
Cancel / reschedule workflow for lesson instances.

State machine:

    upcoming --complete--------> completed
    upcoming --cancel----------> cancelled-by-participant | cancelled-by-provider
    upcoming --request---------> reschedule-requested
    reschedule-requested --approve--> upcoming (new slot, audit written)
    reschedule-requested --reject---> upcoming (request rejected)

Compound operations write in a fixed order: the lesson status first, then
the audit record, then balance or request changes. A failure after the
first write is reported as PartialWriteError; a failure of the first write
propagates unchanged.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from typing import Callable, List, Optional, Sequence, Tuple

from app.config import get_settings
from app.errors import (
    NotFoundError,
    PartialWriteError,
    StateConflictError,
    ValidationError,
)
from app.schemas.scheduling import (
    CANCELLED_STATUSES,
    ActorRole,
    AuditAttach,
    AuditRecord,
    EditMode,
    LessonInstance,
    LessonStatus,
    LessonTemplate,
    RecurrenceInfo,
    RecurrenceRule,
    RecurrenceType,
    RequestStatus,
    RescheduleRequest,
    SlotChange,
    SlotProposal,
    StatusChange,
)
from app.services.booking_service import BookingResult, collisions_for
from app.services.recurrence_service import expand_recurrence, new_series_id
from app.services.time_conversion import (
    describe_slot,
    get_zone,
    hours_between,
    is_valid_wall_clock,
    to_instant,
)
from app.stores.base import BalanceStore, LessonStore, RequestStore

logger = logging.getLogger(__name__)


def is_late_action(start: datetime, acted_at: datetime, window_hours: float) -> bool:
    """
    True when an action at `acted_at` falls inside the penalty window before
    `start`: 0 <= hours until start < window_hours. Lessons already under
    way or over are never late.
    """
    hours_until_start = hours_between(acted_at, start)
    return 0 <= hours_until_start < window_hours


@dataclass
class CancellationResult:
    lesson: LessonInstance
    penalty_charged: bool


@dataclass
class RescheduleRequestResult:
    request: RescheduleRequest
    penalty_charged: bool


Step = Tuple[str, Callable[[], object]]


class RescheduleWorkflow:
    def __init__(
        self,
        lessons: LessonStore,
        requests: RequestStore,
        balances: BalanceStore,
        *,
        late_window_hours: Optional[float] = None,
        penalty_credits: Optional[int] = None,
        max_series_span_days: Optional[int] = None,
    ):
        settings = get_settings()
        self.lessons = lessons
        self.requests = requests
        self.balances = balances
        self.late_window_hours = (
            settings.LATE_ACTION_WINDOW_HOURS if late_window_hours is None else late_window_hours
        )
        self.penalty_credits = (
            settings.LATE_ACTION_PENALTY_CREDITS if penalty_credits is None else penalty_credits
        )
        self.max_series_span_days = max_series_span_days

    # ---------- helpers ----------

    @staticmethod
    def _now(now: Optional[datetime]) -> datetime:
        if now is None:
            return datetime.now(timezone.utc)
        if now.tzinfo is None:
            raise ValidationError("now must be timezone-aware")
        return now

    def _get_lesson(self, lesson_id: int) -> LessonInstance:
        lesson = self.lessons.get_lesson(lesson_id)
        if lesson is None:
            raise NotFoundError(f"lesson {lesson_id} not found", details={"lesson_id": lesson_id})
        return lesson

    @staticmethod
    def _require_status(lesson: LessonInstance, expected: LessonStatus) -> None:
        if lesson.status != expected:
            raise StateConflictError(
                f"lesson {lesson.id} is '{lesson.status.value}', "
                f"not in '{expected.value}' state",
                details={
                    "lesson_id": lesson.id,
                    "status": lesson.status.value,
                    "expected": expected.value,
                },
            )

    def _get_pending_request(self, request_id: int) -> RescheduleRequest:
        request = self.requests.get_reschedule_request(request_id)
        if request is None:
            raise NotFoundError(
                f"reschedule request {request_id} not found",
                details={"request_id": request_id},
            )
        if request.status != RequestStatus.PENDING:
            raise StateConflictError(
                f"reschedule request {request_id} is '{request.status.value}', not 'pending'",
                details={"request_id": request_id, "status": request.status.value},
            )
        return request

    @staticmethod
    def _validate_slot(d: date, t: time, zone: str) -> None:
        get_zone(zone)
        if not is_valid_wall_clock(d, t, zone):
            raise ValidationError(
                f"{d.isoformat()} {t.strftime('%H:%M')} does not exist in {zone}",
                details={"date": d.isoformat(), "time": t.strftime("%H:%M"), "zone": zone},
            )

    def _lesson_start(self, lesson: LessonInstance) -> datetime:
        return to_instant(lesson.date, lesson.time, lesson.zone)

    def _is_late(self, lesson: LessonInstance, acted_at: datetime) -> bool:
        return is_late_action(self._lesson_start(lesson), acted_at, self.late_window_hours)

    @staticmethod
    def _run_steps(operation: str, completed: List[str], steps: Sequence[Step]) -> None:
        """Run the writes that follow a successful first write, in order."""
        pending = [name for name, _ in steps]
        for name, step in steps:
            try:
                step()
            except Exception as e:
                logger.warning(
                    "%s partially applied: step '%s' failed after %s", operation, name, completed
                )
                raise PartialWriteError(
                    f"{operation} partially applied: '{name}' failed",
                    details={"completed": list(completed), "pending": list(pending)},
                ) from e
            completed.append(name)
            pending.remove(name)

    def _series_tail(self, lesson: LessonInstance) -> List[LessonInstance]:
        """Non-cancelled siblings dated on or after `lesson`, itself included."""
        series_id = lesson.recurrence.series_id
        if not series_id:
            return [lesson]
        tail = [
            sibling
            for sibling in self.lessons.list_lessons(series_id=series_id, date_from=lesson.date)
            if sibling.date >= lesson.date and sibling.status not in CANCELLED_STATUSES
        ]
        if all(sibling.id != lesson.id for sibling in tail):
            tail.insert(0, lesson)
        return tail

    # ---------- operations ----------

    def complete_lesson(self, lesson_id: int) -> LessonInstance:
        lesson = self._get_lesson(lesson_id)
        self._require_status(lesson, LessonStatus.UPCOMING)
        updated = self.lessons.update_lesson(lesson_id, StatusChange(status=LessonStatus.COMPLETED))
        logger.info("Lesson %s completed", lesson_id)
        return updated

    def cancel_lesson(
        self,
        lesson_id: int,
        actor_role: ActorRole,
        reason: Optional[str],
        *,
        actor_id: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> CancellationResult:
        """
        Cancel an upcoming lesson.

        A participant must give a reason and be one of the lesson's
        participants; cancelling inside the penalty window costs them
        `penalty_credits`. Every cancel leaves an audit record.
        """
        now = self._now(now)
        actor_role = ActorRole(actor_role)
        reason = (reason or "").strip()

        lesson = self._get_lesson(lesson_id)

        if actor_role == ActorRole.PARTICIPANT:
            if not reason:
                raise ValidationError("a cancellation reason is required")
            if actor_id is None or actor_id not in lesson.participant_ids:
                raise ValidationError(
                    f"participant {actor_id} does not attend lesson {lesson_id}",
                    details={"lesson_id": lesson_id, "participant_id": actor_id},
                )
            new_status = LessonStatus.CANCELLED_BY_PARTICIPANT
            penalty = self._is_late(lesson, now)
        else:
            new_status = LessonStatus.CANCELLED_BY_PROVIDER
            penalty = False
            reason = reason or "Cancelled by provider"

        self._require_status(lesson, LessonStatus.UPCOMING)

        audit = AuditRecord(
            previous_slot_description=describe_slot(lesson.date, lesson.time, lesson.zone),
            reason=reason,
            penalty_charged=penalty,
            acted_at=now,
        )

        self.lessons.update_lesson(
            lesson_id, StatusChange(status=new_status, cancellation_reason=reason)
        )
        completed = ["status"]

        steps: List[Step] = [
            ("audit", lambda: self.lessons.update_lesson(lesson_id, AuditAttach(audit=audit))),
        ]
        if penalty:
            steps.append(
                ("credit", lambda: self.balances.adjust_credit(actor_id, -self.penalty_credits))
            )
        self._run_steps("cancel", completed, steps)

        if penalty:
            logger.warning(
                "Late cancellation of lesson %s by participant %s: %d credit(s) deducted",
                lesson_id,
                actor_id,
                self.penalty_credits,
            )
        logger.info("Lesson %s %s", lesson_id, new_status.value)
        return CancellationResult(lesson=self._get_lesson(lesson_id), penalty_charged=penalty)

    def request_reschedule(
        self,
        lesson_id: int,
        participant_id: int,
        proposed_slots: Sequence[SlotProposal],
        reason: Optional[str],
        zone: str,
        *,
        now: Optional[datetime] = None,
    ) -> RescheduleRequestResult:
        """
        Participant asks to move an upcoming lesson to one of `proposed_slots`
        (wall-clock in `zone`). A late request is charged immediately.
        """
        now = self._now(now)
        if not proposed_slots:
            raise ValidationError("at least one proposed slot is required")
        for slot in proposed_slots:
            self._validate_slot(slot.date, slot.time, zone)

        lesson = self._get_lesson(lesson_id)
        if participant_id not in lesson.participant_ids:
            raise ValidationError(
                f"participant {participant_id} does not attend lesson {lesson_id}",
                details={"lesson_id": lesson_id, "participant_id": participant_id},
            )
        self._require_status(lesson, LessonStatus.UPCOMING)

        penalty = self._is_late(lesson, now)
        request = RescheduleRequest(
            lesson_id=lesson_id,
            participant_id=participant_id,
            proposed_slots=list(proposed_slots),
            reason=reason,
            status=RequestStatus.PENDING,
            zone=zone,
            created_at=now,
        )

        self.lessons.update_lesson(
            lesson_id, StatusChange(status=LessonStatus.RESCHEDULE_REQUESTED)
        )
        completed = ["status"]

        created: List[RescheduleRequest] = []
        steps: List[Step] = [
            ("request", lambda: created.append(self.requests.create_reschedule_request(request))),
        ]
        if penalty:
            steps.append(
                ("credit", lambda: self.balances.adjust_credit(participant_id, -self.penalty_credits))
            )
        self._run_steps("reschedule request", completed, steps)

        logger.info(
            "Reschedule requested for lesson %s by participant %s (late=%s)",
            lesson_id,
            participant_id,
            penalty,
        )
        return RescheduleRequestResult(request=created[0], penalty_charged=penalty)

    def approve_reschedule(
        self,
        request_id: int,
        chosen_slot: SlotProposal,
        *,
        now: Optional[datetime] = None,
    ) -> LessonInstance:
        """
        Move the lesson to `chosen_slot` (one of the proposed slots) and
        record the prior slot, reason and penalty flag. The penalty flag is
        judged at the time the request was made, not at approval.
        """
        now = self._now(now)
        request = self._get_pending_request(request_id)

        if all(
            (s.date, s.time) != (chosen_slot.date, chosen_slot.time)
            for s in request.proposed_slots
        ):
            raise ValidationError(
                "chosen slot is not one of the proposed slots",
                details={
                    "request_id": request_id,
                    "date": chosen_slot.date.isoformat(),
                    "time": chosen_slot.time.strftime("%H:%M"),
                },
            )

        lesson = self._get_lesson(request.lesson_id)
        self._require_status(lesson, LessonStatus.RESCHEDULE_REQUESTED)

        audit = AuditRecord(
            previous_slot_description=describe_slot(lesson.date, lesson.time, lesson.zone),
            reason=request.reason or "No reason provided",
            penalty_charged=self._is_late(lesson, request.created_at),
            acted_at=now,
        )

        updated = self.lessons.update_lesson(
            lesson.id,
            SlotChange(date=chosen_slot.date, time=chosen_slot.time, zone=request.zone, audit=audit),
        )
        self._run_steps(
            "reschedule approval",
            ["lesson"],
            [
                (
                    "request",
                    lambda: self.requests.update_reschedule_request(
                        request_id, status=RequestStatus.APPROVED
                    ),
                ),
            ],
        )
        logger.info(
            "Reschedule request %s approved: lesson %s moved from %s to %s",
            request_id,
            lesson.id,
            audit.previous_slot_description,
            describe_slot(updated.date, updated.time, updated.zone),
        )
        return updated

    def reject_reschedule(self, request_id: int) -> RescheduleRequest:
        """Decline a pending request; the lesson keeps its original slot."""
        request = self._get_pending_request(request_id)
        lesson = self.lessons.get_lesson(request.lesson_id)

        completed: List[str] = []
        if lesson is not None and lesson.status == LessonStatus.RESCHEDULE_REQUESTED:
            self.lessons.update_lesson(lesson.id, StatusChange(status=LessonStatus.UPCOMING))
            completed.append("status")

        rejected: List[RescheduleRequest] = []

        def _reject() -> None:
            rejected.append(
                self.requests.update_reschedule_request(request_id, status=RequestStatus.REJECTED)
            )

        if completed:
            self._run_steps("reschedule rejection", completed, [("request", _reject)])
        else:
            _reject()

        logger.info("Reschedule request %s rejected", request_id)
        return rejected[0]

    def reschedule_lesson(
        self,
        lesson_id: int,
        new_date: date,
        new_time: time,
        zone: str,
        *,
        mode: EditMode = EditMode.SINGLE,
        reason: Optional[str] = None,
        force: bool = False,
        now: Optional[datetime] = None,
    ) -> BookingResult:
        """
        Provider moves a lesson.

        `single` moves this instance only. `following` cancels this instance
        and every later non-cancelled sibling, then generates a fresh series
        (new series_id) through the original series_end_date. The moved
        lesson always opens the new series on `new_date`, even when that
        weekday is outside the day set or past the end date. A lesson
        outside a bounded series is always moved as `single`.

        The new slot(s) are checked against existing bookings first, leaving
        out the lessons being moved or cancelled. On a collision nothing is
        written and the conflicts come back in `BookingResult.conflicts`,
        unless `force` is set.
        """
        now = self._now(now)
        mode = EditMode(mode)
        self._validate_slot(new_date, new_time, zone)

        lesson = self._get_lesson(lesson_id)
        self._require_status(lesson, LessonStatus.UPCOMING)

        audit = AuditRecord(
            previous_slot_description=describe_slot(lesson.date, lesson.time, lesson.zone),
            reason=reason or "Rescheduled by provider",
            penalty_charged=False,
            acted_at=now,
        )

        recurrence = lesson.recurrence
        regenerate = (
            mode == EditMode.FOLLOWING
            and recurrence.series_id is not None
            and recurrence.series_end_date is not None
            and recurrence.type in (RecurrenceType.WEEKLY, RecurrenceType.SPECIFIC_DAYS)
        )

        if not regenerate:
            moved = lesson.model_copy(update={"date": new_date, "time": new_time, "zone": zone})
            conflicts = collisions_for(self.lessons, [moved], skip_ids=[lesson_id])
            if conflicts and not force:
                logger.info(
                    "Move of lesson %s to %s blocked by %d collision(s)",
                    lesson_id,
                    describe_slot(new_date, new_time, zone),
                    len(conflicts),
                )
                return BookingResult(created=[], conflicts=conflicts)

            updated = self.lessons.update_lesson(
                lesson_id, SlotChange(date=new_date, time=new_time, zone=zone, audit=audit)
            )
            logger.info("Lesson %s moved to %s", lesson_id, describe_slot(new_date, new_time, zone))
            return BookingResult(created=[updated], conflicts=conflicts)

        template = LessonTemplate.model_validate(
            {
                **lesson.model_dump(include=set(LessonTemplate.model_fields)),
                "time": new_time,
                "zone": zone,
                "status": LessonStatus.UPCOMING,
            }
        )
        rule = RecurrenceRule(
            type=recurrence.type,
            series_end_date=recurrence.series_end_date,
            day_set=recurrence.day_set,
        )
        # Expand before any write so validation errors leave the series intact
        series_id = new_series_id()
        new_instances = expand_recurrence(
            template,
            new_date,
            rule,
            series_id=series_id,
            max_span_days=self.max_series_span_days,
        )
        if new_instances and new_instances[0].date == new_date:
            new_instances[0] = new_instances[0].model_copy(update={"audit": audit})
        else:
            moved = LessonInstance(
                **template.model_dump(exclude={"recurrence"}),
                date=new_date,
                recurrence=RecurrenceInfo(
                    type=rule.type,
                    series_end_date=rule.series_end_date,
                    day_set=sorted(set(rule.day_set)) if rule.day_set else None,
                    series_id=series_id,
                    is_makeup=template.recurrence.is_makeup,
                ),
                audit=audit,
            )
            new_instances.insert(0, moved)

        tail = self._series_tail(lesson)
        conflicts = collisions_for(
            self.lessons, new_instances, skip_ids=[sibling.id for sibling in tail]
        )
        if conflicts and not force:
            logger.info(
                "Series reschedule from lesson %s blocked by %d collision(s)",
                lesson_id,
                len(conflicts),
            )
            return BookingResult(created=[], conflicts=conflicts)

        cancel_reason = "rescheduled"

        completed: List[str] = []
        steps: List[Step] = []
        for sibling in tail:
            steps.append(
                (
                    f"cancel:{sibling.id}",
                    lambda sid=sibling.id: self.lessons.update_lesson(
                        sid,
                        StatusChange(
                            status=LessonStatus.CANCELLED_BY_PROVIDER,
                            cancellation_reason=cancel_reason,
                        ),
                    ),
                )
            )

        first_name, first_step = steps[0]
        first_step()
        completed.append(first_name)

        created: List[LessonInstance] = []
        steps = steps[1:]
        steps.append(("create", lambda: created.extend(self.lessons.create_lessons(new_instances))))
        self._run_steps("series reschedule", completed, steps)

        logger.info(
            "Series %s rescheduled from lesson %s: %d cancelled, %d created (series %s)",
            recurrence.series_id,
            lesson_id,
            len(tail),
            len(created),
            series_id,
        )
        return BookingResult(created=created, conflicts=conflicts)

    def delete_lesson(self, lesson_id: int, mode: EditMode = EditMode.SINGLE) -> List[int]:
        """
        Physically remove a lesson, or with `following` the lesson and every
        later non-cancelled sibling in its series. Returns the deleted ids.
        """
        mode = EditMode(mode)
        lesson = self._get_lesson(lesson_id)

        if mode == EditMode.SINGLE:
            self.lessons.delete_lesson(lesson_id)
            logger.info("Lesson %s deleted", lesson_id)
            return [lesson_id]

        ids = [sibling.id for sibling in self._series_tail(lesson)]
        self.lessons.delete_lessons(ids)
        logger.info("Deleted %d lesson(s) from series %s", len(ids), lesson.recurrence.series_id)
        return ids
