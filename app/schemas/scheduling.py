# app/schemas/scheduling.py
from datetime import date, datetime, time
from enum import Enum, IntEnum
from typing import Annotated, List, Literal, Optional, Union

from pydantic import (
    AfterValidator,
    BaseModel,
    Field,
    PlainSerializer,
    field_validator,
    model_validator,
)

from app.services.time_conversion import is_known_zone, is_valid_wall_clock


class Weekday(IntEnum):
    """Day-of-week numbering used by windows and day sets (0 = Sunday)."""

    SUNDAY = 0
    MONDAY = 1
    TUESDAY = 2
    WEDNESDAY = 3
    THURSDAY = 4
    FRIDAY = 5
    SATURDAY = 6


def weekday_of(d: date) -> int:
    # date.weekday() is 0=Monday; shift to 0=Sunday
    return (d.weekday() + 1) % 7


class LessonStatus(str, Enum):
    UPCOMING = "upcoming"
    COMPLETED = "completed"
    CANCELLED_BY_PARTICIPANT = "cancelled-by-participant"
    CANCELLED_BY_PROVIDER = "cancelled-by-provider"
    RESCHEDULE_REQUESTED = "reschedule-requested"


CANCELLED_STATUSES = frozenset(
    {LessonStatus.CANCELLED_BY_PARTICIPANT, LessonStatus.CANCELLED_BY_PROVIDER}
)


class PaymentStatus(str, Enum):
    PAID = "paid"
    UNPAID = "unpaid"
    PACKAGE = "package"


class RecurrenceType(str, Enum):
    NONE = "none"
    WEEKLY = "weekly"
    SPECIFIC_DAYS = "specific-days"
    EXPLICIT_DATES = "explicit-dates"


class RequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ActorRole(str, Enum):
    PARTICIPANT = "participant"
    PROVIDER = "provider"


class EditMode(str, Enum):
    SINGLE = "single"
    FOLLOWING = "following"


def _check_zone(value: str) -> str:
    if not is_known_zone(value):
        raise ValueError(f"unknown time zone '{value}'")
    return value


ZoneName = Annotated[str, AfterValidator(_check_zone)]

# "HH:MM" on the wire
WallTime = Annotated[
    time,
    PlainSerializer(lambda t: t.strftime("%H:%M"), return_type=str, when_used="json"),
]

DayIndex = Annotated[int, Field(ge=0, le=6)]


class TimeWindow(BaseModel):
    id: Optional[int] = None
    day_of_week: DayIndex
    start_time: WallTime
    end_time: WallTime
    active: bool = True

    @model_validator(mode="after")
    def check_end_after_start(self) -> "TimeWindow":
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class BlackoutException(BaseModel):
    id: Optional[int] = None
    date: date
    start_time: WallTime
    end_time: WallTime
    notes: Optional[str] = None

    @model_validator(mode="after")
    def check_end_after_start(self) -> "BlackoutException":
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class AvailabilityProfile(BaseModel):
    """Weekly open windows and dated blackouts, in the provider's home zone."""

    provider_id: str
    zone: ZoneName
    windows: List[TimeWindow] = Field(default_factory=list)
    blackouts: List[BlackoutException] = Field(default_factory=list)


class RecurrenceInfo(BaseModel):
    type: RecurrenceType = RecurrenceType.NONE
    series_end_date: Optional[date] = None
    day_set: Optional[List[DayIndex]] = None
    series_id: Optional[str] = None
    is_makeup: bool = False


class AuditRecord(BaseModel):
    previous_slot_description: str
    reason: str
    penalty_charged: bool = False
    acted_at: datetime


class LessonTemplate(BaseModel):
    """Everything a lesson carries except its calendar date."""

    participant_ids: List[int]
    time: WallTime
    duration: int = Field(gt=0, description="minutes")
    zone: ZoneName
    status: LessonStatus = LessonStatus.UPCOMING
    payment_status: PaymentStatus = PaymentStatus.UNPAID
    recurrence: RecurrenceInfo = Field(default_factory=RecurrenceInfo)
    meeting_link: Optional[str] = None
    subject: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("participant_ids")
    def validate_participants(cls, v: List[int]) -> List[int]:
        if not v:
            raise ValueError("at least one participant is required")
        return v


class LessonInstance(LessonTemplate):
    id: Optional[int] = None
    date: date
    audit: Optional[AuditRecord] = None
    cancellation_reason: Optional[str] = None
    created_at: Optional[datetime] = None

    @model_validator(mode="after")
    def check_resolves_to_instant(self) -> "LessonInstance":
        if not is_valid_wall_clock(self.date, self.time, self.zone):
            raise ValueError(
                f"{self.date.isoformat()} {self.time.strftime('%H:%M')} "
                f"does not exist in {self.zone}"
            )
        return self


class RecurrenceRule(BaseModel):
    type: RecurrenceType
    series_end_date: Optional[date] = None
    day_set: Optional[List[DayIndex]] = None
    dates: Optional[List[date]] = None


class SlotProposal(BaseModel):
    date: date
    time: WallTime


class RescheduleRequest(BaseModel):
    id: Optional[int] = None
    lesson_id: int
    participant_id: int
    proposed_slots: List[SlotProposal]
    reason: Optional[str] = None
    status: RequestStatus = RequestStatus.PENDING
    zone: ZoneName
    created_at: datetime


# Lesson update payloads. A slot move always carries its audit record.

class StatusChange(BaseModel):
    kind: Literal["status"] = "status"
    status: LessonStatus
    cancellation_reason: Optional[str] = None


class SlotChange(BaseModel):
    kind: Literal["slot"] = "slot"
    date: date
    time: WallTime
    zone: ZoneName
    audit: AuditRecord


class AuditAttach(BaseModel):
    kind: Literal["audit"] = "audit"
    audit: AuditRecord


LessonPatch = Annotated[
    Union[StatusChange, SlotChange, AuditAttach],
    Field(discriminator="kind"),
]
