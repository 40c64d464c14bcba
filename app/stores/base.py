# app/stores/base.py
"""
Collaborator interfaces the scheduling engine reads from and writes to.

Implementations raise their own transport/storage errors; the engine lets
them propagate unchanged.
"""

from datetime import date
from typing import List, Optional, Protocol, Sequence

from app.schemas.scheduling import (
    AvailabilityProfile,
    BlackoutException,
    LessonInstance,
    LessonPatch,
    RequestStatus,
    RescheduleRequest,
    TimeWindow,
)


class LessonStore(Protocol):
    def list_lessons(
        self,
        *,
        participant_id: Optional[int] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        series_id: Optional[str] = None,
    ) -> List[LessonInstance]: ...

    def get_lesson(self, lesson_id: int) -> Optional[LessonInstance]: ...

    def create_lesson(self, lesson: LessonInstance) -> LessonInstance: ...

    def create_lessons(self, lessons: Sequence[LessonInstance]) -> List[LessonInstance]: ...

    def update_lesson(self, lesson_id: int, patch: LessonPatch) -> LessonInstance: ...

    def delete_lesson(self, lesson_id: int) -> None: ...

    def delete_lessons(self, lesson_ids: Sequence[int]) -> None: ...


class ProfileStore(Protocol):
    def get_availability_profile(self, provider_id: str) -> Optional[AvailabilityProfile]: ...

    def update_availability_profile(
        self,
        provider_id: str,
        *,
        zone: str,
        windows: Sequence[TimeWindow],
    ) -> AvailabilityProfile: ...

    def add_blackout_exception(
        self, provider_id: str, blackout: BlackoutException
    ) -> BlackoutException: ...

    def delete_blackout_exception(self, blackout_id: int) -> bool: ...


class BalanceStore(Protocol):
    def adjust_credit(self, participant_id: int, delta: int) -> int: ...


class RequestStore(Protocol):
    def create_reschedule_request(self, request: RescheduleRequest) -> RescheduleRequest: ...

    def update_reschedule_request(
        self, request_id: int, *, status: RequestStatus
    ) -> RescheduleRequest: ...

    def get_reschedule_request(self, request_id: int) -> Optional[RescheduleRequest]: ...

    def get_reschedule_request_for_lesson(self, lesson_id: int) -> Optional[RescheduleRequest]: ...
