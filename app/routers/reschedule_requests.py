# app/routers/reschedule_requests.py
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.errors import NotFoundError, SchedulingError
from app.routers.lessons import get_workflow
from app.schemas.scheduling import SlotProposal, ZoneName
from app.services.reschedule_service import RescheduleWorkflow
from app.stores.sql import SqlRequestStore

router = APIRouter(prefix="/reschedule-requests", tags=["reschedule-requests"])


class RescheduleRequestCreate(BaseModel):
    lesson_id: int
    participant_id: int
    proposed_slots: List[SlotProposal]
    reason: Optional[str] = None
    zone: ZoneName
    now: Optional[datetime] = None


class ApprovePayload(BaseModel):
    chosen_slot: SlotProposal
    now: Optional[datetime] = None


@router.post("/")
def create_reschedule_request(
    payload: RescheduleRequestCreate,
    workflow: RescheduleWorkflow = Depends(get_workflow),
) -> Dict[str, Any]:
    """
    Participant proposes new slots for an upcoming lesson.

    The lesson moves to 'reschedule-requested' until the provider approves
    or rejects. Requests made inside the late window are charged now.
    """
    try:
        result = workflow.request_reschedule(
            payload.lesson_id,
            payload.participant_id,
            payload.proposed_slots,
            payload.reason,
            payload.zone,
            now=payload.now,
        )
    except SchedulingError as e:
        raise e.to_http_exception()
    return {
        "request": result.request.model_dump(mode="json"),
        "penalty_charged": result.penalty_charged,
    }


@router.get("/lesson/{lesson_id}")
def get_pending_request_for_lesson(lesson_id: int, db: Session = Depends(get_db)) -> Dict[str, Any]:
    request = SqlRequestStore(db).get_reschedule_request_for_lesson(lesson_id)
    if request is None:
        raise NotFoundError(
            f"no pending reschedule request for lesson {lesson_id}",
            details={"lesson_id": lesson_id},
        ).to_http_exception()
    return request.model_dump(mode="json")


@router.post("/{request_id}/approve")
def approve_reschedule_request(
    request_id: int,
    payload: ApprovePayload,
    workflow: RescheduleWorkflow = Depends(get_workflow),
) -> Dict[str, Any]:
    try:
        lesson = workflow.approve_reschedule(request_id, payload.chosen_slot, now=payload.now)
    except SchedulingError as e:
        raise e.to_http_exception()
    return lesson.model_dump(mode="json")


@router.post("/{request_id}/reject")
def reject_reschedule_request(
    request_id: int,
    workflow: RescheduleWorkflow = Depends(get_workflow),
) -> Dict[str, Any]:
    try:
        request = workflow.reject_reschedule(request_id)
    except SchedulingError as e:
        raise e.to_http_exception()
    return request.model_dump(mode="json")
