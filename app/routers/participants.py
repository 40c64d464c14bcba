# app/routers/participants.py
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.models.participant import Participant
from app.schemas.scheduling import ZoneName

router = APIRouter(prefix="/participants", tags=["participants"])


class ParticipantCreate(BaseModel):
    name: str
    email: Optional[str] = None
    zone: Optional[ZoneName] = None
    lesson_balance: int = 0


def _participant_dict(participant: Participant) -> Dict[str, Any]:
    return {
        "id": participant.id,
        "name": participant.name,
        "email": participant.email,
        "zone": participant.timezone,
        "lesson_balance": participant.lesson_balance,
    }


@router.post("/")
def create_participant(payload: ParticipantCreate, db: Session = Depends(get_db)) -> Dict[str, Any]:
    participant = Participant(
        name=payload.name,
        email=payload.email,
        timezone=payload.zone,
        lesson_balance=payload.lesson_balance,
    )
    db.add(participant)
    db.commit()
    db.refresh(participant)
    return _participant_dict(participant)


@router.get("/{participant_id}")
def get_participant(participant_id: int, db: Session = Depends(get_db)) -> Dict[str, Any]:
    participant = db.get(Participant, participant_id)
    if participant is None:
        raise HTTPException(status_code=404, detail="Participant not found")
    return _participant_dict(participant)
