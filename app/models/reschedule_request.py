# app/models/reschedule_request.py
from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String

from app.models.base import Base


class RescheduleRequest(Base):
    __tablename__ = "reschedule_requests"

    id = Column(Integer, primary_key=True, index=True)

    lesson_id = Column(
        Integer,
        ForeignKey("lessons.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    participant_id = Column(
        Integer,
        ForeignKey("participants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # [{"date": "YYYY-MM-DD", "time": "HH:MM"}, ...] read in `timezone`
    proposed_slots = Column(JSON, nullable=False, default=list)
    reason = Column(String, nullable=True)
    status = Column(String(16), nullable=False, default="pending", index=True)
    timezone = Column(String(64), nullable=False)

    # Request time; the late-action penalty is judged against it
    created_at = Column(DateTime(timezone=True), nullable=False)
