# app/models/lesson.py
from sqlalchemy import JSON, Boolean, Column, Date, DateTime, Integer, String, Time

from app.models.base import Base, utcnow


class Lesson(Base):
    __tablename__ = "lessons"

    id = Column(Integer, primary_key=True, index=True)

    # Participant ids as a JSON list (1-on-1 lessons hold a single id)
    participant_ids = Column(JSON, nullable=False, default=list)

    # Wall-clock start, read in `timezone`
    date = Column(Date, nullable=False, index=True)
    time = Column(Time, nullable=False)
    timezone = Column(String(64), nullable=False)
    duration_minutes = Column(Integer, nullable=False)

    status = Column(String(32), nullable=False, default="upcoming", index=True)
    payment_status = Column(String(16), nullable=False, default="unpaid")

    # Recurrence metadata
    recurrence_type = Column(String(32), nullable=False, default="none")
    series_end_date = Column(Date, nullable=True)
    day_set = Column(JSON, nullable=True)
    series_id = Column(String(32), nullable=True, index=True)
    is_makeup = Column(Boolean, nullable=False, default=False)

    meeting_link = Column(String, nullable=True)
    subject = Column(String(255), nullable=True)
    notes = Column(String, nullable=True)

    # Embedded audit record of the last reschedule/cancel, as JSON
    audit = Column(JSON, nullable=True)
    cancellation_reason = Column(String, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(
        DateTime,
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )
