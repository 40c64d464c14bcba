# app/models/participant.py
from sqlalchemy import Column, DateTime, Integer, String

from app.models.base import Base, utcnow


class Participant(Base):
    __tablename__ = "participants"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    timezone = Column(String(64), nullable=True)

    # Prepaid lessons remaining; late cancels/reschedules deduct from it
    lesson_balance = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, default=utcnow, nullable=False)
