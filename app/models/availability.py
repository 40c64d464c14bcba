# app/models/availability.py
from sqlalchemy import Boolean, Column, Date, ForeignKey, Integer, String, Time
from sqlalchemy.orm import relationship

from app.models.base import Base


class AvailabilityWindow(Base):
    __tablename__ = "availability_windows"

    id = Column(Integer, primary_key=True, index=True)

    provider_id = Column(
        String(64),
        ForeignKey("provider_profiles.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # 0=Sunday ... 6=Saturday
    day_of_week = Column(Integer, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    active = Column(Boolean, nullable=False, default=True)

    provider = relationship("ProviderProfile", back_populates="windows")


class BlackoutSlot(Base):
    """One-off unavailable interval, in the provider's zone."""

    __tablename__ = "blackout_slots"

    id = Column(Integer, primary_key=True, index=True)

    provider_id = Column(
        String(64),
        ForeignKey("provider_profiles.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    date = Column(Date, nullable=False, index=True)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    notes = Column(String, nullable=True)

    provider = relationship("ProviderProfile", back_populates="blackouts")
