# app/models/provider.py
from sqlalchemy import Column, DateTime, String
from sqlalchemy.orm import relationship

from app.models.base import Base, utcnow


class ProviderProfile(Base):
    """The single tutor whose calendar the engine manages."""

    __tablename__ = "provider_profiles"

    id = Column(String(64), primary_key=True)

    # IANA zone name; weekly windows and blackouts are read in this zone
    timezone = Column(String(64), nullable=False)

    created_at = Column(DateTime, default=utcnow, nullable=False)

    windows = relationship(
        "AvailabilityWindow",
        back_populates="provider",
        cascade="all, delete-orphan",
        order_by="AvailabilityWindow.id",
    )
    blackouts = relationship(
        "BlackoutSlot",
        back_populates="provider",
        cascade="all, delete-orphan",
        order_by="BlackoutSlot.id",
    )
