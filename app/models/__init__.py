# app/models/__init__.py
from app.models.base import Base  # noqa: F401

from app.models.provider import ProviderProfile  # noqa: F401
from app.models.availability import AvailabilityWindow, BlackoutSlot  # noqa: F401
from app.models.participant import Participant  # noqa: F401
from app.models.lesson import Lesson  # noqa: F401
from app.models.reschedule_request import RescheduleRequest  # noqa: F401
