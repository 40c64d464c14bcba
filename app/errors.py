# app/errors.py
"""
Domain errors raised by the scheduling engine.

Collisions are not errors: `detect_collision` answers with a bool and
the caller decides whether to block or force the booking.
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status


class SchedulingError(Exception):
    """Base class for all engine errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class ValidationError(SchedulingError):
    """Missing or malformed input, rejected before any store mutation."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(SchedulingError):
    status_code = status.HTTP_404_NOT_FOUND


class StateConflictError(SchedulingError):
    """The lesson or request is not in a state that allows the action."""

    status_code = status.HTTP_409_CONFLICT


class PartialWriteError(SchedulingError):
    """
    A compound operation failed after at least one of its writes succeeded.

    `details["completed"]` lists the steps that were persisted and
    `details["pending"]` the ones that were not; the store error is chained.
    """

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
