# app/routers/availability.py
from datetime import date, timedelta
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.config import get_settings
from app.db.session import get_db
from app.errors import NotFoundError, SchedulingError
from app.schemas.scheduling import AvailabilityProfile, BlackoutException, TimeWindow, ZoneName
from app.services.slot_service import compute_available_slots
from app.stores.sql import SqlLessonStore, SqlProfileStore

router = APIRouter(prefix="/availability", tags=["availability"])


class ProfileUpdate(BaseModel):
    zone: ZoneName
    windows: List[TimeWindow]


def _load_profile(store: SqlProfileStore) -> AvailabilityProfile:
    provider_id = get_settings().PROVIDER_ID
    profile = store.get_availability_profile(provider_id)
    if profile is None:
        raise NotFoundError(
            f"availability profile {provider_id} not found",
            details={"provider_id": provider_id},
        )
    return profile


@router.get("/profile")
def get_profile(db: Session = Depends(get_db)) -> Dict[str, Any]:
    try:
        profile = _load_profile(SqlProfileStore(db))
    except SchedulingError as e:
        raise e.to_http_exception()
    return profile.model_dump(mode="json")


@router.put("/profile")
def put_profile(payload: ProfileUpdate, db: Session = Depends(get_db)) -> Dict[str, Any]:
    """Set the provider zone and replace all weekly windows."""
    profile = SqlProfileStore(db).update_availability_profile(
        get_settings().PROVIDER_ID,
        zone=payload.zone,
        windows=payload.windows,
    )
    return profile.model_dump(mode="json")


@router.post("/blackouts")
def add_blackout(payload: BlackoutException, db: Session = Depends(get_db)) -> Dict[str, Any]:
    try:
        blackout = SqlProfileStore(db).add_blackout_exception(get_settings().PROVIDER_ID, payload)
    except SchedulingError as e:
        raise e.to_http_exception()
    return blackout.model_dump(mode="json")


@router.delete("/blackouts/{blackout_id}")
def delete_blackout(blackout_id: int, db: Session = Depends(get_db)) -> Dict[str, Any]:
    if not SqlProfileStore(db).delete_blackout_exception(blackout_id):
        raise HTTPException(status_code=404, detail="Blackout not found")
    return {"deleted": blackout_id}


@router.get("/slots")
def get_slots(
    target_date: date = Query(..., alias="date"),
    duration: int = Query(..., description="Lesson length in minutes"),
    viewer_zone: str = Query(...),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """
    Bookable start times on `date` as seen from `viewer_zone`.

    Returned times are "HH:MM" on the viewer's wall clock.
    """
    try:
        profile = _load_profile(SqlProfileStore(db))
        bookings = SqlLessonStore(db).list_lessons(
            date_from=target_date - timedelta(days=1),
            date_to=target_date + timedelta(days=1),
        )
        slots = compute_available_slots(target_date, duration, profile, bookings, viewer_zone)
    except SchedulingError as e:
        raise e.to_http_exception()

    return {
        "date": target_date.isoformat(),
        "viewer_zone": viewer_zone,
        "duration": duration,
        "slots": slots,
    }
