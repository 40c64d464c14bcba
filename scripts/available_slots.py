# scripts/available_slots.py
"""
Print the bookable start times for one day, as a participant in another
zone would see them.

    python -m scripts.available_slots --date 2025-01-06 --duration 60 \
        --viewer-zone America/Sao_Paulo
"""

from __future__ import annotations

import argparse
from datetime import date, timedelta

from app.config import get_settings
from app.db.session import SessionLocal
from app.errors import SchedulingError
from app.logging_config import configure_logging
from app.services.slot_service import compute_available_slots
from app.stores.sql import SqlLessonStore, SqlProfileStore


def run_once(target_date: date, duration: int, viewer_zone: str) -> int:
    settings = get_settings()
    db = SessionLocal()
    try:
        profile = SqlProfileStore(db).get_availability_profile(settings.PROVIDER_ID)
        if profile is None:
            print(f"[available_slots] No availability profile for {settings.PROVIDER_ID}")
            return 1

        bookings = SqlLessonStore(db).list_lessons(
            date_from=target_date - timedelta(days=1),
            date_to=target_date + timedelta(days=1),
        )
        try:
            slots = compute_available_slots(target_date, duration, profile, bookings, viewer_zone)
        except SchedulingError as e:
            print(f"[available_slots] {e.message}")
            return 2

        print(
            f"[available_slots] {len(slots)} slot(s) on {target_date.isoformat()} "
            f"({viewer_zone}, {duration} min)"
        )
        for slot in slots:
            print(slot)
        return 0

    finally:
        db.close()


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument(
        "--date",
        type=date.fromisoformat,
        required=True,
        help="Calendar date in the viewer's zone (YYYY-MM-DD)",
    )
    parser.add_argument("--duration", type=int, default=60, help="Lesson length in minutes")
    parser.add_argument(
        "--viewer-zone",
        required=True,
        help="IANA zone the times are displayed in",
    )
    args = parser.parse_args()

    configure_logging(get_settings().LOG_LEVEL)
    raise SystemExit(run_once(args.date, args.duration, args.viewer_zone))


if __name__ == "__main__":
    main()
