"""
tasks/booking_tasks.py
Periodic booking housekeeping.

All tasks are idempotent: running twice has no side effect.
"""

import logging
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

from sqlalchemy import select

from config.settings import settings
from tasks.celery_app import celery_app
from tasks.notification_tasks import DatabaseTask

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, base=DatabaseTask)
def complete_past_bookings(self):
    """
    Beat task: runs nightly.
    Confirmed bookings whose match date is before today become COMPLETED,
    with an audit entry attributed to the system.
    """
    from shared.models.models import Booking, BookingAuditLog, BookingStatus

    today = datetime.now(ZoneInfo(settings.MATCH_TIMEZONE)).date()
    db = self.get_session()
    try:
        bookings = db.execute(
            select(Booking).where(
                Booking.status == BookingStatus.CONFIRMED,
                Booking.match_date < today,
            )
        ).scalars().all()

        now = datetime.now(timezone.utc)
        for booking in bookings:
            booking.status = BookingStatus.COMPLETED
            booking.completed_at = now
            db.add(BookingAuditLog(
                booking_id=booking.id,
                from_status=BookingStatus.CONFIRMED.value,
                to_status=BookingStatus.COMPLETED.value,
                changed_by_id=None,
                reason="Match date passed",
            ))

        db.commit()
        logger.info(f"Completed {len(bookings)} past bookings")
        return len(bookings)
    except Exception as e:
        db.rollback()
        logger.exception(f"complete_past_bookings failed: {e}")
        raise
    finally:
        db.close()
