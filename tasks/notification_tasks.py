"""
tasks/notification_tasks.py
Celery tasks for Web Push delivery and scheduled match reminders.

In-app notifications are written by the API; these tasks only mirror them
to the user's browsers, and a dead endpoint never blocks the others.

Usage from a route:
    from tasks.notification_tasks import send_push_notification
    send_push_notification.delay(str(user_id), title, body, "/app/bookings/...")
"""

import json
import logging
import uuid
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

from celery import Task
from pybreaker import CircuitBreakerError
from pywebpush import WebPushException, webpush
from sqlalchemy import create_engine, delete, select
from sqlalchemy.orm import sessionmaker

from config.database import sync_database_url
from config.settings import settings
from shared.utils.resilience import circuit_breaker_manager
from tasks.celery_app import celery_app

logger = logging.getLogger(__name__)

# Push service answers for subscriptions that will never work again
GONE_STATUS_CODES = (404, 410)


# ── Base Task with DB session ──────────────────────────────────────────────────

class DatabaseTask(Task):
    """Base class that provides a synchronous DB session for tasks."""
    abstract = True
    _sessionmaker = None

    def get_session(self):
        """Get a synchronous SQLAlchemy session (Celery runs sync by default)."""
        if DatabaseTask._sessionmaker is None:
            engine = create_engine(sync_database_url(), pool_pre_ping=True)
            DatabaseTask._sessionmaker = sessionmaker(bind=engine)
        return DatabaseTask._sessionmaker()


# ── Core Delivery ──────────────────────────────────────────────────────────────

def _is_gone(exc: Exception) -> bool:
    response = getattr(exc, "response", None)
    return (
        isinstance(exc, WebPushException)
        and response is not None
        and response.status_code in GONE_STATUS_CODES
    )


def _deliver(subscription, payload: str) -> str:
    """
    Send one push message. Returns "sent", "gone" (subscription should be
    deleted), "failed", or "skipped" while the breaker is open.
    Expired subscriptions don't count towards tripping the breaker.
    """
    breaker = circuit_breaker_manager.get_breaker("webpush", exclude=[_is_gone])
    try:
        breaker.call(
            webpush,
            subscription_info={
                "endpoint": subscription.endpoint,
                "keys": {"p256dh": subscription.p256dh, "auth": subscription.auth},
            },
            data=payload,
            vapid_private_key=settings.VAPID_PRIVATE_KEY,
            # pywebpush fills in aud/exp on this dict, so build it per call
            vapid_claims={"sub": settings.VAPID_SUBJECT},
            ttl=settings.PUSH_TTL_SECONDS,
        )
        return "sent"
    except CircuitBreakerError:
        return "skipped"
    except WebPushException as e:
        if _is_gone(e):
            return "gone"
        logger.warning(f"Web push to {subscription.endpoint[:60]} failed: {e}")
        return "failed"


# ── Tasks ──────────────────────────────────────────────────────────────────────

@celery_app.task(bind=True, base=DatabaseTask, max_retries=3, default_retry_delay=60)
def send_push_notification(self, user_id: str, title: str, body: str, link: str = "/app"):
    """
    Deliver a push message to every subscription the user has.
    Expired subscriptions are removed; retries only when nothing got through.
    """
    from shared.models.models import PushSubscription

    if not settings.push_enabled:
        return {"sent": 0, "gone": 0, "failed": 0, "skipped": 0}

    payload = json.dumps({"title": title, "body": body, "link": link})
    db = self.get_session()
    try:
        subscriptions = db.execute(
            select(PushSubscription).where(PushSubscription.user_id == uuid.UUID(user_id))
        ).scalars().all()

        outcome = {"sent": 0, "gone": 0, "failed": 0, "skipped": 0}
        gone_ids = []
        for subscription in subscriptions:
            result = _deliver(subscription, payload)
            outcome[result] += 1
            if result == "gone":
                gone_ids.append(subscription.id)

        if gone_ids:
            db.execute(delete(PushSubscription).where(PushSubscription.id.in_(gone_ids)))
            db.commit()
            logger.info(f"Removed {len(gone_ids)} expired push subscriptions for user {user_id}")
    finally:
        db.close()

    if outcome["failed"] and not outcome["sent"]:
        raise self.retry(countdown=60 * (2 ** self.request.retries))
    return outcome


@celery_app.task(bind=True, base=DatabaseTask)
def send_match_reminders(self):
    """
    Beat task: runs every morning.
    Reminds the coach and the assigned referee of each confirmed fixture
    taking place tomorrow (match-local date).
    """
    from services.booking.lifecycle import notification_vars
    from services.notification.router import render_notification
    from shared.models.models import Booking, BookingAssignment, BookingStatus, Notification

    tomorrow = datetime.now(ZoneInfo(settings.MATCH_TIMEZONE)).date() + timedelta(days=1)
    db = self.get_session()
    pushes = []
    try:
        rows = db.execute(
            select(Booking, BookingAssignment.referee_id)
            .join(BookingAssignment, BookingAssignment.booking_id == Booking.id)
            .where(
                Booking.status == BookingStatus.CONFIRMED,
                Booking.match_date == tomorrow,
            )
        ).all()

        for booking, referee_id in rows:
            rendered = render_notification("MATCH_REMINDER", notification_vars(booking))
            for recipient in (booking.coach_id, referee_id):
                db.add(Notification(id=uuid.uuid4(), user_id=recipient, **rendered))
                pushes.append((str(recipient), rendered))

        db.commit()
        logger.info(f"Sent match reminders for {len(rows)} bookings on {tomorrow}")
    except Exception as e:
        db.rollback()
        logger.exception(f"send_match_reminders failed: {e}")
        raise
    finally:
        db.close()

    if settings.push_enabled:
        for user_id, rendered in pushes:
            send_push_notification.delay(user_id, rendered["title"], rendered["message"], rendered["link"])
    return len(pushes)
