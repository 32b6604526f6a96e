"""
tasks/celery_app.py
Celery application instance, shared across all task modules.

Workers are started with:
    celery -A tasks.celery_app worker --loglevel=info --concurrency=4

Beat scheduler (periodic tasks):
    celery -A tasks.celery_app beat --loglevel=info
"""

from celery import Celery
from celery.schedules import crontab

from config.settings import settings

celery_app = Celery(
    "whistle_connect",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[
        "tasks.notification_tasks",
        "tasks.booking_tasks",
    ],
)

# ── Configuration ─────────────────────────────────────────────────────────────

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone=settings.MATCH_TIMEZONE,
    enable_utc=True,

    # Acknowledge after execution so a dying worker doesn't lose the task
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    result_expires=3600,
    task_max_retries=3,

    # Push services throttle aggressive senders
    task_annotations={
        "tasks.notification_tasks.send_push_notification": {"rate_limit": "30/s"},
    },

    task_routes={
        "tasks.notification_tasks.*": {"queue": "notifications"},
        "tasks.booking_tasks.*": {"queue": "default"},
    },

    worker_prefetch_multiplier=1,
)

# ── Periodic Tasks (Beat Schedule) ────────────────────────────────────────────

celery_app.conf.beat_schedule = {
    # Both parties of tomorrow's confirmed fixtures, every morning
    "send-match-reminders": {
        "task": "tasks.notification_tasks.send_match_reminders",
        "schedule": crontab(hour=8, minute=0),
    },

    # Confirmed fixtures whose date has passed move to COMPLETED
    "complete-past-bookings": {
        "task": "tasks.booking_tasks.complete_past_bookings",
        "schedule": crontab(hour=2, minute=0),
    },
}
