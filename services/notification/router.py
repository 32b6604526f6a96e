"""
services/notification/router.py
In-app notifications, Web Push subscription management,
and the central dispatcher used by every lifecycle event.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import RealtimeBroker
from config.settings import settings
from shared.middleware.auth import get_current_user
from shared.models.models import Notification, NotificationType, PushSubscription, User
from shared.schemas.schemas import (
    MessageResponse,
    NotificationResponse,
    PushSubscriptionCreate,
    PushSubscriptionDelete,
    VapidKeyResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/notifications", tags=["Notifications"])


# ── Notification Templates ────────────────────────────────────

TEMPLATES = {
    "BOOKING_REQUEST": {
        "title": "New match request",
        "message": "You've been asked to referee {fixture} on {match_date}. Name your price to accept.",
        "type": NotificationType.INFO,
        "link": "/app/offers",
    },
    "OFFER_PRICED": {
        "title": "Referee available",
        "message": "{referee_name} can referee {fixture} for £{price}. Confirm to lock it in.",
        "type": NotificationType.SUCCESS,
        "link": "/app/bookings/{booking_id}",
    },
    "OFFER_DECLINED": {
        "title": "Referee declined",
        "message": "{referee_name} can't make {fixture} on {match_date}.",
        "type": NotificationType.WARNING,
        "link": "/app/bookings/{booking_id}",
    },
    "BOOKING_CONFIRMED": {
        "title": "Booking confirmed",
        "message": "You're confirmed to referee {fixture} on {match_date}. Say hello to the coach in Messages.",
        "type": NotificationType.SUCCESS,
        "link": "/app/bookings/{booking_id}",
    },
    "BOOKING_CANCELLED": {
        "title": "Booking cancelled",
        "message": "{fixture} on {match_date} has been cancelled.{reason}",
        "type": NotificationType.WARNING,
        "link": "/app/bookings/{booking_id}",
    },
    "MATCH_REMINDER": {
        "title": "Match tomorrow",
        "message": "Reminder: {fixture} kicks off at {kickoff_time} tomorrow at {venue}.",
        "type": NotificationType.INFO,
        "link": "/app/bookings/{booking_id}",
    },
    "REFEREE_VERIFIED": {
        "title": "Profile verified",
        "message": "An admin has verified your referee profile.",
        "type": NotificationType.SUCCESS,
        "link": "/app/profile",
    },
    "REFEREE_UNVERIFIED": {
        "title": "Verification removed",
        "message": "Your referee profile is no longer marked as verified. Contact support for details.",
        "type": NotificationType.WARNING,
        "link": "/app/profile",
    },
    "FA_VERIFIED": {
        "title": "FA number confirmed",
        "message": "Your county FA has confirmed your FA number {fa_id}.",
        "type": NotificationType.SUCCESS,
        "link": "/app/profile",
    },
    "FA_REJECTED": {
        "title": "FA number not confirmed",
        "message": "Your county FA could not confirm FA number {fa_id}. Please check it and update your profile.",
        "type": NotificationType.ERROR,
        "link": "/app/profile",
    },
}


def render_notification(template_key: str, template_vars: dict = None) -> dict:
    """Fill a template. Raises KeyError when a placeholder has no value."""
    template = TEMPLATES[template_key]
    vars_ = template_vars or {}
    return {
        "title": template["title"].format(**vars_),
        "message": template["message"].format(**vars_),
        "type": template["type"],
        "link": template["link"].format(**vars_) if template.get("link") else None,
    }


def _enqueue_push(user_id, title: str, body: str, link: Optional[str]) -> None:
    if not settings.push_enabled:
        return
    try:
        from tasks.notification_tasks import send_push_notification
        send_push_notification.delay(str(user_id), title, body, link or "/app")
    except Exception as e:
        logger.warning(f"Could not enqueue push for user {user_id}: {e}")


async def dispatch_notification(
    db: AsyncSession,
    user_id,
    template_key: str,
    template_vars: dict = None,
    broker: Optional[RealtimeBroker] = None,
) -> Optional[Notification]:
    """
    Central notification dispatcher.
    1. Save in-app notification (committed with the caller's transaction)
    2. Publish a realtime event to the user's notification channel
    3. Enqueue Web Push delivery when VAPID is configured

    Every step is best-effort: failures are logged, never raised.
    """
    try:
        rendered = render_notification(template_key, template_vars)
    except (KeyError, IndexError) as e:
        logger.warning(f"Notification template {template_key} missing variable: {e}")
        return None

    notif = Notification(id=uuid.uuid4(), user_id=user_id, **rendered)
    db.add(notif)

    if broker is not None:
        await broker.publish(
            "notifications",
            user_id,
            "created",
            {"id": str(notif.id), "title": notif.title, "message": notif.message, "link": notif.link},
        )

    _enqueue_push(user_id, notif.title, notif.message, notif.link)
    return notif


# ── REST Endpoints ────────────────────────────────────────────

@router.get("", response_model=list[NotificationResponse])
async def get_my_notifications(
    unread_only: bool = Query(False),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=50),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Get authenticated user's in-app notifications."""
    query = (
        select(Notification)
        .where(Notification.user_id == current_user.id)
        .order_by(Notification.created_at.desc())
    )

    if unread_only:
        query = query.where(Notification.is_read == False)

    query = query.offset((page - 1) * page_size).limit(page_size)
    result = await db.execute(query)
    return [NotificationResponse.model_validate(n) for n in result.scalars()]


@router.get("/unread-count")
async def unread_count(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    count = await db.scalar(
        select(func.count(Notification.id)).where(
            Notification.user_id == current_user.id,
            Notification.is_read == False,
        )
    )
    return {"unread_count": count or 0}


@router.post("/{notification_id}/read", response_model=MessageResponse)
async def mark_read(
    notification_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        update(Notification)
        .where(Notification.id == notification_id, Notification.user_id == current_user.id)
        .values(is_read=True, read_at=datetime.now(timezone.utc))
    )
    if result.rowcount == 0:
        raise HTTPException(status_code=404, detail="Notification not found")
    await db.commit()
    return MessageResponse(message="Marked as read")


@router.post("/read-all", response_model=MessageResponse)
async def mark_all_read(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await db.execute(
        update(Notification)
        .where(Notification.user_id == current_user.id, Notification.is_read == False)
        .values(is_read=True, read_at=datetime.now(timezone.utc))
    )
    await db.commit()
    return MessageResponse(message="All notifications marked as read")


# ── Web Push ──────────────────────────────────────────────────

@router.get("/push/public-key", response_model=VapidKeyResponse)
async def vapid_public_key():
    """Public VAPID key the browser needs to create a subscription."""
    return VapidKeyResponse(
        public_key=settings.VAPID_PUBLIC_KEY or None,
        enabled=settings.push_enabled,
    )


@router.post("/push/subscribe", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def subscribe_push(
    data: PushSubscriptionCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Register (or re-key) a browser push endpoint for the current user."""
    result = await db.execute(
        select(PushSubscription).where(PushSubscription.endpoint == data.endpoint)
    )
    subscription = result.scalar_one_or_none()

    if subscription:
        # Same browser, possibly a different account signed in now
        subscription.user_id = current_user.id
        subscription.p256dh = data.keys.p256dh
        subscription.auth = data.keys.auth
    else:
        db.add(PushSubscription(
            user_id=current_user.id,
            endpoint=data.endpoint,
            p256dh=data.keys.p256dh,
            auth=data.keys.auth,
        ))

    await db.commit()
    return MessageResponse(message="Push notifications enabled")


@router.post("/push/unsubscribe", response_model=MessageResponse)
async def unsubscribe_push(
    data: PushSubscriptionDelete,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await db.execute(
        delete(PushSubscription).where(
            PushSubscription.endpoint == data.endpoint,
            PushSubscription.user_id == current_user.id,
        )
    )
    await db.commit()
    return MessageResponse(message="Push notifications disabled")
