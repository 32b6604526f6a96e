"""
services/messaging/router.py
Booking threads between a coach and their confirmed referee.
Threads are opened by the confirm step in services/booking/lifecycle.py.
"""

import logging
import uuid
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import RealtimeBroker, get_broker
from services.booking.lifecycle import utcnow
from shared.middleware.auth import get_current_user
from shared.models.models import Booking, Message, MessageKind, Thread, ThreadParticipant, User
from shared.schemas.schemas import (
    MessageResponse,
    ParticipantResponse,
    ThreadBookingSummary,
    ThreadDetail,
    ThreadMessageCreate,
    ThreadMessageResponse,
    ThreadSummary,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/threads", tags=["Messaging"])


# ── Helpers ───────────────────────────────────────────────────

def _unread_filter():
    """Messages newer than the participant's read marker (all, if never read)."""
    return or_(
        ThreadParticipant.last_read_at.is_(None),
        Message.created_at > ThreadParticipant.last_read_at,
    )


async def _get_participation(db: AsyncSession, thread_id: UUID, user: User) -> ThreadParticipant:
    thread = await db.get(Thread, thread_id)
    if not thread:
        raise HTTPException(status_code=404, detail="Thread not found")

    result = await db.execute(
        select(ThreadParticipant).where(
            ThreadParticipant.thread_id == thread_id,
            ThreadParticipant.user_id == user.id,
        )
    )
    participant = result.scalar_one_or_none()
    if not participant:
        raise HTTPException(status_code=403, detail="Not a participant of this thread")
    return participant


async def _participants(db: AsyncSession, thread_ids) -> dict:
    if not thread_ids:
        return {}
    result = await db.execute(
        select(ThreadParticipant, User)
        .join(User, User.id == ThreadParticipant.user_id)
        .where(ThreadParticipant.thread_id.in_(thread_ids))
        .order_by(ThreadParticipant.joined_at)
    )
    grouped = {}
    for participant, user in result.all():
        grouped.setdefault(participant.thread_id, []).append(
            ParticipantResponse(
                user_id=user.id,
                full_name=user.full_name,
                role=user.role,
                last_read_at=participant.last_read_at,
            )
        )
    return grouped


# ── Endpoints ─────────────────────────────────────────────────

@router.get("", response_model=List[ThreadSummary])
async def list_threads(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Threads the user takes part in, most recent activity first."""
    result = await db.execute(
        select(Thread, Booking)
        .join(ThreadParticipant, ThreadParticipant.thread_id == Thread.id)
        .join(Booking, Booking.id == Thread.booking_id)
        .where(ThreadParticipant.user_id == current_user.id)
        .order_by(Thread.updated_at.desc())
    )
    rows = result.all()
    threads = [t for t, _ in rows]
    thread_ids = [t.id for t in threads]
    if not thread_ids:
        return []

    unread_rows = await db.execute(
        select(Message.thread_id, func.count(Message.id))
        .join(ThreadParticipant, ThreadParticipant.thread_id == Message.thread_id)
        .where(
            ThreadParticipant.user_id == current_user.id,
            Message.thread_id.in_(thread_ids),
            _unread_filter(),
        )
        .group_by(Message.thread_id)
    )
    unread = dict(unread_rows.all())

    # Newest message per thread
    latest = (
        select(Message.thread_id, func.max(Message.created_at).label("created_at"))
        .where(Message.thread_id.in_(thread_ids))
        .group_by(Message.thread_id)
        .subquery()
    )
    last_rows = await db.execute(
        select(Message).join(
            latest,
            (Message.thread_id == latest.c.thread_id) & (Message.created_at == latest.c.created_at),
        )
    )
    last_messages = {m.thread_id: m for m in last_rows.scalars()}

    participants = await _participants(db, thread_ids)
    return [
        ThreadSummary(
            id=t.id,
            booking_id=t.booking_id,
            booking=ThreadBookingSummary.model_validate(booking),
            title=t.title,
            updated_at=t.updated_at,
            participants=participants.get(t.id, []),
            last_message=(
                ThreadMessageResponse.model_validate(last_messages[t.id])
                if t.id in last_messages else None
            ),
            unread_count=unread.get(t.id, 0),
        )
        for t, booking in rows
    ]


@router.get("/unread-count")
async def unread_count(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    count = await db.scalar(
        select(func.count(Message.id))
        .join(ThreadParticipant, ThreadParticipant.thread_id == Message.thread_id)
        .where(ThreadParticipant.user_id == current_user.id, _unread_filter())
    )
    return {"unread_count": count or 0}


@router.get("/{thread_id}", response_model=ThreadDetail)
async def get_thread(
    thread_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await _get_participation(db, thread_id, current_user)
    thread = await db.get(Thread, thread_id)
    booking = await db.get(Booking, thread.booking_id)

    result = await db.execute(
        select(Message)
        .where(Message.thread_id == thread_id)
        .order_by(Message.created_at.asc())
    )
    messages = [ThreadMessageResponse.model_validate(m) for m in result.scalars()]
    participants = await _participants(db, [thread_id])

    return ThreadDetail(
        id=thread.id,
        booking_id=thread.booking_id,
        booking=ThreadBookingSummary.model_validate(booking),
        title=thread.title,
        updated_at=thread.updated_at,
        participants=participants.get(thread_id, []),
        last_message=messages[-1] if messages else None,
        messages=messages,
    )


@router.post(
    "/{thread_id}/messages",
    response_model=ThreadMessageResponse,
    status_code=status.HTTP_201_CREATED,
)
async def send_message(
    thread_id: UUID,
    data: ThreadMessageCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    broker: RealtimeBroker = Depends(get_broker),
):
    """
    Post a message as the current user. The sender's read marker moves to
    the message so their own post never counts as unread.
    """
    participant = await _get_participation(db, thread_id, current_user)
    thread = await db.get(Thread, thread_id)

    now = utcnow()
    message = Message(
        id=uuid.uuid4(),
        thread_id=thread_id,
        sender_id=current_user.id,
        kind=MessageKind.USER,
        body=data.body,
        created_at=now,
    )
    db.add(message)
    participant.last_read_at = now
    thread.updated_at = now
    await db.commit()

    others = await db.execute(
        select(ThreadParticipant.user_id).where(
            ThreadParticipant.thread_id == thread_id,
            ThreadParticipant.user_id != current_user.id,
        )
    )
    response = ThreadMessageResponse.model_validate(message)
    await broker.publish_many("messages", list(others.scalars()), "created", response.model_dump(mode="json"))
    return response


@router.post("/{thread_id}/read", response_model=MessageResponse)
async def mark_thread_read(
    thread_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    participant = await _get_participation(db, thread_id, current_user)
    participant.last_read_at = utcnow()
    await db.commit()
    return MessageResponse(message="Thread marked as read")
