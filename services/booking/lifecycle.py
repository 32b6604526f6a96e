"""
services/booking/lifecycle.py
Booking lifecycle transitions shared by the booking and offer routers.

    PENDING ──first offer──▶ OFFERED ──coach confirms──▶ CONFIRMED ──▶ COMPLETED
    PENDING | OFFERED | CONFIRMED ──▶ CANCELLED

Offers move independently of their booking:

    SENT ──referee prices──▶ ACCEPTED_PRICED ──coach confirms──▶ ACCEPTED
    SENT | ACCEPTED_PRICED ──▶ DECLINED
    every sibling of the ACCEPTED offer ──▶ WITHDRAWN

Every function runs inside the caller's session; the router's commit
makes the whole transition atomic. Unique constraints on
booking_assignments.booking_id and threads.booking_id back the
single-assignment and single-thread rules under concurrent confirms.
Notification and realtime side effects are best-effort.
"""

import logging
from datetime import date, datetime, time, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional
from uuid import UUID

from fastapi import HTTPException
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from config.redis_client import RealtimeBroker
from config.settings import settings
from services.notification.router import dispatch_notification
from shared.models.models import (
    Booking,
    BookingAssignment,
    BookingAuditLog,
    BookingOffer,
    BookingStatus,
    BookingType,
    Message,
    MessageKind,
    OfferStatus,
    RefereeAvailability,
    RefereeDateAvailability,
    RefereeProfile,
    Thread,
    ThreadParticipant,
    User,
    UserRole,
)

logger = logging.getLogger(__name__)

OPEN_STATUSES = (BookingStatus.PENDING, BookingStatus.OFFERED)
CANCELLABLE_STATUSES = (BookingStatus.PENDING, BookingStatus.OFFERED, BookingStatus.CONFIRMED)
LIVE_OFFER_STATUSES = (OfferStatus.SENT, OfferStatus.ACCEPTED_PRICED)

CONFIRMATION_MESSAGE = (
    "Booking confirmed. The referee has accepted and the fixture is locked in. "
    "You can now message each other about the match."
)


# ── Helpers ───────────────────────────────────────────────────

def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def fixture_label(booking: Booking) -> str:
    if booking.home_team and booking.away_team:
        return f"{booking.home_team} vs {booking.away_team}"
    return f"the match at {booking.ground_name or booking.location_postcode}"


def notification_vars(booking: Booking, **extra) -> dict:
    return {
        "booking_id": booking.id,
        "fixture": fixture_label(booking),
        "match_date": booking.match_date.strftime("%a %d %b"),
        "kickoff_time": booking.kickoff_time.strftime("%H:%M"),
        "venue": booking.ground_name or booking.location_postcode,
        **extra,
    }


def day_of_week(match_date: date) -> int:
    """0 = Sunday ... 6 = Saturday."""
    return match_date.isoweekday() % 7


def slot_window(booking: Booking) -> tuple[time, time]:
    """Local kickoff and final whistle; clamped to the match day."""
    start = datetime.combine(booking.match_date, booking.kickoff_time)
    end = start + timedelta(hours=settings.MATCH_DURATION_HOURS)
    if end.date() != booking.match_date:
        return booking.kickoff_time, time.max
    return booking.kickoff_time, end.time()


def pounds_to_pence(price_pounds: Decimal) -> int:
    return int((Decimal(price_pounds) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


async def get_booking_or_404(db: AsyncSession, booking_id: UUID) -> Booking:
    result = await db.execute(select(Booking).where(Booking.id == booking_id))
    booking = result.scalar_one_or_none()
    if not booking:
        raise HTTPException(status_code=404, detail="Booking not found")
    return booking


async def get_offer_or_404(db: AsyncSession, offer_id: UUID) -> BookingOffer:
    result = await db.execute(select(BookingOffer).where(BookingOffer.id == offer_id))
    offer = result.scalar_one_or_none()
    if not offer:
        raise HTTPException(status_code=404, detail="Offer not found")
    return offer


async def get_assignment(db: AsyncSession, booking_id: UUID) -> Optional[BookingAssignment]:
    result = await db.execute(
        select(BookingAssignment).where(BookingAssignment.booking_id == booking_id)
    )
    return result.scalar_one_or_none()


async def get_thread(db: AsyncSession, booking_id: UUID) -> Optional[Thread]:
    result = await db.execute(select(Thread).where(Thread.booking_id == booking_id))
    return result.scalar_one_or_none()


async def flush_or_conflict(db: AsyncSession, detail: str) -> None:
    """Flush pending writes; a unique-constraint race becomes a 409."""
    try:
        await db.flush()
    except IntegrityError as e:
        logger.warning(f"Integrity conflict: {detail} ({e.orig})")
        raise HTTPException(status_code=409, detail=detail) from e


def log_status_change(
    db: AsyncSession,
    booking: Booking,
    to_status: BookingStatus,
    changed_by_id: Optional[UUID],
    reason: str = None,
    metadata: dict = None,
) -> None:
    """Move the booking to to_status and append an immutable audit entry."""
    from_status = booking.status.value if booking.status else None
    booking.status = to_status
    db.add(BookingAuditLog(
        booking_id=booking.id,
        from_status=from_status,
        to_status=to_status.value,
        changed_by_id=changed_by_id,
        reason=reason,
        audit_metadata=metadata,
    ))


async def post_system_message(db: AsyncSession, thread: Thread, body: str) -> Message:
    message = Message(thread_id=thread.id, sender_id=None, kind=MessageKind.SYSTEM, body=body)
    db.add(message)
    thread.updated_at = utcnow()
    return message


# ── Matching ──────────────────────────────────────────────────

async def match_referees_to_booking(
    db: AsyncSession,
    booking: Booking,
    broker: Optional[RealtimeBroker] = None,
) -> list[BookingOffer]:
    """
    Bulk matching at creation time: every active referee with a weekly
    availability row on the match's day of week, up to BULK_OFFER_LIMIT,
    receives a SENT offer. No ranking or distance filtering.
    """
    query = (
        select(RefereeAvailability.referee_id)
        .join(RefereeProfile, RefereeProfile.user_id == RefereeAvailability.referee_id)
        .join(User, User.id == RefereeAvailability.referee_id)
        .where(
            RefereeAvailability.day_of_week == day_of_week(booking.match_date),
            RefereeAvailability.referee_id != booking.coach_id,
            User.role == UserRole.REFEREE,
            User.is_active == True,
        )
        .distinct()
        .order_by(RefereeAvailability.referee_id)
        .limit(settings.BULK_OFFER_LIMIT)
    )
    if booking.booking_type == BookingType.CENTRAL:
        query = query.where(RefereeProfile.central_venue_opt_in == True)

    referee_ids = list((await db.execute(query)).scalars())
    offers = [BookingOffer(booking_id=booking.id, referee_id=rid, status=OfferStatus.SENT) for rid in referee_ids]
    if not offers:
        logger.info(f"No weekly-available referees for booking {booking.id}")
        return []

    db.add_all(offers)
    log_status_change(
        db, booking, BookingStatus.OFFERED, None,
        reason="bulk match", metadata={"offers": len(offers)},
    )
    await db.flush()

    if broker is not None:
        await broker.publish_many("offers", referee_ids, "created", {"booking_id": str(booking.id)})
    logger.info(f"Booking {booking.id}: sent {len(offers)} bulk offers")
    return offers


async def search_referees_for_booking(
    db: AsyncSession,
    booking: Booking,
    county: Optional[str] = None,
    central_only: bool = False,
) -> list[dict]:
    """
    Referees with a date slot on the match day overlapping the match window.
    Returns dicts of {user, profile, slot, offer}; unranked, name order.
    """
    kickoff, final_whistle = slot_window(booking)
    query = (
        select(User, RefereeProfile, RefereeDateAvailability)
        .join(RefereeProfile, RefereeProfile.user_id == User.id)
        .join(RefereeDateAvailability, RefereeDateAvailability.referee_id == User.id)
        .where(
            User.role == UserRole.REFEREE,
            User.is_active == True,
            User.id != booking.coach_id,
            RefereeDateAvailability.date == booking.match_date,
            RefereeDateAvailability.start_time < final_whistle,
            RefereeDateAvailability.end_time > kickoff,
        )
        .order_by(User.full_name, RefereeDateAvailability.start_time)
    )
    if county:
        query = query.where(RefereeProfile.county == county)
    if central_only or booking.booking_type == BookingType.CENTRAL:
        query = query.where(RefereeProfile.central_venue_opt_in == True)

    rows = (await db.execute(query)).all()

    offers_result = await db.execute(
        select(BookingOffer).where(BookingOffer.booking_id == booking.id)
    )
    offers_by_referee = {o.referee_id: o for o in offers_result.scalars()}

    matches, seen = [], set()
    for user, profile, slot in rows:
        if user.id in seen:
            continue  # first overlapping slot per referee
        seen.add(user.id)
        matches.append({
            "user": user,
            "profile": profile,
            "slot": slot,
            "offer": offers_by_referee.get(user.id),
        })
    return matches


# ── Offers ────────────────────────────────────────────────────

async def send_booking_request(
    db: AsyncSession,
    booking: Booking,
    referee_id: UUID,
    coach: User,
    broker: Optional[RealtimeBroker] = None,
) -> BookingOffer:
    """Targeted request to one referee. Duplicates are rejected with 409."""
    if booking.status not in OPEN_STATUSES:
        raise HTTPException(
            status_code=400,
            detail=f"Cannot request a referee for a booking in '{booking.status.value}' state",
        )

    result = await db.execute(
        select(User).join(RefereeProfile, RefereeProfile.user_id == User.id).where(
            User.id == referee_id, User.role == UserRole.REFEREE, User.is_active == True
        )
    )
    referee = result.scalar_one_or_none()
    if not referee:
        raise HTTPException(status_code=404, detail="Referee not found")

    existing = await db.scalar(
        select(BookingOffer.id).where(
            BookingOffer.booking_id == booking.id,
            BookingOffer.referee_id == referee_id,
        )
    )
    if existing:
        raise HTTPException(status_code=409, detail="This referee has already been requested")

    offer = BookingOffer(booking_id=booking.id, referee_id=referee_id, status=OfferStatus.SENT)
    db.add(offer)
    if booking.status == BookingStatus.PENDING:
        log_status_change(db, booking, BookingStatus.OFFERED, coach.id, reason="referee requested")
    await flush_or_conflict(db, "This referee has already been requested")

    await dispatch_notification(db, referee_id, "BOOKING_REQUEST", notification_vars(booking), broker)
    if broker is not None:
        await broker.publish("offers", referee_id, "created", {"offer_id": str(offer.id)})
    return offer


def _ensure_offer_owner(offer: BookingOffer, referee: User) -> None:
    if offer.referee_id != referee.id:
        raise HTTPException(status_code=403, detail="Not authorized to respond to this offer")


async def accept_offer_with_price(
    db: AsyncSession,
    offer: BookingOffer,
    referee: User,
    price_pounds: Decimal,
    broker: Optional[RealtimeBroker] = None,
) -> BookingOffer:
    """Referee accepts and names a price: SENT → ACCEPTED_PRICED."""
    _ensure_offer_owner(offer, referee)
    if offer.status != OfferStatus.SENT:
        raise HTTPException(
            status_code=400,
            detail=f"Cannot accept an offer in '{offer.status.value}' state",
        )
    booking = await get_booking_or_404(db, offer.booking_id)
    if booking.status not in OPEN_STATUSES:
        raise HTTPException(status_code=400, detail="This booking is no longer open")

    offer.status = OfferStatus.ACCEPTED_PRICED
    offer.price_pence = pounds_to_pence(price_pounds)
    offer.responded_at = utcnow()

    await dispatch_notification(
        db, booking.coach_id, "OFFER_PRICED",
        notification_vars(booking, referee_name=referee.full_name, price=f"{offer.price_pence / 100:.2f}"),
        broker,
    )
    if broker is not None:
        await broker.publish("offers", booking.coach_id, "updated", {"offer_id": str(offer.id)})
    return offer


async def decline_offer(
    db: AsyncSession,
    offer: BookingOffer,
    referee: User,
    broker: Optional[RealtimeBroker] = None,
) -> BookingOffer:
    """SENT | ACCEPTED_PRICED → DECLINED."""
    _ensure_offer_owner(offer, referee)
    if offer.status not in LIVE_OFFER_STATUSES:
        raise HTTPException(
            status_code=400,
            detail=f"Cannot decline an offer in '{offer.status.value}' state",
        )
    booking = await get_booking_or_404(db, offer.booking_id)

    offer.status = OfferStatus.DECLINED
    offer.responded_at = utcnow()

    await dispatch_notification(
        db, booking.coach_id, "OFFER_DECLINED",
        notification_vars(booking, referee_name=referee.full_name),
        broker,
    )
    if broker is not None:
        await broker.publish("offers", booking.coach_id, "updated", {"offer_id": str(offer.id)})
    return offer


async def confirm_offer(
    db: AsyncSession,
    offer: BookingOffer,
    coach: User,
    broker: Optional[RealtimeBroker] = None,
) -> tuple[Booking, BookingAssignment, Thread]:
    """
    Coach confirms an ACCEPTED_PRICED offer. In one transaction:
    1. offer → ACCEPTED, every other offer on the booking → WITHDRAWN
    2. create the assignment, booking → CONFIRMED
    3. fetch or create the thread, add both parties, post a system message
    4. remove the referee's consumed date slot(s)
    5. notify the referee
    """
    booking = await get_booking_or_404(db, offer.booking_id)
    if booking.coach_id != coach.id:
        raise HTTPException(status_code=403, detail="Not authorized to confirm this offer")
    if booking.status not in OPEN_STATUSES:
        raise HTTPException(
            status_code=400,
            detail=f"Cannot confirm a booking in '{booking.status.value}' state",
        )
    if offer.status != OfferStatus.ACCEPTED_PRICED:
        raise HTTPException(status_code=400, detail="Referee has not accepted this offer with a price yet")
    if await get_assignment(db, booking.id):
        raise HTTPException(status_code=409, detail="A referee is already assigned to this booking")

    now = utcnow()

    # Step 1: settle offers
    offer.status = OfferStatus.ACCEPTED
    offer.responded_at = offer.responded_at or now
    siblings = await db.execute(
        select(BookingOffer).where(BookingOffer.booking_id == booking.id, BookingOffer.id != offer.id)
    )
    withdrawn_referees = []
    for sibling in siblings.scalars():
        if sibling.status != OfferStatus.WITHDRAWN:
            sibling.status = OfferStatus.WITHDRAWN
            withdrawn_referees.append(sibling.referee_id)

    # Step 2: assignment
    assignment = BookingAssignment(booking_id=booking.id, referee_id=offer.referee_id)
    db.add(assignment)
    log_status_change(
        db, booking, BookingStatus.CONFIRMED, coach.id,
        metadata={"offer_id": str(offer.id), "price_pence": offer.price_pence},
    )
    await flush_or_conflict(db, "A referee is already assigned to this booking")

    # Step 3: thread
    thread = await get_thread(db, booking.id)
    if thread is None:
        thread = Thread(
            booking_id=booking.id,
            title=f"Booking: {booking.ground_name or booking.location_postcode}",
        )
        db.add(thread)
        await flush_or_conflict(db, "A thread already exists for this booking")
    existing_participants = set(
        (await db.execute(
            select(ThreadParticipant.user_id).where(ThreadParticipant.thread_id == thread.id)
        )).scalars()
    )
    for user_id in (booking.coach_id, offer.referee_id):
        if user_id not in existing_participants:
            db.add(ThreadParticipant(thread_id=thread.id, user_id=user_id, last_read_at=now))
    await post_system_message(db, thread, CONFIRMATION_MESSAGE)

    # Step 4: the referee is no longer free for this window
    kickoff, final_whistle = slot_window(booking)
    await db.execute(
        delete(RefereeDateAvailability).where(
            RefereeDateAvailability.referee_id == offer.referee_id,
            RefereeDateAvailability.date == booking.match_date,
            RefereeDateAvailability.start_time < final_whistle,
            RefereeDateAvailability.end_time > kickoff,
        )
    )
    await db.flush()

    # Step 5: side effects
    await dispatch_notification(db, offer.referee_id, "BOOKING_CONFIRMED", notification_vars(booking), broker)
    if broker is not None:
        parties = (booking.coach_id, offer.referee_id)
        await broker.publish_many("bookings", parties, "confirmed", {"booking_id": str(booking.id)})
        await broker.publish_many("messages", parties, "created", {"thread_id": str(thread.id)})
        await broker.publish_many("offers", withdrawn_referees, "withdrawn", {"booking_id": str(booking.id)})

    logger.info(f"Booking {booking.id} confirmed with referee {offer.referee_id}")
    return booking, assignment, thread


# ── Closure ───────────────────────────────────────────────────

async def cancel_booking(
    db: AsyncSession,
    booking: Booking,
    actor: User,
    reason: Optional[str] = None,
    broker: Optional[RealtimeBroker] = None,
) -> Booking:
    """
    Coach owner, assigned referee or an admin cancels. Live offers are
    withdrawn and the counterparty is notified. The referee's consumed
    availability slot is not restored.
    """
    assignment = await get_assignment(db, booking.id)
    is_coach = booking.coach_id == actor.id
    is_assigned_referee = assignment is not None and assignment.referee_id == actor.id
    if not (is_coach or is_assigned_referee or actor.role == UserRole.ADMIN):
        raise HTTPException(status_code=403, detail="Not authorized to cancel this booking")
    if booking.status not in CANCELLABLE_STATUSES:
        raise HTTPException(
            status_code=400,
            detail=f"Cannot cancel a booking in '{booking.status.value}' state",
        )

    now = utcnow()
    live = await db.execute(
        select(BookingOffer).where(
            BookingOffer.booking_id == booking.id,
            BookingOffer.status.in_(LIVE_OFFER_STATUSES),
        )
    )
    withdrawn_referees = []
    for live_offer in live.scalars():
        live_offer.status = OfferStatus.WITHDRAWN
        withdrawn_referees.append(live_offer.referee_id)

    booking.cancelled_at = now
    booking.cancelled_by_id = actor.id
    booking.cancellation_reason = reason
    log_status_change(db, booking, BookingStatus.CANCELLED, actor.id, reason)

    thread = await get_thread(db, booking.id)
    if thread is not None:
        note = f" Reason: {reason}" if reason else ""
        await post_system_message(db, thread, f"Booking cancelled by {actor.full_name}.{note}")

    # Counterparties: the coach if someone else cancelled, the assigned
    # referee if they didn't cancel, plus referees holding live offers.
    recipients = set(withdrawn_referees)
    if not is_coach:
        recipients.add(booking.coach_id)
    if assignment is not None and not is_assigned_referee:
        recipients.add(assignment.referee_id)
    recipients.discard(actor.id)

    await db.flush()
    vars_ = notification_vars(booking, reason=f" Reason: {reason}" if reason else "")
    for user_id in recipients:
        await dispatch_notification(db, user_id, "BOOKING_CANCELLED", vars_, broker)
    if broker is not None:
        await broker.publish_many(
            "bookings", recipients | {booking.coach_id}, "cancelled", {"booking_id": str(booking.id)}
        )

    logger.info(f"Booking {booking.id} cancelled by {actor.id}")
    return booking


async def complete_booking(
    db: AsyncSession,
    booking: Booking,
    actor: Optional[User],
    today: Optional[date] = None,
) -> Booking:
    """CONFIRMED → COMPLETED once the match day has arrived."""
    if booking.status != BookingStatus.CONFIRMED:
        raise HTTPException(status_code=400, detail="Booking must be confirmed to complete")
    if booking.match_date > (today or date.today()):
        raise HTTPException(status_code=400, detail="Cannot complete a booking before the match date")

    booking.completed_at = utcnow()
    log_status_change(db, booking, BookingStatus.COMPLETED, actor.id if actor else None)
    return booking
