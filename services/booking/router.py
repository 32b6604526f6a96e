"""
services/booking/router.py
Coach-facing booking endpoints. State transitions live in
services/booking/lifecycle.py; this module handles access and shaping.
"""

import logging
import uuid
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import RealtimeBroker, get_broker
from services.booking import lifecycle
from services.referee.router import referee_card
from shared.middleware.auth import get_current_user, require_coach
from shared.models.models import (
    Booking,
    BookingAssignment,
    BookingOffer,
    BookingStatus,
    RefereeProfile,
    User,
    UserRole,
)
from shared.schemas.schemas import (
    BookingCancelRequest,
    BookingCreateRequest,
    BookingDetailResponse,
    BookingRequestCreate,
    BookingResponse,
    BookingUpdateRequest,
    OfferResponse,
    OfferWithReferee,
    RefereeMatch,
)
from shared.utils.ics import build_booking_ics, ics_filename

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bookings", tags=["Bookings"])


# ── Helpers ───────────────────────────────────────────────────

async def _get_owned_booking(db: AsyncSession, booking_id: UUID, coach: User) -> Booking:
    booking = await lifecycle.get_booking_or_404(db, booking_id)
    if booking.coach_id != coach.id:
        raise HTTPException(status_code=403, detail="Not authorized")
    return booking


async def _referee_cards(db: AsyncSession, referee_ids) -> dict:
    if not referee_ids:
        return {}
    result = await db.execute(
        select(User, RefereeProfile)
        .outerjoin(RefereeProfile, RefereeProfile.user_id == User.id)
        .where(User.id.in_(set(referee_ids)))
    )
    return {user.id: referee_card(user, profile) for user, profile in result.all()}


async def _booking_detail(db: AsyncSession, booking: Booking, viewer: User) -> BookingDetailResponse:
    """Booking plus the offers the viewer may see, the assignee and the thread."""
    offers_query = select(BookingOffer).where(BookingOffer.booking_id == booking.id)
    if viewer.role == UserRole.REFEREE:
        offers_query = offers_query.where(BookingOffer.referee_id == viewer.id)
    offers = list((await db.execute(offers_query.order_by(BookingOffer.created_at))).scalars())

    assignment = await lifecycle.get_assignment(db, booking.id)
    thread = await lifecycle.get_thread(db, booking.id)

    referee_ids = [o.referee_id for o in offers]
    if assignment:
        referee_ids.append(assignment.referee_id)
    cards = await _referee_cards(db, referee_ids)

    is_party = viewer.id in (booking.coach_id, assignment.referee_id if assignment else None)
    return BookingDetailResponse(
        **BookingResponse.model_validate(booking).model_dump(),
        offers=[
            OfferWithReferee(**OfferResponse.model_validate(o).model_dump(), referee=cards.get(o.referee_id))
            for o in offers
        ],
        assigned_referee=cards.get(assignment.referee_id) if assignment else None,
        thread_id=thread.id if thread and (is_party or viewer.role == UserRole.ADMIN) else None,
    )


async def _ensure_can_view(db: AsyncSession, booking: Booking, user: User) -> None:
    if user.role == UserRole.ADMIN or booking.coach_id == user.id:
        return
    if user.role == UserRole.REFEREE:
        has_offer = await db.scalar(
            select(BookingOffer.id).where(
                BookingOffer.booking_id == booking.id,
                BookingOffer.referee_id == user.id,
            )
        )
        if has_offer:
            return
    raise HTTPException(status_code=403, detail="Not authorized")


# ── Create / Edit ─────────────────────────────────────────────

@router.post("", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    data: BookingCreateRequest,
    current_user: User = Depends(require_coach),
    db: AsyncSession = Depends(get_db),
    broker: RealtimeBroker = Depends(get_broker),
):
    """
    Create a booking and run bulk matching:
    1. Insert the booking as PENDING
    2. Send SENT offers to weekly-available referees (booking → OFFERED)
    """
    booking = Booking(id=uuid.uuid4(), coach_id=current_user.id, **data.model_dump(exclude_none=True))
    db.add(booking)
    lifecycle.log_status_change(db, booking, BookingStatus.PENDING, current_user.id)
    await db.flush()

    await lifecycle.match_referees_to_booking(db, booking, broker)

    await db.commit()
    return BookingResponse.model_validate(booking)


@router.put("/{booking_id}", response_model=BookingResponse)
async def update_booking(
    booking_id: UUID,
    data: BookingUpdateRequest,
    current_user: User = Depends(require_coach),
    db: AsyncSession = Depends(get_db),
    broker: RealtimeBroker = Depends(get_broker),
):
    """Edit match details while the booking is still open."""
    booking = await _get_owned_booking(db, booking_id, current_user)
    if booking.status not in lifecycle.OPEN_STATUSES:
        raise HTTPException(
            status_code=400,
            detail=f"Cannot edit a booking in '{booking.status.value}' state",
        )

    for field, value in data.model_dump(exclude_unset=True).items():
        if value is None and field in ("match_date", "kickoff_time", "location_postcode"):
            raise HTTPException(status_code=400, detail=f"{field} cannot be cleared")
        setattr(booking, field, value)

    await db.commit()
    await db.refresh(booking)

    offered = await db.execute(
        select(BookingOffer.referee_id).where(
            BookingOffer.booking_id == booking.id,
            BookingOffer.status.in_(lifecycle.LIVE_OFFER_STATUSES),
        )
    )
    await broker.publish_many("bookings", list(offered.scalars()), "updated", {"booking_id": str(booking.id)})
    return BookingResponse.model_validate(booking)


# ── Read Endpoints ────────────────────────────────────────────

@router.get("", response_model=List[BookingResponse])
async def list_my_bookings(
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=50),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Coaches see bookings they created; referees see bookings they were
    offered or assigned to; admins see everything.
    """
    query = select(Booking)
    if current_user.role == UserRole.COACH:
        query = query.where(Booking.coach_id == current_user.id)
    elif current_user.role == UserRole.REFEREE:
        offered = select(BookingOffer.booking_id).where(BookingOffer.referee_id == current_user.id)
        assigned = select(BookingAssignment.booking_id).where(BookingAssignment.referee_id == current_user.id)
        query = query.where(or_(Booking.id.in_(offered), Booking.id.in_(assigned)))

    if status_filter:
        query = query.where(Booking.status == status_filter)

    query = (
        query.order_by(Booking.match_date.asc(), Booking.kickoff_time.asc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    result = await db.execute(query)
    return [BookingResponse.model_validate(b) for b in result.scalars()]


@router.get("/{booking_id}", response_model=BookingDetailResponse)
async def get_booking(
    booking_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    booking = await lifecycle.get_booking_or_404(db, booking_id)
    await _ensure_can_view(db, booking, current_user)
    return await _booking_detail(db, booking, current_user)


# ── Referee Search & Targeted Requests ────────────────────────

@router.get("/{booking_id}/matches", response_model=List[RefereeMatch])
async def search_referees(
    booking_id: UUID,
    county: Optional[str] = Query(None),
    central_only: bool = Query(False),
    current_user: User = Depends(require_coach),
    db: AsyncSession = Depends(get_db),
):
    """Referees whose date availability overlaps the match window."""
    booking = await _get_owned_booking(db, booking_id, current_user)
    matches = await lifecycle.search_referees_for_booking(db, booking, county, central_only)
    return [
        RefereeMatch(
            referee=referee_card(m["user"], m["profile"]),
            slot_start=m["slot"].start_time,
            slot_end=m["slot"].end_time,
            offer_status=m["offer"].status if m["offer"] else None,
        )
        for m in matches
    ]


@router.post("/{booking_id}/requests", response_model=OfferResponse, status_code=status.HTTP_201_CREATED)
async def request_referee(
    booking_id: UUID,
    data: BookingRequestCreate,
    current_user: User = Depends(require_coach),
    db: AsyncSession = Depends(get_db),
    broker: RealtimeBroker = Depends(get_broker),
):
    booking = await _get_owned_booking(db, booking_id, current_user)
    offer = await lifecycle.send_booking_request(db, booking, data.referee_id, current_user, broker)
    await db.commit()
    return OfferResponse.model_validate(offer)


# ── Closure ───────────────────────────────────────────────────

@router.post("/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking(
    booking_id: UUID,
    data: Optional[BookingCancelRequest] = None,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    broker: RealtimeBroker = Depends(get_broker),
):
    booking = await lifecycle.get_booking_or_404(db, booking_id)
    reason = data.reason if data else None
    await lifecycle.cancel_booking(db, booking, current_user, reason, broker)
    await db.commit()
    return BookingResponse.model_validate(booking)


@router.post("/{booking_id}/complete", response_model=BookingResponse)
async def complete_booking(
    booking_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Coach (or admin) marks a played match as completed."""
    booking = await lifecycle.get_booking_or_404(db, booking_id)
    if booking.coach_id != current_user.id and current_user.role != UserRole.ADMIN:
        raise HTTPException(status_code=403, detail="Not authorized")
    await lifecycle.complete_booking(db, booking, current_user)
    await db.commit()
    return BookingResponse.model_validate(booking)


# ── Calendar Export ───────────────────────────────────────────

@router.get("/{booking_id}/export")
async def export_booking_ics(
    booking_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Download a confirmed booking as an .ics calendar event."""
    booking = await lifecycle.get_booking_or_404(db, booking_id)
    assignment = await lifecycle.get_assignment(db, booking.id)

    is_party = current_user.id == booking.coach_id or (
        assignment is not None and assignment.referee_id == current_user.id
    )
    if booking.status != BookingStatus.CONFIRMED or not is_party:
        raise HTTPException(status_code=404, detail="Booking not found or unauthorized")

    return Response(
        content=build_booking_ics(booking),
        media_type="text/calendar; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{ics_filename(booking)}"'},
    )
