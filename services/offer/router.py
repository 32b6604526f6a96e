"""
services/offer/router.py
Offer responses: referees price or decline, coaches confirm.
"""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import RealtimeBroker, get_broker
from services.booking import lifecycle
from services.referee.router import referee_card
from shared.middleware.auth import require_coach, require_referee
from shared.models.models import Booking, BookingOffer, OfferStatus, RefereeProfile, User
from shared.schemas.schemas import (
    BookingDetailResponse,
    BookingResponse,
    OfferAcceptRequest,
    OfferResponse,
    OfferWithBooking,
    OfferWithReferee,
)

router = APIRouter(prefix="/offers", tags=["Offers"])


@router.get("", response_model=List[OfferWithBooking])
async def list_my_offers(
    status_filter: Optional[OfferStatus] = Query(None, alias="status"),
    current_user: User = Depends(require_referee),
    db: AsyncSession = Depends(get_db),
):
    """Offers addressed to the current referee, soonest match first."""
    query = (
        select(BookingOffer, Booking)
        .join(Booking, Booking.id == BookingOffer.booking_id)
        .where(BookingOffer.referee_id == current_user.id)
        .order_by(Booking.match_date.asc(), Booking.kickoff_time.asc())
    )
    if status_filter:
        query = query.where(BookingOffer.status == status_filter)

    result = await db.execute(query)
    return [
        OfferWithBooking(
            **OfferResponse.model_validate(offer).model_dump(),
            booking=BookingResponse.model_validate(booking),
        )
        for offer, booking in result.all()
    ]


@router.get("/awaiting", response_model=List[OfferWithReferee])
async def list_awaiting_confirmation(
    current_user: User = Depends(require_coach),
    db: AsyncSession = Depends(get_db),
):
    """Priced offers on the coach's open bookings, waiting for a confirm."""
    result = await db.execute(
        select(BookingOffer, User, RefereeProfile)
        .join(Booking, Booking.id == BookingOffer.booking_id)
        .join(User, User.id == BookingOffer.referee_id)
        .outerjoin(RefereeProfile, RefereeProfile.user_id == User.id)
        .where(
            Booking.coach_id == current_user.id,
            Booking.status.in_(lifecycle.OPEN_STATUSES),
            BookingOffer.status == OfferStatus.ACCEPTED_PRICED,
        )
        .order_by(BookingOffer.responded_at.asc())
    )
    return [
        OfferWithReferee(
            **OfferResponse.model_validate(offer).model_dump(),
            referee=referee_card(user, profile),
        )
        for offer, user, profile in result.all()
    ]


@router.post("/{offer_id}/accept", response_model=OfferResponse)
async def accept_offer(
    offer_id: UUID,
    data: OfferAcceptRequest,
    current_user: User = Depends(require_referee),
    db: AsyncSession = Depends(get_db),
    broker: RealtimeBroker = Depends(get_broker),
):
    """Referee accepts and names a price (SENT → ACCEPTED_PRICED)."""
    offer = await lifecycle.get_offer_or_404(db, offer_id)
    await lifecycle.accept_offer_with_price(db, offer, current_user, data.price_pounds, broker)
    await db.commit()
    return OfferResponse.model_validate(offer)


@router.post("/{offer_id}/decline", response_model=OfferResponse)
async def decline_offer(
    offer_id: UUID,
    current_user: User = Depends(require_referee),
    db: AsyncSession = Depends(get_db),
    broker: RealtimeBroker = Depends(get_broker),
):
    offer = await lifecycle.get_offer_or_404(db, offer_id)
    await lifecycle.decline_offer(db, offer, current_user, broker)
    await db.commit()
    return OfferResponse.model_validate(offer)


@router.post("/{offer_id}/confirm", response_model=BookingDetailResponse)
async def confirm_offer(
    offer_id: UUID,
    current_user: User = Depends(require_coach),
    db: AsyncSession = Depends(get_db),
    broker: RealtimeBroker = Depends(get_broker),
):
    """
    Coach confirms a priced offer. Assigns the referee, withdraws every
    other offer and opens the booking's message thread.
    """
    offer = await lifecycle.get_offer_or_404(db, offer_id)
    booking, assignment, thread = await lifecycle.confirm_offer(db, offer, current_user, broker)
    await db.commit()

    result = await db.execute(
        select(User, RefereeProfile)
        .outerjoin(RefereeProfile, RefereeProfile.user_id == User.id)
        .where(User.id == assignment.referee_id)
    )
    card = referee_card(*result.one())
    return BookingDetailResponse(
        **BookingResponse.model_validate(booking).model_dump(),
        offers=[OfferWithReferee(**OfferResponse.model_validate(offer).model_dump(), referee=card)],
        assigned_referee=card,
        thread_id=thread.id,
    )
