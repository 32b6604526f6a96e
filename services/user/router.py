"""
services/user/router.py
Account profile shared by coaches, referees and admins, plus the
role-specific home dashboard counters.
"""

from datetime import date

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from shared.middleware.auth import get_current_user
from shared.models.models import (
    Booking,
    BookingAssignment,
    BookingOffer,
    BookingStatus,
    FAVerificationStatus,
    OfferStatus,
    RefereeProfile,
    User,
    UserRole,
)
from shared.schemas.schemas import (
    AvatarUpdateRequest,
    CoachDashboardStats,
    DashboardStatsResponse,
    RefereeDashboardStats,
    UserResponse,
    UserUpdateRequest,
)

router = APIRouter(prefix="/users", tags=["Users"])

UPCOMING_STATUSES = (BookingStatus.PENDING, BookingStatus.OFFERED, BookingStatus.CONFIRMED)
UNASSIGNED_STATUSES = (BookingStatus.PENDING, BookingStatus.OFFERED)


@router.get("/me", response_model=UserResponse)
async def get_me(current_user: User = Depends(get_current_user)):
    """Return the currently authenticated user's profile."""
    return UserResponse.model_validate(current_user)


@router.put("/me", response_model=UserResponse)
async def update_me(
    data: UserUpdateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Update name, phone and postcode.
    Only non-None fields in the request body are updated.
    """
    updates = data.model_dump(exclude_none=True)
    if not updates:
        return UserResponse.model_validate(current_user)

    for field, value in updates.items():
        setattr(current_user, field, value)

    await db.commit()
    await db.refresh(current_user)
    return UserResponse.model_validate(current_user)


@router.put("/me/avatar", response_model=UserResponse)
async def update_avatar(
    data: AvatarUpdateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    current_user.avatar_url = data.avatar_url
    await db.commit()
    await db.refresh(current_user)
    return UserResponse.model_validate(current_user)


# ── Dashboard ─────────────────────────────────────────────────

async def _coach_stats(db: AsyncSession, coach: User, today: date) -> CoachDashboardStats:
    referees_available = await db.scalar(
        select(func.count(RefereeProfile.id))
        .join(User, User.id == RefereeProfile.user_id)
        .where(User.is_active == True)
    )
    fa_verified = await db.scalar(
        select(func.count(RefereeProfile.id))
        .join(User, User.id == RefereeProfile.user_id)
        .where(
            User.is_active == True,
            RefereeProfile.fa_verification_status == FAVerificationStatus.VERIFIED,
        )
    )
    upcoming = await db.scalar(
        select(func.count(Booking.id)).where(
            Booking.coach_id == coach.id,
            Booking.match_date >= today,
            Booking.status.in_(UPCOMING_STATUSES),
        )
    )
    offers_pending = await db.scalar(
        select(func.count(BookingOffer.id))
        .join(Booking, Booking.id == BookingOffer.booking_id)
        .where(Booking.coach_id == coach.id, BookingOffer.status == OfferStatus.SENT)
    )
    needing_referee = await db.scalar(
        select(func.count(Booking.id)).where(
            Booking.coach_id == coach.id,
            Booking.match_date >= today,
            Booking.status.in_(UNASSIGNED_STATUSES),
        )
    )
    completed = await db.scalar(
        select(func.count(Booking.id)).where(
            Booking.coach_id == coach.id,
            Booking.status == BookingStatus.COMPLETED,
        )
    )
    return CoachDashboardStats(
        referees_available=referees_available or 0,
        fa_verified_referees=fa_verified or 0,
        upcoming_matches=upcoming or 0,
        offers_pending=offers_pending or 0,
        needing_referee=needing_referee or 0,
        completed_bookings=completed or 0,
    )


async def _referee_stats(db: AsyncSession, referee: User, today: date) -> RefereeDashboardStats:
    upcoming = await db.scalar(
        select(func.count(BookingAssignment.id))
        .join(Booking, Booking.id == BookingAssignment.booking_id)
        .where(
            BookingAssignment.referee_id == referee.id,
            Booking.match_date >= today,
            Booking.status == BookingStatus.CONFIRMED,
        )
    )
    offers_to_review = await db.scalar(
        select(func.count(BookingOffer.id)).where(
            BookingOffer.referee_id == referee.id,
            BookingOffer.status == OfferStatus.SENT,
        )
    )
    completed = await db.scalar(
        select(func.count(BookingAssignment.id))
        .join(Booking, Booking.id == BookingAssignment.booking_id)
        .where(
            BookingAssignment.referee_id == referee.id,
            Booking.status == BookingStatus.COMPLETED,
        )
    )
    active_coaches = await db.scalar(
        select(func.count(User.id)).where(User.role == UserRole.COACH, User.is_active == True)
    )
    return RefereeDashboardStats(
        upcoming_assignments=upcoming or 0,
        offers_to_review=offers_to_review or 0,
        matches_completed=completed or 0,
        active_coaches=active_coaches or 0,
    )


@router.get("/me/stats", response_model=DashboardStatsResponse)
async def get_my_stats(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Home dashboard counters for the caller's role. Admins use /admin/stats."""
    today = date.today()
    if current_user.role == UserRole.COACH:
        return DashboardStatsResponse(role=current_user.role, coach=await _coach_stats(db, current_user, today))
    if current_user.role == UserRole.REFEREE:
        return DashboardStatsResponse(role=current_user.role, referee=await _referee_stats(db, current_user, today))
    raise HTTPException(status_code=403, detail="Dashboard stats are available to coaches and referees")
