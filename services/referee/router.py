"""
services/referee/router.py
Referee self-service: profile, FA number, compliance declarations,
weekly and per-date availability. Plus the public referee card.
"""

import logging
from datetime import date
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from shared.middleware.auth import get_current_user, require_referee
from shared.models.models import (
    ComplianceStatus,
    FAVerificationStatus,
    RefereeAvailability,
    RefereeDateAvailability,
    RefereeProfile,
    User,
    UserRole,
)
from shared.schemas.schemas import (
    ComplianceDeclaration,
    DateAvailabilityUpdate,
    DateSlotResponse,
    RefereeCard,
    RefereeProfileResponse,
    RefereeProfileUpdate,
    WeeklyAvailabilityUpdate,
    WeeklySlotResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/referees", tags=["Referees"])


# ── Helpers ───────────────────────────────────────────────────

def referee_card(user: User, profile: RefereeProfile = None) -> RefereeCard:
    fields = {"id": user.id, "full_name": user.full_name, "avatar_url": user.avatar_url}
    if profile is not None:
        fields.update(
            level=profile.level,
            county=profile.county,
            travel_radius_km=profile.travel_radius_km,
            bio=profile.bio,
            verified=profile.verified,
            fa_verification_status=profile.fa_verification_status,
            central_venue_opt_in=profile.central_venue_opt_in,
        )
    return RefereeCard(**fields)


async def get_profile_or_404(db: AsyncSession, user_id: UUID) -> RefereeProfile:
    result = await db.execute(select(RefereeProfile).where(RefereeProfile.user_id == user_id))
    profile = result.scalar_one_or_none()
    if not profile:
        raise HTTPException(status_code=404, detail="Referee profile not found")
    return profile


def apply_fa_number(profile: RefereeProfile, fa_id: str) -> None:
    """A new FA number goes back to pending; clearing it resets the status."""
    fa_id = fa_id or None
    if fa_id == profile.fa_id:
        return
    profile.fa_id = fa_id
    profile.fa_verification_status = (
        FAVerificationStatus.PENDING if fa_id else FAVerificationStatus.NOT_PROVIDED
    )


# ── Profile ───────────────────────────────────────────────────

@router.get("/me/profile", response_model=RefereeProfileResponse)
async def get_my_profile(
    current_user: User = Depends(require_referee),
    db: AsyncSession = Depends(get_db),
):
    return await get_profile_or_404(db, current_user.id)


@router.put("/me/profile", response_model=RefereeProfileResponse)
async def update_my_profile(
    data: RefereeProfileUpdate,
    current_user: User = Depends(require_referee),
    db: AsyncSession = Depends(get_db),
):
    profile = await get_profile_or_404(db, current_user.id)

    update_data = data.model_dump(exclude_none=True)
    if "fa_id" in update_data:
        apply_fa_number(profile, update_data.pop("fa_id"))
    for field, value in update_data.items():
        setattr(profile, field, value)

    await db.commit()
    await db.refresh(profile)
    return profile


@router.put("/me/compliance", response_model=RefereeProfileResponse)
async def declare_compliance(
    data: ComplianceDeclaration,
    current_user: User = Depends(require_referee),
    db: AsyncSession = Depends(get_db),
):
    """
    Declare DBS / safeguarding certificates. Declared documents become
    PROVIDED until an admin verifies them; withdrawing resets to NOT_PROVIDED.
    """
    profile = await get_profile_or_404(db, current_user.id)

    for kind, label in (("dbs", "DBS"), ("safeguarding", "Safeguarding")):
        provided = getattr(data, f"{kind}_provided")
        expires_at = getattr(data, f"{kind}_expires_at")
        if provided is True:
            if expires_at is not None and expires_at < date.today():
                raise HTTPException(status_code=400, detail=f"{label} certificate has already expired")
            setattr(profile, f"{kind}_status", ComplianceStatus.PROVIDED)
            setattr(profile, f"{kind}_expires_at", expires_at)
        elif provided is False:
            setattr(profile, f"{kind}_status", ComplianceStatus.NOT_PROVIDED)
            setattr(profile, f"{kind}_expires_at", None)

    await db.commit()
    await db.refresh(profile)
    return profile


# ── Availability ──────────────────────────────────────────────

@router.get("/me/availability", response_model=List[WeeklySlotResponse])
async def get_my_availability(
    current_user: User = Depends(require_referee),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(RefereeAvailability)
        .where(RefereeAvailability.referee_id == current_user.id)
        .order_by(RefereeAvailability.day_of_week, RefereeAvailability.start_time)
    )
    return result.scalars().all()


@router.put("/me/availability", response_model=List[WeeklySlotResponse])
async def update_my_availability(
    data: WeeklyAvailabilityUpdate,
    current_user: User = Depends(require_referee),
    db: AsyncSession = Depends(get_db),
):
    """Replace the weekly pattern wholesale."""
    await db.execute(
        delete(RefereeAvailability).where(RefereeAvailability.referee_id == current_user.id)
    )
    slots = [
        RefereeAvailability(
            referee_id=current_user.id,
            day_of_week=slot.day_of_week,
            start_time=slot.start_time,
            end_time=slot.end_time,
        )
        for slot in data.slots
    ]
    db.add_all(slots)
    await db.commit()
    return sorted(slots, key=lambda s: (s.day_of_week, s.start_time))


@router.get("/me/date-availability", response_model=List[DateSlotResponse])
async def get_my_date_availability(
    current_user: User = Depends(require_referee),
    db: AsyncSession = Depends(get_db),
):
    """Upcoming date slots, soonest first."""
    result = await db.execute(
        select(RefereeDateAvailability)
        .where(
            RefereeDateAvailability.referee_id == current_user.id,
            RefereeDateAvailability.date >= date.today(),
        )
        .order_by(RefereeDateAvailability.date, RefereeDateAvailability.start_time)
    )
    return result.scalars().all()


@router.put("/me/date-availability", response_model=List[DateSlotResponse])
async def update_my_date_availability(
    data: DateAvailabilityUpdate,
    current_user: User = Depends(require_referee),
    db: AsyncSession = Depends(get_db),
):
    """
    Replace every slot from today onward with the submitted set.
    Past slots are left alone as history.
    """
    await db.execute(
        delete(RefereeDateAvailability).where(
            RefereeDateAvailability.referee_id == current_user.id,
            RefereeDateAvailability.date >= date.today(),
        )
    )
    slots = [
        RefereeDateAvailability(
            referee_id=current_user.id,
            date=slot.date,
            start_time=slot.start_time,
            end_time=slot.end_time,
        )
        for slot in data.slots
    ]
    db.add_all(slots)
    await db.commit()
    logger.info(f"Referee {current_user.id} set {len(slots)} date availability slots")
    return sorted(slots, key=lambda s: (s.date, s.start_time))


# ── Public ────────────────────────────────────────────────────

@router.get("/{referee_id}", response_model=RefereeCard)
async def get_referee(
    referee_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(User, RefereeProfile)
        .join(RefereeProfile, RefereeProfile.user_id == User.id)
        .where(User.id == referee_id, User.role == UserRole.REFEREE, User.is_active == True)
    )
    row = result.first()
    if not row:
        raise HTTPException(status_code=404, detail="Referee not found")
    user, profile = row
    return referee_card(user, profile)
