"""
services/admin/router.py
Admin-only endpoints: referee verification, FA number checks with the
county FA, compliance review, platform stats and the immutable audit log.

ALL mutations are logged to AdminAuditLog before returning.
"""

from datetime import datetime, timezone
from typing import Optional
from urllib.parse import quote
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import RealtimeBroker, RedisCache, get_broker, get_redis
from config.settings import settings
from services.notification.router import dispatch_notification
from services.referee.router import get_profile_or_404
from shared.middleware.auth import require_admin
from shared.models.models import (
    AdminAuditLog,
    Booking,
    FARequestStatus,
    FAVerificationRequest,
    FAVerificationStatus,
    RefereeProfile,
    User,
    UserRole,
)
from shared.schemas.schemas import (
    AdminComplianceUpdate,
    AdminFAStatusRequest,
    AdminStatsResponse,
    AdminVerifyRefereeRequest,
    FAEmailDraft,
    FARequestResolve,
    FAVerificationRequestResponse,
    MessageResponse,
    RefereeProfileResponse,
)

router = APIRouter(prefix="/admin", tags=["Admin"])

STATS_CACHE_KEY = "admin:stats"


# ── Helpers ────────────────────────────────────────────────────────────────────

async def _log(
    db: AsyncSession,
    admin: User,
    action: str,
    entity_type: str,
    entity_id: str,
    payload: dict | None = None,
    request: Request | None = None,
):
    """Append an immutable record to AdminAuditLog."""
    db.add(AdminAuditLog(
        admin_id=admin.id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        payload=payload or {},
        ip_address=request.client.host if request and request.client else None,
    ))


async def _get_referee(db: AsyncSession, referee_id: UUID) -> tuple[User, RefereeProfile]:
    user = await db.get(User, referee_id)
    if not user or user.role != UserRole.REFEREE:
        raise HTTPException(status_code=404, detail="Referee not found")
    return user, await get_profile_or_404(db, referee_id)


def _referee_row(user: User, profile: RefereeProfile) -> dict:
    return {
        "id": str(user.id),
        "full_name": user.full_name,
        "email": user.email,
        "phone": user.phone,
        "postcode": user.postcode,
        "is_active": user.is_active,
        "joined_at": user.created_at.isoformat(),
        "profile": RefereeProfileResponse.model_validate(profile).model_dump(mode="json"),
    }


def _request_row(req: FAVerificationRequest, referee: User) -> dict:
    return {
        **FAVerificationRequestResponse.model_validate(req).model_dump(mode="json"),
        "referee_name": referee.full_name,
        "referee_email": referee.email,
    }


def build_fa_email(referee: User, fa_id: str, county: str) -> FAEmailDraft:
    """Prepared email asking the county FA to confirm an FA number."""
    recipient = settings.COUNTY_FA_CONTACTS.get(county)
    subject = "FA Number Verification Request"
    body = (
        f"Dear {county} FA,\n\n"
        "We would like to verify the following referee registration:\n\n"
        f"Referee Name: {referee.full_name}\n"
        f"FA Number: {fa_id}\n"
        f"County: {county}\n\n"
        "Could you please confirm whether this FA number is valid and currently registered?\n\n"
        f"Thank you,\n{settings.APP_NAME}"
    )
    mailto = f"mailto:{recipient or ''}?subject={quote(subject)}&body={quote(body)}"
    return FAEmailDraft(to=recipient, subject=subject, body=body, mailto=mailto)


# ── Referees ───────────────────────────────────────────────────────────────────

@router.get("/referees")
async def list_referees(
    verified: Optional[bool] = Query(None),
    fa_status: Optional[FAVerificationStatus] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """All referees with their profile, newest sign-ups first."""
    query = (
        select(User, RefereeProfile)
        .join(RefereeProfile, RefereeProfile.user_id == User.id)
        .where(User.role == UserRole.REFEREE)
        .order_by(User.created_at.desc())
    )
    if verified is not None:
        query = query.where(RefereeProfile.verified == verified)
    if fa_status:
        query = query.where(RefereeProfile.fa_verification_status == fa_status)

    total = await db.scalar(select(func.count()).select_from(query.subquery()))
    result = await db.execute(query.offset((page - 1) * page_size).limit(page_size))

    return {
        "items": [_referee_row(user, profile) for user, profile in result.all()],
        "total": total,
        "page": page,
        "page_size": page_size,
        "total_pages": -(-total // page_size),  # ceiling division
    }


@router.get("/referees/{referee_id}")
async def get_referee_detail(
    referee_id: UUID,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    user, profile = await _get_referee(db, referee_id)
    result = await db.execute(
        select(FAVerificationRequest)
        .where(FAVerificationRequest.referee_id == referee_id)
        .order_by(FAVerificationRequest.created_at.desc())
    )
    return {
        **_referee_row(user, profile),
        "fa_requests": [
            FAVerificationRequestResponse.model_validate(r).model_dump(mode="json")
            for r in result.scalars()
        ],
    }


@router.post("/referees/{referee_id}/verify", response_model=MessageResponse)
async def set_referee_verified(
    referee_id: UUID,
    data: AdminVerifyRefereeRequest,
    request: Request,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    broker: RealtimeBroker = Depends(get_broker),
):
    """Toggle the general verified flag and tell the referee."""
    user, profile = await _get_referee(db, referee_id)
    profile.verified = data.verified

    await dispatch_notification(
        db,
        user.id,
        "REFEREE_VERIFIED" if data.verified else "REFEREE_UNVERIFIED",
        broker=broker,
    )
    await _log(db, current_user, "VERIFY_REFEREE" if data.verified else "UNVERIFY_REFEREE",
               "RefereeProfile", str(referee_id), {"verified": data.verified}, request)
    await db.commit()
    return MessageResponse(message="Referee verified" if data.verified else "Referee verification removed")


@router.put("/referees/{referee_id}/fa-status", response_model=RefereeProfileResponse)
async def set_fa_status(
    referee_id: UUID,
    data: AdminFAStatusRequest,
    request: Request,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Set the FA verification status directly (e.g. revoke a verified number)."""
    _, profile = await _get_referee(db, referee_id)
    previous = profile.fa_verification_status.value
    profile.fa_verification_status = FAVerificationStatus(data.status)

    await _log(db, current_user, "SET_FA_STATUS", "RefereeProfile", str(referee_id),
               {"from": previous, "to": data.status}, request)
    await db.commit()
    await db.refresh(profile)
    return profile


@router.put("/referees/{referee_id}/compliance", response_model=RefereeProfileResponse)
async def review_compliance(
    referee_id: UUID,
    data: AdminComplianceUpdate,
    request: Request,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Record the outcome of a DBS / safeguarding document review."""
    _, profile = await _get_referee(db, referee_id)
    updates = data.model_dump(exclude_unset=True)
    for field, value in updates.items():
        setattr(profile, field, value)

    await _log(db, current_user, "REVIEW_COMPLIANCE", "RefereeProfile", str(referee_id),
               data.model_dump(mode="json", exclude_unset=True), request)
    await db.commit()
    await db.refresh(profile)
    return profile


# ── FA Verification Queue ──────────────────────────────────────────────────────

@router.post("/referees/{referee_id}/fa-requests", status_code=status.HTTP_201_CREATED)
async def create_fa_request(
    referee_id: UUID,
    request: Request,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """
    Open a verification request with the referee's county FA.
    Returns the request plus an email draft for the admin to send.
    """
    user, profile = await _get_referee(db, referee_id)
    if not profile.fa_id or not profile.county:
        raise HTTPException(
            status_code=400,
            detail="Referee needs an FA number and county before a request can be sent",
        )

    already_open = await db.scalar(
        select(FAVerificationRequest.id).where(
            FAVerificationRequest.referee_id == referee_id,
            FAVerificationRequest.status == FARequestStatus.AWAITING_FA_RESPONSE,
        )
    )
    if already_open:
        raise HTTPException(status_code=409, detail="A request is already awaiting the county FA")

    fa_request = FAVerificationRequest(
        referee_id=referee_id,
        fa_id=profile.fa_id,
        county=profile.county,
        status=FARequestStatus.AWAITING_FA_RESPONSE,
        requested_by_id=current_user.id,
    )
    db.add(fa_request)
    profile.fa_verification_status = FAVerificationStatus.PENDING

    await _log(db, current_user, "REQUEST_FA_VERIFICATION", "RefereeProfile", str(referee_id),
               {"fa_id": profile.fa_id, "county": profile.county}, request)
    await db.commit()
    await db.refresh(fa_request)

    return {
        "request": FAVerificationRequestResponse.model_validate(fa_request).model_dump(mode="json"),
        "email": build_fa_email(user, profile.fa_id, profile.county).model_dump(),
    }


@router.get("/verification")
async def get_verification_queue(
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Requests awaiting the county FA (oldest first) and recently resolved ones."""
    open_rows = await db.execute(
        select(FAVerificationRequest, User)
        .join(User, User.id == FAVerificationRequest.referee_id)
        .where(FAVerificationRequest.status == FARequestStatus.AWAITING_FA_RESPONSE)
        .order_by(FAVerificationRequest.created_at.asc())
    )
    resolved_rows = await db.execute(
        select(FAVerificationRequest, User)
        .join(User, User.id == FAVerificationRequest.referee_id)
        .where(FAVerificationRequest.status != FARequestStatus.AWAITING_FA_RESPONSE)
        .order_by(FAVerificationRequest.resolved_at.desc())
        .limit(50)
    )
    return {
        "open": [_request_row(req, referee) for req, referee in open_rows.all()],
        "resolved": [_request_row(req, referee) for req, referee in resolved_rows.all()],
    }


@router.post("/verification/{request_id}/resolve", response_model=FAVerificationRequestResponse)
async def resolve_fa_request(
    request_id: UUID,
    data: FARequestResolve,
    request: Request,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    broker: RealtimeBroker = Depends(get_broker),
):
    """Record the county FA's answer and update the referee's FA status."""
    fa_request = await db.get(FAVerificationRequest, request_id)
    if not fa_request:
        raise HTTPException(status_code=404, detail="Verification request not found")
    if fa_request.status != FARequestStatus.AWAITING_FA_RESPONSE:
        raise HTTPException(status_code=409, detail="Request has already been resolved")

    confirmed = data.resolution == "confirmed"
    fa_request.status = FARequestStatus.CONFIRMED if confirmed else FARequestStatus.REJECTED
    fa_request.resolved_by_id = current_user.id
    fa_request.resolution_notes = data.notes
    fa_request.resolved_at = datetime.now(timezone.utc)

    profile = await get_profile_or_404(db, fa_request.referee_id)
    profile.fa_verification_status = (
        FAVerificationStatus.VERIFIED if confirmed else FAVerificationStatus.REJECTED
    )

    await dispatch_notification(
        db,
        fa_request.referee_id,
        "FA_VERIFIED" if confirmed else "FA_REJECTED",
        {"fa_id": fa_request.fa_id},
        broker=broker,
    )
    await _log(db, current_user, "RESOLVE_FA_REQUEST", "FAVerificationRequest", str(request_id),
               {"resolution": data.resolution, "notes": data.notes}, request)
    await db.commit()
    await db.refresh(fa_request)
    return fa_request


# ── Stats ─────────────────────────────────────────────────────────────────────

@router.get("/stats", response_model=AdminStatsResponse)
async def get_stats(
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """Dashboard counters. Cached briefly in Redis."""
    cache = RedisCache(redis)
    cached = await cache.get(STATS_CACHE_KEY)
    if cached:
        return AdminStatsResponse(**cached)

    month_start = datetime.now(timezone.utc).replace(day=1, hour=0, minute=0, second=0, microsecond=0)

    total_referees = await db.scalar(
        select(func.count(User.id)).where(User.role == UserRole.REFEREE)
    )
    total_coaches = await db.scalar(
        select(func.count(User.id)).where(User.role == UserRole.COACH)
    )
    fa_pending = await db.scalar(
        select(func.count(RefereeProfile.id))
        .where(RefereeProfile.fa_verification_status == FAVerificationStatus.PENDING)
    )
    unverified = await db.scalar(
        select(func.count(RefereeProfile.id)).where(RefereeProfile.verified == False)
    )
    bookings_this_month = await db.scalar(
        select(func.count(Booking.id)).where(Booking.created_at >= month_start)
    )
    fa_awaiting = await db.scalar(
        select(func.count(FAVerificationRequest.id))
        .where(FAVerificationRequest.status == FARequestStatus.AWAITING_FA_RESPONSE)
    )

    stats = AdminStatsResponse(
        total_referees=total_referees or 0,
        total_coaches=total_coaches or 0,
        fa_pending=fa_pending or 0,
        unverified_referees=unverified or 0,
        bookings_this_month=bookings_this_month or 0,
        fa_requests_awaiting=fa_awaiting or 0,
    )
    await cache.set(STATS_CACHE_KEY, stats.model_dump(), ttl=settings.ADMIN_STATS_CACHE_TTL)
    return stats


# ── Audit Log ─────────────────────────────────────────────────────────────────

@router.get("/audit-logs")
async def get_audit_logs(
    action: str = Query(None, description="Filter by action type e.g. VERIFY_REFEREE"),
    entity_type: str = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=100),
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Immutable admin audit log. Append-only, never editable."""
    query = (
        select(AdminAuditLog, User)
        .join(User, User.id == AdminAuditLog.admin_id)
        .order_by(AdminAuditLog.created_at.desc())
    )
    if action:
        query = query.where(AdminAuditLog.action == action.upper())
    if entity_type:
        query = query.where(AdminAuditLog.entity_type == entity_type)

    total = await db.scalar(select(func.count()).select_from(query.subquery()))
    result = await db.execute(query.offset((page - 1) * page_size).limit(page_size))

    return {
        "items": [
            {
                "id": str(log.id),
                "admin_name": admin.full_name,
                "admin_email": admin.email,
                "action": log.action,
                "entity_type": log.entity_type,
                "entity_id": log.entity_id,
                "payload": log.payload,
                "ip_address": log.ip_address,
                "created_at": log.created_at.isoformat(),
            }
            for log, admin in result.all()
        ],
        "total": total,
        "page": page,
        "page_size": page_size,
    }
