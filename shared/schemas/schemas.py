"""
shared/schemas/schemas.py
All Pydantic v2 request/response schemas for the platform.
"""

import datetime as dt
import uuid
from datetime import date, datetime, time
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

from shared.models.models import (
    BookingStatus,
    BookingType,
    CompetitionType,
    ComplianceStatus,
    FARequestStatus,
    FAVerificationStatus,
    MatchFormat,
    MessageKind,
    NotificationType,
    OfferStatus,
    UserRole,
)
from shared.utils.security import MIN_PASSWORD_LENGTH
from shared.utils.validation import (
    is_known_age_group,
    is_known_county,
    is_valid_fa_number,
    is_valid_postcode,
    normalise_postcode,
)


# ── Base ──────────────────────────────────────────────────────

class BaseSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


def _check_postcode(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    if not is_valid_postcode(v):
        raise ValueError("Enter a valid UK postcode")
    return normalise_postcode(v)


def _check_county(v: Optional[str]) -> Optional[str]:
    if v is not None and not is_known_county(v):
        raise ValueError(f"Unknown county: {v}")
    return v


# ── Auth ──────────────────────────────────────────────────────

class RegisterRequest(BaseSchema):
    email: EmailStr
    password: str = Field(..., min_length=MIN_PASSWORD_LENGTH, max_length=128)
    full_name: str = Field(..., min_length=2, max_length=255)
    role: Literal["coach", "referee"]
    phone: Optional[str] = Field(None, pattern=r"^\+?[0-9 ]{10,15}$")
    postcode: Optional[str] = None

    @field_validator("postcode")
    @classmethod
    def postcode_format(cls, v: Optional[str]) -> Optional[str]:
        return _check_postcode(v)


class LoginRequest(BaseSchema):
    email: EmailStr
    password: str


class RefreshRequest(BaseSchema):
    refresh_token: str


class TokenResponse(BaseSchema):
    access_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds


class AuthResponse(BaseSchema):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    user: "UserResponse"


# ── User ──────────────────────────────────────────────────────

class UserResponse(BaseSchema):
    id: uuid.UUID
    email: EmailStr
    full_name: str
    phone: Optional[str]
    postcode: Optional[str]
    avatar_url: Optional[str]
    role: UserRole
    created_at: datetime


class UserUpdateRequest(BaseSchema):
    full_name: Optional[str] = Field(None, min_length=2, max_length=255)
    phone: Optional[str] = Field(None, pattern=r"^\+?[0-9 ]{10,15}$")
    postcode: Optional[str] = None

    @field_validator("postcode")
    @classmethod
    def postcode_format(cls, v: Optional[str]) -> Optional[str]:
        return _check_postcode(v)


class AvatarUpdateRequest(BaseSchema):
    avatar_url: str = Field(..., max_length=2000, pattern=r"^https://")


# ── Referee Profile ───────────────────────────────────────────

class RefereeProfileResponse(BaseSchema):
    id: uuid.UUID
    user_id: uuid.UUID
    fa_id: Optional[str]
    level: Optional[str]
    county: Optional[str]
    travel_radius_km: int
    bio: Optional[str]
    central_venue_opt_in: bool
    verified: bool
    fa_verification_status: FAVerificationStatus
    dbs_status: ComplianceStatus
    dbs_expires_at: Optional[date]
    safeguarding_status: ComplianceStatus
    safeguarding_expires_at: Optional[date]


class RefereeProfileUpdate(BaseSchema):
    # Empty string clears the FA number
    fa_id: Optional[str] = None
    level: Optional[str] = Field(None, max_length=50)
    county: Optional[str] = None
    travel_radius_km: Optional[int] = Field(None, ge=1, le=200)
    bio: Optional[str] = Field(None, max_length=2000)
    central_venue_opt_in: Optional[bool] = None

    @field_validator("county")
    @classmethod
    def known_county(cls, v: Optional[str]) -> Optional[str]:
        return _check_county(v)

    @field_validator("fa_id")
    @classmethod
    def fa_number_format(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip()
        if v and not is_valid_fa_number(v):
            raise ValueError("FA number must be 8 to 10 digits")
        return v


class ComplianceDeclaration(BaseSchema):
    """A referee declares documents as provided; admins verify them."""
    dbs_provided: Optional[bool] = None
    dbs_expires_at: Optional[date] = None
    safeguarding_provided: Optional[bool] = None
    safeguarding_expires_at: Optional[date] = None


class RefereeCard(BaseSchema):
    """Public referee summary shown to coaches."""
    id: uuid.UUID  # user id
    full_name: str
    avatar_url: Optional[str] = None
    level: Optional[str] = None
    county: Optional[str] = None
    travel_radius_km: Optional[int] = None
    bio: Optional[str] = None
    verified: bool = False
    fa_verification_status: FAVerificationStatus = FAVerificationStatus.NOT_PROVIDED
    central_venue_opt_in: bool = False


# ── Availability ──────────────────────────────────────────────

class _TimeRange(BaseSchema):
    start_time: time
    end_time: time

    @model_validator(mode="after")
    def end_after_start(self):
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class WeeklySlot(_TimeRange):
    day_of_week: int = Field(..., ge=0, le=6)  # 0 = Sunday


class WeeklySlotResponse(WeeklySlot):
    id: uuid.UUID


class WeeklyAvailabilityUpdate(BaseSchema):
    slots: List[WeeklySlot] = Field(default_factory=list, max_length=50)


class DateSlot(_TimeRange):
    date: dt.date

    @field_validator("date")
    @classmethod
    def not_in_past(cls, v: dt.date) -> dt.date:
        if v < dt.date.today():
            raise ValueError("Availability date cannot be in the past")
        return v


class DateSlotResponse(_TimeRange):
    id: uuid.UUID
    date: dt.date


class DateAvailabilityUpdate(BaseSchema):
    slots: List[DateSlot] = Field(default_factory=list, max_length=200)


# ── Booking ───────────────────────────────────────────────────

class _BookingFields(BaseSchema):
    ground_name: Optional[str] = Field(None, max_length=255)
    address_text: Optional[str] = Field(None, max_length=1000)
    county: Optional[str] = None
    age_group: Optional[str] = None
    format: Optional[MatchFormat] = None
    competition_type: Optional[CompetitionType] = None
    referee_level_required: Optional[str] = Field(None, max_length=50)
    home_team: Optional[str] = Field(None, max_length=255)
    away_team: Optional[str] = Field(None, max_length=255)
    notes: Optional[str] = Field(None, max_length=2000)
    budget_pounds: Optional[Decimal] = Field(None, ge=0, le=10000, decimal_places=2)

    @field_validator("county")
    @classmethod
    def known_county(cls, v: Optional[str]) -> Optional[str]:
        return _check_county(v)

    @field_validator("age_group")
    @classmethod
    def known_age_group(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not is_known_age_group(v):
            raise ValueError(f"Unknown age group: {v}")
        return v

    @field_validator("match_date", check_fields=False)
    @classmethod
    def match_date_not_past(cls, v: Optional[date]) -> Optional[date]:
        if v is not None and v < date.today():
            raise ValueError("Match date cannot be in the past")
        return v

    @field_validator("location_postcode", check_fields=False)
    @classmethod
    def postcode_format(cls, v: Optional[str]) -> Optional[str]:
        return _check_postcode(v)


class BookingCreateRequest(_BookingFields):
    match_date: date
    kickoff_time: time
    location_postcode: str
    booking_type: BookingType = BookingType.INDIVIDUAL


class BookingUpdateRequest(_BookingFields):
    match_date: Optional[date] = None
    kickoff_time: Optional[time] = None
    location_postcode: Optional[str] = None


class BookingResponse(BaseSchema):
    id: uuid.UUID
    coach_id: uuid.UUID
    status: BookingStatus
    booking_type: BookingType
    match_date: date
    kickoff_time: time
    location_postcode: str
    ground_name: Optional[str]
    address_text: Optional[str]
    county: Optional[str]
    age_group: Optional[str]
    format: Optional[MatchFormat]
    competition_type: Optional[CompetitionType]
    referee_level_required: Optional[str]
    home_team: Optional[str]
    away_team: Optional[str]
    notes: Optional[str]
    budget_pounds: Optional[Decimal]
    cancelled_at: Optional[datetime]
    cancellation_reason: Optional[str]
    completed_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime


class BookingCancelRequest(BaseSchema):
    reason: Optional[str] = Field(None, max_length=500)


class BookingRequestCreate(BaseSchema):
    referee_id: uuid.UUID


# ── Offers ────────────────────────────────────────────────────

class OfferResponse(BaseSchema):
    id: uuid.UUID
    booking_id: uuid.UUID
    referee_id: uuid.UUID
    status: OfferStatus
    price_pence: Optional[int]
    currency: str
    responded_at: Optional[datetime]
    created_at: datetime


class OfferWithReferee(OfferResponse):
    referee: Optional[RefereeCard] = None


class OfferWithBooking(OfferResponse):
    booking: BookingResponse


class BookingDetailResponse(BookingResponse):
    offers: List[OfferWithReferee] = []
    assigned_referee: Optional[RefereeCard] = None
    thread_id: Optional[uuid.UUID] = None


class OfferAcceptRequest(BaseSchema):
    price_pounds: Decimal = Field(..., gt=0, le=1000, decimal_places=2)


class RefereeMatch(BaseSchema):
    referee: RefereeCard
    slot_start: time
    slot_end: time
    offer_status: Optional[OfferStatus] = None


# ── Messaging ─────────────────────────────────────────────────

class ThreadMessageResponse(BaseSchema):
    id: uuid.UUID
    thread_id: uuid.UUID
    sender_id: Optional[uuid.UUID]
    kind: MessageKind
    body: str
    created_at: datetime


class ThreadMessageCreate(BaseSchema):
    body: str = Field(..., min_length=1, max_length=4000)

    @field_validator("body")
    @classmethod
    def not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Message cannot be empty")
        return v


class ParticipantResponse(BaseSchema):
    user_id: uuid.UUID
    full_name: str
    role: UserRole
    last_read_at: Optional[datetime] = None


class ThreadBookingSummary(BaseSchema):
    id: uuid.UUID
    ground_name: Optional[str]
    location_postcode: str
    match_date: date
    kickoff_time: time
    status: BookingStatus


class ThreadSummary(BaseSchema):
    id: uuid.UUID
    booking_id: uuid.UUID
    booking: Optional[ThreadBookingSummary] = None
    title: str
    updated_at: datetime
    participants: List[ParticipantResponse] = []
    last_message: Optional[ThreadMessageResponse] = None
    unread_count: int = 0


class ThreadDetail(ThreadSummary):
    messages: List[ThreadMessageResponse] = []


# ── Notification ──────────────────────────────────────────────

class NotificationResponse(BaseSchema):
    id: uuid.UUID
    title: str
    message: str
    type: NotificationType
    link: Optional[str]
    is_read: bool
    read_at: Optional[datetime]
    created_at: datetime


class PushKeys(BaseSchema):
    p256dh: str = Field(..., min_length=1, max_length=255)
    auth: str = Field(..., min_length=1, max_length=255)


class PushSubscriptionCreate(BaseSchema):
    """Shape of the browser's PushSubscription.toJSON()."""
    endpoint: str = Field(..., pattern=r"^https://")
    keys: PushKeys


class PushSubscriptionDelete(BaseSchema):
    endpoint: str


class VapidKeyResponse(BaseSchema):
    public_key: Optional[str]
    enabled: bool


# ── Admin ─────────────────────────────────────────────────────

class AdminVerifyRefereeRequest(BaseSchema):
    verified: bool


class AdminFAStatusRequest(BaseSchema):
    status: FAVerificationStatus


class AdminComplianceUpdate(BaseSchema):
    dbs_status: Optional[ComplianceStatus] = None
    dbs_expires_at: Optional[date] = None
    safeguarding_status: Optional[ComplianceStatus] = None
    safeguarding_expires_at: Optional[date] = None


class FAVerificationRequestResponse(BaseSchema):
    id: uuid.UUID
    referee_id: uuid.UUID
    fa_id: str
    county: str
    status: FARequestStatus
    requested_by_id: uuid.UUID
    resolved_by_id: Optional[uuid.UUID]
    resolution_notes: Optional[str]
    created_at: datetime
    resolved_at: Optional[datetime]


class FAEmailDraft(BaseSchema):
    to: Optional[str]
    subject: str
    body: str
    mailto: str


class FARequestResolve(BaseSchema):
    resolution: Literal["confirmed", "rejected"]
    notes: Optional[str] = Field(None, max_length=1000)


class AdminStatsResponse(BaseSchema):
    total_referees: int
    total_coaches: int
    fa_pending: int
    unverified_referees: int
    bookings_this_month: int
    fa_requests_awaiting: int


# ── Dashboard ─────────────────────────────────────────────────

class CoachDashboardStats(BaseSchema):
    referees_available: int
    fa_verified_referees: int
    upcoming_matches: int
    offers_pending: int
    needing_referee: int
    completed_bookings: int


class RefereeDashboardStats(BaseSchema):
    upcoming_assignments: int
    offers_to_review: int
    matches_completed: int
    active_coaches: int


class DashboardStatsResponse(BaseSchema):
    role: UserRole
    coach: Optional[CoachDashboardStats] = None
    referee: Optional[RefereeDashboardStats] = None


# ── Common ────────────────────────────────────────────────────

class MessageResponse(BaseSchema):
    message: str
    success: bool = True


AuthResponse.model_rebuild()
