"""
shared/models/models.py
All SQLAlchemy ORM models for Whistle Connect.
UUID primary keys throughout; column types are portable so the same
schema runs on PostgreSQL (production) and SQLite (tests).
"""

import uuid
from datetime import date, datetime, time, timezone
from decimal import Decimal
from enum import Enum as PyEnum
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    SmallInteger,
    String,
    Text,
    Time,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from config.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum(enum_cls):
    # Stored as VARCHAR holding the enum *value* ("5v5", "accepted_priced")
    return Enum(
        enum_cls,
        native_enum=False,
        length=30,
        values_callable=lambda members: [m.value for m in members],
    )


JSONType = JSON().with_variant(JSONB(), "postgresql")


# ── Enumerations ──────────────────────────────────────────────

class UserRole(str, PyEnum):
    COACH = "coach"
    REFEREE = "referee"
    ADMIN = "admin"


class BookingStatus(str, PyEnum):
    DRAFT = "draft"
    PENDING = "pending"
    OFFERED = "offered"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class OfferStatus(str, PyEnum):
    SENT = "sent"
    ACCEPTED_PRICED = "accepted_priced"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    WITHDRAWN = "withdrawn"


class BookingType(str, PyEnum):
    INDIVIDUAL = "individual"
    CENTRAL = "central"


class MatchFormat(str, PyEnum):
    FIVE_A_SIDE = "5v5"
    SEVEN_A_SIDE = "7v7"
    NINE_A_SIDE = "9v9"
    ELEVEN_A_SIDE = "11v11"


class CompetitionType(str, PyEnum):
    LEAGUE = "league"
    CUP = "cup"
    FRIENDLY = "friendly"
    TOURNAMENT = "tournament"
    OTHER = "other"


class ComplianceStatus(str, PyEnum):
    NOT_PROVIDED = "not_provided"
    PROVIDED = "provided"
    VERIFIED = "verified"
    EXPIRED = "expired"


class FAVerificationStatus(str, PyEnum):
    NOT_PROVIDED = "not_provided"
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


class FARequestStatus(str, PyEnum):
    AWAITING_FA_RESPONSE = "awaiting_fa_response"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"


class MessageKind(str, PyEnum):
    USER = "user"
    SYSTEM = "system"


class NotificationType(str, PyEnum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


# ── Mixins ────────────────────────────────────────────────────

class TimestampMixin:
    """Adds created_at and updated_at to any model."""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )


# ── Accounts ──────────────────────────────────────────────────

class User(TimestampMixin, Base):
    """Profile shared by coaches, referees and admins."""
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    postcode: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    avatar_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    role: Mapped[UserRole] = mapped_column(_enum(UserRole), nullable=False, default=UserRole.COACH)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (Index("ix_users_role", "role"),)

    def __repr__(self) -> str:
        return f"<User {self.email} ({self.role})>"


class RefreshToken(Base):
    """Refresh tokens stored for rotation and revocation."""
    __tablename__ = "refresh_tokens"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    token_hash: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    is_revoked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    user_agent: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)

    __table_args__ = (Index("ix_refresh_tokens_user_id", "user_id"),)


# ── Referees ──────────────────────────────────────────────────

class RefereeProfile(TimestampMixin, Base):
    """
    Referee-specific extension of a User.
    `verified` is the admin's general toggle; FA registration and
    compliance documents have their own independent status fields.
    """
    __tablename__ = "referee_profiles"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    fa_id: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    level: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    county: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    travel_radius_km: Mapped[int] = mapped_column(Integer, default=25, nullable=False)
    bio: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    central_venue_opt_in: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    fa_verification_status: Mapped[FAVerificationStatus] = mapped_column(
        _enum(FAVerificationStatus), default=FAVerificationStatus.NOT_PROVIDED, nullable=False
    )
    dbs_status: Mapped[ComplianceStatus] = mapped_column(
        _enum(ComplianceStatus), default=ComplianceStatus.NOT_PROVIDED, nullable=False
    )
    dbs_expires_at: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    safeguarding_status: Mapped[ComplianceStatus] = mapped_column(
        _enum(ComplianceStatus), default=ComplianceStatus.NOT_PROVIDED, nullable=False
    )
    safeguarding_expires_at: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    __table_args__ = (
        Index("ix_referee_profiles_county", "county"),
        Index("ix_referee_profiles_fa_status", "fa_verification_status"),
    )


class FAVerificationRequest(Base):
    """A request sent to a county FA asking them to confirm a referee's FA number."""
    __tablename__ = "fa_verification_requests"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    referee_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    fa_id: Mapped[str] = mapped_column(String(20), nullable=False)
    county: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[FARequestStatus] = mapped_column(
        _enum(FARequestStatus), default=FARequestStatus.AWAITING_FA_RESPONSE, nullable=False
    )
    requested_by_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    resolved_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )
    resolution_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    __table_args__ = (Index("ix_fa_requests_status", "status"),)


class RefereeAvailability(Base):
    """Recurring weekly availability. day_of_week: 0 = Sunday ... 6 = Saturday."""
    __tablename__ = "referee_availability"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    referee_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    day_of_week: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)

    __table_args__ = (Index("ix_availability_referee_day", "referee_id", "day_of_week"),)


class RefereeDateAvailability(Base):
    """A one-off availability slot on a specific date."""
    __tablename__ = "referee_date_availability"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    referee_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    date: Mapped[date] = mapped_column(Date, nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (Index("ix_date_availability_referee_date", "referee_id", "date"),)


# ── Bookings ──────────────────────────────────────────────────

class Booking(TimestampMixin, Base):
    """
    A coach's request for a match official.
    Status transitions: PENDING → OFFERED → CONFIRMED → COMPLETED,
    and PENDING | OFFERED | CONFIRMED → CANCELLED.
    """
    __tablename__ = "bookings"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    coach_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    status: Mapped[BookingStatus] = mapped_column(
        _enum(BookingStatus), nullable=False, default=BookingStatus.PENDING
    )
    booking_type: Mapped[BookingType] = mapped_column(
        _enum(BookingType), nullable=False, default=BookingType.INDIVIDUAL
    )

    # Fixture
    match_date: Mapped[date] = mapped_column(Date, nullable=False)
    kickoff_time: Mapped[time] = mapped_column(Time, nullable=False)
    location_postcode: Mapped[str] = mapped_column(String(10), nullable=False)
    ground_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    address_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    county: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    age_group: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    format: Mapped[Optional[MatchFormat]] = mapped_column(_enum(MatchFormat), nullable=True)
    competition_type: Mapped[Optional[CompetitionType]] = mapped_column(
        _enum(CompetitionType), nullable=True
    )
    referee_level_required: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    home_team: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    away_team: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    budget_pounds: Mapped[Optional[Decimal]] = mapped_column(Numeric(8, 2), nullable=True)

    # Closure
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    cancelled_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        Index("ix_bookings_coach_id", "coach_id"),
        Index("ix_bookings_status", "status"),
        Index("ix_bookings_match_date", "match_date"),
    )


class BookingOffer(TimestampMixin, Base):
    """A referee's invitation to officiate one booking."""
    __tablename__ = "booking_offers"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    booking_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False
    )
    referee_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    status: Mapped[OfferStatus] = mapped_column(
        _enum(OfferStatus), nullable=False, default=OfferStatus.SENT
    )
    price_pence: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    currency: Mapped[str] = mapped_column(String(3), default="GBP", nullable=False)
    responded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        UniqueConstraint("booking_id", "referee_id", name="uq_offer_booking_referee"),
        Index("ix_offers_referee_status", "referee_id", "status"),
    )


class BookingAssignment(Base):
    """The single confirmed referee for a booking."""
    __tablename__ = "booking_assignments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    booking_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    referee_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (Index("ix_assignments_referee_id", "referee_id"),)


class BookingAuditLog(Base):
    """Immutable log of all booking status transitions."""
    __tablename__ = "booking_audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    booking_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False
    )
    from_status: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    to_status: Mapped[str] = mapped_column(String(30), nullable=False)
    changed_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    audit_metadata: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (Index("ix_booking_audit_booking_id", "booking_id"),)


# ── Messaging ─────────────────────────────────────────────────

class Thread(TimestampMixin, Base):
    """Conversation between the coach and the assigned referee of one booking."""
    __tablename__ = "threads"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    booking_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)


class ThreadParticipant(Base):
    __tablename__ = "thread_participants"

    thread_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("threads.id", ondelete="CASCADE"), primary_key=True
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    last_read_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class Message(Base):
    __tablename__ = "messages"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    thread_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("threads.id", ondelete="CASCADE"), nullable=False
    )
    sender_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )  # null for system messages
    kind: Mapped[MessageKind] = mapped_column(_enum(MessageKind), default=MessageKind.USER, nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (Index("ix_messages_thread_created", "thread_id", "created_at"),)


# ── Notifications ─────────────────────────────────────────────

class Notification(TimestampMixin, Base):
    """In-app notification. Mirrored to Web Push when VAPID is configured."""
    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[NotificationType] = mapped_column(
        _enum(NotificationType), default=NotificationType.INFO, nullable=False
    )
    link: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    read_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    __table_args__ = (Index("ix_notifications_user_id_read", "user_id", "is_read"),)


class PushSubscription(TimestampMixin, Base):
    """A browser Web Push endpoint registered by a user."""
    __tablename__ = "push_subscriptions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    endpoint: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    p256dh: Mapped[str] = mapped_column(String(255), nullable=False)
    auth: Mapped[str] = mapped_column(String(255), nullable=False)

    __table_args__ = (Index("ix_push_subscriptions_user_id", "user_id"),)


# ── Admin ─────────────────────────────────────────────────────

class AdminAuditLog(Base):
    """Immutable log of all admin actions."""
    __tablename__ = "admin_audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    admin_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    payload: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        Index("ix_admin_audit_admin_id", "admin_id"),
        Index("ix_admin_audit_created_at", "created_at"),
    )
