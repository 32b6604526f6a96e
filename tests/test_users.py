"""
tests/test_users.py
Tests for the shared account profile: name, phone, postcode and avatar,
plus the role dashboard counters.
"""

from datetime import time

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import (
    Booking,
    BookingAssignment,
    BookingOffer,
    BookingStatus,
    FAVerificationStatus,
    OfferStatus,
    User,
    UserRole,
)
from tests.conftest import auth_headers, create_user, match_day


@pytest.mark.asyncio
async def test_get_user_profile(client: AsyncClient, coach_user: User):
    response = await client.get("/users/me", headers=auth_headers(coach_user))
    assert response.status_code == 200
    data = response.json()
    assert data["email"] == coach_user.email
    assert data["full_name"] == coach_user.full_name


@pytest.mark.asyncio
async def test_update_user_name(client: AsyncClient, coach_user: User):
    response = await client.put(
        "/users/me",
        headers=auth_headers(coach_user),
        json={"full_name": "Updated Name"},
    )
    assert response.status_code == 200
    assert response.json()["full_name"] == "Updated Name"


@pytest.mark.asyncio
async def test_update_user_phone(client: AsyncClient, referee_user: User):
    response = await client.put(
        "/users/me",
        headers=auth_headers(referee_user),
        json={"phone": "+447700900123"},
    )
    assert response.status_code == 200
    assert response.json()["phone"] == "+447700900123"


@pytest.mark.asyncio
async def test_update_postcode_is_normalised(client: AsyncClient, coach_user: User):
    response = await client.put(
        "/users/me",
        headers=auth_headers(coach_user),
        json={"postcode": "m11ae"},
    )
    assert response.status_code == 200
    assert response.json()["postcode"] == "M1 1AE"


@pytest.mark.asyncio
async def test_update_invalid_postcode_rejected(client: AsyncClient, coach_user: User):
    response = await client.put(
        "/users/me",
        headers=auth_headers(coach_user),
        json={"postcode": "12345"},
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_update_empty_body_is_noop(client: AsyncClient, coach_user: User):
    """Sending an empty dict should not error. It's a valid no-op."""
    response = await client.put("/users/me", headers=auth_headers(coach_user), json={})
    assert response.status_code == 200
    assert response.json()["email"] == coach_user.email


@pytest.mark.asyncio
async def test_update_avatar(client: AsyncClient, coach_user: User):
    url = "https://cdn.example.com/avatars/coach.png"
    response = await client.put("/users/me/avatar", headers=auth_headers(coach_user), json={"avatar_url": url})
    assert response.status_code == 200
    assert response.json()["avatar_url"] == url


@pytest.mark.asyncio
@pytest.mark.parametrize("avatar_url", ["javascript:alert(1)", "http://cdn.example.com/a.png"])
async def test_update_avatar_requires_https_url(client: AsyncClient, coach_user: User, avatar_url: str):
    response = await client.put(
        "/users/me/avatar",
        headers=auth_headers(coach_user),
        json={"avatar_url": avatar_url},
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_get_user_requires_auth(client: AsyncClient):
    response = await client.get("/users/me")
    assert response.status_code == 401


# ── Dashboard Stats ───────────────────────────────────────────

async def _seed_bookings(db: AsyncSession, coach: User, other_coach: User, referee: User) -> None:
    """
    One booking per state for coach, plus a stranger's booking:
    pending (offer SENT to referee), confirmed (referee assigned),
    last week's completed (referee assigned) and cancelled.
    """
    def booking(owner: User, status: BookingStatus, days_ahead: int = 7) -> Booking:
        return Booking(
            coach_id=owner.id,
            status=status,
            match_date=match_day(days_ahead),
            kickoff_time=time(10, 30),
            location_postcode="E9 5PF",
        )

    pending = booking(coach, BookingStatus.PENDING)
    confirmed = booking(coach, BookingStatus.CONFIRMED)
    completed = booking(coach, BookingStatus.COMPLETED, days_ahead=-7)
    cancelled = booking(coach, BookingStatus.CANCELLED)
    strangers = booking(other_coach, BookingStatus.PENDING)
    db.add_all([pending, confirmed, completed, cancelled, strangers])
    await db.flush()

    db.add_all([
        BookingOffer(booking_id=pending.id, referee_id=referee.id, status=OfferStatus.SENT),
        BookingOffer(booking_id=strangers.id, referee_id=referee.id, status=OfferStatus.DECLINED),
        BookingOffer(booking_id=confirmed.id, referee_id=referee.id, status=OfferStatus.ACCEPTED),
        BookingAssignment(booking_id=confirmed.id, referee_id=referee.id),
        BookingAssignment(booking_id=completed.id, referee_id=referee.id),
    ])
    await db.commit()


@pytest.mark.asyncio
async def test_coach_dashboard_stats(
    client: AsyncClient, coach_user: User, other_coach: User, referee_user: User, db: AsyncSession
):
    await create_user(
        db, UserRole.REFEREE, "Vera Verified", fa_verification_status=FAVerificationStatus.VERIFIED
    )
    await _seed_bookings(db, coach_user, other_coach, referee_user)

    response = await client.get("/users/me/stats", headers=auth_headers(coach_user))
    assert response.status_code == 200
    data = response.json()
    assert data["role"] == "coach"
    assert data["referee"] is None
    assert data["coach"] == {
        "referees_available": 2,
        "fa_verified_referees": 1,
        "upcoming_matches": 2,
        "offers_pending": 1,
        "needing_referee": 1,
        "completed_bookings": 1,
    }


@pytest.mark.asyncio
async def test_referee_dashboard_stats(
    client: AsyncClient, coach_user: User, other_coach: User, referee_user: User, db: AsyncSession
):
    await _seed_bookings(db, coach_user, other_coach, referee_user)

    response = await client.get("/users/me/stats", headers=auth_headers(referee_user))
    assert response.status_code == 200
    data = response.json()
    assert data["role"] == "referee"
    assert data["coach"] is None
    assert data["referee"] == {
        "upcoming_assignments": 1,
        "offers_to_review": 1,
        "matches_completed": 1,
        "active_coaches": 2,
    }


@pytest.mark.asyncio
async def test_fresh_referee_dashboard_is_zeroed(client: AsyncClient, referee_user: User):
    response = await client.get("/users/me/stats", headers=auth_headers(referee_user))
    assert response.json()["referee"] == {
        "upcoming_assignments": 0,
        "offers_to_review": 0,
        "matches_completed": 0,
        "active_coaches": 0,
    }


@pytest.mark.asyncio
async def test_admin_dashboard_stats_forbidden(client: AsyncClient, admin_user: User):
    response = await client.get("/users/me/stats", headers=auth_headers(admin_user))
    assert response.status_code == 403
