"""
tests/test_admin.py
Tests for admin endpoints: referee verification, the county FA queue,
compliance review, stats and the audit log.
"""

import json
import uuid

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from shared.models.models import (
    AdminAuditLog,
    FAVerificationStatus,
    Notification,
    RefereeProfile,
    User,
)
from tests.conftest import auth_headers


async def _profile(db: AsyncSession, referee: User) -> RefereeProfile:
    result = await db.execute(select(RefereeProfile).where(RefereeProfile.user_id == referee.id))
    return result.scalar_one()


async def _give_fa_number(db: AsyncSession, referee: User, fa_id: str = "12345678") -> RefereeProfile:
    profile = await _profile(db, referee)
    profile.fa_id = fa_id
    profile.fa_verification_status = FAVerificationStatus.PENDING
    await db.commit()
    return profile


async def _open_request(client: AsyncClient, admin: User, referee: User) -> dict:
    response = await client.post(f"/admin/referees/{referee.id}/fa-requests", headers=auth_headers(admin))
    assert response.status_code == 201
    return response.json()["request"]


async def _titles(db: AsyncSession, user: User) -> list[str]:
    result = await db.execute(select(Notification.title).where(Notification.user_id == user.id))
    return list(result.scalars())


# ── Access ─────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
@pytest.mark.parametrize("path", ["/admin/referees", "/admin/verification", "/admin/stats", "/admin/audit-logs"])
async def test_non_admin_forbidden(
    client: AsyncClient, coach_user: User, referee_user: User, path: str
):
    for user in (coach_user, referee_user):
        response = await client.get(path, headers=auth_headers(user))
        assert response.status_code == 403


# ── Referees ───────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_list_referees(
    client: AsyncClient, admin_user: User, referee_user: User, second_referee: User, coach_user: User
):
    response = await client.get("/admin/referees", headers=auth_headers(admin_user))
    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 2
    assert data["total_pages"] == 1
    assert {r["full_name"] for r in data["items"]} == {"Jordan Ref", "Casey Whistle"}
    assert all("profile" in r for r in data["items"])


@pytest.mark.asyncio
async def test_list_referees_filters(
    client: AsyncClient, admin_user: User, referee_user: User, second_referee: User, db: AsyncSession
):
    await _give_fa_number(db, referee_user)

    pending = await client.get(
        "/admin/referees", headers=auth_headers(admin_user), params={"fa_status": "pending"}
    )
    assert [r["id"] for r in pending.json()["items"]] == [str(referee_user.id)]

    verified = await client.get(
        "/admin/referees", headers=auth_headers(admin_user), params={"verified": True}
    )
    assert verified.json()["total"] == 0


@pytest.mark.asyncio
async def test_referee_detail(client: AsyncClient, admin_user: User, referee_user: User):
    response = await client.get(f"/admin/referees/{referee_user.id}", headers=auth_headers(admin_user))
    assert response.status_code == 200
    data = response.json()
    assert data["email"] == "referee@example.com"
    assert data["fa_requests"] == []


@pytest.mark.asyncio
async def test_referee_detail_for_coach_is_404(client: AsyncClient, admin_user: User, coach_user: User):
    response = await client.get(f"/admin/referees/{coach_user.id}", headers=auth_headers(admin_user))
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_verify_referee(
    client: AsyncClient, admin_user: User, referee_user: User, db: AsyncSession
):
    response = await client.post(
        f"/admin/referees/{referee_user.id}/verify",
        headers=auth_headers(admin_user),
        json={"verified": True},
    )
    assert response.status_code == 200

    profile = await _profile(db, referee_user)
    await db.refresh(profile)
    assert profile.verified is True
    assert await _titles(db, referee_user) == ["Profile verified"]

    logs = (await db.execute(select(AdminAuditLog))).scalars().all()
    assert [log.action for log in logs] == ["VERIFY_REFEREE"]
    assert logs[0].entity_id == str(referee_user.id)


@pytest.mark.asyncio
async def test_unverify_referee(
    client: AsyncClient, admin_user: User, referee_user: User, db: AsyncSession
):
    await client.post(
        f"/admin/referees/{referee_user.id}/verify", headers=auth_headers(admin_user), json={"verified": False}
    )
    assert await _titles(db, referee_user) == ["Verification removed"]
    actions = (await db.execute(select(AdminAuditLog.action))).scalars().all()
    assert actions == ["UNVERIFY_REFEREE"]


@pytest.mark.asyncio
async def test_set_fa_status(client: AsyncClient, admin_user: User, referee_user: User, db: AsyncSession):
    await _give_fa_number(db, referee_user)

    response = await client.put(
        f"/admin/referees/{referee_user.id}/fa-status",
        headers=auth_headers(admin_user),
        json={"status": "rejected"},
    )
    assert response.status_code == 200
    assert response.json()["fa_verification_status"] == "rejected"

    log = (await db.execute(select(AdminAuditLog))).scalar_one()
    assert log.action == "SET_FA_STATUS"
    assert log.payload == {"from": "pending", "to": "rejected"}


@pytest.mark.asyncio
async def test_review_compliance(client: AsyncClient, admin_user: User, referee_user: User):
    response = await client.put(
        f"/admin/referees/{referee_user.id}/compliance",
        headers=auth_headers(admin_user),
        json={"dbs_status": "verified", "safeguarding_status": "expired"},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["dbs_status"] == "verified"
    assert data["safeguarding_status"] == "expired"


# ── FA Verification Queue ──────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_fa_request_needs_fa_number(client: AsyncClient, admin_user: User, referee_user: User):
    response = await client.post(
        f"/admin/referees/{referee_user.id}/fa-requests", headers=auth_headers(admin_user)
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_fa_request_returns_email_draft(
    client: AsyncClient, admin_user: User, referee_user: User, db: AsyncSession, monkeypatch
):
    monkeypatch.setattr(settings, "COUNTY_FA_CONTACTS", {"London": "referees@londonfa.com"})
    await _give_fa_number(db, referee_user)

    response = await client.post(
        f"/admin/referees/{referee_user.id}/fa-requests", headers=auth_headers(admin_user)
    )
    assert response.status_code == 201
    data = response.json()
    assert data["request"]["status"] == "awaiting_fa_response"
    assert data["request"]["fa_id"] == "12345678"

    email = data["email"]
    assert email["to"] == "referees@londonfa.com"
    assert email["subject"] == "FA Number Verification Request"
    assert "Referee Name: Jordan Ref" in email["body"]
    assert "FA Number: 12345678" in email["body"]
    assert email["mailto"].startswith("mailto:referees@londonfa.com?subject=FA%20Number")


@pytest.mark.asyncio
async def test_fa_request_unknown_county_has_no_recipient(
    client: AsyncClient, admin_user: User, referee_user: User, db: AsyncSession, monkeypatch
):
    monkeypatch.setattr(settings, "COUNTY_FA_CONTACTS", {})
    await _give_fa_number(db, referee_user)

    response = await client.post(
        f"/admin/referees/{referee_user.id}/fa-requests", headers=auth_headers(admin_user)
    )
    assert response.json()["email"]["to"] is None


@pytest.mark.asyncio
async def test_duplicate_fa_request_conflicts(
    client: AsyncClient, admin_user: User, referee_user: User, db: AsyncSession
):
    await _give_fa_number(db, referee_user)
    await _open_request(client, admin_user, referee_user)

    response = await client.post(
        f"/admin/referees/{referee_user.id}/fa-requests", headers=auth_headers(admin_user)
    )
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_verification_queue(
    client: AsyncClient, admin_user: User, referee_user: User, db: AsyncSession
):
    await _give_fa_number(db, referee_user)
    fa_request = await _open_request(client, admin_user, referee_user)

    response = await client.get("/admin/verification", headers=auth_headers(admin_user))
    assert response.status_code == 200
    data = response.json()
    assert [r["id"] for r in data["open"]] == [fa_request["id"]]
    assert data["open"][0]["referee_name"] == "Jordan Ref"
    assert data["resolved"] == []


@pytest.mark.asyncio
async def test_resolve_confirmed(
    client: AsyncClient, admin_user: User, referee_user: User, db: AsyncSession
):
    profile = await _give_fa_number(db, referee_user)
    fa_request = await _open_request(client, admin_user, referee_user)

    response = await client.post(
        f"/admin/verification/{fa_request['id']}/resolve",
        headers=auth_headers(admin_user),
        json={"resolution": "confirmed", "notes": "Confirmed by phone"},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "confirmed"
    assert data["resolved_by_id"] == str(admin_user.id)
    assert data["resolved_at"] is not None

    await db.refresh(profile)
    assert profile.fa_verification_status == FAVerificationStatus.VERIFIED
    assert await _titles(db, referee_user) == ["FA number confirmed"]

    queue = (await client.get("/admin/verification", headers=auth_headers(admin_user))).json()
    assert queue["open"] == []
    assert [r["id"] for r in queue["resolved"]] == [fa_request["id"]]


@pytest.mark.asyncio
async def test_resolve_rejected(
    client: AsyncClient, admin_user: User, referee_user: User, db: AsyncSession
):
    profile = await _give_fa_number(db, referee_user)
    fa_request = await _open_request(client, admin_user, referee_user)

    await client.post(
        f"/admin/verification/{fa_request['id']}/resolve",
        headers=auth_headers(admin_user),
        json={"resolution": "rejected"},
    )

    await db.refresh(profile)
    assert profile.fa_verification_status == FAVerificationStatus.REJECTED
    assert await _titles(db, referee_user) == ["FA number not confirmed"]


@pytest.mark.asyncio
async def test_resolve_twice_conflicts(
    client: AsyncClient, admin_user: User, referee_user: User, db: AsyncSession
):
    await _give_fa_number(db, referee_user)
    fa_request = await _open_request(client, admin_user, referee_user)
    url = f"/admin/verification/{fa_request['id']}/resolve"

    await client.post(url, headers=auth_headers(admin_user), json={"resolution": "confirmed"})
    response = await client.post(url, headers=auth_headers(admin_user), json={"resolution": "rejected"})
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_resolve_unknown_request(client: AsyncClient, admin_user: User):
    response = await client.post(
        f"/admin/verification/{uuid.uuid4()}/resolve",
        headers=auth_headers(admin_user),
        json={"resolution": "confirmed"},
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_resolve_bad_resolution(client: AsyncClient, admin_user: User):
    response = await client.post(
        f"/admin/verification/{uuid.uuid4()}/resolve",
        headers=auth_headers(admin_user),
        json={"resolution": "maybe"},
    )
    assert response.status_code == 422


# ── Stats ─────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_stats_computed_and_cached(
    client: AsyncClient,
    admin_user: User,
    coach_user: User,
    referee_user: User,
    second_referee: User,
    db: AsyncSession,
    mock_redis,
):
    await _give_fa_number(db, referee_user)

    response = await client.get("/admin/stats", headers=auth_headers(admin_user))
    assert response.status_code == 200
    data = response.json()
    assert data["total_referees"] == 2
    assert data["total_coaches"] == 1
    assert data["fa_pending"] == 1
    assert data["unverified_referees"] == 2
    assert data["bookings_this_month"] == 0
    assert data["fa_requests_awaiting"] == 0

    mock_redis.setex.assert_called_once()
    key, ttl, _ = mock_redis.setex.call_args.args
    assert key == "admin:stats"
    assert ttl == settings.ADMIN_STATS_CACHE_TTL


@pytest.mark.asyncio
async def test_stats_served_from_cache(client: AsyncClient, admin_user: User, mock_redis):
    cached = {
        "total_referees": 40,
        "total_coaches": 12,
        "fa_pending": 3,
        "unverified_referees": 5,
        "bookings_this_month": 77,
        "fa_requests_awaiting": 2,
    }
    mock_redis.get.return_value = json.dumps(cached)

    response = await client.get("/admin/stats", headers=auth_headers(admin_user))
    assert response.json() == cached
    mock_redis.setex.assert_not_called()


# ── Audit Log ─────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_audit_logs_listed_and_filtered(
    client: AsyncClient, admin_user: User, referee_user: User, db: AsyncSession
):
    headers = auth_headers(admin_user)
    await client.post(f"/admin/referees/{referee_user.id}/verify", headers=headers, json={"verified": True})
    await client.put(
        f"/admin/referees/{referee_user.id}/compliance", headers=headers, json={"dbs_status": "verified"}
    )

    response = await client.get("/admin/audit-logs", headers=headers)
    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 2
    assert {i["action"] for i in data["items"]} == {"VERIFY_REFEREE", "REVIEW_COMPLIANCE"}
    assert data["items"][0]["admin_name"] == "Admin"

    filtered = await client.get("/admin/audit-logs", headers=headers, params={"action": "verify_referee"})
    assert [i["action"] for i in filtered.json()["items"]] == ["VERIFY_REFEREE"]
