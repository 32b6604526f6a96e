"""
tests/test_realtime.py
Tests for the realtime broker and the WebSocket handshake.
"""

import asyncio
import json
import uuid
from unittest.mock import AsyncMock

import pytest
from starlette.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from config import redis_client as redis_module
from config.redis_client import REALTIME_ENTITIES, RealtimeBroker, realtime_channel
from main import app
from services.realtime.router import _first_completed, parse_entities
from shared.utils.security import create_access_token


# ── Entity Parsing ────────────────────────────────────────────

def test_parse_entities_defaults_to_all():
    assert parse_entities(None) == REALTIME_ENTITIES
    assert parse_entities("") == REALTIME_ENTITIES


def test_parse_entities_filters_unknown():
    assert parse_entities("offers, bookings,gossip") == ("bookings", "offers")
    assert parse_entities("gossip") == ()


# ── Broker ────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_publish_without_client_is_noop():
    await RealtimeBroker(None).publish("bookings", uuid.uuid4(), "updated", {"id": "x"})


@pytest.mark.asyncio
async def test_publish_channel_and_payload():
    client = AsyncMock()
    user_id = uuid.uuid4()

    await RealtimeBroker(client).publish("offers", user_id, "created", {"offer_id": user_id})

    channel, message = client.publish.call_args.args
    assert channel == f"realtime:offers:{user_id}" == realtime_channel("offers", user_id)
    assert json.loads(message) == {"entity": "offers", "event": "created", "data": {"offer_id": str(user_id)}}


@pytest.mark.asyncio
async def test_publish_failure_is_swallowed():
    client = AsyncMock()
    client.publish.side_effect = ConnectionError("redis down")

    await RealtimeBroker(client).publish("messages", uuid.uuid4(), "created")


@pytest.mark.asyncio
async def test_publish_many_deduplicates_recipients():
    client = AsyncMock()
    coach, referee = uuid.uuid4(), uuid.uuid4()

    await RealtimeBroker(client).publish_many("bookings", [coach, referee, coach], "updated")

    channels = sorted(c.args[0] for c in client.publish.call_args_list)
    assert channels == sorted([f"realtime:bookings:{coach}", f"realtime:bookings:{referee}"])


# ── WebSocket Handshake ───────────────────────────────────────

def test_websocket_requires_token():
    with TestClient(app).websocket_connect("/realtime/ws") as ws:
        with pytest.raises(WebSocketDisconnect) as exc_info:
            ws.receive_text()
    assert exc_info.value.code == 1008


def test_websocket_closes_when_redis_unavailable(monkeypatch):
    monkeypatch.setattr(redis_module, "redis_client", None)
    token, _ = create_access_token(str(uuid.uuid4()), "coach", "coach@example.com")

    with TestClient(app).websocket_connect(f"/realtime/ws?token={token}") as ws:
        with pytest.raises(WebSocketDisconnect) as exc_info:
            ws.receive_text()
    assert exc_info.value.code == 1011


# ── Task Supervision ──────────────────────────────────────────

@pytest.mark.asyncio
async def test_first_completed_reaps_pending_tasks():
    async def finishes():
        return "closed"

    async def runs_forever():
        await asyncio.Event().wait()

    quick = asyncio.create_task(finishes())
    slow = asyncio.create_task(runs_forever())

    done = await _first_completed([quick, slow])

    assert done == {quick}
    assert slow.done()
    assert slow.cancelled()
