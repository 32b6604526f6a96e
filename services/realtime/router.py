"""
services/realtime/router.py
WebSocket feed of booking, offer, message and notification events.

Clients connect to /realtime/ws?token=<access_token>[&entities=bookings,offers]
and receive JSON frames of the form {"entity", "event", "data"}. Events are
hints to refetch; the REST endpoints stay the source of truth.
"""

import asyncio
import logging
import uuid

from fastapi import APIRouter, HTTPException, WebSocket, WebSocketDisconnect, status

from config import redis_client as redis_module
from config.database import get_db_context
from config.redis_client import REALTIME_ENTITIES, RealtimeBroker
from shared.middleware.auth import decode_token, load_active_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/realtime", tags=["Realtime"])

IDLE_PING_SECONDS = 30


def parse_entities(raw: str = None) -> tuple:
    if not raw:
        return REALTIME_ENTITIES
    requested = {e.strip() for e in raw.split(",") if e.strip()}
    return tuple(e for e in REALTIME_ENTITIES if e in requested)


async def _forward_events(websocket: WebSocket, pubsub) -> None:
    async for message in pubsub.listen():
        if message.get("type") != "message":
            continue
        await websocket.send_text(message["data"])


async def _keepalive(websocket: WebSocket) -> None:
    """Answer client pings; ping the client after a quiet spell."""
    while True:
        try:
            data = await asyncio.wait_for(websocket.receive_text(), timeout=IDLE_PING_SECONDS)
        except asyncio.TimeoutError:
            await websocket.send_text("ping")
            continue
        if data == "ping":
            await websocket.send_text("pong")


async def _first_completed(tasks: list) -> set:
    """Wait for the first task to finish, then cancel and reap the rest."""
    done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
    for task in pending:
        task.cancel()
    await asyncio.gather(*pending, return_exceptions=True)
    return done


@router.websocket("/ws")
async def realtime_ws(websocket: WebSocket):
    await websocket.accept()

    token = websocket.query_params.get("token")
    if not token:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Missing authentication token")
        return

    client = redis_module.redis_client
    if client is None:
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR, reason="Realtime unavailable")
        return

    try:
        token_data = await decode_token(token, client)
        async with get_db_context() as db:
            user = await load_active_user(db, uuid.UUID(token_data.user_id))
    except (HTTPException, ValueError) as e:
        detail = getattr(e, "detail", "Invalid token subject")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=str(detail))
        return

    entities = parse_entities(websocket.query_params.get("entities"))
    if not entities:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="No known entities requested")
        return

    broker = RealtimeBroker(client)
    logger.info(f"Realtime connection opened for user {user.id} ({', '.join(entities)})")
    try:
        async with broker.subscribe(user.id, entities) as pubsub:
            tasks = [
                asyncio.create_task(_forward_events(websocket, pubsub)),
                asyncio.create_task(_keepalive(websocket)),
            ]
            done = await _first_completed(tasks)
            for task in done:
                exc = task.exception()
                if exc and not isinstance(exc, WebSocketDisconnect):
                    raise exc
    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error(f"Realtime error for user {user.id}: {e}")
    finally:
        logger.info(f"Realtime connection closed for user {user.id}")
