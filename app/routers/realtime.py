"""
WebSocket endpoint for live task updates.

Protocol (JSON text frames, ``{"event": ..., "data": ...}``):

- server -> client on accept: ``connected {message, userId, socketId}``
- ``team:join <teamId>`` -> ``team:join:success`` | ``team:join:error``
- ``team:leave <teamId>`` -> ``team:leave:success``
- plain ``ping`` -> plain ``pong``
- server pushes ``task:created``, ``task:updated``, ``task:deleted``
"""

import json
import logging
from typing import Any

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.cache.layer import MembershipCache
from app.core.config import Settings, get_settings
from app.core.deps import get_broadcaster, get_cache
from app.core.errors import AppError
from app.core.security import BEARER_PREFIX, verify_token
from app.database import get_session_factory
from app.realtime.broadcaster import Broadcaster, Connection
from app.services.team_service import TeamService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])

UNAUTHORIZED_CLOSE_CODE = 4001


def _token_from(query_token: str | None, websocket: WebSocket) -> str | None:
    raw = query_token or websocket.headers.get("authorization")
    if not raw:
        return None
    if raw.startswith(BEARER_PREFIX):
        raw = raw[len(BEARER_PREFIX):]
    return raw.strip() or None


def _team_id_from(data: Any) -> int | None:
    if isinstance(data, dict):
        data = data.get("teamId", data.get("team_id"))
    if isinstance(data, bool):
        return None
    try:
        team_id = int(data)
    except (TypeError, ValueError):
        return None
    return team_id if team_id > 0 else None


@router.websocket("/ws")
async def task_updates(
    websocket: WebSocket,
    token: str | None = Query(None),
    settings: Settings = Depends(get_settings),
    cache: MembershipCache = Depends(get_cache),
    broadcaster: Broadcaster = Depends(get_broadcaster),
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    """
    Authenticates via ``?token=`` or the ``Authorization`` header, then
    relays team-scoped task events for every room the socket joins.
    """
    raw_token = _token_from(token, websocket)
    user_id = verify_token(raw_token, settings) if raw_token else None
    if user_id is None:
        reason = "Invalid or expired token" if raw_token else "Authentication token required"
        logger.info(f"WebSocket rejected: {reason}")
        await websocket.close(code=UNAUTHORIZED_CLOSE_CODE, reason=reason)
        return

    await websocket.accept()
    connection = await broadcaster.connect(websocket, user_id)

    try:
        await connection.send(
            "connected",
            {
                "message": "Connected to Task Manager real-time server",
                "userId": user_id,
                "socketId": connection.id,
            },
        )

        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                logger.debug(f"Socket {connection.id} closed by client (code={frame.get('code')})")
                break

            data = frame.get("text")
            if data is None:
                # Binary frames are not part of the protocol
                await connection.send("error", {"message": "Malformed message"})
                continue

            # Heartbeat
            if data == "ping":
                await websocket.send_text("pong")
                continue

            await _handle_message(data, connection, broadcaster, cache, session_factory)
    except WebSocketDisconnect as e:
        logger.debug(f"Socket {connection.id} closed by client (code={e.code})")
    finally:
        await broadcaster.disconnect(connection)


async def _handle_message(
    raw: str,
    connection: Connection,
    broadcaster: Broadcaster,
    cache: MembershipCache,
    session_factory: async_sessionmaker,
) -> None:
    try:
        message = json.loads(raw)
    except json.JSONDecodeError:
        message = None

    if not isinstance(message, dict) or not isinstance(message.get("event"), str):
        await connection.send("error", {"message": "Malformed message"})
        return

    event = message["event"]
    team_id = _team_id_from(message.get("data"))

    if event not in ("team:join", "team:leave"):
        await connection.send("error", {"message": f"Unknown event: {event}"})
        return
    if team_id is None:
        await connection.send("error", {"message": "A valid teamId is required"})
        return

    if event == "team:leave":
        await broadcaster.leave(connection, team_id)
        await connection.send(
            "team:leave:success",
            {"message": "Successfully left team room", "teamId": team_id},
        )
        return

    try:
        async with session_factory() as db:
            teams = TeamService(db, cache)
            joined = await broadcaster.join(connection, team_id, teams.is_member)
    except AppError as e:
        logger.error(f"Socket {connection.id}: membership check failed: {e.message}")
        await connection.send("team:join:error", {"message": e.message, "teamId": team_id})
        return

    if joined:
        await connection.send(
            "team:join:success",
            {"message": "Successfully joined team room", "teamId": team_id},
        )
    else:
        await connection.send(
            "team:join:error",
            {"message": "You are not a member of this team", "teamId": team_id},
        )
