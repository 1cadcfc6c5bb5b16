"""
Team-scoped real-time fan-out over WebSockets.

Connections join per-team rooms after a membership check; task mutations
are published to the room of the task's team. Delivery is at-most-once:
a connection that fails to receive is dropped, never retried.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable

from fastapi import WebSocket

from app.models import Task, TaskRead

logger = logging.getLogger(__name__)


class TaskEvent(str, Enum):
    CREATED = "task:created"
    UPDATED = "task:updated"
    DELETED = "task:deleted"


@dataclass(eq=False)
class Connection:
    websocket: WebSocket
    user_id: int
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    rooms: set[int] = field(default_factory=set)

    async def send(self, event: str, data: Any) -> None:
        await self.websocket.send_json({"event": event, "data": data})


class Broadcaster:
    """Room registry keyed by team id. One instance per application."""

    def __init__(self):
        # team_id -> connections subscribed to that team
        self._rooms: dict[int, set[Connection]] = {}
        self._connections: set[Connection] = set()
        # team_id -> number of evictions; a join racing an eviction re-checks
        self._evictions: dict[int, int] = {}
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket, user_id: int) -> Connection:
        """Register an already-accepted socket."""
        connection = Connection(websocket=websocket, user_id=user_id)
        async with self._lock:
            self._connections.add(connection)
        logger.info(f"Socket {connection.id} connected for user {user_id}")
        return connection

    async def join(
        self,
        connection: Connection,
        team_id: int,
        is_member: Callable[[int, int], Awaitable[bool]],
    ) -> bool:
        """
        Subscribe the connection to a team room.

        Membership is re-verified on every join; returns False (and joins
        nothing) when the user is not a member. An eviction from the room
        while the check is in flight makes the check run again.
        """
        while True:
            generation = self._evictions.get(team_id, 0)
            if not await is_member(team_id, connection.user_id):
                logger.info(
                    f"Socket {connection.id}: user {connection.user_id} "
                    f"denied room for team {team_id}"
                )
                return False

            async with self._lock:
                if self._evictions.get(team_id, 0) == generation:
                    self._rooms.setdefault(team_id, set()).add(connection)
                    connection.rooms.add(team_id)
                    break
            logger.debug(f"Socket {connection.id}: team {team_id} changed during join, re-checking")
        logger.info(f"Socket {connection.id} joined team {team_id}")
        return True

    async def leave(self, connection: Connection, team_id: int) -> None:
        async with self._lock:
            self._discard(connection, team_id)
        logger.info(f"Socket {connection.id} left team {team_id}")

    async def disconnect(self, connection: Connection) -> None:
        async with self._lock:
            for team_id in list(connection.rooms):
                self._discard(connection, team_id)
            self._connections.discard(connection)
        logger.info(f"Socket {connection.id} disconnected (user {connection.user_id})")

    async def evict(self, team_id: int, user_id: int | None = None) -> int:
        """Remove a user's connections (or everyone, when user_id is None) from a room."""
        async with self._lock:
            self._evictions[team_id] = self._evictions.get(team_id, 0) + 1
            room = list(self._rooms.get(team_id, ()))
            evicted = [c for c in room if user_id is None or c.user_id == user_id]
            for connection in evicted:
                self._discard(connection, team_id)
        if evicted:
            logger.info(f"Evicted {len(evicted)} socket(s) from team {team_id}")
        return len(evicted)

    def _discard(self, connection: Connection, team_id: int) -> None:
        room = self._rooms.get(team_id)
        if room is not None:
            room.discard(connection)
            if not room:
                del self._rooms[team_id]
        connection.rooms.discard(team_id)

    async def publish(self, team_id: int, event: str, payload: Any) -> int:
        """Send to every connection in the room at emission time. Returns deliveries."""
        async with self._lock:
            recipients = list(self._rooms.get(team_id, ()))

        delivered = 0
        failed = []
        for connection in recipients:
            try:
                await connection.send(event, payload)
                delivered += 1
            except Exception as e:
                # Closed or broken socket
                logger.warning(f"Dropping socket {connection.id} after failed send: {e}")
                failed.append(connection)

        for connection in failed:
            await self.disconnect(connection)

        logger.debug(f"Published {event} to team {team_id}: {delivered}/{len(recipients)}")
        return delivered

    async def emit_task_created(self, task: Task | TaskRead) -> None:
        await self._emit_task(TaskEvent.CREATED, task)

    async def emit_task_updated(
        self, task: Task | TaskRead, previous_team_id: int | None = None
    ) -> None:
        """Notify the task's team; a task moved between teams also notifies its old team."""
        await self._emit_task(TaskEvent.UPDATED, task)
        if previous_team_id is not None and previous_team_id != task.team_id:
            payload = TaskRead.model_validate(task).model_dump(mode="json")
            await self.publish(previous_team_id, TaskEvent.UPDATED.value, payload)

    async def emit_task_deleted(self, task_id: int, team_id: int | None) -> None:
        if team_id is None:
            return
        await self.publish(
            team_id, TaskEvent.DELETED.value, {"id": task_id, "team_id": team_id}
        )

    async def _emit_task(self, event: TaskEvent, task: Task | TaskRead) -> None:
        # Personal tasks have no audience
        if task.team_id is None:
            return
        payload = TaskRead.model_validate(task).model_dump(mode="json")
        await self.publish(task.team_id, event.value, payload)

    def get_stats(self) -> dict:
        return {
            "total_connections": len(self._connections),
            "active_rooms": len(self._rooms),
            "rooms": {team_id: len(room) for team_id, room in self._rooms.items()},
        }
