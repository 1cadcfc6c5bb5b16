"""WebSocket protocol and team-scoped fan-out."""
import asyncio

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from app.core.config import get_settings
from app.core.security import issue_token
from app.database import async_session
from app.models import TaskRead
from app.realtime.broadcaster import Broadcaster
from app.routers.realtime import task_updates
from conftest import auth


def register_sync(client: TestClient, email: str, name: str) -> tuple[str, int]:
    response = client.post(
        "/auth/register", json={"email": email, "password": "password123", "name": name}
    )
    assert response.status_code == 201, response.text
    data = response.json()["data"]
    return data["token"], data["user"]["id"]


def create_team_sync(client: TestClient, token: str, name: str) -> int:
    response = client.post("/teams", json={"name": name}, headers=auth(token))
    assert response.status_code == 201, response.text
    return response.json()["data"]["id"]


def join(ws, team_id: int) -> dict:
    ws.send_json({"event": "team:join", "data": team_id})
    return ws.receive_json()


# =============================================================================
# Handshake
# =============================================================================

@pytest.mark.asyncio
async def test_connect_with_query_token(application):
    with TestClient(application) as client:
        token, user_id = register_sync(client, "alice@example.com", "Alice")

        with client.websocket_connect(f"/ws?token={token}") as ws:
            message = ws.receive_json()

    assert message["event"] == "connected"
    assert message["data"]["userId"] == user_id
    assert message["data"]["socketId"]


@pytest.mark.asyncio
async def test_connect_with_authorization_header(application):
    with TestClient(application) as client:
        token, _ = register_sync(client, "alice@example.com", "Alice")

        with client.websocket_connect("/ws", headers=auth(token)) as ws:
            assert ws.receive_json()["event"] == "connected"


@pytest.mark.asyncio
@pytest.mark.parametrize("url", ["/ws", "/ws?token=not-a-jwt"])
async def test_invalid_token_is_rejected_before_accept(application, url):
    with TestClient(application) as client:
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect(url) as ws:
                ws.receive_json()

    assert exc_info.value.code == 4001


# =============================================================================
# Messages
# =============================================================================

@pytest.mark.asyncio
async def test_ping_join_leave_and_errors(application):
    with TestClient(application) as client:
        alice_token, _ = register_sync(client, "alice@example.com", "Alice")
        bob_token, _ = register_sync(client, "bob@example.com", "Bob")
        alice_team = create_team_sync(client, alice_token, "Alice's")

        with client.websocket_connect(f"/ws?token={bob_token}") as ws:
            ws.receive_json()

            ws.send_text("ping")
            assert ws.receive_text() == "pong"

            denied = join(ws, alice_team)
            assert denied["event"] == "team:join:error"
            assert denied["data"] == {
                "message": "You are not a member of this team",
                "teamId": alice_team,
            }

            ws.send_text("{not json")
            assert ws.receive_json()["event"] == "error"

            ws.send_json({"event": "team:join", "data": "abc"})
            assert ws.receive_json()["event"] == "error"

        with client.websocket_connect(f"/ws?token={alice_token}") as ws:
            ws.receive_json()
            assert join(ws, alice_team)["event"] == "team:join:success"
            assert application.state.broadcaster.get_stats()["active_rooms"] == 1

            ws.send_json({"event": "team:leave", "data": {"teamId": alice_team}})
            left = ws.receive_json()
            assert left["event"] == "team:leave:success"
            assert left["data"]["teamId"] == alice_team
            assert application.state.broadcaster.get_stats()["active_rooms"] == 0


# =============================================================================
# Fan-out
# =============================================================================

@pytest.mark.asyncio
async def test_task_events_reach_only_the_tasks_team(application):
    with TestClient(application) as client:
        alice_token, _ = register_sync(client, "alice@example.com", "Alice")
        bob_token, _ = register_sync(client, "bob@example.com", "Bob")
        team_a = create_team_sync(client, alice_token, "A")
        team_b = create_team_sync(client, bob_token, "B")

        with client.websocket_connect(f"/ws?token={alice_token}") as ws_a, \
                client.websocket_connect(f"/ws?token={bob_token}") as ws_b:
            ws_a.receive_json()
            ws_b.receive_json()
            assert join(ws_a, team_a)["event"] == "team:join:success"
            assert join(ws_b, team_b)["event"] == "team:join:success"

            created = client.post(
                "/tasks", json={"title": "For A", "team_id": team_a}, headers=auth(alice_token)
            ).json()["data"]

            event = ws_a.receive_json()
            assert event["event"] == "task:created"
            assert event["data"] == created

            # Personal tasks are not broadcast anywhere
            client.post("/tasks", json={"title": "Private"}, headers=auth(bob_token))

            client.post(
                "/tasks", json={"title": "For B", "team_id": team_b}, headers=auth(bob_token)
            )
            # B's first event is its own task: nothing from team A leaked in
            event_b = ws_b.receive_json()
            assert event_b["event"] == "task:created"
            assert event_b["data"]["title"] == "For B"

            client.put(
                f"/tasks/{created['id']}", json={"status": "done"}, headers=auth(alice_token)
            )
            updated = ws_a.receive_json()
            assert updated["event"] == "task:updated"
            assert updated["data"]["status"] == "done"

            client.delete(f"/tasks/{created['id']}", headers=auth(alice_token))
            deleted = ws_a.receive_json()
            assert deleted == {
                "event": "task:deleted",
                "data": {"id": created["id"], "team_id": team_a},
            }


@pytest.mark.asyncio
async def test_removed_member_is_evicted_from_room(application):
    with TestClient(application) as client:
        alice_token, _ = register_sync(client, "alice@example.com", "Alice")
        bob_token, bob_id = register_sync(client, "bob@example.com", "Bob")
        team_id = create_team_sync(client, alice_token, "A")
        client.post(f"/teams/{team_id}/members", json={"user_id": bob_id}, headers=auth(alice_token))

        with client.websocket_connect(f"/ws?token={bob_token}") as ws:
            ws.receive_json()
            assert join(ws, team_id)["event"] == "team:join:success"

            client.delete(f"/teams/{team_id}/members/{bob_id}", headers=auth(alice_token))
            client.post("/tasks", json={"title": "After", "team_id": team_id}, headers=auth(alice_token))

            ws.send_text("ping")
            assert ws.receive_text() == "pong"


# =============================================================================
# Broadcaster unit behaviour
# =============================================================================

class RecordingSocket:
    def __init__(self, fail: bool = False):
        self.sent = []
        self.fail = fail

    async def send_json(self, data):
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(data)


async def always_member(team_id, user_id):
    return True


async def never_member(team_id, user_id):
    return False


@pytest.mark.asyncio
async def test_publish_drops_failing_connections():
    broadcaster = Broadcaster()
    healthy = await broadcaster.connect(RecordingSocket(), user_id=1)
    broken = await broadcaster.connect(RecordingSocket(fail=True), user_id=2)
    await broadcaster.join(healthy, 5, always_member)
    await broadcaster.join(broken, 5, always_member)

    delivered = await broadcaster.publish(5, "task:created", {"id": 1})

    assert delivered == 1
    assert healthy.websocket.sent == [{"event": "task:created", "data": {"id": 1}}]
    assert broadcaster.get_stats()["total_connections"] == 1
    assert broadcaster.get_stats()["rooms"] == {5: 1}


@pytest.mark.asyncio
async def test_join_requires_membership():
    broadcaster = Broadcaster()
    connection = await broadcaster.connect(RecordingSocket(), user_id=1)

    assert await broadcaster.join(connection, 5, never_member) is False
    assert connection.rooms == set()
    assert await broadcaster.publish(5, "task:created", {}) == 0


@pytest.mark.asyncio
async def test_teamless_tasks_emit_nothing():
    broadcaster = Broadcaster()
    socket = RecordingSocket()
    connection = await broadcaster.connect(socket, user_id=1)
    await broadcaster.join(connection, 5, always_member)

    task = TaskRead.model_validate(
        {
            "id": 1,
            "title": "personal",
            "status": "todo",
            "priority": "medium",
            "created_at": "2026-01-01T00:00:00Z",
            "updated_at": "2026-01-01T00:00:00Z",
        }
    )
    await broadcaster.emit_task_created(task)
    await broadcaster.emit_task_deleted(1, None)

    assert socket.sent == []


@pytest.mark.asyncio
async def test_moved_task_notifies_old_and_new_team():
    broadcaster = Broadcaster()
    old_socket, new_socket = RecordingSocket(), RecordingSocket()
    await broadcaster.join(await broadcaster.connect(old_socket, 1), 5, always_member)
    await broadcaster.join(await broadcaster.connect(new_socket, 1), 6, always_member)

    task = TaskRead.model_validate(
        {
            "id": 1,
            "title": "moved",
            "status": "todo",
            "priority": "medium",
            "team_id": 6,
            "created_at": "2026-01-01T00:00:00Z",
            "updated_at": "2026-01-01T00:00:00Z",
        }
    )
    await broadcaster.emit_task_updated(task, previous_team_id=5)

    assert [m["event"] for m in old_socket.sent] == ["task:updated"]
    assert [m["event"] for m in new_socket.sent] == ["task:updated"]


@pytest.mark.asyncio
async def test_disconnect_leaves_every_room():
    broadcaster = Broadcaster()
    connection = await broadcaster.connect(RecordingSocket(), user_id=1)
    await broadcaster.join(connection, 5, always_member)
    await broadcaster.join(connection, 6, always_member)

    await broadcaster.disconnect(connection)

    assert broadcaster.get_stats() == {"total_connections": 0, "active_rooms": 0, "rooms": {}}


@pytest.mark.asyncio
async def test_join_rechecks_membership_after_concurrent_eviction():
    broadcaster = Broadcaster()
    connection = await broadcaster.connect(RecordingSocket(), user_id=7)
    checking = asyncio.Event()
    release = asyncio.Event()
    answers = [True, False]

    async def slow_is_member(team_id, user_id):
        checking.set()
        await release.wait()
        return answers.pop(0)

    joining = asyncio.create_task(broadcaster.join(connection, 1, slow_is_member))
    await checking.wait()
    # Membership removed while the first check is still reading
    await broadcaster.evict(1, 7)
    release.set()

    assert await joining is False
    assert answers == []
    assert broadcaster.get_stats()["rooms"] == {}
    assert connection.rooms == set()


@pytest.mark.asyncio
async def test_join_without_eviction_checks_once():
    broadcaster = Broadcaster()
    connection = await broadcaster.connect(RecordingSocket(), user_id=7)
    calls = []

    async def is_member(team_id, user_id):
        calls.append((team_id, user_id))
        return True

    await broadcaster.evict(2, 7)
    assert await broadcaster.join(connection, 1, is_member) is True
    assert calls == [(1, 7)]


# =============================================================================
# Endpoint lifecycle
# =============================================================================

@pytest.mark.asyncio
async def test_binary_frame_gets_error_and_socket_stays_open(application):
    with TestClient(application) as client:
        token, _ = register_sync(client, "alice@example.com", "Alice")

        with client.websocket_connect(f"/ws?token={token}") as ws:
            ws.receive_json()

            ws.send_bytes(b"\x00\x01")
            error = ws.receive_json()
            assert error == {"event": "error", "data": {"message": "Malformed message"}}

            ws.send_text("ping")
            assert ws.receive_text() == "pong"


class BrokenSocket:
    """Accepts the handshake, then fails every send."""

    headers: dict = {}

    async def accept(self):
        pass

    async def close(self, code: int = 1000, reason: str | None = None):
        pass

    async def send_json(self, data):
        raise RuntimeError("peer gone")


@pytest.mark.asyncio
async def test_failed_greeting_unregisters_connection(cache):
    settings = get_settings()
    broadcaster = Broadcaster()

    with pytest.raises(RuntimeError):
        await task_updates(
            websocket=BrokenSocket(),
            token=issue_token(1, settings),
            settings=settings,
            cache=cache,
            broadcaster=broadcaster,
            session_factory=async_session,
        )

    assert broadcaster.get_stats()["total_connections"] == 0
