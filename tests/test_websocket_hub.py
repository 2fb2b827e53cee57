"""Tests for the realtime hub and the /ws/notifications endpoint."""

import asyncio
import json
import uuid

import pytest
from starlette.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from agenda.core.security import create_access_token
from agenda.core.websocket import ConnectionManager, NotificationTarget
from agenda.db.enums import Role
from agenda.main import app
from agenda.routers import websocket as ws_router


class FakeSocket:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.accepted = False
        self.closed = False
        self.sent: list[dict] = []

    async def accept(self):
        self.accepted = True

    async def send_text(self, data: str):
        if self.fail:
            raise RuntimeError("socket gone")
        self.sent.append(json.loads(data))

    async def close(self, code: int = 1000, reason: str | None = None):
        self.closed = True


# =============================================================================
# Hub
# =============================================================================


@pytest.mark.asyncio
async def test_publish_reaches_user_and_role_rooms():
    hub = ConnectionManager()
    await hub.startup()
    user_id = uuid.uuid4()
    supervisor_ws = FakeSocket()
    other_ws = FakeSocket()
    await hub.connect(supervisor_ws, user_id, "SUPERVISOR")
    await hub.connect(other_ws, uuid.uuid4(), "COORDINATOR")

    assert supervisor_ws.accepted
    assert await hub.publish(NotificationTarget.role("SUPERVISOR"), "notification", {"n": 1}) == 1
    assert await hub.publish(NotificationTarget.user(user_id), "notification", {"n": 2}) == 1

    assert supervisor_ws.sent == [
        {"type": "notification", "data": {"n": 1}},
        {"type": "notification", "data": {"n": 2}},
    ]
    assert other_ws.sent == []


@pytest.mark.asyncio
async def test_publish_to_empty_room():
    hub = ConnectionManager()

    assert await hub.publish(NotificationTarget.role("ADMIN"), "notification", {}) == 0


@pytest.mark.asyncio
async def test_failed_socket_is_dropped():
    hub = ConnectionManager()
    dead = FakeSocket(fail=True)
    await hub.connect(dead, uuid.uuid4(), "ADMIN")

    assert await hub.publish(NotificationTarget.role("ADMIN"), "notification", {}) == 0
    assert hub.get_total_connections() == 0


@pytest.mark.asyncio
async def test_disconnect_leaves_every_room():
    hub = ConnectionManager()
    ws = FakeSocket()
    user_id = uuid.uuid4()
    await hub.connect(ws, user_id, "SUPERVISOR")
    assert hub.get_connected_count(NotificationTarget.user(user_id)) == 1

    await hub.disconnect(ws)

    assert hub.get_connected_count(NotificationTarget.user(user_id)) == 0
    assert hub.get_connected_count(NotificationTarget.role("SUPERVISOR")) == 0


@pytest.mark.asyncio
async def test_reassign_role_moves_every_socket_of_the_user():
    hub = ConnectionManager()
    user_id = uuid.uuid4()
    laptop, phone, colleague = FakeSocket(), FakeSocket(), FakeSocket()
    await hub.connect(laptop, user_id, "COORDINATOR")
    await hub.connect(phone, user_id, "COORDINATOR")
    await hub.connect(colleague, uuid.uuid4(), "COORDINATOR")

    moved = await hub.reassign_role(user_id, "COORDINATOR", "SUPERVISOR")

    assert moved == 2
    assert hub.get_connected_count(NotificationTarget.role("SUPERVISOR")) == 2
    assert hub.get_connected_count(NotificationTarget.role("COORDINATOR")) == 1
    await hub.publish(NotificationTarget.role("SUPERVISOR"), "notification", {"n": 1})
    assert laptop.sent == phone.sent == [{"type": "notification", "data": {"n": 1}}]
    assert colleague.sent == []


@pytest.mark.asyncio
async def test_reassign_to_pending_leaves_only_personal_room():
    hub = ConnectionManager()
    user_id = uuid.uuid4()
    ws = FakeSocket()
    await hub.connect(ws, user_id, "SUPERVISOR")

    await hub.reassign_role(user_id, "SUPERVISOR", "PENDING_ASSIGNMENT")

    assert hub.get_connected_count(NotificationTarget.role("SUPERVISOR")) == 0
    assert hub.get_connected_count(NotificationTarget.role("PENDING_ASSIGNMENT")) == 0
    assert hub.get_connected_count(NotificationTarget.user(user_id)) == 1


@pytest.mark.asyncio
async def test_reassign_role_without_connections():
    hub = ConnectionManager()

    assert await hub.reassign_role(uuid.uuid4(), "COORDINATOR", "SUPERVISOR") == 0
    assert hub.get_total_connections() == 0


@pytest.mark.asyncio
async def test_shutdown_closes_connections():
    hub = ConnectionManager()
    await hub.startup()
    ws = FakeSocket()
    await hub.connect(ws, uuid.uuid4(), "ADMIN")

    await hub.shutdown()

    assert ws.closed
    assert not hub.is_running
    assert hub.get_total_connections() == 0


# =============================================================================
# Endpoint
# =============================================================================


@pytest.fixture
def ws_client(db):
    hub = ConnectionManager()
    app.state.realtime = hub
    try:
        yield TestClient(app), hub
    finally:
        app.state.realtime = None


def _token_for(user) -> str:
    return create_access_token(user.id, user.email, user.role)


def test_ws_requires_token(ws_client):
    client, _ = ws_client

    with pytest.raises(WebSocketDisconnect) as excinfo:
        with client.websocket_connect("/ws/notifications"):
            pass

    assert excinfo.value.code == 4001


def test_ws_rejects_pending_users(ws_client, make_user):
    client, _ = ws_client
    newcomer = make_user(Role.PENDING_ASSIGNMENT)

    with pytest.raises(WebSocketDisconnect) as excinfo:
        with client.websocket_connect(f"/ws/notifications?token={_token_for(newcomer)}"):
            pass

    assert excinfo.value.code == 4001


def test_ws_ping_pong_and_registration(ws_client, make_user):
    client, hub = ws_client
    supervisor = make_user(Role.SUPERVISOR)

    with client.websocket_connect(f"/ws/notifications?token={_token_for(supervisor)}") as ws:
        ws.send_text("ping")
        assert ws.receive_text() == "pong"
        assert hub.get_connected_count(NotificationTarget.user(supervisor.id)) == 1
        assert hub.get_connected_count(NotificationTarget.role("SUPERVISOR")) == 1


def test_ws_without_hub(db):
    app.state.realtime = None
    client = TestClient(app)

    with pytest.raises(WebSocketDisconnect) as excinfo:
        with client.websocket_connect("/ws/notifications?token=x"):
            pass

    assert excinfo.value.code == 1013


def test_ws_user_lookup_runs_off_the_event_loop(ws_client, make_user, monkeypatch):
    client, _ = ws_client
    supervisor = make_user(Role.SUPERVISOR)
    loop_running: list[bool] = []
    resolve = ws_router._resolve_subscriber

    def _tracking(token):
        try:
            asyncio.get_running_loop()
            loop_running.append(True)
        except RuntimeError:
            loop_running.append(False)
        return resolve(token)

    monkeypatch.setattr(ws_router, "_resolve_subscriber", _tracking)

    with client.websocket_connect(f"/ws/notifications?token={_token_for(supervisor)}") as ws:
        ws.send_text("ping")
        assert ws.receive_text() == "pong"

    assert loop_running == [False]
