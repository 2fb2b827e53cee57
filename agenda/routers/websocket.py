"""
WebSocket router for real-time notifications.

Clients connect with their bearer token as a query parameter and are
subscribed under their user id and their role. The server pushes
{"type": "notification", "data": {...}} messages; clients may send "ping"
to keep the connection alive.
"""

import logging
from uuid import UUID

import jwt
from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect
from starlette.concurrency import run_in_threadpool

from agenda.core.security import decode_access_token
from agenda.db.enums import Role
from agenda.db.models import User
from agenda.db.session import SessionLocal

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ws", tags=["WebSocket"])


def _resolve_subscriber(token: str) -> tuple[UUID, str] | None:
    """Map a token to (user_id, role), or None if it cannot subscribe."""
    try:
        payload = decode_access_token(token)
        user_id = UUID(str(payload["sub"]))
    except (jwt.InvalidTokenError, KeyError, ValueError):
        return None

    db = SessionLocal()
    try:
        user = db.query(User).filter(User.id == user_id).first()
        if not user or user.role == Role.PENDING_ASSIGNMENT.value:
            return None
        return user.id, user.role
    finally:
        db.close()


@router.websocket("/notifications")
async def websocket_notifications(
    websocket: WebSocket,
    token: str | None = Query(None),
):
    hub = getattr(websocket.app.state, "realtime", None)
    if hub is None:
        await websocket.close(code=1013, reason="Realtime unavailable")
        return

    # The lookup uses a blocking session; keep it off the event loop.
    subscriber = await run_in_threadpool(_resolve_subscriber, token) if token else None
    if not subscriber:
        await websocket.close(code=4001, reason="Authentication required")
        return

    user_id, role = subscriber
    await hub.connect(websocket, user_id, role)

    try:
        # Keep connection alive, handle incoming messages (heartbeat/pings)
        while True:
            try:
                data = await websocket.receive_text()
                if data == "ping":
                    await websocket.send_text("pong")
            except WebSocketDisconnect:
                break
    finally:
        await hub.disconnect(websocket)
