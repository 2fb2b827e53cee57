"""
WebSocket connection manager for real-time notifications.

Connections are registered under the user's id and under their role, so a
notification can target one person ("user:<id>") or everyone holding a role
("role:SUPERVISOR"). Messages go out as JSON: {"type": ..., "data": ...}.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Dict, Set
from uuid import UUID

from fastapi import WebSocket

from agenda.db.enums import Role

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotificationTarget:
    """Addressee of a realtime message: a single user or a whole role."""

    kind: str  # "user" | "role"
    value: str

    @classmethod
    def user(cls, user_id: UUID | str) -> "NotificationTarget":
        return cls("user", str(user_id))

    @classmethod
    def role(cls, role: str) -> "NotificationTarget":
        return cls("role", str(role))

    @property
    def room(self) -> str:
        return f"{self.kind}:{self.value}"


class ConnectionManager:
    """Manages WebSocket connections per user and per role."""

    def __init__(self):
        # room -> set of active WebSocket connections
        self._rooms: Dict[str, Set[WebSocket]] = {}
        self._lock = asyncio.Lock()
        self._started = False

    async def startup(self) -> None:
        self._started = True
        logger.info("Realtime hub started")

    async def shutdown(self) -> None:
        """Close every open connection and forget all rooms."""
        async with self._lock:
            sockets = {ws for conns in self._rooms.values() for ws in conns}
            self._rooms.clear()
            self._started = False
        for ws in sockets:
            try:
                await ws.close()
            except Exception:
                logger.debug("Error closing websocket during shutdown", exc_info=True)
        logger.info("Realtime hub stopped (%d connections closed)", len(sockets))

    @property
    def is_running(self) -> bool:
        return self._started

    async def connect(self, websocket: WebSocket, user_id: UUID, role: str) -> None:
        """Accept and register a new WebSocket connection."""
        await websocket.accept()
        async with self._lock:
            for target in (NotificationTarget.user(user_id), NotificationTarget.role(role)):
                self._rooms.setdefault(target.room, set()).add(websocket)

    async def disconnect(self, websocket: WebSocket) -> None:
        """Remove a WebSocket connection from every room it joined."""
        async with self._lock:
            self._discard(websocket)

    async def reassign_role(self, user_id: UUID, old_role: str, new_role: str) -> int:
        """
        Move a user's open connections from one role room to another.

        Returns how many connections were moved. A user demoted to
        PENDING_ASSIGNMENT keeps only their personal room.
        """
        old_room = NotificationTarget.role(old_role).room
        new_room = NotificationTarget.role(new_role).room
        async with self._lock:
            sockets = self._rooms.get(NotificationTarget.user(user_id).room, set()).copy()
            for ws in sockets:
                members = self._rooms.get(old_room)
                if members is not None:
                    members.discard(ws)
                    if not members:
                        del self._rooms[old_room]
                if new_role != Role.PENDING_ASSIGNMENT.value:
                    self._rooms.setdefault(new_room, set()).add(ws)
        return len(sockets)

    def _discard(self, websocket: WebSocket) -> None:
        for room in list(self._rooms):
            self._rooms[room].discard(websocket)
            if not self._rooms[room]:
                del self._rooms[room]

    async def publish(self, target: NotificationTarget, event_name: str, payload: dict) -> int:
        """
        Send a message to every connection in the target room.

        Returns the number of connections reached. Connections that fail
        to receive are dropped.
        """
        async with self._lock:
            connections = self._rooms.get(target.room, set()).copy()

        if not connections:
            return 0

        data = json.dumps({"type": event_name, "data": payload}, default=str)
        closed = []
        delivered = 0

        for ws in connections:
            try:
                await ws.send_text(data)
                delivered += 1
            except Exception:
                # Connection closed or errored
                closed.append(ws)

        if closed:
            async with self._lock:
                for ws in closed:
                    self._discard(ws)

        return delivered

    def get_connected_count(self, target: NotificationTarget) -> int:
        return len(self._rooms.get(target.room, set()))

    def get_total_connections(self) -> int:
        """Get total number of distinct active connections."""
        return len({ws for conns in self._rooms.values() for ws in conns})
