"""
In-process registry of live sessions.

Every admitted connection is enrolled in two groups: ``user:<id>`` (all of
that user's devices) and ``role:<role>``. Mutation happens under a lock,
delivery works on a snapshot of the group so connects and disconnects never
wait on an emit in progress.
"""
import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set
from uuid import UUID

from fastapi import WebSocket
from fastapi.websockets import WebSocketState

from app.realtime.protocol import ALL_TARGET

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Fanout:
    """Outcome of one emit. ``missed`` means no live session was reached."""
    target: str
    event: str
    delivered: int

    @property
    def missed(self) -> bool:
        return self.delivered == 0


@dataclass(eq=False)
class LiveSession:
    connection_id: str
    user_id: UUID
    role: str
    websocket: WebSocket
    display_name: str = ""
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    conversations: Set[str] = field(default_factory=set)
    closed: bool = False

    async def send(self, payload: Dict[str, Any]) -> bool:
        """Push one event. A dead channel reports False instead of raising."""
        if self.closed:
            return False
        try:
            await self.websocket.send_json(payload)
            return True
        except Exception as e:
            self.closed = True
            logger.debug(f"Dropping dead session {self.connection_id} for user {self.user_id}: {e}")
            return False

    async def close(self, code: int = 1001, reason: str = "") -> None:
        if self.closed:
            return
        self.closed = True
        try:
            if self.websocket.client_state == WebSocketState.CONNECTED:
                await self.websocket.close(code=code, reason=reason)
        except Exception as e:
            logger.debug(f"Error closing session {self.connection_id}: {e}")


class ConnectionRegistry:
    def __init__(self):
        self._by_user: Dict[UUID, Dict[str, LiveSession]] = {}
        self._by_role: Dict[str, Dict[str, LiveSession]] = {}
        self._lock = asyncio.Lock()
        self._counter = itertools.count(1)

    async def register(
        self,
        user_id: UUID,
        role: str,
        websocket: WebSocket,
        display_name: str = "",
    ) -> LiveSession:
        connection_id = f"ws_{next(self._counter)}_{datetime.now(timezone.utc).timestamp()}"
        session = LiveSession(
            connection_id=connection_id,
            user_id=user_id,
            role=role,
            websocket=websocket,
            display_name=display_name,
        )
        async with self._lock:
            self._by_user.setdefault(user_id, {})[connection_id] = session
            self._by_role.setdefault(role, {})[connection_id] = session

        logger.debug(f"Added live session {connection_id} for user {user_id} ({role})")
        return session

    async def unregister(self, session: LiveSession) -> None:
        async with self._lock:
            removed = False
            user_sessions = self._by_user.get(session.user_id)
            if user_sessions is not None and user_sessions.pop(session.connection_id, None):
                removed = True
                if not user_sessions:
                    del self._by_user[session.user_id]

            role_sessions = self._by_role.get(session.role)
            if role_sessions is not None:
                role_sessions.pop(session.connection_id, None)
                if not role_sessions:
                    del self._by_role[session.role]

        if removed:
            logger.debug(f"Removed live session {session.connection_id} for user {session.user_id}")

    def sessions_for(self, target: str) -> List[LiveSession]:
        """Snapshot of the sessions addressed by ``user:<id>``, ``role:<r>`` or ``all``."""
        if target == ALL_TARGET:
            return [s for group in list(self._by_user.values()) for s in list(group.values())]

        kind, _, key = target.partition(":")
        if kind == "user":
            try:
                group = self._by_user.get(UUID(key), {})
            except ValueError:
                return []
        elif kind == "role":
            group = self._by_role.get(key, {})
        else:
            logger.warning(f"Unknown live target {target!r}")
            return []
        return list(group.values())

    async def deliver(self, target: str, payload: Dict[str, Any], exclude: Optional[str] = None) -> int:
        """
        Send to every session of the target; returns how many got it.

        ``exclude`` names a connection id that is skipped, e.g. the session
        that originated the event.
        """
        sessions = [s for s in self.sessions_for(target) if s.connection_id != exclude]
        if not sessions:
            return 0

        results = await asyncio.gather(*(s.send(payload) for s in sessions))

        for session, ok in zip(sessions, results):
            if not ok:
                await self.unregister(session)
        return sum(1 for ok in results if ok)

    def is_online(self, user_id: UUID) -> bool:
        return bool(self._by_user.get(user_id))

    def stats(self) -> Dict[str, int]:
        return {
            "active_users": len(self._by_user),
            "total_connections": sum(len(group) for group in self._by_user.values()),
        }

    async def close(self) -> None:
        """Close every live session and forget them."""
        sessions = self.sessions_for(ALL_TARGET)
        for session in sessions:
            await session.close(code=1001, reason="Server shutting down")
        async with self._lock:
            self._by_user.clear()
            self._by_role.clear()
        if sessions:
            logger.info(f"Closed {len(sessions)} live sessions on shutdown")
