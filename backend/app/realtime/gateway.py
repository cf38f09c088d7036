import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional
from uuid import UUID

import jwt
from fastapi import Request, WebSocket
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from app.auth import security
from app.auth.models import User
from app.core.config import settings
from app.core.database import SessionLocal
from app.core.errors import AuthenticationError
from app.realtime.backplane import RedisBackplane
from app.realtime.protocol import ALL_TARGET, make_event, role_target, user_target
from app.realtime.registry import ConnectionRegistry, Fanout, LiveSession

logger = logging.getLogger(__name__)


class SessionGateway:
    """
    Admits live connections and addresses them by user, role or everyone.

    One instance per process, created at startup and closed at shutdown.
    Delivery goes straight to the local registry unless a Redis backplane is
    attached, in which case it is published and relayed by every process.
    """

    def __init__(
        self,
        registry: Optional[ConnectionRegistry] = None,
        session_factory: Callable[[], Session] = SessionLocal,
        backplane: Optional[RedisBackplane] = None,
    ):
        self.registry = registry or ConnectionRegistry()
        self.session_factory = session_factory
        self.backplane = backplane
        # {user_id: {"count": int, "reset_time": datetime}}
        self._attempts: Dict[UUID, Dict[str, Any]] = {}

    @classmethod
    def from_settings(cls) -> "SessionGateway":
        registry = ConnectionRegistry()
        backplane = None
        if settings.LIVE_BACKPLANE == "redis":
            backplane = RedisBackplane.from_settings(registry)
        return cls(registry=registry, backplane=backplane)

    async def start(self) -> None:
        if self.backplane is not None:
            try:
                await self.backplane.start()
            except Exception as e:
                logger.error(f"Redis backplane unavailable, delivering locally only: {e}")
                self.backplane = None

    async def close(self) -> None:
        await self.registry.close()
        if self.backplane is not None:
            await self.backplane.close()

    # ─────────────────────────  ADMISSION  ─────────────────────────
    def _load_user(self, user_id: UUID) -> Optional[User]:
        with self.session_factory() as db:
            user = db.get(User, user_id)
            if user is not None:
                db.expunge(user)
            return user

    async def authenticate(self, token: Optional[str]) -> User:
        """Resolve a bearer token to a current user or raise AuthenticationError."""
        if not token:
            raise AuthenticationError("Authentication required")
        try:
            user_id = security.decode_access_token(token)
        except jwt.ExpiredSignatureError:
            raise AuthenticationError("Token expired")
        except (jwt.PyJWTError, KeyError, ValueError):
            raise AuthenticationError("Invalid token")

        user = await run_in_threadpool(self._load_user, user_id)
        if user is None:
            raise AuthenticationError("User not found")
        return user

    async def still_valid(self, user_id: UUID) -> bool:
        return await run_in_threadpool(self._load_user, user_id) is not None

    def check_rate_limit(self, user_id: UUID) -> bool:
        """Connection attempts per user inside the configured window."""
        now = datetime.now(timezone.utc)

        # Forget every window that has run out, not only this user's
        expired = [uid for uid, e in self._attempts.items() if now > e["reset_time"]]
        for uid in expired:
            del self._attempts[uid]

        entry = self._attempts.get(user_id)
        if entry is None:
            self._attempts[user_id] = {
                "count": 1,
                "reset_time": now + timedelta(seconds=settings.WEBSOCKET_RATE_LIMIT_WINDOW),
            }
            return True

        if entry["count"] >= settings.WEBSOCKET_CONNECT_RATE_LIMIT:
            return False

        entry["count"] += 1
        return True

    async def admit(self, user: User, websocket: WebSocket) -> LiveSession:
        session = await self.registry.register(
            user_id=user.id,
            role=user.role,
            websocket=websocket,
            display_name=user.full_name,
        )
        logger.info(f"User connected: {user.id} ({user.role}) via {session.connection_id}")
        return session

    async def release(self, session: LiveSession) -> None:
        await self.registry.unregister(session)
        logger.info(f"User disconnected: {session.user_id} via {session.connection_id}")

    # ─────────────────────────  FAN-OUT  ─────────────────────────
    async def _emit(self, target: str, event_type: str, data: Any, exclude: Optional[str] = None) -> Fanout:
        payload = make_event(event_type, data)

        if self.backplane is not None:
            if self.backplane.listening:
                try:
                    delivered = await self.backplane.publish(target, payload, exclude=exclude)
                    return Fanout(target=target, event=event_type, delivered=delivered)
                except Exception as e:
                    logger.warning(f"Publish to {target} failed, delivering locally: {e}")
            else:
                logger.warning(f"Redis backplane not listening, delivering {event_type} to {target} locally")

        delivered = await self.registry.deliver(target, payload, exclude=exclude)
        fanout = Fanout(target=target, event=event_type, delivered=delivered)
        if fanout.missed:
            logger.debug(f"No live session for {target}, {event_type} not delivered live")
        return fanout

    async def emit_to_user(
        self,
        user_id: UUID,
        event_type: str,
        data: Any = None,
        exclude: Optional[str] = None,
    ) -> Fanout:
        """``exclude`` skips one connection id, typically the originating session."""
        return await self._emit(user_target(user_id), event_type, data, exclude=exclude)

    async def emit_to_role(self, role: str, event_type: str, data: Any = None) -> Fanout:
        return await self._emit(role_target(role), event_type, data)

    async def broadcast_all(self, event_type: str, data: Any = None) -> Fanout:
        return await self._emit(ALL_TARGET, event_type, data)

    async def health(self) -> Dict[str, Any]:
        info: Dict[str, Any] = {"backplane": "redis" if self.backplane else "local"}
        info.update(self.registry.stats())
        if self.backplane is not None:
            info["redis_connected"] = await self.backplane.ping()
            info["backplane_listening"] = self.backplane.listening
        return info

    def is_online(self, user_id: UUID) -> bool:
        """Whether the user has a live session on this process"""
        return self.registry.is_online(user_id)


def get_gateway(request: Request) -> SessionGateway:
    """Dependency returning the gateway created at startup"""
    return request.app.state.gateway
