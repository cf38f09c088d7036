import json
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect
from fastapi.websockets import WebSocketState
from pydantic import ValidationError as PayloadError

from app.auth.models import User
from app.core.errors import AuthenticationError, PortalError
from app.messages.conversations import conversation_key
from app.messages.service import MessageService
from app.messages.unread import relay_typing
from app.realtime.gateway import SessionGateway, get_gateway
from app.realtime.protocol import (
    AUTH_ERROR, CONNECTION_ESTABLISHED, ERROR, JOIN_CONVERSATION, SEND_MESSAGE, TYPING,
    JoinConversationPayload, SendMessagePayload, TypingPayload, WsInbound, make_event,
)
from app.realtime.registry import LiveSession

router = APIRouter(tags=["websockets"])

# Configure logging
logger = logging.getLogger(__name__)


class SessionRevoked(Exception):
    """The user behind a live session no longer exists"""


async def _reply_error(session: LiveSession, message: str, event_type: Optional[str] = None):
    await session.send(make_event(ERROR, {"message": message, "event": event_type}))


async def _handle_send(gateway: SessionGateway, session: LiveSession, user: User, data: dict):
    payload = SendMessagePayload.model_validate(data)
    if not await gateway.still_valid(user.id):
        raise SessionRevoked()

    db = gateway.session_factory()
    try:
        await MessageService(db, gateway).live_send(user, payload.receiver_id, payload.content)
    finally:
        db.close()


async def _handle_join(gateway: SessionGateway, session: LiveSession, user: User, data: dict):
    payload = JoinConversationPayload.model_validate(data)
    session.conversations.add(conversation_key(user.id, payload.counterpart_id))


async def _handle_typing(gateway: SessionGateway, session: LiveSession, user: User, data: dict):
    payload = TypingPayload.model_validate(data)
    if not await gateway.still_valid(user.id):
        raise SessionRevoked()
    await relay_typing(gateway, user, payload.receiver_id, origin=session)


HANDLERS = {
    SEND_MESSAGE: _handle_send,
    JOIN_CONVERSATION: _handle_join,
    TYPING: _handle_typing,
}


async def handle_inbound(gateway: SessionGateway, session: LiveSession, user: User, raw: str) -> None:
    """
    Run one client event. Problems are reported to this connection only.

    Raises:
        SessionRevoked: the session must be closed
    """
    try:
        inbound = WsInbound.model_validate(json.loads(raw))
    except (json.JSONDecodeError, PayloadError):
        await _reply_error(session, "Malformed event")
        return

    handler = HANDLERS.get(inbound.type)
    if handler is None:
        await _reply_error(session, f"Unknown event type '{inbound.type}'", inbound.type)
        return

    try:
        await handler(gateway, session, user, inbound.data)
    except PayloadError as e:
        await _reply_error(session, f"Invalid payload: {e.errors()[0]['msg']}", inbound.type)
    except PortalError as e:
        await _reply_error(session, e.detail, inbound.type)


@router.websocket("/live")
async def live_channel(
    websocket: WebSocket,
    token: Optional[str] = Query(None, description="JWT access token for authentication"),
):
    """
    Live channel for messages, typing signals and announcements

    **Authentication:**
    - Requires a valid JWT access token as query parameter
    - On failure one `auth_error` event is sent and the socket closes with 1008

    **Inbound events:** `send_message`, `join_conversation`, `typing`

    **Outbound events:** `connection_established`, `new_message`, `message_sent`,
    `user_typing`, `new_announcement`, `error`

    **Close codes:**
    - 1008: Authentication failed or session revoked
    - 1013: Too many connection attempts
    - 1011: Internal server error
    """
    gateway: SessionGateway = websocket.app.state.gateway
    await websocket.accept()

    try:
        user = await gateway.authenticate(token)
    except AuthenticationError as e:
        logger.info(f"Live connection rejected: {e.detail}")
        await websocket.send_json(make_event(AUTH_ERROR, {"message": e.detail}))
        await websocket.close(code=1008, reason=f"Authentication failed: {e.detail}")
        return

    if not gateway.check_rate_limit(user.id):
        await websocket.close(code=1013, reason="Rate limit exceeded")
        return

    session = await gateway.admit(user, websocket)
    try:
        await session.send(make_event(CONNECTION_ESTABLISHED, {
            "message": "Successfully connected to live channel",
            "user_id": user.id,
            "connection_id": session.connection_id,
        }))

        while True:
            raw = await websocket.receive_text()
            await handle_inbound(gateway, session, user, raw)

    except SessionRevoked:
        await session.send(make_event(AUTH_ERROR, {"message": "User not found"}))
        await session.close(code=1008, reason="Session revoked")
    except WebSocketDisconnect:
        logger.debug(f"Live channel {session.connection_id} closed by client")
    except Exception as e:
        logger.error(f"Live channel error for user {user.id}: {e}")
        if websocket.client_state == WebSocketState.CONNECTED:
            await session.close(code=1011, reason="Internal server error")
    finally:
        await gateway.release(session)


@router.get("/health")
async def live_health(gateway: SessionGateway = Depends(get_gateway)):
    """Health check for the live channel"""
    info = await gateway.health()
    healthy = info.get("redis_connected", True) and info.get("backplane_listening", True)
    return {
        "status": "healthy" if healthy else "degraded",
        **info,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
