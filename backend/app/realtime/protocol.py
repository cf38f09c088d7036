"""Live channel envelopes and event names."""
from datetime import datetime, timezone
from typing import Any, Dict
from uuid import UUID

from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field, field_validator

# Inbound (client -> server)
SEND_MESSAGE = "send_message"
JOIN_CONVERSATION = "join_conversation"
TYPING = "typing"

# Outbound (server -> client)
CONNECTION_ESTABLISHED = "connection_established"
NEW_MESSAGE = "new_message"
MESSAGE_SENT = "message_sent"
USER_TYPING = "user_typing"
NEW_ANNOUNCEMENT = "new_announcement"
AUTH_ERROR = "auth_error"
ERROR = "error"


class WsInbound(BaseModel):
    """Client → Server."""

    type: str
    data: Dict[str, Any] = {}


class SendMessagePayload(BaseModel):
    receiver_id: UUID
    content: str = Field(..., min_length=1)

    @field_validator('content')
    @classmethod
    def validate_content(cls, v):
        if len(v.strip()) < 1:
            raise ValueError('Message cannot be empty')
        return v.strip()


class JoinConversationPayload(BaseModel):
    counterpart_id: UUID


class TypingPayload(BaseModel):
    receiver_id: UUID


def make_event(event_type: str, data: Any = None) -> Dict[str, Any]:
    """Server → Client envelope, already JSON-safe."""
    return {
        "type": event_type,
        "data": jsonable_encoder(data if data is not None else {}),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


def user_target(user_id: UUID | str) -> str:
    return f"user:{user_id}"


def role_target(role: str) -> str:
    return f"role:{role}"


ALL_TARGET = "all"
