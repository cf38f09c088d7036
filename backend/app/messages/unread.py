"""Unread badge counts and transient typing signals."""
import logging
from typing import Optional
from uuid import UUID

from app.auth.models import User
from app.messages.schemas import UnreadSummary
from app.messages.store import MessageStore
from app.realtime.gateway import SessionGateway
from app.realtime.protocol import USER_TYPING
from app.realtime.registry import Fanout, LiveSession

logger = logging.getLogger(__name__)


def unread_summary(store: MessageStore, user_id: UUID) -> UnreadSummary:
    return UnreadSummary(
        total=store.count_unread(user_id),
        by_contact=store.unread_by_sender(user_id),
    )


async def relay_typing(
    gateway: SessionGateway,
    sender: User,
    receiver_id: UUID,
    origin: Optional[LiveSession] = None,
) -> Fanout:
    """
    Tell the receiver's live sessions that ``sender`` is typing.

    Never stored and never acknowledged; dropped when the receiver is offline.
    The ``origin`` session never gets its own signal back.
    """
    return await gateway.emit_to_user(
        receiver_id,
        USER_TYPING,
        {"sender_id": sender.id, "sender_name": sender.full_name},
        exclude=origin.connection_id if origin is not None else None,
    )
