"""Conversation identity and contact derivation over the message store."""
from typing import Callable, List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.auth.models import User
from app.messages.schemas import ContactRead
from app.messages.store import MessageStore


def conversation_key(user_a: UUID, user_b: UUID) -> str:
    """
    Normalized name for the unordered pair {user_a, user_b}.

    Only used for grouping; history queries stay symmetric.
    """
    low, high = sorted((str(user_a), str(user_b)))
    return f"conversation:{low}:{high}"


def list_contacts(
    store: MessageStore,
    db: Session,
    requester_id: UUID,
    is_online: Optional[Callable[[UUID], bool]] = None,
) -> List[ContactRead]:
    """Everyone the requester has talked to, most recent activity first."""
    latest = store.counterparts(requester_id)
    if not latest:
        return []

    users = db.scalars(select(User).where(User.id.in_(list(latest)))).all()

    contacts = [
        ContactRead(
            id=user.id,
            first_name=user.first_name,
            last_name=user.last_name,
            role=user.role,
            unread_count=store.count_unread_from(user.id, requester_id),
            last_message_at=latest[user.id],
            online=is_online(user.id) if is_online else False,
        )
        for user in users
    ]
    contacts.sort(key=lambda c: c.last_message_at, reverse=True)
    return contacts
