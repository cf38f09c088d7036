"""
Message store.

The only component that reads or writes the ``messages`` table. Every
operation runs on the caller's session; SQLAlchemy failures roll the session
back and surface as ``StorageError`` so one failed operation never leaves a
half-applied write behind.
"""
import logging
from datetime import datetime
from functools import wraps
from typing import Dict, List, Optional
from uuid import UUID

from sqlalchemy import select, update, func, or_, and_, desc, asc
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.errors import StorageError
from app.messages.models import Message

logger = logging.getLogger(__name__)


def _storage_guard(method):
    @wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Message store {method.__name__} failed: {e}")
            raise StorageError(f"Message store unavailable ({method.__name__})") from e
    return wrapper


class MessageStore:
    """Keyed and filtered queries over messages for one unit of work"""

    def __init__(self, db: Session):
        self.db = db

    # ──────────────────────────  WRITES  ──────────────────────────
    @_storage_guard
    def insert(self, sender_id: UUID, receiver_id: UUID, content: str) -> Message:
        message = Message(sender_id=sender_id, receiver_id=receiver_id, content=content)
        self.db.add(message)
        self.db.commit()
        self.db.refresh(message)
        return message

    @_storage_guard
    def mark_read(self, sender_id: UUID, reader_id: UUID) -> int:
        """Flip every unread sender -> reader message to read. Returns rows changed."""
        result = self.db.execute(
            update(Message)
            .where(
                and_(
                    Message.sender_id == sender_id,
                    Message.receiver_id == reader_id,
                    Message.read.is_(False),
                )
            )
            .values(read=True)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount or 0

    @_storage_guard
    def mark_one_read(self, message: Message) -> bool:
        """Flip a single message. Returns False when it was already read."""
        result = self.db.execute(
            update(Message)
            .where(and_(Message.id == message.id, Message.read.is_(False)))
            .values(read=True)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return bool(result.rowcount)

    # ──────────────────────────  READS  ──────────────────────────
    @_storage_guard
    def find_by_id(self, message_id: int) -> Optional[Message]:
        return self.db.get(Message, message_id)

    @_storage_guard
    def find_conversation(self, user_a: UUID, user_b: UUID) -> List[Message]:
        """Both directions between two users, oldest first"""
        stmt = (
            select(Message)
            .where(
                or_(
                    and_(Message.sender_id == user_a, Message.receiver_id == user_b),
                    and_(Message.sender_id == user_b, Message.receiver_id == user_a),
                )
            )
            .order_by(asc(Message.created_at), asc(Message.id))
        )
        return list(self.db.scalars(stmt).unique().all())

    @_storage_guard
    def find_for_user(self, user_id: UUID) -> List[Message]:
        stmt = (
            select(Message)
            .where(or_(Message.sender_id == user_id, Message.receiver_id == user_id))
            .order_by(desc(Message.created_at), desc(Message.id))
        )
        return list(self.db.scalars(stmt).unique().all())

    @_storage_guard
    def find_inbox(self, user_id: UUID) -> List[Message]:
        stmt = (
            select(Message)
            .where(Message.receiver_id == user_id)
            .order_by(desc(Message.created_at), desc(Message.id))
        )
        return list(self.db.scalars(stmt).unique().all())

    @_storage_guard
    def find_unread(self, user_id: UUID) -> List[Message]:
        stmt = (
            select(Message)
            .where(and_(Message.receiver_id == user_id, Message.read.is_(False)))
            .order_by(desc(Message.created_at), desc(Message.id))
        )
        return list(self.db.scalars(stmt).unique().all())

    @_storage_guard
    def count_unread_from(self, sender_id: UUID, receiver_id: UUID) -> int:
        stmt = select(func.count(Message.id)).where(
            and_(
                Message.sender_id == sender_id,
                Message.receiver_id == receiver_id,
                Message.read.is_(False),
            )
        )
        return self.db.scalar(stmt) or 0

    @_storage_guard
    def count_unread(self, user_id: UUID) -> int:
        stmt = select(func.count(Message.id)).where(
            and_(Message.receiver_id == user_id, Message.read.is_(False))
        )
        return self.db.scalar(stmt) or 0

    @_storage_guard
    def unread_by_sender(self, user_id: UUID) -> Dict[UUID, int]:
        stmt = (
            select(Message.sender_id, func.count(Message.id))
            .where(and_(Message.receiver_id == user_id, Message.read.is_(False)))
            .group_by(Message.sender_id)
        )
        return {sender_id: count for sender_id, count in self.db.execute(stmt).all()}

    @_storage_guard
    def counterparts(self, user_id: UUID) -> Dict[UUID, datetime]:
        """
        Everyone the user has exchanged messages with, mapped to the time of
        the latest message in that conversation.
        """
        sent = (
            select(Message.receiver_id, func.max(Message.created_at))
            .where(Message.sender_id == user_id)
            .group_by(Message.receiver_id)
        )
        received = (
            select(Message.sender_id, func.max(Message.created_at))
            .where(Message.receiver_id == user_id)
            .group_by(Message.sender_id)
        )

        latest: Dict[UUID, datetime] = {}
        for stmt in (sent, received):
            for counterpart_id, last_at in self.db.execute(stmt).all():
                if counterpart_id not in latest or last_at > latest[counterpart_id]:
                    latest[counterpart_id] = last_at
        return latest
