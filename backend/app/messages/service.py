"""
Message delivery.

Send is always persist first, then fan-out. Fan-out is best effort: the
message table is the durable record and a receiver without a live session
reads the message from history later. Nothing here retries; a failed
persist surfaces as ``StorageError`` and the caller resubmits.
"""
import logging
from typing import List
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from app.auth.models import User
from app.core.errors import NotFoundError, StorageError, ValidationError
from app.messages.conversations import list_contacts
from app.messages.models import Message
from app.messages.schemas import ContactRead, MarkReadResponse, MessageRead, UnreadSummary
from app.messages.store import MessageStore
from app.messages.unread import unread_summary
from app.realtime.gateway import SessionGateway
from app.realtime.protocol import MESSAGE_SENT, NEW_MESSAGE

logger = logging.getLogger(__name__)


class MessageService:
    def __init__(self, db: Session, gateway: SessionGateway):
        self.db = db
        self.store = MessageStore(db)
        self.gateway = gateway

    @staticmethod
    def _validate(receiver_id, content) -> tuple[UUID, str]:
        if isinstance(receiver_id, UUID):
            rid = receiver_id
        else:
            try:
                rid = UUID(str(receiver_id))
            except ValueError:
                raise ValidationError("receiver_id must be a valid user id")

        if not isinstance(content, str) or not content.strip():
            raise ValidationError("Message content cannot be empty")
        return rid, content.strip()

    def _resolve(self, message: Message) -> MessageRead:
        return MessageRead.model_validate(message)

    def _persist(self, sender_id: UUID, receiver_id: UUID, content: str) -> MessageRead:
        try:
            receiver = self.db.get(User, receiver_id)
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError("Could not resolve receiver") from e
        if receiver is None:
            raise NotFoundError("Receiver not found")
        message = self.store.insert(sender_id, receiver_id, content)
        return self._resolve(message)

    async def _fan_out(self, user_id: UUID, event_type: str, message: MessageRead) -> None:
        try:
            fanout = await self.gateway.emit_to_user(user_id, event_type, message)
        except Exception as e:
            logger.error(f"Fan-out of message {message.id} to {user_id} failed: {e}")
            return
        if fanout.missed:
            logger.debug(f"Message {message.id}: {user_id} has no live session")

    # ─────────────────────────  SEND  ─────────────────────────
    async def send_message(self, sender: User, receiver_id, content, echo: bool = False) -> MessageRead:
        """
        Persist a message and push it to the receiver's live sessions.

        With ``echo`` the resolved message also goes back to every session of
        the sender, which is how live-channel sends keep a user's devices in step.
        """
        rid, text = self._validate(receiver_id, content)

        message = await run_in_threadpool(self._persist, sender.id, rid, text)
        logger.info(f"Message {message.id} stored: {sender.id} -> {rid}")

        await self._fan_out(rid, NEW_MESSAGE, message)
        if echo:
            await self._fan_out(sender.id, MESSAGE_SENT, message)
        return message

    async def live_send(self, sender: User, receiver_id, content) -> MessageRead:
        return await self.send_message(sender, receiver_id, content, echo=True)

    # ─────────────────────────  READ  ─────────────────────────
    def list_messages(self, requester_id: UUID) -> List[MessageRead]:
        return [self._resolve(m) for m in self.store.find_for_user(requester_id)]

    def list_unread(self, requester_id: UUID) -> List[MessageRead]:
        return [self._resolve(m) for m in self.store.find_unread(requester_id)]

    def get_conversation(
        self,
        requester_id: UUID,
        counterpart_id: UUID,
        mark_read: bool = True,
    ) -> List[MessageRead]:
        """
        History between two users, oldest first.

        The returned list is the state at query time; the mark-read step runs
        after it has been captured.
        """
        history = [self._resolve(m) for m in self.store.find_conversation(requester_id, counterpart_id)]
        if mark_read:
            self.mark_conversation_read(requester_id, counterpart_id)
        return history

    def mark_conversation_read(self, reader_id: UUID, counterpart_id: UUID) -> int:
        changed = self.store.mark_read(sender_id=counterpart_id, reader_id=reader_id)
        if changed:
            logger.info(f"Marked {changed} messages from {counterpart_id} read for {reader_id}")
        return changed

    def mark_message_read(self, requester_id: UUID, message_id: int) -> MarkReadResponse:
        message = self.store.find_by_id(message_id)
        # Only the receiver owns the read flag; other users see it as missing
        if message is None or message.receiver_id != requester_id:
            raise NotFoundError("Message not found")
        changed = self.store.mark_one_read(message)
        return MarkReadResponse(message_id=message_id, changed=changed)

    def list_contacts(self, requester_id: UUID) -> List[ContactRead]:
        return list_contacts(self.store, self.db, requester_id, is_online=self.gateway.is_online)

    def unread_summary(self, requester_id: UUID) -> UnreadSummary:
        return unread_summary(self.store, requester_id)
