# app/messages/models.py
from datetime import datetime, timezone
from uuid import UUID
from typing import Optional

from sqlmodel import SQLModel, Field, Relationship
import sqlalchemy as sa
from sqlalchemy import func

from app.auth.models import User


class Message(SQLModel, table=True):
    """
    One direct message between two users.

    `read` only ever moves from False to True. Rows are never deleted here.
    """
    __tablename__ = "messages"
    __table_args__ = (
        sa.Index("ix_messages_sender_receiver", "sender_id", "receiver_id"),
        sa.Index("ix_messages_receiver_read", "receiver_id", "read"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    sender_id: UUID = Field(foreign_key="users.id", nullable=False)
    receiver_id: UUID = Field(foreign_key="users.id", nullable=False)
    content: str = Field(sa_column=sa.Column(sa.Text, nullable=False))
    read: bool = Field(
        default=False,
        sa_column=sa.Column(sa.Boolean, nullable=False, server_default=sa.false()),
    )
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=sa.Column(
            sa.DateTime(timezone=True),
            server_default=func.now(),
            nullable=False,
            index=True,
        )
    )

    # Relationships
    sender: Optional[User] = Relationship(
        sa_relationship_kwargs={"foreign_keys": "Message.sender_id", "lazy": "joined"}
    )
    receiver: Optional[User] = Relationship(
        sa_relationship_kwargs={"foreign_keys": "Message.receiver_id", "lazy": "joined"}
    )
