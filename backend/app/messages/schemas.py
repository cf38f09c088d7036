# app/messages/schemas.py
from datetime import datetime
from uuid import UUID
from typing import Dict, Optional
from pydantic import BaseModel, Field, field_validator, ConfigDict

from app.auth.schemas import UserSummary


# ─────────────────────────  CREATE SCHEMAS  ──────────────────────────
class MessageCreate(BaseModel):
    receiver_id: UUID = Field(..., description="Recipient user id")
    content: str = Field(
        ...,
        min_length=1,
        description="Message content (min 1 character)"
    )

    @field_validator('content')
    @classmethod
    def validate_content(cls, v):
        if len(v.strip()) < 1:
            raise ValueError('Message cannot be empty')
        return v.strip()


# ───────────────────────────  READ SCHEMAS  ───────────────────────────
class MessageRead(BaseModel):
    model_config = ConfigDict(
        from_attributes=True,
        json_schema_extra={
            "example": {
                "id": 42,
                "sender_id": "123e4567-e89b-12d3-a456-426614174000",
                "receiver_id": "9b2f4c1e-7d3a-4f0e-8c55-0a1b2c3d4e5f",
                "content": "Homework for Monday is on page 12.",
                "read": False,
                "created_at": "2025-01-30T12:00:00Z",
                "sender": {
                    "id": "123e4567-e89b-12d3-a456-426614174000",
                    "first_name": "Anna",
                    "last_name": "Nowak",
                    "role": "teacher"
                },
                "receiver": {
                    "id": "9b2f4c1e-7d3a-4f0e-8c55-0a1b2c3d4e5f",
                    "first_name": "Piotr",
                    "last_name": "Lis",
                    "role": "parent"
                }
            }
        }
    )

    id: int
    sender_id: UUID
    receiver_id: UUID
    content: str
    read: bool
    created_at: datetime
    sender: Optional[UserSummary] = None
    receiver: Optional[UserSummary] = None


class ContactRead(UserSummary):
    unread_count: int = Field(0, description="Unread messages from this contact")
    last_message_at: Optional[datetime] = None
    online: bool = Field(False, description="Has a live session on this server")


class UnreadSummary(BaseModel):
    total: int = Field(..., description="All unread messages for the user")
    by_contact: Dict[UUID, int] = Field(default_factory=dict)


class MarkReadResponse(BaseModel):
    message_id: int
    read: bool = True
    changed: bool = Field(..., description="False when the message was already read")
