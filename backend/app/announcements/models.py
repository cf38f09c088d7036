# app/announcements/models.py
from datetime import datetime, timezone
from uuid import UUID
from typing import Optional

from sqlmodel import SQLModel, Field
import sqlalchemy as sa
from sqlalchemy import func

TARGET_ROLES = ("all", "teacher", "student", "parent")
PRIORITIES = ("normal", "important", "urgent")


class Announcement(SQLModel, table=True):
    __tablename__ = "announcements"

    id: Optional[int] = Field(default=None, primary_key=True)
    title: str = Field(sa_column=sa.Column(sa.String(200), nullable=False))
    content: str = Field(sa_column=sa.Column(sa.Text, nullable=False))
    created_by: UUID = Field(foreign_key="users.id", nullable=False)
    target_role: str = Field(
        default="all",
        sa_column=sa.Column(sa.String(16), nullable=False, server_default="all", index=True),
    )
    grade: Optional[str] = Field(
        default=None,
        sa_column=sa.Column(sa.String(40), nullable=True, index=True),
    )
    priority: str = Field(
        default="normal",
        sa_column=sa.Column(sa.String(16), nullable=False, server_default="normal"),
    )
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=sa.Column(
            sa.DateTime(timezone=True),
            server_default=func.now(),
            nullable=False
        )
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=sa.Column(
            sa.DateTime(timezone=True),
            server_default=func.now(),
            onupdate=func.now(),
            nullable=False
        )
    )
