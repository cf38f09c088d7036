from datetime import datetime, timezone
from uuid import uuid4, UUID
from typing import Literal

from sqlmodel import SQLModel, Field
from sqlalchemy import Column, String, DateTime, func

Role = Literal["admin", "teacher", "student", "parent"]
ROLES = ("admin", "teacher", "student", "parent")


class User(SQLModel, table=True):
    __tablename__ = "users"
    __table_args__ = {"extend_existing": True}

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    email: str = Field(
        sa_column=Column(String, unique=True, nullable=False, index=True),
    )
    hashed_password: str = Field(
        sa_column=Column(String, nullable=False),
    )
    role: str = Field(
        default="student",
        sa_column=Column(String(16), nullable=False, server_default="student", index=True),
    )
    first_name: str = Field(
        sa_column=Column(String(80), nullable=False),
    )
    last_name: str = Field(
        sa_column=Column(String(80), nullable=False),
    )
    created_at: datetime = Field(
       default_factory=lambda: datetime.now(timezone.utc),
       sa_column=Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"
