# app/announcements/schemas.py
from datetime import datetime
from uuid import UUID
from typing import Literal, Optional
from pydantic import BaseModel, Field, field_validator, ConfigDict

TargetRole = Literal["all", "teacher", "student", "parent"]
Priority = Literal["normal", "important", "urgent"]


class AnnouncementCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    content: str = Field(..., min_length=1)
    target_role: TargetRole = "all"
    grade: Optional[str] = Field(None, max_length=40, description="Only for this grade, e.g. 'Grade 3'")
    priority: Priority = "normal"

    @field_validator('title', 'content')
    @classmethod
    def validate_not_blank(cls, v):
        if not v.strip():
            raise ValueError('Field cannot be empty')
        return v.strip()


class AnnouncementUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    content: Optional[str] = Field(None, min_length=1)
    target_role: Optional[TargetRole] = None
    grade: Optional[str] = Field(None, max_length=40)
    priority: Optional[Priority] = None

    @field_validator('title', 'content')
    @classmethod
    def validate_not_blank(cls, v):
        if v is not None and not v.strip():
            raise ValueError('Field cannot be empty')
        return v.strip() if v is not None else v


class AnnouncementRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    content: str
    created_by: UUID
    target_role: str
    grade: Optional[str] = None
    priority: str
    created_at: datetime
