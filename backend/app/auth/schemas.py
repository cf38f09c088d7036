# app/auth/schemas.py
from datetime import datetime
from pydantic import EmailStr, BaseModel, Field, field_validator, ConfigDict
from uuid import UUID
from typing import Literal


class UserCreate(BaseModel):
    email: EmailStr
    password: str = Field(min_length=6, max_length=128)
    first_name: str = Field(..., min_length=1, max_length=80)
    last_name: str = Field(..., min_length=1, max_length=80)
    role: Literal["admin", "teacher", "student", "parent"] = "student"

    @field_validator('first_name', 'last_name')
    @classmethod
    def validate_name(cls, v):
        if not v.strip():
            raise ValueError('Name cannot be empty')
        return v.strip()


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class UserRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    email: EmailStr
    role: str
    first_name: str
    last_name: str
    created_at: datetime


class UserSummary(BaseModel):
    """Identity attached to messages and contacts"""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    first_name: str
    last_name: str
    role: str


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
