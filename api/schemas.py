from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class UserCreate(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=1, max_length=1024)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        v = v.strip().lower()
        if "@" not in v:
            raise ValueError("must be an email address")
        return v


class LoginRequest(BaseModel):
    email: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=1, max_length=1024)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.strip().lower()


class UserResponse(BaseModel):
    """Public view of a user; never includes the password hash."""

    id: str
    email: str
    created_at: datetime
    updated_at: datetime


class LoginResponse(UserResponse):
    token: str
    refresh_token: str


class TokenResponse(BaseModel):
    token: str


class VideoCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: str = Field(default="", max_length=5000)


class VideoResponse(BaseModel):
    id: str
    user_id: str
    title: str
    description: str = ""
    # Plain asset URL
    thumbnail_url: Optional[str] = None
    # Presigned object-store URL, valid for a limited time
    video_url: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @field_validator("description", mode="before")
    @classmethod
    def default_description(cls, v):
        return v if v is not None else ""
