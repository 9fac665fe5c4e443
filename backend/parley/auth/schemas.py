"""Request bodies for the account endpoints."""
from typing import Optional

from pydantic import BaseModel, EmailStr, Field


class RegisterRequest(BaseModel):
    username: str = Field(..., min_length=3, max_length=30)
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=128)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class ProfileUpdate(BaseModel):
    """Fields a user may change on their own profile (all optional)."""
    username: Optional[str] = Field(default=None, min_length=3, max_length=30)
    avatar: Optional[str] = Field(default=None, max_length=2048)
