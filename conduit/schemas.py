"""
Pydantic schemas for the Conduit HTTP API.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from conduit.security import MAX_PASSWORD_BYTES


def _check_password_bytes(value: str) -> str:
    if len(value.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValueError(f"password must be at most {MAX_PASSWORD_BYTES} bytes")
    return value


class TagsResponse(BaseModel):
    tags: list[str]


class NewUser(BaseModel):
    username: str = Field(..., min_length=1, max_length=64)
    email: EmailStr
    password: str = Field(..., min_length=8)

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        return _check_password_bytes(value)


class NewUserRequest(BaseModel):
    user: NewUser


class LoginUser(BaseModel):
    email: EmailStr
    password: str

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        return _check_password_bytes(value)


class LoginRequest(BaseModel):
    user: LoginUser


class UserBody(BaseModel):
    id: str
    username: str
    email: str
    bio: Optional[str] = None
    image: Optional[str] = None


class UserResponse(BaseModel):
    user: UserBody
