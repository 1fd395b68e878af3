"""Pydantic schemas for request/response validation and serialization."""

from datetime import datetime
from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator
from .config import settings


PASSWORD_FIELD = Field(
    ...,
    min_length=settings.PASSWORD_MIN_LENGTH,
    max_length=settings.PASSWORD_MAX_LENGTH,
    description="Password (8-16 characters)",
)


class _ConfirmedPassword(BaseModel):
    """Mixin validating ``password`` against ``password_confirmation``."""

    @model_validator(mode="after")
    def check_confirmation(self):
        if self.password != self.password_confirmation:
            raise ValueError("The password confirmation does not match.")
        return self


# ==================== User Schemas ====================

class UserOut(BaseModel):
    """User output schema without password."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: str
    created_at: datetime | None = None


class AuthPayload(BaseModel):
    """Issued token plus the authenticated user's details."""
    token: str
    details: UserOut


# ==================== Account Schemas ====================

class RegisterRequest(_ConfirmedPassword):
    email: EmailStr = Field(..., max_length=settings.USER_EMAIL_MAX_LENGTH)
    password: str = PASSWORD_FIELD
    password_confirmation: str


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class LogoutRequest(BaseModel):
    id: int


class UpdatePasswordRequest(_ConfirmedPassword):
    id: int
    current_password: str = Field(..., min_length=1)
    password: str = PASSWORD_FIELD
    password_confirmation: str


class ResetPasswordRequest(_ConfirmedPassword):
    email: EmailStr
    password: str = PASSWORD_FIELD
    password_confirmation: str


# ==================== Post Schemas ====================

class ImageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    post_id: int
    path: str


class PostOut(BaseModel):
    """Post with its image, if any."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    title: str
    body: str
    created_at: datetime | None = None
    updated_at: datetime | None = None
    image: ImageOut | None = None
